# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import pytest

import os
import sys
import importlib.util

from diffast.backend import register_backend, unregister_backend
from diffast.contract import ABI_VERSION
from diffast.static import reset_renderer
from diffast.tools.static_autodiff_generator import (
    _static_autodiff_generator,
    Config,
)


@pytest.fixture(scope="session")
def data_folder():
    current_directory = os.path.dirname(os.path.abspath(__file__))

    return lambda *file: os.path.join(current_directory, "data/", *file)


@pytest.fixture(scope="function")
def make_module(tmpdir):
    """Generate a module from an annotated source file and import it."""
    loaded = []

    def _make_module(entry_point: str, **config_params):
        reset_renderer()

        cfg = Config.from_params(entry_point=entry_point, **config_params)
        output_dir = tmpdir.mkdir(f"output{len(loaded)}")
        output_path = _static_autodiff_generator(cfg, str(output_dir))

        with open(output_path) as f:
            src = f.read()

        module_name = os.path.splitext(os.path.basename(output_path))[0]
        spec = importlib.util.spec_from_file_location(module_name, output_path)
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        loaded.append(module_name)
        spec.loader.exec_module(module)

        return {
            "src": src,
            "module": module,
        }

    yield _make_module

    for name in loaded:
        sys.modules.pop(name, None)


@pytest.fixture
def write_source(tmpdir):
    def _write(name: str, src: str) -> str:
        path = tmpdir / name
        with open(path, "w") as f:
            f.write(src)
        return str(path)

    return _write


class RecordingBackend:
    abi_version = ABI_VERSION

    def __init__(self):
        self.calls = []

    def differentiate(self, request, primal):
        def impl(*args):
            self.calls.append((request, primal, args))
            return request.symbol

        return impl


@pytest.fixture
def backend():
    recording = RecordingBackend()
    previous = register_backend(recording)
    yield recording
    unregister_backend()
    if previous is not None:
        register_backend(previous)
