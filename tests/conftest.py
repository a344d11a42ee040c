# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import ast
import textwrap

import pytest

from diffast.backend import register_backend, unregister_backend
from diffast.contract import ABI_VERSION
from diffast.parser import function_from_ast


class RecordingBackend:
    """A backend that records every request instead of differentiating."""

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


@pytest.fixture
def no_backend():
    previous = unregister_backend()
    yield
    if previous is not None:
        register_backend(previous)


@pytest.fixture(scope="session")
def decl_from_source():
    """Parse the first `def` of a source snippet into a `Function`."""

    def _decl(src: str):
        tree = ast.parse(textwrap.dedent(src))
        node = next(n for n in tree.body if isinstance(n, ast.FunctionDef))
        return function_from_ast(node)

    return _decl
