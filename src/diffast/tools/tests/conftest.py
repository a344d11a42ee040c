# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import os
import shutil
import warnings

import pytest

from jinja2 import Environment, FileSystemLoader

from click.testing import CliRunner

from diffast.tools.static_autodiff_generator import static_autodiff_generator


@pytest.fixture
def run_in_isolated_folder(tmpdir):
    # Helper to simulate a production environment where configurations are used
    # Tmp Folder structure:
    # - /
    # - config/
    #   - <config_name>.yml
    # - input/
    #   - <module_name>.py
    # - output/
    #   - <module_name>.py
    #
    # Test folder structure:
    # - .
    # - config
    #   - <template_a>.yml.j2
    #   - <template_b>.yml.j2
    # - <module_a>.py
    # - test_a.py
    def _run(
        cfg_template,
        module,
        params,
        output_name=None,
        ruff_format=False,
        extra_args=[],
        show_output=False,
    ):
        root = tmpdir
        config_folder = root.mkdir("config")
        input_folder = root.mkdir("input")
        output_folder = root.mkdir("output")
        here = os.path.dirname(os.path.abspath(__file__))

        src_data = os.path.join(here, module)
        target_data = os.path.join(input_folder, module)
        config_name = cfg_template.replace(".j2", "")
        config_path = os.path.join(config_folder, config_name)
        shutil.copy(src_data, target_data)

        params["data"] = target_data
        if output_name is not None:
            params["output_name"] = output_name

        env = Environment(loader=FileSystemLoader(here))
        template = env.get_template(os.path.join("config/", cfg_template))
        config = template.render(params)

        with open(config_path, "w") as f:
            f.write(config)

        runner = CliRunner(catch_exceptions=False)

        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            result = runner.invoke(
                static_autodiff_generator,
                [
                    "--cfg-path",
                    config_path,
                    "--output-dir",
                    output_folder,
                    "-fmt",
                    "true" if ruff_format else "false",
                ]
                + extra_args,
            )

        assert result.exit_code == 0, result.output

        if output_name is None:
            output_name = module
        output_path = os.path.join(output_folder, output_name)

        with open(output_path) as f:
            output = f.read()

        if show_output:
            print(output)

        return {
            "result": result,
            "output_folder": output_folder,
            "output_path": output_path,
            "output": output,
            "warnings": w,
        }

    return _run
