# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import os
import subprocess
import sys

import pytest

from click.testing import CliRunner

from diffast.errors import TypeNotFoundError
from diffast.tools.static_autodiff_generator import static_autodiff_generator


def test_cli_generates_module(run_in_isolated_folder):
    res = run_in_isolated_folder("cfg.yml.j2", "sample_module.py", {})

    output = res["output"]
    assert output.startswith(
        "# Automatically generated by Diffast Static Autodiff Generator\n"
    )
    assert "Autodiff invocations in sample_module" in res["result"].output
    assert (
        "def dscale(x: numba.types.float64, factor: numba.types.float64, "
        "dret: numba.types.float64)"
    ) in output
    assert '"__enzyme_rev_13sample_module5scale__ac_a"' in output
    assert "axpy_fwd = declare_derivative(" in output
    assert 'symbol="__enzyme_fwd_13sample_module4axpy__cdd_c"' in output
    assert "@autodiff" not in output
    assert "import math\n" in output


def test_reproducible_info(run_in_isolated_folder):
    res = run_in_isolated_folder("cfg.yml.j2", "sample_module.py", {})

    lines = res["output"].splitlines()
    info = dict(line[2:].split(": ", 1) for line in lines[2:7])

    assert set(info) == {
        "Diffast version",
        "Numba version",
        "Generation command",
        "Static generator parameters",
        "Config file path (relative to the path of the generated module)",
    }
    assert info["Config file path (relative to the path of the generated module)"] == (
        os.path.join("..", "..", "config", "cfg.yml")
    )
    assert "'run_ruff_format': False" in info["Static generator parameters"]


def test_symbol_exposure(run_in_isolated_folder):
    res = run_in_isolated_folder("cfg.yml.j2", "sample_module.py", {})

    assert res["output"].rstrip().endswith(
        '_DERIVED_SYMBOLS = ["dscale","axpy_fwd"]'
    )


def test_output_name(run_in_isolated_folder):
    res = run_in_isolated_folder(
        "cfg.yml.j2", "sample_module.py", {}, output_name="derived.py"
    )

    assert os.path.basename(res["output_path"]) == "derived.py"
    # Symbols are built from the name the generated module is imported as.
    assert '"__enzyme_rev_7derived5scale__ac_a"' in res["output"]


def test_exclude(run_in_isolated_folder):
    res = run_in_isolated_folder(
        "exclude.yml.j2", "sample_module.py", {"excludes": ["axpy_fwd"]}
    )

    output = res["output"]
    assert "@autodiff(axpy, Forward, Const, Const, Dup, Dup)" in output
    assert "declare_derivative(" not in output
    assert output.rstrip().endswith('_DERIVED_SYMBOLS = ["dscale"]')
    assert any(
        "Skipping autodiff invocation on axpy_fwd" in str(w.message)
        for w in res["warnings"]
    )


def test_type_aliases_option(run_in_isolated_folder):
    res = run_in_isolated_folder(
        "no_alias.yml.j2",
        "sample_module.py",
        {},
        extra_args=["--type-aliases", '{"real": "float64"}'],
    )

    assert "def dscale(x: numba.types.float64" in res["output"]


def _write_config(tmpdir, body):
    cfg = tmpdir.join("cfg.yml")
    cfg.write(body)
    return str(cfg)


def test_missing_type_alias(tmpdir):
    here = os.path.dirname(os.path.abspath(__file__))
    entry_point = os.path.join(here, "sample_module.py")
    cfg = _write_config(tmpdir, f"Entry Point: {entry_point}\n")
    output_dir = tmpdir.mkdir("output")

    runner = CliRunner(catch_exceptions=False)
    with pytest.raises(TypeNotFoundError, match="real"):
        runner.invoke(
            static_autodiff_generator,
            ["--cfg-path", cfg, "--output-dir", str(output_dir), "-fmt", "false"],
        )


def test_invalid_type_aliases(tmpdir):
    here = os.path.dirname(os.path.abspath(__file__))
    entry_point = os.path.join(here, "sample_module.py")
    cfg = _write_config(tmpdir, f"Entry Point: {entry_point}\n")
    output_dir = tmpdir.mkdir("output")

    runner = CliRunner()
    for aliases in ['{"real": ', '{"real": "NotANumbaType"}']:
        result = runner.invoke(
            static_autodiff_generator,
            [
                "--cfg-path",
                cfg,
                "--output-dir",
                str(output_dir),
                "-fmt",
                "false",
                "--type-aliases",
                aliases,
            ],
        )
        assert result.exit_code == 2
        assert "numba_type_dict" in result.output or "numba types" in result.output


def test_missing_entry_point(tmpdir):
    cfg = _write_config(
        tmpdir, f"Entry Point: {tmpdir.join('missing.py')}\n"
    )
    output_dir = tmpdir.mkdir("output")

    runner = CliRunner()
    result = runner.invoke(
        static_autodiff_generator,
        ["--cfg-path", cfg, "--output-dir", str(output_dir), "-fmt", "false"],
    )
    assert result.exit_code == 1
    assert isinstance(result.exception, ValueError)


def test_run_generated_module(run_in_isolated_folder):
    res = run_in_isolated_folder("cfg.yml.j2", "sample_module.py", {})

    output_folder = res["output_folder"]
    test_kernel_src = """
from diffast.backend import register_backend
from diffast.contract import ABI_VERSION

from sample_module import dscale, axpy_fwd, scale, axpy


class EchoBackend:
    abi_version = ABI_VERSION

    def differentiate(self, request, primal):
        def impl(*args):
            return request.symbol, primal.__name__, args

        return impl


register_backend(EchoBackend())

symbol, primal, args = dscale(2.0, 3.0, 1.0)
assert symbol == "__enzyme_rev_13sample_module5scale__ac_a", symbol
assert primal == "scale"
assert args == (2.0, 3.0, 1.0)

symbol, primal, args = axpy_fwd(2.0, "x", "dx", "y", "dy")
assert symbol == "__enzyme_fwd_13sample_module4axpy__cdd_c", symbol
assert primal == "axpy"
assert args == (2.0, "x", "dx", "y", "dy")

assert scale(2.0, 3.0) == 6.0
print("OK")
"""

    test_kernel = os.path.join(output_folder, "test.py")
    with open(test_kernel, "w") as f:
        f.write(test_kernel_src)

    res = subprocess.run(
        [sys.executable, test_kernel],
        cwd=output_folder,
        capture_output=True,
        text=True,
    )

    assert res.returncode == 0, res.stderr
    assert "OK" in res.stdout
