# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import click
import os
import json
import sys
import subprocess
import importlib.util
import warnings

import yaml

import numba.types

from diffast.decl import ModuleDecls
from diffast.parser import DEFAULT_DECORATOR_NAMES, parse_module
from diffast.static import reset_renderer
from diffast.static.renderer import (
    get_reproducible_info,
    get_all_exposed_symbols,
)
from diffast.static.function import StaticAutodiffModuleRenderer
from diffast.types import register_type_alias


class Config:
    """Configuration File for Static Autodiff Generation.

    Attributes
    ----------
    entry_point : str
        Path to the input Python module containing `@autodiff` invocations.
    output_name : str | None
        File name of the generated module. Defaults to the entry point's
        file name.
    excludes : list[str]
        Primal or derived names whose invocations are left untouched.
    additional_imports : list[str]
        The list of additional imports to add to the generated file.
    decorator_names : list[str]
        Names recognized as the autodiff decorator.
    type_aliases : dict[str, type]
        Extra scalar type names usable in annotations, mapped to numba types.
    """

    entry_point: str
    output_name: str | None
    excludes: list[str]
    additional_imports: list[str]
    decorator_names: list[str]
    type_aliases: dict[str, type]

    def __init__(self, config_dict: dict):
        """Initialize Config from a dictionary.

        Parameters
        ----------
        config_dict : dict
            Dictionary containing configuration values.
        """
        self.entry_point = config_dict["Entry Point"]
        self.output_name = config_dict.get("Output Name", None)

        self.excludes = config_dict.get("Exclude", [])
        self.additional_imports = config_dict.get("Additional Import", [])
        self.decorator_names = config_dict.get(
            "Decorator Names", list(DEFAULT_DECORATOR_NAMES)
        )
        self.type_aliases = _str_value_to_numba_type(
            config_dict.get("Type Aliases", {})
        )

        if self.excludes is None:
            self.excludes = []
        if self.additional_imports is None:
            self.additional_imports = []
        if not self.decorator_names:
            self.decorator_names = list(DEFAULT_DECORATOR_NAMES)

        self._verify_exists()

    @classmethod
    def from_yaml_path(cls, cfg_path: str) -> "Config":
        """Create a Config instance from a YAML file path.

        Parameters
        ----------
        cfg_path : str
            Path to the YAML configuration file.

        Returns
        -------
        Config
            A new Config instance.
        """
        with open(cfg_path) as f:
            config_dict = yaml.load(f, yaml.Loader)
        return cls(config_dict)

    @classmethod
    def from_params(
        cls,
        entry_point: str,
        output_name: str | None = None,
        excludes: list[str] | None = None,
        additional_imports: list[str] | None = None,
        decorator_names: list[str] | None = None,
        type_aliases: dict[str, type] | None = None,
    ) -> "Config":
        """Create a Config instance from individual parameters instead of a config file."""
        config_dict = {
            "Entry Point": entry_point,
            "Output Name": output_name,
            "Exclude": excludes or [],
            "Additional Import": additional_imports or [],
            "Decorator Names": decorator_names or list(DEFAULT_DECORATOR_NAMES),
            "Type Aliases": {},
        }

        cfg = cls(config_dict)
        cfg.type_aliases = dict(type_aliases or {})
        return cfg

    def _verify_exists(self):
        if not os.path.exists(self.entry_point):
            raise ValueError(
                f"Input module file {self.entry_point} does not exist."
            )


def _str_value_to_numba_type(d: dict[str, str]) -> dict[str, type]:
    """Converts string typed value to numba `types` objects"""
    return {k: getattr(numba.types, v) for k, v in d.items()}


class NumbaTypeDictType(click.ParamType):
    """`Click` input type for dictionary mapping type alias to Numba type."""

    name = "numba_type_dict"

    def convert(self, value, param, ctx):
        if isinstance(value, dict):
            return value

        try:
            d = json.loads(value)
        except json.JSONDecodeError:
            self.fail(
                f"{self.name} parameter must be valid JSON string. Got {value}"
            )

        try:
            d = _str_value_to_numba_type(d)
        except AttributeError:
            self.fail(
                f"Unable to convert input type dictionary string into dict of numba types. Got {d}."
            )

        return d


numba_type_dict = NumbaTypeDictType()


def log_sites_to_generate(decls: ModuleDecls):
    """Echo every autodiff invocation found in the module."""
    click.echo("-" * 80)
    click.echo(f"Autodiff invocations in {decls.module_name}: ")
    click.echo(
        "\n".join(
            f"  - {site.function.name} ({site.form.value}): {', '.join(map(str, site.tokens))}"
            for site in decls.sites
        )
    )


def _static_autodiff_generator(
    config: Config,
    output_dir: str,
    log_generates: bool = False,
    cfg_file_path: str | None = None,
    generator_params: dict[str, str] = {},
) -> str:
    """
    A function to rewrite an annotated Python module into one where every
    `@autodiff` invocation is expanded.

    Parameters
    ----------
    config : Config
        Parsed generator configuration.
    output_dir : str
        Directory the generated module is written to.
    log_generates : bool
        Echo the invocations found before generating.
    cfg_file_path : str, optional
        Path of the config file, recorded in the generated header.
    generator_params : dict
        Command parameters, recorded in the generated header.

    Returns
    -------
    str
        Path to the generated module.
    """
    entry_point = os.path.abspath(config.entry_point)

    basename = os.path.splitext(os.path.basename(entry_point))[0]
    if not basename:
        click.echo(f"Unable to extract base name from {config.entry_point}.")
        return ""

    if config.output_name is None:
        output_file = os.path.join(output_dir, f"{basename}.py")
    else:
        output_file = os.path.join(output_dir, config.output_name)
    module_name = os.path.splitext(os.path.basename(output_file))[0]

    for alias, nbty in config.type_aliases.items():
        register_type_alias(alias, nbty)

    with open(entry_point) as f:
        source = f.read()

    decls = parse_module(source, module_name, config.decorator_names)

    if log_generates:
        log_sites_to_generate(decls)

    renderer = StaticAutodiffModuleRenderer(
        decls,
        module_name=module_name,
        excludes=config.excludes,
        additional_imports=config.additional_imports,
    )
    module_str = renderer.render_as_str(with_imports=True)

    # Full command line that generate the module:
    cmd = " ".join(sys.argv)

    # Compute the relative path from generated module to the config file:
    if cfg_file_path is not None:
        config_rel_path = os.path.relpath(cfg_file_path, output_file)
    else:
        config_rel_path = "<not available>"

    exposed_symbols = get_all_exposed_symbols()

    assembled = f"""# Automatically generated by Diffast Static Autodiff Generator
# Generator Information:
{get_reproducible_info(config_rel_path, cmd, generator_params)}
{module_str}

# Symbols:
{exposed_symbols}
"""

    with open(output_file, "w") as file:
        file.write(assembled)
        click.echo(
            f"Derived entities for {config.entry_point} generated in {output_file}"
        )

    return output_file


def ruff_format_generated_file(generated_file_path: str):
    if not os.path.exists(generated_file_path):
        return

    subprocess.run(
        ["ruff", "check", "--select", "I", "--fix", generated_file_path],
        check=True,
    )

    print("Formatted.")


@click.command()
@click.pass_context
@click.option(
    "--cfg-path",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    required=True,
)
@click.option(
    "--output-dir",
    type=click.Path(
        exists=True,
        file_okay=False,
        writable=True,
    ),
    required=True,
)
@click.option(
    "-fmt",
    "--run-ruff-format",
    type=bool,
    default=True,
)
@click.option(
    "--type-aliases",
    type=numba_type_dict,
    default="{}",
    help="JSON object mapping extra type names to numba type names.",
)
def static_autodiff_generator(
    ctx,
    cfg_path,
    output_dir,
    run_ruff_format,
    type_aliases,
):
    """
    A CLI tool to expand `@autodiff` invocations of a Python module.

    CFG_PATH: Path to the configuration file in YAML format.
    OUTPUT_DIR: Path to the output directory where the generated module will be saved.
    RUN_RUFF_FORMAT: Run ruff on the generated module.
    TYPE_ALIASES: Extra type aliases, merged over the config's `Type Aliases`.
    """
    reset_renderer()

    cfg = Config.from_yaml_path(cfg_path)
    cfg.type_aliases.update(type_aliases)
    output_file = _static_autodiff_generator(
        cfg,
        output_dir,
        log_generates=True,
        cfg_file_path=cfg_path,
        generator_params=ctx.params,
    )

    if run_ruff_format:
        spec = importlib.util.find_spec("ruff")
        if spec is None:
            warnings.warn("Ruff is not on the system. Formatting skipped.")
        else:
            ruff_format_generated_file(output_file)
