# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import numba

from diffast import __version__ as diffast_ver
from diffast.types import numba_type_names


class BaseRenderer:
    Imports: set[str] = set()
    """One element stands for one line of python import."""

    _derived_symbols: list[str] = []
    """List of derived entities to expose."""

    numba_types_prefix = "numba.types."
    """Generated code refers to numba types through the module to avoid
    clashing with names the annotated module already binds."""

    def __init__(self, expansion):
        """
        Initialize the renderer with one expansion and its base import.

        Parameters:
            expansion: The `diffast.expand.Expansion` to render.
        """
        self._expansion = expansion
        self._imports: set[str] = {"import numba"}

    def _try_import_numba_type(self, nbty):
        # Types are rendered fully qualified; importing numba is enough as long
        # as every name exists in `numba.types`.
        for name in numba_type_names(nbty):
            if not hasattr(numba.types, name):
                raise ValueError(f"numba.types has no attribute {name!r}")
        self._imports.add("import numba")

    @property
    def imports(self) -> set[str]:
        return self._imports

    def render_python(self) -> str:
        raise NotImplementedError()

    def render_as_str(self, *, with_imports: bool) -> str:
        """Render this entity alone, optionally preceded by its imports."""
        output = self.render_python()
        if with_imports:
            output = "\n".join(sorted(self._imports)) + "\n" + output
        return output


def clear_base_renderer_cache():
    """
    Clear all class-level caches and exposed-symbol lists on BaseRenderer.
    """
    BaseRenderer.Imports.clear()
    BaseRenderer._derived_symbols.clear()


def get_reproducible_info(
    config_rel_path: str, cmd: str, generator_params: dict[str, str]
) -> str:
    """
    Produce a reproducible information header composed of commented lines documenting versions, the generation command, generator parameters, and the config path.

    Parameters:
        config_rel_path (str): Path to the generator configuration file relative to the generated file.
        cmd (str): The command line used to invoke the generation.
        generator_params (dict[str, str]): Static generator parameters to record.

    Returns:
        str: A multi-line string where each line is prefixed with "# " and the block ends with a single trailing newline.
    """
    info = [
        f"Diffast version: {diffast_ver}",
        f"Numba version: {numba.__version__}",
        f"Generation command: {cmd}",
        f"Static generator parameters: {generator_params}",
        f"Config file path (relative to the path of the generated module): {config_rel_path}",
    ]

    commented = [f"# {x}" for x in info]

    return "\n".join(commented) + "\n"


def get_rendered_imports(additional_imports: list[str] = []) -> str:
    imports = "\n".join(sorted(BaseRenderer.Imports)) + "\n"
    for imprt in additional_imports:
        imports += f"import {imprt}\n"

    return imports


def get_all_exposed_symbols() -> str:
    """
    Render a Python code block that defines the _DERIVED_SYMBOLS list from BaseRenderer._derived_symbols.

    Returns:
        code (str): A string containing a Python assignment that defines `_DERIVED_SYMBOLS` as a list of symbol names quoted and comma-separated.
    """
    template = """
_DERIVED_SYMBOLS = [{derived_symbols}]
"""

    symbols = BaseRenderer._derived_symbols
    quote_wrapped = [f'"{s}"' for s in symbols]
    concat = ",".join(quote_wrapped)
    return template.format(derived_symbols=concat)
