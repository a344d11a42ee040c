# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from numba import types as nbtypes

from diffast.activity_defs import Activity, Form
from diffast.types import ParamType


@dataclass(frozen=True)
class Param:
    """A parameter as written in the source, with its inline marker if any."""

    name: str
    type_: ParamType
    marker: Activity | None = None

    def __str__(self):
        s = f"{self.name}: {self.type_}"
        if self.marker is not None:
            s += f" [{self.marker.value}]"
        return s


@dataclass(frozen=True)
class Function:
    """A function declaration read from Python source.

    Attributes
    ----------
    name : str
        The function name.
    params : tuple[Param, ...]
        Parameters in order.
    return_type : numba.types.Type
        `numba.types.void` when the function returns nothing.
    is_stub : bool
        True when the body is only `...` and/or a docstring.
    lineno : int
        Line of the `def` keyword.
    first_lineno : int
        First line of the declaration, including decorators.
    end_lineno : int
        Last line of the declaration.
    """

    name: str
    params: tuple[Param, ...]
    return_type: nbtypes.Type = nbtypes.void
    is_stub: bool = False
    lineno: int = 0
    first_lineno: int = 0
    end_lineno: int = 0
    has_return_annotation: bool = False

    @property
    def param_types(self) -> tuple[ParamType, ...]:
        return tuple(p.type_ for p in self.params)

    @property
    def param_names(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.params)

    @property
    def returns_value(self) -> bool:
        return self.return_type != nbtypes.void

    @property
    def has_inline_markers(self) -> bool:
        return any(p.marker is not None for p in self.params)

    def __str__(self):
        params = ", ".join(str(p) for p in self.params)
        return f"{self.name}({params}) -> {self.return_type}"


@dataclass(frozen=True)
class AutodiffSite:
    """One `@autodiff(...)` decorator and the function it decorates.

    ``tokens`` are the decorator's positional arguments, as strings for names
    and string literals, or as runtime objects when the decorator is applied
    dynamically. ``decorator_span`` is the (first, last) source line of the
    decorator, used to remove it from the emitted primal.
    """

    function: Function
    tokens: tuple[Any, ...]
    decorator_span: tuple[int, int] | None = None

    @property
    def form(self) -> Form:
        return Form.declaration if self.function.is_stub else Form.definition


@dataclass
class ModuleDecls:
    """Every top-level function of a parsed module, and its autodiff sites."""

    source: str
    module_name: str
    functions: dict[str, Any] = field(default_factory=dict)
    """Function name to its `ast.FunctionDef`; declarations are built on demand."""
    sites: list[AutodiffSite] = field(default_factory=list)
    names: set[str] = field(default_factory=set)
    """Every name bound at the top level of the module."""
