# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Read autodiff annotations out of Python source.

Source is parsed with the standard :mod:`ast` module and never executed.
Annotations are resolved syntactically: `f32`, `types.float32` and
`"f32"` all name the same scalar type, and `Dup[MutRef[f32]]` reads as a
`Duplicated` marker on a mutable reference to `float32`.
"""

from __future__ import annotations

import ast
import inspect
import textwrap
from logging import getLogger
from typing import Sequence

from numba import types as nbtypes

from diffast.activity_defs import Activity
from diffast.decl import AutodiffSite, Function, ModuleDecls, Param
from diffast.errors import (
    AutodiffAnnotationError,
    ConflictingAnnotation,
    SourceNotFoundError,
    TypeNotFoundError,
    UnknownActivityToken,
)
from diffast.types import REF_MARKERS, ParamType, RefKind, to_numba_type

logger = getLogger(__name__)

ACTIVITY_MARKERS = {
    "Const": Activity.Const,
    "Active": Activity.Active,
    "Dup": Activity.Duplicated,
    "Duplicated": Activity.Duplicated,
    "DupNoNeed": Activity.DuplicatedNoNeed,
    "DuplicatedNoNeed": Activity.DuplicatedNoNeed,
}
"""Subscriptable names that attach an inline activity to a parameter."""

DEFAULT_DECORATOR_NAMES = ("autodiff",)


def _dotted_tail(node: ast.expr) -> str | None:
    """`foo` for `foo` and `a.b.foo`; None for anything else."""
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _parse_string_annotation(text: str, position) -> ast.expr:
    try:
        return ast.parse(text, mode="eval").body
    except SyntaxError:
        raise TypeNotFoundError(repr(text), position)


def _parse_annotation(
    node: ast.expr | None, position
) -> tuple[ParamType, Activity | None]:
    """Resolve a parameter annotation into its type and inline marker."""
    if node is None:
        raise TypeNotFoundError("<unannotated>", position)

    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        # String annotations, e.g. under `from __future__ import annotations`.
        return _parse_annotation(
            _parse_string_annotation(node.value, position), position
        )

    if isinstance(node, ast.Subscript):
        head = _dotted_tail(node.value)
        if head in ACTIVITY_MARKERS:
            ty, inner_marker = _parse_annotation(node.slice, position)
            if inner_marker is not None:
                raise ConflictingAnnotation(
                    position,
                    ACTIVITY_MARKERS[head],
                    inner_marker,
                    reason="more than one inline activity marker.",
                )
            return ty, ACTIVITY_MARKERS[head]
        if head in REF_MARKERS:
            inner, marker = _parse_annotation(node.slice, position)
            if inner.is_reference or marker is not None:
                raise TypeNotFoundError(ast.unparse(node), position)
            return ParamType(inner.base, REF_MARKERS[head]), None
        raise TypeNotFoundError(ast.unparse(node), position)

    name = _dotted_tail(node)
    if name is None:
        raise TypeNotFoundError(ast.unparse(node), position)
    return ParamType(to_numba_type(name, position)), None


def _parse_return(node: ast.expr | None) -> nbtypes.Type:
    if node is None:
        return nbtypes.void
    if isinstance(node, ast.Constant) and node.value is None:
        return nbtypes.void
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return _parse_return(_parse_string_annotation(node.value, "return"))
    if isinstance(node, ast.Tuple):
        return nbtypes.Tuple(tuple(_parse_return(elt) for elt in node.elts))
    if isinstance(node, ast.Subscript) and _dotted_tail(node.value) in (
        "tuple",
        "Tuple",
    ):
        return _parse_return(node.slice)
    ty, marker = _parse_annotation(node, "return")
    if ty.is_reference or marker is not None:
        raise TypeNotFoundError(ast.unparse(node), "return")
    return ty.base


def _is_stub_body(body: Sequence[ast.stmt]) -> bool:
    # `pass` is a real, empty body; only `...` and docstrings declare a stub.
    for stmt in body:
        if isinstance(stmt, ast.Expr) and isinstance(stmt.value, ast.Constant):
            if stmt.value.value is Ellipsis or isinstance(stmt.value.value, str):
                continue
        return False
    return True


def function_from_ast(node: ast.FunctionDef, line_offset: int = 0) -> Function:
    """Build a `Function` declaration from a `def` node.

    Raises:
        TypeNotFoundError: A parameter or return annotation is missing or does
            not name a known scalar type.
        ConflictingAnnotation: A parameter carries two inline markers.
    """
    args = node.args
    if args.vararg is not None or args.kwarg is not None:
        raise TypeNotFoundError("*args/**kwargs", None).attach_location(
            node.name, node.lineno + line_offset
        )

    try:
        params = []
        all_args = [*args.posonlyargs, *args.args, *args.kwonlyargs]
        for i, arg in enumerate(all_args):
            ty, marker = _parse_annotation(arg.annotation, i)
            params.append(Param(arg.arg, ty, marker))
        return_type = _parse_return(node.returns)
    except AutodiffAnnotationError as e:
        raise e.attach_location(node.name, node.lineno + line_offset)

    first = min([node.lineno] + [d.lineno for d in node.decorator_list])
    return Function(
        name=node.name,
        params=tuple(params),
        return_type=return_type,
        is_stub=_is_stub_body(node.body),
        lineno=node.lineno + line_offset,
        first_lineno=first + line_offset,
        end_lineno=node.end_lineno + line_offset,
        has_return_annotation=node.returns is not None,
    )


def decorator_tokens(call: ast.Call) -> tuple[str, ...]:
    """Positional arguments of an `@autodiff(...)` call, as token strings."""
    tokens = []
    for i, arg in enumerate(call.args):
        if isinstance(arg, ast.Constant) and isinstance(arg.value, str):
            tokens.append(arg.value)
            continue
        name = _dotted_tail(arg)
        if name is None:
            raise UnknownActivityToken(ast.unparse(arg), i)
        tokens.append(name)
    if call.keywords:
        # The annotation language is purely positional.
        raise UnknownActivityToken(f"{call.keywords[0].arg}=", len(tokens))
    return tuple(tokens)


def find_autodiff_decorator(
    node: ast.FunctionDef, decorator_names: Sequence[str] = DEFAULT_DECORATOR_NAMES
) -> ast.Call | None:
    for deco in node.decorator_list:
        if isinstance(deco, ast.Call) and _dotted_tail(deco.func) in decorator_names:
            return deco
    return None


def _bound_names(node: ast.stmt) -> set[str]:
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return {node.name}
    if isinstance(node, (ast.Import, ast.ImportFrom)):
        return {(a.asname or a.name).split(".")[0] for a in node.names}
    targets = []
    if isinstance(node, ast.Assign):
        targets = node.targets
    elif isinstance(node, (ast.AnnAssign, ast.AugAssign)):
        targets = [node.target]
    names = set()
    for target in targets:
        for sub in ast.walk(target):
            if isinstance(sub, ast.Name):
                names.add(sub.id)
    return names


def parse_module(
    source: str,
    module_name: str = "__main__",
    decorator_names: Sequence[str] = DEFAULT_DECORATOR_NAMES,
) -> ModuleDecls:
    """Collect the top-level functions and autodiff sites of a module.

    Only decorated functions are turned into declarations eagerly; other
    functions are kept as syntax and resolved when a declaration-form stub
    names them.
    """
    tree = ast.parse(source)
    decls = ModuleDecls(source=source, module_name=module_name)

    for node in tree.body:
        decls.names |= _bound_names(node)
        if not isinstance(node, ast.FunctionDef):
            continue
        decls.functions[node.name] = node

        call = find_autodiff_decorator(node, decorator_names)
        if call is None:
            continue
        try:
            tokens = decorator_tokens(call)
        except AutodiffAnnotationError as e:
            raise e.attach_location(node.name, call.lineno)
        site = AutodiffSite(
            function=function_from_ast(node),
            tokens=tokens,
            decorator_span=(call.lineno, call.end_lineno),
        )
        logger.debug("Found autodiff site %s with tokens %s", node.name, tokens)
        decls.sites.append(site)

    return decls


def function_from_object(func) -> Function:
    """Build a `Function` declaration from a live Python function.

    The function's source is read with `inspect` and parsed like module
    source, so runtime annotations never need to be evaluated.

    Raises:
        SourceNotFoundError: The source is not available, e.g. for functions
            defined in the interactive interpreter or with `exec`.
    """
    try:
        lines, first_line = inspect.getsourcelines(func)
    except (OSError, TypeError) as e:
        raise SourceNotFoundError(func.__qualname__, str(e)) from e
    source = textwrap.dedent("".join(lines))
    tree = ast.parse(source)
    for node in tree.body:
        if isinstance(node, ast.FunctionDef) and node.name == func.__name__:
            return function_from_ast(node, line_offset=first_line - 1)
    raise SourceNotFoundError(
        func.__qualname__, "no matching `def` in the retrieved source."
    )
