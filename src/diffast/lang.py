# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""The annotation language, usable directly in Python source.

Functions are annotated with scalar types (`f32`, `f64`, ...), reference
markers (`Ref[f32]`, `MutRef[f32]`) and, optionally, inline activity
markers (`Dup[MutRef[f32]]`). `autodiff` expands the invocation when the
decorated function is defined::

    @autodiff("cos_inplace", Reverse, Const)
    def sin_inplace(x: Dup[Ref[f32]], y: Dup[MutRef[f32]]): ...

defines `sin_inplace` unchanged and adds `cos_inplace(x, dx, y, dy)` to the
same module. A function whose body is only `...` is a declaration-form stub
and becomes a `diffast.runtime.DerivedStub`::

    @autodiff(sin_inplace, Forward, Const, Dup, DupNoNeed)
    def cos_inplace_fwd(x: Ref[f32], dx: Ref[f32], y: MutRef[f32], dy: MutRef[f32]): ...
"""

import inspect
from logging import getLogger

import numba
import numba.core.typing
from numba import types

from diffast import runtime
from diffast.activity_defs import Activity, Form, Mode
from diffast.contract import TAGS, intrinsic_name, tag_for
from diffast.decl import AutodiffSite
from diffast.errors import DerivedNameConflictError
from diffast.expand import Expansion, expand_site
from diffast.parser import function_from_object

logger = getLogger(__name__)


class _Marker:
    """An annotation marker; subscripting it yields the wrapped type."""

    def __init__(self, name: str, activity: Activity | None = None):
        self._name = name
        self.activity = activity

    def __getitem__(self, item):
        return item

    def __repr__(self):
        return self._name


Ref = _Marker("Ref")
MutRef = _Marker("MutRef")

Const = _Marker("Const", Activity.Const)
Active = _Marker("Active", Activity.Active)
Dup = _Marker("Dup", Activity.Duplicated)
Duplicated = _Marker("Duplicated", Activity.Duplicated)
DupNoNeed = _Marker("DupNoNeed", Activity.DuplicatedNoNeed)
DuplicatedNoNeed = _Marker("DuplicatedNoNeed", Activity.DuplicatedNoNeed)

Forward = Mode.Forward
Reverse = Mode.Reverse

f16 = types.float16
f32 = types.float32
f64 = types.float64
i8 = types.int8
i16 = types.int16
i32 = types.int32
i64 = types.int64
u8 = types.uint8
u16 = types.uint16
u32 = types.uint32
u64 = types.uint64


def _definition_namespace(expansion: Expansion, primal) -> dict:
    ns = {
        "numba": numba,
        "Ref": Ref,
        "MutRef": MutRef,
        primal.__name__: primal,
    }
    ns.update({tag.name: tag for tag in TAGS.values()})
    intrinsic = intrinsic_name(expansion.mode)
    ns[intrinsic] = getattr(runtime, intrinsic)
    return ns


def _make_derived_function(expansion: Expansion, primal):
    """Build the derived function by executing its rendered definition."""
    # Deferred, the static renderers need `diffast.__version__` on import.
    from diffast.static.function import StaticDefinitionRenderer

    src = StaticDefinitionRenderer(expansion).render_python()
    ns = _definition_namespace(expansion, primal)
    exec(src, ns)

    derived = ns[expansion.derived_name]
    derived.__module__ = primal.__module__
    return derived


def _make_derived_stub(expansion: Expansion) -> runtime.DerivedStub:
    sig = expansion.signature
    stub = runtime.DerivedStub(
        expansion.module,
        expansion.primal.name,
        name=expansion.derived_name,
        mode=expansion.mode,
        activities=tuple(tag_for(a) for a in sig.assignment.params),
        ret=tag_for(sig.assignment.ret),
        params=sig.param_names,
        symbol=expansion.symbol,
    )
    stub.abi_signature = sig.abi_signature()
    return stub


def autodiff(*tokens):
    """Expand an autodiff invocation when the decorated function is defined.

    Parameters
    ----------
    tokens
        `[name,] mode [, ret [, activity ...]]`. The name is a string or, for
        declaration-form stubs, the primal function itself. Modes and
        activities may be given as markers from this module or as strings.

    Returns
    -------
    A decorator. On a function with a body it installs the derived function
    in the function's module and returns the function unchanged. On a stub
    it returns the `DerivedStub` bound to the named primal, which must be
    defined earlier in the same module.

    Raises
    ------
    AutodiffAnnotationError
        When the decorated function is defined, for any annotation error.
    """

    def decorator(func):
        fn = function_from_object(func)
        site = AutodiffSite(function=fn, tokens=tokens)
        namespace = func.__globals__

        def resolve_primal(name):
            primal = namespace.get(name)
            if not inspect.isfunction(primal):
                return None
            return function_from_object(primal)

        expansion = expand_site(site, resolve_primal, func.__module__)

        if expansion.form is Form.declaration:
            return _make_derived_stub(expansion)

        name = expansion.derived_name
        if name in namespace:
            raise DerivedNameConflictError(name).attach_location(
                fn.name, fn.lineno
            )
        namespace[name] = _make_derived_function(expansion, func)
        logger.debug("Installed %s in %s", name, func.__module__)
        return func

    return decorator
