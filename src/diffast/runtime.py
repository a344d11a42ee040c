# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Names that emitted derived entities call into.

Everything here is inert: the intrinsics and stubs only decode their tags
into a `DerivativeRequest` and hand the call to the registered backend.
"""

from __future__ import annotations

import sys
from typing import Any, Callable, Sequence

from diffast.activity_defs import Activity, CanonicalAssignment, Mode
from diffast.backend import DerivativeRequest, dispatch
from diffast.contract import (
    ABI_VERSION,
    ActivityTag,
    decode_tag_stream,
    enzyme_const,
    intrinsic_name,
    mangle_derived_symbol,
)
from diffast.errors import BackendError, TagStreamError

_NO_SEED = object()


def primal_identity(primal: Callable) -> str:
    return f"{primal.__module__}.{primal.__qualname__}"


def _ret_activity(ret: Any) -> Activity:
    if not isinstance(ret, ActivityTag):
        raise TagStreamError(f"`ret` must be an activity tag, got {ret!r}.")
    return ret.activity


def _make_intrinsic(mode: Mode) -> Callable:
    def intrinsic(
        primal: Callable,
        *stream,
        ret: ActivityTag = enzyme_const,
        seed: Any = _NO_SEED,
        symbol: str | None = None,
        abi_version: int = ABI_VERSION,
    ):
        activities, args = decode_tag_stream(stream)
        assignment = CanonicalAssignment(activities, _ret_activity(ret))
        identity = primal_identity(primal)
        request = DerivativeRequest(
            primal=identity,
            mode=mode,
            assignment=assignment,
            symbol=symbol or mangle_derived_symbol(identity, mode, assignment),
        )
        if seed is not _NO_SEED:
            args = args + (seed,)
        return dispatch(request, primal, args, abi_version)

    intrinsic.__name__ = intrinsic.__qualname__ = intrinsic_name(mode)
    return intrinsic


__enzyme_fwddiff = _make_intrinsic(Mode.Forward)
__enzyme_autodiff = _make_intrinsic(Mode.Reverse)


class DerivedStub:
    """A bodyless derived entity bound to a backend symbol.

    The primal is looked up by name in its module on every call, so a stub
    may be declared before its primal is defined.
    """

    def __init__(
        self,
        module: str,
        primal: str,
        *,
        name: str,
        mode: Mode | str,
        activities: Sequence[ActivityTag],
        ret: ActivityTag,
        params: Sequence[str],
        symbol: str,
        abi_version: int = ABI_VERSION,
    ):
        self._module = module
        self._primal_name = primal
        self.__name__ = self.__qualname__ = name
        self.__module__ = module
        self.params = tuple(params)
        self.abi_version = abi_version
        self.request = DerivativeRequest(
            primal=f"{module}.{primal}",
            mode=Mode(mode),
            assignment=CanonicalAssignment(
                tuple(t.activity for t in activities), _ret_activity(ret)
            ),
            symbol=symbol,
        )

    @property
    def primal(self) -> Callable:
        module = sys.modules.get(self._module)
        primal = getattr(module, self._primal_name, None)
        if primal is None:
            raise BackendError(
                f"Primal `{self.request.primal}` of `{self.__name__}` is not defined."
            )
        return primal

    def __call__(self, *args):
        if len(args) != len(self.params):
            raise TypeError(
                f"{self.__name__}() takes {len(self.params)} positional "
                f"arguments but {len(args)} were given"
            )
        return dispatch(self.request, self.primal, args, self.abi_version)

    def __repr__(self):
        params = ", ".join(self.params)
        return f"<derived stub {self.__name__}({params}) -> {self.request.symbol}>"


def declare_derivative(module: str, primal: str, **tags) -> DerivedStub:
    """Declare a derived entity of `module.primal` without a body."""
    return DerivedStub(module, primal, **tags)
