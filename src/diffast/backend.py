# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import Any, Callable, Protocol, runtime_checkable

from diffast.activity_defs import CanonicalAssignment, Mode
from diffast.errors import ABIVersionMismatchError, BackendNotRegisteredError

logger = getLogger(__name__)


@dataclass(frozen=True)
class DerivativeRequest:
    """What a derived entity asks the backend for.

    Requests are independent of each other and keyed by `key`; any caching
    or deduplication of generated implementations is up to the backend.
    """

    primal: str
    """Identity of the primal, `<module>.<name>`."""
    mode: Mode
    assignment: CanonicalAssignment
    symbol: str

    @property
    def key(self) -> tuple[str, Mode, CanonicalAssignment]:
        return (self.primal, self.mode, self.assignment)


@runtime_checkable
class Backend(Protocol):
    """Interface of an external differentiation backend.

    A backend is any object with an `abi_version` attribute and a
    `differentiate` method. Given a request and the primal callable, it
    returns a callable taking the derived entity's arguments (primal and
    shadow arguments in call order, then the return seed if any).
    """

    abi_version: int

    def differentiate(
        self, request: DerivativeRequest, primal: Callable
    ) -> Callable: ...


_backend: Backend | None = None


def register_backend(backend: Backend) -> Backend | None:
    """Install `backend`; returns the previously registered one."""
    global _backend

    if not isinstance(backend, Backend):
        raise TypeError(
            f"{backend!r} does not implement the Backend protocol "
            "(abi_version, differentiate)."
        )
    previous = _backend
    _backend = backend
    logger.debug("Registered differentiation backend %r", backend)
    return previous


def unregister_backend() -> Backend | None:
    global _backend

    previous = _backend
    _backend = None
    return previous


def get_backend(symbol: str = "<derived entity>") -> Backend:
    if _backend is None:
        raise BackendNotRegisteredError(symbol)
    return _backend


def dispatch(
    request: DerivativeRequest,
    primal: Callable,
    args: tuple[Any, ...],
    abi_version: int,
):
    """Hand one call of a derived entity to the registered backend."""
    backend = get_backend(request.symbol)
    if abi_version != backend.abi_version:
        raise ABIVersionMismatchError(abi_version, backend.abi_version)
    logger.debug("Dispatching %s with %d arguments", request.symbol, len(args))
    impl = backend.differentiate(request, primal)
    return impl(*args)
