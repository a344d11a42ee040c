# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Union

Position = Union[int, str]
"""A 0-based parameter index, or ``"return"`` for the return slot."""


class AutodiffAnnotationError(Exception):
    """Base class of all expansion-time errors.

    Expansion errors are fatal to the annotated function: a malformed
    annotation is never partially honored. The front end fills in
    ``function_name`` and ``lineno`` when they are known so the message can
    point back to the original annotation.
    """

    def __init__(self, message: str):
        self._message = message
        self.function_name: str | None = None
        self.lineno: int | None = None
        super().__init__(message)

    def attach_location(self, function_name: str, lineno: int | None = None):
        if self.function_name is None:
            self.function_name = function_name
        if self.lineno is None:
            self.lineno = lineno
        self.args = (str(self),)
        return self

    def __str__(self):
        where = ""
        if self.function_name is not None:
            where = f"In `{self.function_name}`"
            if self.lineno is not None:
                where += f" (line {self.lineno})"
            where += ": "
        return where + self._message


class UnknownActivityToken(AutodiffAnnotationError):
    """Indicate that a token is neither a known activity nor a known mode."""

    def __init__(self, token, index: int | None = None):
        self._token = token
        self._index = index
        where = f" at token {index}" if index is not None else ""
        super().__init__(f"Unknown activity token {token!r}{where}.")

    @property
    def token(self):
        return self._token

    @property
    def index(self):
        return self._index


class MissingMode(AutodiffAnnotationError):
    def __init__(self, tokens):
        self._tokens = tuple(tokens)
        super().__init__(
            f"autodiff requires a Forward or Reverse mode token, got {list(self._tokens)!r}."
        )

    @property
    def tokens(self):
        return self._tokens


class ArityMismatch(AutodiffAnnotationError):
    """Indicate that an up-front activity list does not cover every parameter."""

    def __init__(self, expected: int, got: int):
        self._expected = expected
        self._got = got
        super().__init__(
            f"Activity list has {got} entries but the primal has {expected} parameters."
        )

    @property
    def expected(self):
        return self._expected

    @property
    def got(self):
        return self._got


class ConflictingAnnotation(AutodiffAnnotationError):
    """Indicate that inline markers and the up-front list disagree.

    Only the first conflicting position is reported.
    """

    def __init__(self, position: Position, inline, upfront, reason: str = ""):
        self._position = position
        self._inline = inline
        self._upfront = upfront
        msg = (
            f"Parameter {position}: inline marker {getattr(inline, 'value', inline)!r} "
            f"conflicts with activity list entry {getattr(upfront, 'value', upfront)!r}."
        )
        if reason:
            msg = f"Parameter {position}: {reason}"
        super().__init__(msg)

    @property
    def position(self):
        return self._position


class IllegalActivity(AutodiffAnnotationError):
    """Indicate that an activity is not legal for a mode at a position kind."""

    def __init__(self, mode, position_kind, activity, position: Position):
        self._mode = mode
        self._position_kind = position_kind
        self._activity = activity
        self._position = position
        super().__init__(self._describe())

    def _describe(self) -> str:
        return (
            f"Activity {self._activity.value!r} is not legal for "
            f"{self._position_kind.value} position {self._position!r} in "
            f"{self._mode.value} mode."
        )

    @property
    def mode(self):
        return self._mode

    @property
    def position_kind(self):
        return self._position_kind

    @property
    def activity(self):
        return self._activity

    @property
    def position(self):
        return self._position


class UnsupportedParameterShape(IllegalActivity):
    """The activity is legal in this mode, but not for this parameter's
    reference kind (or for a primal without a return value)."""

    def _describe(self) -> str:
        return (
            f"Activity {self._activity.value!r} cannot be applied to the "
            f"{self._position_kind.value} position {self._position!r} in "
            f"{self._mode.value} mode."
        )


class UnresolvedReference(AutodiffAnnotationError):
    """Indicate that a declaration-form stub names a primal that cannot be
    found, or whose signature is incompatible with the stub."""

    def __init__(self, primal_name: str, reason: str, position=None):
        self._primal_name = primal_name
        self._position = position
        super().__init__(f"Cannot resolve primal `{primal_name}`: {reason}")

    @property
    def primal_name(self):
        return self._primal_name

    @property
    def position(self):
        return self._position


class TypeNotFoundError(AutodiffAnnotationError):
    """Indicate that a type name has no known numba counterpart."""

    def __init__(self, type_name: str, position: Position | None = None):
        self._type_name = type_name
        self._position = position
        where = f" (parameter {position})" if position is not None else ""
        super().__init__(f"{type_name} is not a known scalar type{where}.")

    @property
    def type_name(self):
        return self._type_name

    @property
    def position(self):
        return self._position


class DerivedNameConflictError(AutodiffAnnotationError):
    """Indicate that a derived entity would shadow an existing name."""

    def __init__(self, name: str):
        self._name = name
        super().__init__(f"Derived name `{name}` is already defined.")

    @property
    def name(self):
        return self._name


class SourceNotFoundError(AutodiffAnnotationError):
    """Indicate that the source of a decorated function cannot be read."""

    def __init__(self, function_name: str, reason: str):
        super().__init__(f"Cannot read the source of `{function_name}`: {reason}")
        self.function_name = function_name
        self.args = (str(self),)


class BackendError(RuntimeError):
    """Base class of errors raised at the backend boundary at call time."""


class BackendNotRegisteredError(BackendError):
    def __init__(self, symbol: str):
        self._symbol = symbol
        super().__init__(
            f"No differentiation backend is registered; cannot call {symbol}."
        )

    @property
    def symbol(self):
        return self._symbol


class ABIVersionMismatchError(BackendError):
    def __init__(self, emitted: int, supported: int):
        super().__init__(
            f"Derived entity was emitted for tagging ABI v{emitted}, backend supports v{supported}."
        )


class TagStreamError(BackendError):
    """Indicate a malformed activity-tag argument stream."""
