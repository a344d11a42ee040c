# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from diffast.activity_defs import Activity, CanonicalAssignment, Mode
from diffast.decl import Function
from diffast.errors import (
    ArityMismatch,
    ConflictingAnnotation,
    MissingMode,
    UnknownActivityToken,
    UnresolvedReference,
)


@dataclass(frozen=True)
class AutodiffAttribute:
    """The decoded argument list of one `@autodiff(...)` invocation.

    Attributes
    ----------
    name : str | None
        Definition form: the name of the derived entity (optional).
        Declaration form: the name of the referenced primal (required).
    mode : Mode
    ret : Activity
        Activity of the return slot, `Const` when not given.
    activities : tuple[Activity, ...] | None
        The up-front per-parameter list, or None when only inline markers (or
        nothing) annotate the parameters.
    """

    name: str | None
    mode: Mode
    ret: Activity = Activity.Const
    activities: tuple[Activity, ...] | None = None


@dataclass(frozen=True)
class NameLayout:
    """Names a declaration-form stub gives to the derived parameters.

    ``params`` holds one name per primal position, ``shadows`` maps a primal
    position to the name of its shadow, and ``seed`` names the reverse-mode
    return seed parameter when there is one.
    """

    params: tuple[str, ...]
    shadows: dict[int, str] = field(default_factory=dict)
    seed: str | None = None


def _token_name(token: Any, index: int) -> str:
    if isinstance(token, str) and token.isidentifier():
        return token
    name = getattr(token, "__name__", None)
    if callable(token) and isinstance(name, str):
        return name
    raise UnknownActivityToken(token, index)


def parse_attribute(tokens: Sequence[Any]) -> AutodiffAttribute:
    """Decode `[name] mode [ret] [activity ...]`.

    The leading name is recognized by position: when the first token is not
    a mode token, it must be a name and the second token must be the mode.

    Raises:
        MissingMode: No mode token in first or second position.
        UnknownActivityToken: A token after the mode is not an activity, or
            the leading name is not an identifier.
    """
    tokens = tuple(tokens)
    if not tokens:
        raise MissingMode(tokens)

    name = None
    mode = Mode.parse(tokens[0])
    start = 1
    if mode is None:
        if len(tokens) < 2 or Mode.parse(tokens[1]) is None:
            raise MissingMode(tokens)
        name = _token_name(tokens[0], 0)
        mode = Mode.parse(tokens[1])
        start = 2

    rest = tokens[start:]
    ret = Activity.Const
    if rest:
        ret = Activity.parse(rest[0], start)

    activities = None
    if len(rest) > 1:
        activities = tuple(
            Activity.parse(tok, start + 1 + i) for i, tok in enumerate(rest[1:])
        )

    return AutodiffAttribute(name=name, mode=mode, ret=ret, activities=activities)


def _merge(position: int, inline: Activity | None, upfront: Activity | None):
    if inline is not None and upfront is not None and inline != upfront:
        raise ConflictingAnnotation(position, inline, upfront)
    if inline is not None:
        return inline
    if upfront is not None:
        return upfront
    # An unannotated parameter is never differentiated.
    return Activity.Const


def normalize_definition(
    attr: AutodiffAttribute, function: Function
) -> CanonicalAssignment:
    """Resolve activities for a decorated primal.

    Inline markers and the up-front list populate the same assignment. When
    both are present, every explicit inline marker must equal the list entry
    at its position.

    Raises:
        ArityMismatch: The up-front list length differs from the number of
            parameters.
        ConflictingAnnotation: An inline marker disagrees with the list. The
            first conflicting position is reported.
    """
    n = len(function.params)
    upfront: Sequence[Activity | None] = [None] * n
    if attr.activities is not None:
        if len(attr.activities) != n:
            raise ArityMismatch(n, len(attr.activities))
        upfront = attr.activities

    params = tuple(
        _merge(i, p.marker, a)
        for i, (p, a) in enumerate(zip(function.params, upfront))
    )
    return CanonicalAssignment(params=params, ret=attr.ret)


def normalize_declaration(
    attr: AutodiffAttribute, stub: Function, primal: Function
) -> tuple[CanonicalAssignment, NameLayout]:
    """Resolve activities for a declaration-form stub of `primal`.

    The stub lists the derived signature: each primal position, immediately
    followed by its shadow when the position is duplicated, and in reverse
    mode with an `Active` return a trailing seed parameter. Walking the stub
    in that order recovers which stub parameter belongs to which primal
    position.

    Raises:
        ArityMismatch: The up-front list length differs from the primal's
            parameter count.
        ConflictingAnnotation: Inline markers disagree with the list, or a
            shadow parameter carries a marker.
        UnresolvedReference: The stub's parameter list cannot be laid over
            the primal's.
    """
    n = len(primal.params)
    if attr.activities is not None and len(attr.activities) != n:
        raise ArityMismatch(n, len(attr.activities))

    stub_params = list(stub.params)
    seed = None
    if attr.mode is Mode.Reverse and attr.ret is Activity.Active:
        if not stub_params:
            raise UnresolvedReference(
                primal.name, "missing the trailing return seed parameter."
            )
        seed = stub_params.pop().name

    params: list[Activity] = []
    names: list[str] = []
    shadows: dict[int, str] = {}
    i = 0
    while i < len(stub_params):
        pos = len(params)
        if pos >= n:
            raise UnresolvedReference(
                primal.name,
                f"stub `{stub.name}` declares more parameters than the "
                f"{n} parameters of the primal and their shadows.",
                position=pos,
            )
        p = stub_params[i]
        upfront = attr.activities[pos] if attr.activities is not None else None
        activity = _merge(pos, p.marker, upfront)
        params.append(activity)
        names.append(p.name)
        i += 1

        if activity.has_shadow:
            if i >= len(stub_params):
                raise UnresolvedReference(
                    primal.name,
                    f"missing the shadow parameter of `{p.name}`.",
                    position=pos,
                )
            shadow = stub_params[i]
            if shadow.marker is not None:
                raise ConflictingAnnotation(
                    pos,
                    shadow.marker,
                    activity,
                    reason=f"shadow parameter `{shadow.name}` cannot carry an inline marker.",
                )
            shadows[pos] = shadow.name
            i += 1

    if len(params) != n:
        raise UnresolvedReference(
            primal.name,
            f"stub `{stub.name}` covers {len(params)} of the primal's {n} parameters.",
            position=len(params),
        )

    assignment = CanonicalAssignment(params=tuple(params), ret=attr.ret)
    return assignment, NameLayout(params=tuple(names), shadows=shadows, seed=seed)
