# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Any, Mapping

from diffast.activity_defs import Activity, Mode, PositionKind
from diffast.errors import (
    IllegalActivity,
    Position,
    UnknownActivityToken,
    UnsupportedParameterShape,
)

_ACTIVITY_ALIASES: Mapping[str, Activity] = {
    "const": Activity.Const,
    "active": Activity.Active,
    "out": Activity.Active,
    "duplicated": Activity.Duplicated,
    "dup": Activity.Duplicated,
    "dual": Activity.Duplicated,
    "duplicatednoneed": Activity.DuplicatedNoNeed,
    "dupnoneed": Activity.DuplicatedNoNeed,
    "dualonly": Activity.DuplicatedNoNeed,
}

_MODE_ALIASES: Mapping[str, Mode] = {
    "forward": Mode.Forward,
    "fwd": Mode.Forward,
    "reverse": Mode.Reverse,
    "rev": Mode.Reverse,
}


def _normalize_token(v: str) -> str:
    return "".join(v.split()).replace("_", "").lower()


def _unwrap(v: Any) -> Any:
    # Runtime markers from `diffast.lang` carry the enum they stand for.
    for attr in ("activity", "mode"):
        inner = getattr(v, attr, None)
        if isinstance(inner, (Activity, Mode)):
            return inner
    return v


def _parse_activity(cls, v: Any, index: int | None = None) -> Activity:
    """
    Parse an activity token into an Activity member.

    Parameters:
        v (Any): An Activity, a `diffast.lang` marker, or a string alias. String
            aliases are case-insensitive and ignore whitespace and underscores,
            so "DuplicatedNoNeed", "dup_noneed" and "dupnoneed" are equivalent.
        index (int | None): Position of the token in the annotation, reported
            on failure.

    Returns:
        Activity: The corresponding Activity member.

    Raises:
        UnknownActivityToken: If `v` is not a recognized activity.
    """
    v = _unwrap(v)
    if isinstance(v, Activity):
        return v
    if isinstance(v, str) and not isinstance(v, Mode):
        found = _ACTIVITY_ALIASES.get(_normalize_token(v))
        if found is not None:
            return found
    raise UnknownActivityToken(v, index)


def _parse_mode(cls, v: Any) -> Mode | None:
    """Parse a mode token; returns None when `v` is not a mode."""
    v = _unwrap(v)
    if isinstance(v, Mode):
        return v
    if isinstance(v, str) and not isinstance(v, Activity):
        return _MODE_ALIASES.get(_normalize_token(v))
    return None


setattr(Activity, "parse", classmethod(_parse_activity))
setattr(Mode, "parse", classmethod(_parse_mode))


_C = Activity.Const
_A = Activity.Active
_D = Activity.Duplicated
_N = Activity.DuplicatedNoNeed

LEGALITY: Mapping[tuple[Mode, PositionKind], frozenset[Activity]] = {
    (Mode.Forward, PositionKind.by_value): frozenset({_C}),
    (Mode.Forward, PositionKind.ref): frozenset({_C, _D}),
    (Mode.Forward, PositionKind.mut_ref): frozenset({_C, _D, _N}),
    (Mode.Forward, PositionKind.ret): frozenset({_C, _D, _N}),
    (Mode.Forward, PositionKind.void_ret): frozenset({_C}),
    (Mode.Reverse, PositionKind.by_value): frozenset({_C, _A}),
    (Mode.Reverse, PositionKind.ref): frozenset({_C, _D}),
    (Mode.Reverse, PositionKind.mut_ref): frozenset({_C, _D, _N}),
    (Mode.Reverse, PositionKind.ret): frozenset({_C, _A}),
    (Mode.Reverse, PositionKind.void_ret): frozenset({_C}),
}
"""Which activities each mode accepts at each position kind.

This table is the only place legality is encoded; every other component
queries `legal`/`validate`.
"""


def legal(mode: Mode, position_kind: PositionKind, activity: Activity) -> bool:
    return activity in LEGALITY[(mode, position_kind)]


def _legal_on_other_shape(
    mode: Mode, position_kind: PositionKind, activity: Activity
) -> bool:
    if position_kind.is_param:
        return any(
            legal(mode, kind, activity)
            for kind in PositionKind
            if kind.is_param and kind is not position_kind
        )
    if position_kind is PositionKind.void_ret:
        return legal(mode, PositionKind.ret, activity)
    return False


def validate(
    mode: Mode,
    position_kind: PositionKind,
    activity: Activity,
    position: Position,
) -> None:
    """Check one slot against the legality table.

    Raises:
        UnsupportedParameterShape: The mode accepts `activity`, but not on a
            slot of this shape (for example `Duplicated` on a by-value
            parameter, or `Active` on a function that returns nothing).
        IllegalActivity: The mode does not accept `activity` here at all.
    """
    if legal(mode, position_kind, activity):
        return
    if _legal_on_other_shape(mode, position_kind, activity):
        raise UnsupportedParameterShape(mode, position_kind, activity, position)
    raise IllegalActivity(mode, position_kind, activity, position)
