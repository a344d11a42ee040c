# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""The tagging convention shared with the differentiation backend.

Derived entities never differentiate anything themselves. They call an
intrinsic (definition form) or are bound to a symbol (declaration form) and
describe, in this fixed format, which primal is meant, in which mode, and
with which activity per position. A backend locates these calls and stubs
and supplies the implementation.

Version 1 of the contract:

- Forward mode calls `__enzyme_fwddiff`, reverse mode calls
  `__enzyme_autodiff`.
- Positional arguments after the primal form a tag stream: one activity tag,
  then the primal argument, then the shadow argument for duplicated
  positions.
- Keyword `ret` carries the return activity tag, `seed` the reverse-mode
  return seed, `symbol` the mangled derived symbol and `abi_version` this
  version number.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from diffast.activity_defs import Activity, CanonicalAssignment, Mode
from diffast.errors import TagStreamError

ABI_VERSION = 1

FORWARD_INTRINSIC = "__enzyme_fwddiff"
REVERSE_INTRINSIC = "__enzyme_autodiff"


def intrinsic_name(mode: Mode) -> str:
    return FORWARD_INTRINSIC if mode is Mode.Forward else REVERSE_INTRINSIC


@dataclass(frozen=True)
class ActivityTag:
    name: str
    activity: Activity

    def __repr__(self):
        return self.name


enzyme_const = ActivityTag("enzyme_const", Activity.Const)
enzyme_out = ActivityTag("enzyme_out", Activity.Active)
enzyme_dup = ActivityTag("enzyme_dup", Activity.Duplicated)
enzyme_dupnoneed = ActivityTag("enzyme_dupnoneed", Activity.DuplicatedNoNeed)

TAGS = {
    tag.activity: tag
    for tag in (enzyme_const, enzyme_out, enzyme_dup, enzyme_dupnoneed)
}


def tag_for(activity: Activity) -> ActivityTag:
    return TAGS[activity]


_CODES = {
    Activity.Const: "c",
    Activity.Active: "a",
    Activity.Duplicated: "d",
    Activity.DuplicatedNoNeed: "n",
}


def _encode_identity(primal_identity: str) -> str:
    # Length-prefixed components, so `a.b_c` and `a_b.c` stay distinct.
    return "".join(f"{len(part)}{part}" for part in primal_identity.split("."))


def mangle_derived_symbol(
    primal_identity: str, mode: Mode, assignment: CanonicalAssignment
) -> str:
    """Backend symbol for one `(primal, mode, assignment)` request.

    Two requests with the same key always mangle to the same symbol, so
    declaration-form stubs and definition-form calls that ask for the same
    derivative share one backend implementation. Requests with different
    keys never share a symbol.
    """
    primal = _encode_identity(primal_identity)
    codes = "".join(_CODES[a] for a in assignment.params) or "v"
    return f"__enzyme_{mode.short}_{primal}__{codes}_{_CODES[assignment.ret]}"


def decode_tag_stream(
    stream: Sequence[Any],
) -> tuple[tuple[Activity, ...], tuple[Any, ...]]:
    """Split a tag stream into per-position activities and plain arguments.

    Returns:
        A pair `(activities, args)` where `args` lists the primal and shadow
        arguments in call order, without tags.

    Raises:
        TagStreamError: A position does not start with a tag, or lacks the
            number of arguments its tag requires.
    """
    activities: list[Activity] = []
    args: list[Any] = []
    i = 0
    while i < len(stream):
        tag = stream[i]
        if not isinstance(tag, ActivityTag):
            raise TagStreamError(
                f"Expected an activity tag at argument {i}, got {tag!r}."
            )
        width = 2 if tag.activity.has_shadow else 1
        values = tuple(stream[i + 1 : i + 1 + width])
        if len(values) != width or any(
            isinstance(v, ActivityTag) for v in values
        ):
            raise TagStreamError(
                f"{tag!r} at argument {i} must be followed by {width} argument(s)."
            )
        activities.append(tag.activity)
        args.extend(values)
        i += 1 + width
    return tuple(activities), tuple(args)
