# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Activity(str, Enum):
    """
    Per-parameter (and per-return) classification of how a value takes part
    in differentiation.

    Notes
    -----
    - `Const` is the default: the value is not differentiated and no shadow is
      introduced.
    - `Active`: a by-value input whose adjoint is returned by the derived
      entity (reverse mode). No positional shadow.
    - `Duplicated`: a reference parameter paired with one shadow parameter of
      the same type and reference kind.
    - `DuplicatedNoNeed`: same storage as `Duplicated`, but the final content
      of the primal slot is undefined after the call.
    """

    Const = "const"
    Active = "active"
    Duplicated = "duplicated"
    DuplicatedNoNeed = "duplicated_noneed"

    @property
    def has_shadow(self) -> bool:
        return self in (Activity.Duplicated, Activity.DuplicatedNoNeed)


class Mode(str, Enum):
    Forward = "forward"
    Reverse = "reverse"

    @property
    def short(self) -> str:
        return "fwd" if self is Mode.Forward else "rev"


class PositionKind(str, Enum):
    """Shape of the slot an activity is attached to."""

    by_value = "by-value"
    ref = "reference"
    mut_ref = "mutable-reference"
    ret = "return"
    void_ret = "void-return"

    @property
    def is_param(self) -> bool:
        return self in (
            PositionKind.by_value,
            PositionKind.ref,
            PositionKind.mut_ref,
        )


class ShadowRole(str, Enum):
    """What the shadow of a duplicated parameter carries across the call."""

    tangent_in = "tangent_in"
    tangent_inout = "tangent_inout"
    adjoint_accumulate = "adjoint_accumulate"
    adjoint_seed = "adjoint_seed"


class Form(str, Enum):
    """Whether the decorated function is the primal or a stub naming one."""

    definition = "definition"
    declaration = "declaration"


@dataclass(frozen=True)
class CanonicalAssignment:
    """
    Fully resolved activities for one invocation: one entry per primal
    parameter, in order, plus the return slot.
    """

    params: tuple[Activity, ...]
    ret: Activity = Activity.Const

    def __len__(self):
        return len(self.params)

    @property
    def shadow_count(self) -> int:
        return sum(1 for a in self.params if a.has_shadow)
