# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from numba import types as nbtypes
from numba.core.typing import signature as nb_signature, Signature

from diffast.activity import validate
from diffast.activity_defs import (
    Activity,
    CanonicalAssignment,
    Mode,
    PositionKind,
    ShadowRole,
)
from diffast.attribute import NameLayout
from diffast.decl import Function
from diffast.errors import ArityMismatch
from diffast.types import ParamType, RefKind

DEFAULT_SEED_NAME = "dret"


class ParamRole(str, Enum):
    primal = "primal"
    shadow = "shadow"
    return_seed = "return_seed"


@dataclass(frozen=True)
class DerivedParam:
    """One parameter of a derived entity.

    Attributes
    ----------
    name : str
    type_ : ParamType
    role : ParamRole
    primal_index : int | None
        The primal position this parameter belongs to (its own position for
        primal parameters, the paired position for shadows). None for the
        return seed.
    activity : Activity | None
        Activity of the primal position; None for the return seed.
    shadow_role : ShadowRole | None
        What a shadow carries; None for non-shadows.
    undefined_after_call : bool
        Set on the primal slot of a `DuplicatedNoNeed` position: the slot must
        exist, but its content after the call is unspecified.
    """

    name: str
    type_: ParamType
    role: ParamRole
    primal_index: int | None
    activity: Activity | None
    shadow_role: ShadowRole | None = None
    undefined_after_call: bool = False


@dataclass(frozen=True)
class DerivedResult:
    """One component of the derived entity's return value."""

    kind: str  # "primal", "tangent" or "adjoint"
    type_: nbtypes.Type
    primal_index: int | None = None


@dataclass(frozen=True)
class DerivedSignature:
    mode: Mode
    assignment: CanonicalAssignment
    params: tuple[DerivedParam, ...]
    results: tuple[DerivedResult, ...]

    @property
    def param_names(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.params)

    @property
    def shadows(self) -> tuple[DerivedParam, ...]:
        return tuple(p for p in self.params if p.role is ParamRole.shadow)

    @property
    def shadow_count(self) -> int:
        return len(self.shadows)

    @property
    def seed(self) -> DerivedParam | None:
        for p in self.params:
            if p.role is ParamRole.return_seed:
                return p
        return None

    @property
    def return_type(self) -> nbtypes.Type:
        if not self.results:
            return nbtypes.void
        if len(self.results) == 1:
            return self.results[0].type_
        return nbtypes.Tuple(tuple(r.type_ for r in self.results))

    def shadow_of(self, primal_index: int) -> DerivedParam | None:
        for p in self.shadows:
            if p.primal_index == primal_index:
                return p
        return None

    def abi_signature(self) -> Signature:
        """The numba signature the backend sees: references as pointers."""
        return nb_signature(
            self.return_type, *(p.type_.abi_type() for p in self.params)
        )

    def __str__(self):
        params = ", ".join(f"{p.name}: {p.type_}" for p in self.params)
        return f"({params}) -> {self.return_type}"


def shadow_role(mode: Mode, ref_kind: RefKind) -> ShadowRole:
    """Direction of the data a shadow carries.

    Forward mode: an immutable reference's shadow supplies the input tangent;
    a mutable reference's shadow supplies and receives its tangent.
    Reverse mode: an immutable reference is an input, so its shadow
    accumulates the adjoint; a mutable reference is an output, so its shadow
    supplies the adjoint seed.
    """
    if mode is Mode.Forward:
        if ref_kind is RefKind.mut_ref:
            return ShadowRole.tangent_inout
        return ShadowRole.tangent_in
    if ref_kind is RefKind.mut_ref:
        return ShadowRole.adjoint_seed
    return ShadowRole.adjoint_accumulate


def _fresh_name(base: str, taken: set[str]) -> str:
    name = base
    while name in taken:
        name += "_"
    taken.add(name)
    return name


def _results(
    mode: Mode, assignment: CanonicalAssignment, primal: Function
) -> tuple[DerivedResult, ...]:
    ret_ty = primal.return_type
    results = []
    if mode is Mode.Forward:
        if primal.returns_value and assignment.ret is not Activity.DuplicatedNoNeed:
            results.append(DerivedResult("primal", ret_ty))
        if assignment.ret.has_shadow:
            results.append(DerivedResult("tangent", ret_ty))
    else:
        if primal.returns_value:
            results.append(DerivedResult("primal", ret_ty))
        for i, (p, activity) in enumerate(zip(primal.params, assignment.params)):
            if activity is Activity.Active:
                results.append(DerivedResult("adjoint", p.type_.base, i))
    return tuple(results)


def compute_derived_signature(
    mode: Mode,
    assignment: CanonicalAssignment,
    primal: Function,
    names: NameLayout | None = None,
) -> DerivedSignature:
    """Derive the signature of the differentiated entity.

    Each primal parameter is followed by its shadow when its activity is
    `Duplicated` or `DuplicatedNoNeed`. In reverse mode an `Active` return
    appends a by-value seed parameter. The result depends only on the
    arguments; the primal's body is never consulted.

    Parameters
    ----------
    mode : Mode
    assignment : CanonicalAssignment
        Must have one activity per primal parameter.
    primal : Function
        The primal declaration; only its signature is used.
    names : NameLayout, optional
        Parameter names chosen by a declaration-form stub. Without it, primal
        parameters keep their names, shadows are named `d<name>` and the seed
        is named `dret`, with trailing underscores added to avoid clashes.

    Raises
    ------
    IllegalActivity
        An activity is not legal for the mode at its position.
    UnsupportedParameterShape
        An activity is legal for the mode, but not for the parameter's
        reference kind.
    """
    if len(assignment) != len(primal.params):
        raise ArityMismatch(len(primal.params), len(assignment))

    for i, (p, activity) in enumerate(zip(primal.params, assignment.params)):
        validate(mode, p.type_.position_kind, activity, i)
    ret_kind = PositionKind.ret if primal.returns_value else PositionKind.void_ret
    validate(mode, ret_kind, assignment.ret, "return")

    if names is None:
        primal_names = primal.param_names
        taken = set(primal_names)
    else:
        primal_names = names.params
        taken = set()

    params: list[DerivedParam] = []
    for i, (name, p, activity) in enumerate(
        zip(primal_names, primal.params, assignment.params)
    ):
        params.append(
            DerivedParam(
                name=name,
                type_=p.type_,
                role=ParamRole.primal,
                primal_index=i,
                activity=activity,
                undefined_after_call=activity is Activity.DuplicatedNoNeed,
            )
        )
        if not activity.has_shadow:
            continue
        if names is None:
            shadow_name = _fresh_name(f"d{name}", taken)
        else:
            shadow_name = names.shadows[i]
        params.append(
            DerivedParam(
                name=shadow_name,
                type_=p.type_,
                role=ParamRole.shadow,
                primal_index=i,
                activity=activity,
                shadow_role=shadow_role(mode, p.type_.ref_kind),
            )
        )

    if mode is Mode.Reverse and assignment.ret is Activity.Active:
        if names is None or names.seed is None:
            seed_name = _fresh_name(DEFAULT_SEED_NAME, taken)
        else:
            seed_name = names.seed
        params.append(
            DerivedParam(
                name=seed_name,
                type_=ParamType(primal.return_type),
                role=ParamRole.return_seed,
                primal_index=None,
                activity=None,
            )
        )

    return DerivedSignature(
        mode=mode,
        assignment=assignment,
        params=tuple(params),
        results=_results(mode, assignment, primal),
    )
