# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import Callable

from diffast.activity_defs import CanonicalAssignment, Form, Mode
from diffast.attribute import (
    normalize_declaration,
    normalize_definition,
    parse_attribute,
)
from diffast.contract import mangle_derived_symbol
from diffast.decl import AutodiffSite, Function
from diffast.errors import (
    AutodiffAnnotationError,
    DerivedNameConflictError,
    UnresolvedReference,
    UnsupportedParameterShape,
)
from diffast.signature import (
    DerivedSignature,
    ParamRole,
    compute_derived_signature,
)

logger = getLogger(__name__)

PrimalResolver = Callable[[str], "Function | None"]


@dataclass(frozen=True)
class Expansion:
    """Everything needed to emit the derived entity of one invocation."""

    form: Form
    derived_name: str
    primal: Function
    module: str
    signature: DerivedSignature

    @property
    def mode(self) -> Mode:
        return self.signature.mode

    @property
    def assignment(self) -> CanonicalAssignment:
        return self.signature.assignment

    @property
    def primal_identity(self) -> str:
        return f"{self.module}.{self.primal.name}"

    @property
    def symbol(self) -> str:
        return mangle_derived_symbol(
            self.primal_identity, self.mode, self.assignment
        )


def default_derived_name(primal_name: str, mode: Mode) -> str:
    return f"{primal_name}_{mode.short}"


def check_stub_compatible(
    stub: Function, signature: DerivedSignature, primal_name: str
):
    """A stub must spell out exactly the derived signature of its primal."""
    for i, (declared, derived) in enumerate(zip(stub.params, signature.params)):
        if declared.type_ != derived.type_:
            if derived.role is ParamRole.shadow:
                raise UnsupportedParameterShape(
                    signature.mode,
                    derived.type_.position_kind,
                    derived.activity,
                    i,
                )
            raise UnresolvedReference(
                primal_name,
                f"parameter `{declared.name}` is `{declared.type_}`, "
                f"the primal expects `{derived.type_}`.",
                position=i,
            )
    if stub.has_return_annotation and stub.return_type != signature.return_type:
        raise UnresolvedReference(
            primal_name,
            f"stub returns `{stub.return_type}`, the derived entity returns "
            f"`{signature.return_type}`.",
            position="return",
        )


def expand_site(
    site: AutodiffSite,
    resolve_primal: PrimalResolver,
    module: str,
) -> Expansion:
    """Expand one `@autodiff` invocation.

    Parameters
    ----------
    site : AutodiffSite
        The decorated function and its decorator tokens.
    resolve_primal : callable
        Maps a primal name to its declaration, or None when no function of
        that name exists. Only consulted for declaration-form stubs.
    module : str
        Name of the module the primal lives in.

    Raises
    ------
    AutodiffAnnotationError
        Any annotation, legality or resolution error, located at the
        decorated function.
    """
    fn = site.function
    try:
        attr = parse_attribute(site.tokens)

        if site.form is Form.definition:
            assignment = normalize_definition(attr, fn)
            derived_name = attr.name or default_derived_name(fn.name, attr.mode)
            if derived_name == fn.name:
                raise DerivedNameConflictError(derived_name)
            signature = compute_derived_signature(attr.mode, assignment, fn)
            primal = fn
        else:
            if attr.name is None:
                raise UnresolvedReference(
                    "<missing>", "a declaration-form stub must name its primal."
                )
            if attr.name == fn.name:
                raise UnresolvedReference(
                    attr.name, "a stub cannot name itself as its primal."
                )
            primal = resolve_primal(attr.name)
            if primal is None:
                raise UnresolvedReference(attr.name, "no function of that name.")
            if primal.is_stub:
                raise UnresolvedReference(
                    attr.name, "the named function has no body to differentiate."
                )
            assignment, names = normalize_declaration(attr, fn, primal)
            signature = compute_derived_signature(
                attr.mode, assignment, primal, names=names
            )
            check_stub_compatible(fn, signature, primal.name)
            derived_name = fn.name
    except AutodiffAnnotationError as e:
        raise e.attach_location(fn.name, fn.lineno)

    expansion = Expansion(
        form=site.form,
        derived_name=derived_name,
        primal=primal,
        module=module,
        signature=signature,
    )
    logger.debug(
        "Expanded %s form of %s into %s%s",
        expansion.form.value,
        primal.name,
        derived_name,
        signature,
    )
    return expansion
