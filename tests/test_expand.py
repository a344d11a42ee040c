# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import pytest

from diffast.activity_defs import Activity, CanonicalAssignment, Form, Mode
from diffast.errors import (
    DerivedNameConflictError,
    IllegalActivity,
    UnresolvedReference,
    UnsupportedParameterShape,
)
from diffast.expand import expand_site
from diffast.parser import function_from_ast, parse_module

D = Activity.Duplicated
N = Activity.DuplicatedNoNeed
C = Activity.Const


def expand_all(src, module="mod"):
    decls = parse_module(src, module)

    def resolve(name):
        node = decls.functions.get(name)
        return None if node is None else function_from_ast(node)

    return [expand_site(site, resolve, module) for site in decls.sites]


SIN_INPLACE = """
@autodiff("cos_inplace", Reverse, Const)
def sin_inplace(x: Dup[Ref[f32]], y: Dup[MutRef[f32]]):
    y.value = sin(x.value)
"""


def test_definition_form():
    (expansion,) = expand_all(SIN_INPLACE)

    assert expansion.form is Form.definition
    assert expansion.derived_name == "cos_inplace"
    assert expansion.primal.name == "sin_inplace"
    assert expansion.mode is Mode.Reverse
    assert expansion.assignment == CanonicalAssignment((D, D), C)
    assert expansion.signature.param_names == ("x", "dx", "y", "dy")
    assert expansion.primal_identity == "mod.sin_inplace"
    assert expansion.symbol == "__enzyme_rev_3mod11sin_inplace__dd_c"


def test_default_derived_name():
    (fwd, rev) = expand_all(
        """
@autodiff(Forward)
def f(x: f32) -> f32:
    return x

@autodiff(Reverse, Active, Active)
def g(x: f32) -> f32:
    return x
"""
    )

    assert fwd.derived_name == "f_fwd"
    assert rev.derived_name == "g_rev"


def test_derived_name_equal_to_primal():
    with pytest.raises(DerivedNameConflictError) as e:
        expand_all('@autodiff("f", Forward)\ndef f(x: f32):\n    pass\n')

    assert e.value.function_name == "f"
    assert e.value.lineno == 2


TWO_STUBS = (
    SIN_INPLACE
    + """

@autodiff(sin_inplace, Forward, Const, Dup, DupNoNeed)
def cos_inplace_fwd1(x: Ref[f32], dx: Ref[f32], y: MutRef[f32], dy: MutRef[f32]):
    ...


@autodiff(sin_inplace, Reverse, Const)
def cos_inplace_rev(x: Dup[Ref[f32]], ax: Ref[f32], y: Dup[MutRef[f32]], ay: MutRef[f32]):
    ...
"""
)


def test_two_declarations_of_one_primal():
    definition, fwd, rev = expand_all(TWO_STUBS)

    assert fwd.form is Form.declaration and rev.form is Form.declaration
    assert fwd.derived_name == "cos_inplace_fwd1"
    assert rev.derived_name == "cos_inplace_rev"
    assert fwd.primal.name == rev.primal.name == "sin_inplace"
    assert fwd.mode is Mode.Forward and rev.mode is Mode.Reverse
    assert fwd.assignment == CanonicalAssignment((D, N), C)
    assert rev.assignment == CanonicalAssignment((D, D), C)
    assert rev.signature.param_names == ("x", "ax", "y", "ay")
    # The reverse stub asks for the same derivative as the definition.
    assert rev.symbol == definition.symbol
    assert len({definition.derived_name, fwd.derived_name, rev.derived_name}) == 3


def test_unresolved_primal():
    with pytest.raises(UnresolvedReference) as e:
        expand_all("@autodiff(missing, Forward)\ndef g(x: f32):\n    ...\n")

    assert e.value.primal_name == "missing"
    assert e.value.function_name == "g"


def test_declaration_requires_name():
    with pytest.raises(UnresolvedReference):
        expand_all("@autodiff(Forward)\ndef g(x: f32):\n    ...\n")


def test_declaration_of_stub():
    with pytest.raises(UnresolvedReference):
        expand_all(
            """
def f(x: f32):
    ...

@autodiff(f, Forward)
def g(x: f32):
    ...
"""
        )


def test_declaration_of_empty_primal():
    definition, declaration = expand_all(
        """
@autodiff("reset_fwd", Forward, Const, Dup)
def reset(y: MutRef[f32]):
    pass

@autodiff(reset, Forward, Const, Dup)
def reset_fwd2(y: MutRef[f32], dy: MutRef[f32]):
    ...
"""
    )

    assert definition.form is Form.definition
    assert definition.derived_name == "reset_fwd"
    assert declaration.form is Form.declaration
    assert declaration.primal.name == "reset"
    assert declaration.signature.param_names == ("y", "dy")
    assert declaration.symbol == definition.symbol


def test_declaration_type_mismatch():
    with pytest.raises(UnresolvedReference) as e:
        expand_all(
            """
def f(x: f32, y: f64) -> f64:
    return y

@autodiff(f, Forward, Const)
def g(x: f32, y: f32) -> f64:
    ...
"""
        )

    assert e.value.position == 1


def test_declaration_return_mismatch():
    with pytest.raises(UnresolvedReference) as e:
        expand_all(
            """
def f(x: Ref[f32]) -> f32:
    return x

@autodiff(f, Forward, Dup, Dup)
def g(x: Ref[f32], dx: Ref[f32]) -> f32:
    ...
"""
        )

    assert e.value.position == "return"


def test_declaration_shadow_shape_mismatch():
    with pytest.raises(UnsupportedParameterShape):
        expand_all(
            """
def f(x: Ref[f32]):
    pass

@autodiff(f, Forward, Const, Dup)
def g(x: Ref[f32], dx: MutRef[f32]):
    ...
"""
        )


def test_illegal_activity_is_located():
    with pytest.raises(IllegalActivity) as e:
        expand_all("\n\n@autodiff(Forward, Const, Active)\ndef f(x: f32):\n    pass\n")

    assert e.value.function_name == "f"
    assert e.value.lineno == 4
    assert "line 4" in str(e.value)
