# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import pytest

from diffast.activity_defs import Activity, CanonicalAssignment, Mode
from diffast.backend import DerivativeRequest, register_backend
from diffast.contract import (
    ABI_VERSION,
    decode_tag_stream,
    enzyme_const,
    enzyme_dup,
    enzyme_dupnoneed,
    enzyme_out,
    mangle_derived_symbol,
)
from diffast.errors import (
    ABIVersionMismatchError,
    BackendError,
    BackendNotRegisteredError,
    TagStreamError,
)
from diffast import runtime

C = Activity.Const
A = Activity.Active
D = Activity.Duplicated
N = Activity.DuplicatedNoNeed


def square(x):
    return x * x


def test_mangle_derived_symbol():
    assert (
        mangle_derived_symbol(
            "pkg.mod.f", Mode.Forward, CanonicalAssignment((C, A, D, N), D)
        )
        == "__enzyme_fwd_3pkg3mod1f__cadn_d"
    )
    assert (
        mangle_derived_symbol("m.g", Mode.Reverse, CanonicalAssignment(()))
        == "__enzyme_rev_1m1g__v_c"
    )


def test_distinct_primals_distinct_symbols():
    a = mangle_derived_symbol("pkg.mod_f", Mode.Forward, CanonicalAssignment((C,)))
    b = mangle_derived_symbol("pkg_mod.f", Mode.Forward, CanonicalAssignment((C,)))

    assert a == "__enzyme_fwd_3pkg5mod_f__c_c"
    assert b == "__enzyme_fwd_7pkg_mod1f__c_c"
    assert a != b


def test_same_request_same_symbol():
    a = mangle_derived_symbol("m.f", Mode.Reverse, CanonicalAssignment((D,), A))
    b = mangle_derived_symbol("m.f", Mode.Reverse, CanonicalAssignment((D,), A))
    c = mangle_derived_symbol("m.f", Mode.Forward, CanonicalAssignment((D,), A))

    assert a == b
    assert a != c


def test_decode_tag_stream():
    activities, args = decode_tag_stream(
        (enzyme_const, 1.0, enzyme_out, 2.0, enzyme_dup, "x", "dx", enzyme_dupnoneed, "y", "dy")
    )

    assert activities == (C, A, D, N)
    assert args == (1.0, 2.0, "x", "dx", "y", "dy")


@pytest.mark.parametrize(
    "stream",
    [
        (1.0,),
        (enzyme_dup, "x"),
        (enzyme_const,),
        (enzyme_dup, "x", enzyme_const, 1.0),
    ],
)
def test_malformed_tag_stream(stream):
    with pytest.raises(TagStreamError):
        decode_tag_stream(stream)


def test_intrinsic_dispatch(backend):
    result = runtime.__enzyme_autodiff(
        square, enzyme_out, 3.0, ret=enzyme_out, seed=1.0, symbol="sym"
    )

    assert result == "sym"
    ((request, primal, args),) = backend.calls
    assert primal is square
    assert args == (3.0, 1.0)
    assert request == DerivativeRequest(
        primal=f"{__name__}.square",
        mode=Mode.Reverse,
        assignment=CanonicalAssignment((A,), A),
        symbol="sym",
    )
    assert request.key == (f"{__name__}.square", Mode.Reverse, CanonicalAssignment((A,), A))


def test_intrinsic_default_symbol(backend):
    runtime.__enzyme_fwddiff(square, enzyme_const, 3.0)

    ((request, _, args),) = backend.calls
    assert request.mode is Mode.Forward
    assert request.symbol == mangle_derived_symbol(
        request.primal, Mode.Forward, CanonicalAssignment((C,))
    )
    assert args == (3.0,)


def test_intrinsic_without_backend(no_backend):
    with pytest.raises(BackendNotRegisteredError) as e:
        runtime.__enzyme_fwddiff(square, enzyme_const, 3.0, symbol="sym")

    assert e.value.symbol == "sym"
    assert isinstance(e.value, BackendError)


def test_abi_version_mismatch(backend):
    with pytest.raises(ABIVersionMismatchError):
        runtime.__enzyme_fwddiff(square, enzyme_const, 3.0, abi_version=ABI_VERSION + 1)


def test_ret_must_be_a_tag(backend):
    with pytest.raises(TagStreamError):
        runtime.__enzyme_fwddiff(square, enzyme_const, 3.0, ret="Const")


def test_register_rejects_non_backend():
    with pytest.raises(TypeError):
        register_backend(object())


def test_declared_stub(backend):
    stub = runtime.declare_derivative(
        __name__,
        "square",
        name="dsquare",
        mode="reverse",
        activities=(enzyme_out,),
        ret=enzyme_out,
        params=("x", "dret"),
        symbol="__enzyme_rev_square__a_a",
        abi_version=ABI_VERSION,
    )

    assert stub.__name__ == "dsquare"
    assert stub.request.mode is Mode.Reverse
    assert stub.request.assignment == CanonicalAssignment((A,), A)
    assert stub(2.0, 1.0) == "__enzyme_rev_square__a_a"
    ((request, primal, args),) = backend.calls
    assert primal is square
    assert args == (2.0, 1.0)
    assert "dsquare(x, dret)" in repr(stub)

    with pytest.raises(TypeError):
        stub(2.0)


def test_stub_primal_is_resolved_lazily(backend):
    stub = runtime.DerivedStub(
        __name__,
        "defined_later",
        name="ddefined_later",
        mode=Mode.Forward,
        activities=(enzyme_const,),
        ret=enzyme_const,
        params=("x",),
        symbol="sym",
    )

    with pytest.raises(BackendError):
        stub(1.0)

    globals()["defined_later"] = square
    try:
        assert stub(1.0) == "sym"
    finally:
        del globals()["defined_later"]
