# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum

from numba import types as nbtypes

from diffast.activity_defs import PositionKind
from diffast.errors import TypeNotFoundError


class RefKind(str, Enum):
    value = "value"
    ref = "ref"
    mut_ref = "mut_ref"

    @property
    def position_kind(self) -> PositionKind:
        return {
            RefKind.value: PositionKind.by_value,
            RefKind.ref: PositionKind.ref,
            RefKind.mut_ref: PositionKind.mut_ref,
        }[self]


REF_MARKERS = {
    "Ref": RefKind.ref,
    "MutRef": RefKind.mut_ref,
}
"""Annotation wrappers that turn a scalar type into a reference type."""


INTEGER_TYPE_MAPS = {
    "i8": nbtypes.int8,
    "i16": nbtypes.int16,
    "i32": nbtypes.int32,
    "i64": nbtypes.int64,
    "u8": nbtypes.uint8,
    "u16": nbtypes.uint16,
    "u32": nbtypes.uint32,
    "u64": nbtypes.uint64,
    "int8": nbtypes.int8,
    "int16": nbtypes.int16,
    "int32": nbtypes.int32,
    "int64": nbtypes.int64,
    "uint8": nbtypes.uint8,
    "uint16": nbtypes.uint16,
    "uint32": nbtypes.uint32,
    "uint64": nbtypes.uint64,
    "int": nbtypes.int64,
}

FLOATING_TYPE_MAPS = {
    "f16": nbtypes.float16,
    "f32": nbtypes.float32,
    "f64": nbtypes.float64,
    "float16": nbtypes.float16,
    "float32": nbtypes.float32,
    "float64": nbtypes.float64,
    "float": nbtypes.float64,
    "double": nbtypes.float64,
}

_DEFAULT_TYPE_MAPS = {
    **INTEGER_TYPE_MAPS,
    **FLOATING_TYPE_MAPS,
    "bool": nbtypes.boolean,
    "bool_": nbtypes.boolean,
}

TYPE_MAPS = copy.copy(_DEFAULT_TYPE_MAPS)


def register_type_alias(alias: str, nbty: nbtypes.Type):
    """Make `alias` usable as a scalar type name in annotations."""
    global TYPE_MAPS

    TYPE_MAPS[alias] = nbty


def reset_types():
    global TYPE_MAPS

    TYPE_MAPS.clear()
    TYPE_MAPS.update(_DEFAULT_TYPE_MAPS)


def to_numba_type(ty: str, position=None) -> nbtypes.Type:
    try:
        return TYPE_MAPS[ty]
    except KeyError:
        raise TypeNotFoundError(ty, position)


@dataclass(frozen=True)
class ParamType:
    """A scalar numba type together with how it is passed."""

    base: nbtypes.Type
    ref_kind: RefKind = RefKind.value

    @property
    def position_kind(self) -> PositionKind:
        return self.ref_kind.position_kind

    @property
    def is_reference(self) -> bool:
        return self.ref_kind is not RefKind.value

    def abi_type(self) -> nbtypes.Type:
        """References cross the backend boundary as pointers."""
        if self.is_reference:
            return nbtypes.CPointer(self.base)
        return self.base

    def annotation_str(self, prefix: str = "") -> str:
        base = numba_type_str(self.base, prefix)
        if self.ref_kind is RefKind.ref:
            return f"Ref[{base}]"
        if self.ref_kind is RefKind.mut_ref:
            return f"MutRef[{base}]"
        return base

    def __str__(self):
        return self.annotation_str()


def numba_type_str(nbty: nbtypes.Type, prefix: str = "") -> str:
    """Render a numba type as a Python expression over `numba.types` names.

    `prefix` is prepended to every name, e.g. "numba.types.".
    """
    if isinstance(nbty, nbtypes.CPointer):
        return f"{prefix}CPointer({numba_type_str(nbty.dtype, prefix)})"
    if isinstance(nbty, nbtypes.BaseTuple):
        items = ", ".join(numba_type_str(t, prefix) for t in nbty.types)
        if len(nbty.types) == 1:
            items += ","
        return f"{prefix}Tuple(({items}))"
    if nbty == nbtypes.void:
        return f"{prefix}void"
    if nbty == nbtypes.boolean:
        return f"{prefix}boolean"
    return f"{prefix}{nbty}"


def numba_type_names(nbty: nbtypes.Type) -> set[str]:
    """The `numba.types` names an expression from `numba_type_str` refers to."""
    if isinstance(nbty, nbtypes.CPointer):
        return {"CPointer"} | numba_type_names(nbty.dtype)
    if isinstance(nbty, nbtypes.BaseTuple):
        names = {"Tuple"}
        for t in nbty.types:
            names |= numba_type_names(t)
        return names
    return {numba_type_str(nbty)}
