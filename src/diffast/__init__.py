# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import numba

from diffast.activity_defs import Activity, Mode, CanonicalAssignment
from diffast.backend import (
    Backend,
    DerivativeRequest,
    register_backend,
    unregister_backend,
    get_backend,
)
from diffast.lang import autodiff
from diffast.parser import parse_module
from diffast.expand import expand_site
from diffast.signature import compute_derived_signature

import importlib.metadata

__version__ = importlib.metadata.version("diffast")

major, minor, *_ = numba.__version__.split(".")
if int(major) == 0 and int(minor) < 59:
    raise RuntimeError("Numba version >= 0.59 is required")

__all__ = [
    "__version__",
    "Activity",
    "Mode",
    "CanonicalAssignment",
    "Backend",
    "DerivativeRequest",
    "register_backend",
    "unregister_backend",
    "get_backend",
    "autodiff",
    "parse_module",
    "expand_site",
    "compute_derived_signature",
]
