# SPDX-FileCopyrightText: Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

from diffast.static.renderer import clear_base_renderer_cache
from diffast.types import reset_types


def reset_renderer():
    """Clear all renderer cache and registered type aliases.

    Sometimes the renderer needs to run multiple times in the same python
    session (pytest). This function resets the renderer so that it runs in
    a clean state.
    """
    clear_base_renderer_cache()
    reset_types()
