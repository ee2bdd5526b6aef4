# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Core typed primitives for ExprFactor.

Key
    Opaque integer identifier of an optimization variable. Keys are totally
    ordered and every ordered view in the package (BlockVector iteration,
    flattened vectors, expression key lists) uses ascending key order.
"""

from __future__ import annotations

from typing import Callable, NewType, Tuple

Key = NewType("Key", int)

KeyFormatter = Callable[[int], str]

KeyDim = Tuple[Key, int]


def format_key(key: int) -> str:
    """Default key formatter used in error messages."""
    return str(int(key))
