# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Augmented block matrices and the Jacobian sink written by expressions.

BlockMatrix
    One ``rows x (sum(dims) + 1)`` matrix whose columns are partitioned into
    one block per variable, in a fixed key order, followed by a single
    right-hand-side column. ``[A | b]`` of one block row of the global
    linear system lives here between evaluation and whitening.

JacobianMap
    Capability object passed to ``Expression.value``: it maps a Key to the
    column block that Key owns and accumulates Jacobian blocks into it.
    Expressions never see the column layout.

JAX arrays are immutable, so "writing into" the matrix rebinds
``BlockMatrix.matrix`` to an updated array. The object identity is what
stays fixed for the lifetime of one linearization.
"""

from __future__ import annotations

from itertools import accumulate
from typing import Dict, List, Sequence

import jax.numpy as jnp

from exprfactor.core.errors import InvalidArgumentError, KeyNotFoundError
from exprfactor.core.types import Key, format_key


class BlockMatrix:
    """Vertical block matrix with a trailing RHS column."""

    def __init__(self, dims: Sequence[int], rows: int, dtype=None):
        widths = [int(d) for d in dims]
        if any(d < 0 for d in widths):
            raise InvalidArgumentError(f"Block widths must be non-negative, got {widths}.")

        # Trailing one-column block is the RHS
        self._widths: List[int] = widths + [1]
        self._offsets: List[int] = [0] + list(accumulate(self._widths))
        self.matrix: jnp.ndarray = jnp.zeros((int(rows), self._offsets[-1]), dtype=dtype)

    @property
    def rows(self) -> int:
        return int(self.matrix.shape[0])

    @property
    def cols(self) -> int:
        return int(self.matrix.shape[1])

    @property
    def n_blocks(self) -> int:
        """Number of blocks, the RHS block included."""
        return len(self._widths)

    def width(self, i: int) -> int:
        return self._widths[i]

    def offset(self, i: int) -> int:
        return self._offsets[i]

    def _cols(self, i: int) -> slice:
        if not -self.n_blocks <= i < self.n_blocks:
            raise IndexError(f"Block index {i} out of range for {self.n_blocks} blocks.")
        i = i % self.n_blocks
        return slice(self._offsets[i], self._offsets[i + 1])

    def block(self, i: int) -> jnp.ndarray:
        return self.matrix[:, self._cols(i)]

    def set_block(self, i: int, value: jnp.ndarray) -> None:
        self.matrix = self.matrix.at[:, self._cols(i)].set(value)

    def add_to_block(self, i: int, value: jnp.ndarray) -> None:
        self.matrix = self.matrix.at[:, self._cols(i)].add(value)

    @property
    def rhs(self) -> jnp.ndarray:
        return self.matrix[:, -1]

    def set_rhs(self, b: jnp.ndarray) -> None:
        self.matrix = self.matrix.at[:, -1].set(jnp.ravel(b))

    def set_zero(self) -> None:
        self.matrix = jnp.zeros_like(self.matrix)

    def __repr__(self) -> str:
        return f"BlockMatrix(rows={self.rows}, widths={self._widths})"


class JacobianMap:
    """Key-addressed view of the Jacobian blocks of a BlockMatrix."""

    def __init__(self, keys: Sequence[Key], ab: BlockMatrix):
        if len(keys) != ab.n_blocks - 1:
            raise InvalidArgumentError(
                f"JacobianMap got {len(keys)} keys for {ab.n_blocks - 1} Jacobian blocks."
            )
        self._index: Dict[Key, int] = {k: i for i, k in enumerate(keys)}
        self.ab = ab

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def keys(self) -> List[Key]:
        return list(self._index)

    def _position(self, key: Key) -> int:
        try:
            return self._index[key]
        except KeyError:
            raise KeyNotFoundError(
                f"Variable '{format_key(key)}' has no block in this JacobianMap."
            ) from None

    def add(self, key: Key, block: jnp.ndarray) -> None:
        """Accumulate ``block`` into the columns of ``key``."""
        self.ab.add_to_block(self._position(key), block)

    def __getitem__(self, key: Key) -> jnp.ndarray:
        return self.ab.block(self._position(key))
