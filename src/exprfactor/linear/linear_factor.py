# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Linear factors: one block row of a sparse least-squares system.

A ``LinearFactor`` holds Jacobian blocks ``A_j`` (one per key) and a
right-hand side ``b`` that together encode

    sum_j A_j dx_j ≈ b

for a correction ``dx``. It is produced by ``ExpressionFactor.linearize``
from a whitened augmented ``BlockMatrix`` and owned by the caller
afterwards; nothing here mutates it.

If the producing factor used a constrained noise model, ``model`` holds the
constrained unit substitute and ``error`` weights the hard rows with its
penalty. Otherwise ``model`` is ``None`` and the rows are already whitened.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import jax.numpy as jnp

from exprfactor.core.errors import InvalidArgumentError, KeyNotFoundError
from exprfactor.core.types import Key, format_key
from exprfactor.linear.block_matrix import BlockMatrix
from exprfactor.linear.block_vector import BlockVector
from exprfactor.linear.noise_model import NoiseModel


class LinearFactor:
    """Jacobian blocks over ``keys`` plus an RHS column."""

    def __init__(
        self,
        keys: Sequence[Key],
        ab: BlockMatrix,
        model: Optional[NoiseModel] = None,
    ):
        if len(keys) != ab.n_blocks - 1:
            raise InvalidArgumentError(
                f"LinearFactor got {len(keys)} keys for {ab.n_blocks - 1} Jacobian blocks."
            )
        if model is not None and model.dim != ab.rows:
            raise InvalidArgumentError(
                f"LinearFactor model has dimension {model.dim}, system has {ab.rows} rows."
            )

        self._keys: Tuple[Key, ...] = tuple(keys)
        self._position: Dict[Key, int] = {k: i for i, k in enumerate(self._keys)}
        self._ab = ab.matrix
        self._widths: Tuple[int, ...] = tuple(ab.width(i) for i in range(len(self._keys)))
        self._offsets: Tuple[int, ...] = tuple(ab.offset(i) for i in range(ab.n_blocks))
        self.model = model

    # --- Layout ---

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    def size(self) -> int:
        return len(self._keys)

    @property
    def rows(self) -> int:
        return int(self._ab.shape[0])

    @property
    def dims(self) -> Dict[Key, int]:
        return dict(zip(self._keys, self._widths))

    @property
    def is_constrained(self) -> bool:
        return self.model is not None and self.model.is_constrained

    def _cols(self, key: Key) -> slice:
        try:
            i = self._position[key]
        except KeyError:
            raise KeyNotFoundError(
                f"Variable '{format_key(key)}' is not involved in this LinearFactor."
            ) from None
        return slice(self._offsets[i], self._offsets[i + 1])

    # --- Blocks ---

    def get_a(self, key: Key) -> jnp.ndarray:
        return self._ab[:, self._cols(key)]

    def get_b(self) -> jnp.ndarray:
        return self._ab[:, -1]

    def blocks(self) -> List[jnp.ndarray]:
        return [self.get_a(k) for k in self._keys]

    def jacobian(self) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """Dense ``(A, b)`` with A's columns in ``keys`` order."""
        return self._ab[:, :-1], self._ab[:, -1]

    def augmented_jacobian(self) -> jnp.ndarray:
        return self._ab

    # --- Products ---

    def multiply(self, x: BlockVector) -> jnp.ndarray:
        """``A x`` for the keys of this factor; extra keys in ``x`` are ignored."""
        Ax = jnp.zeros((self.rows,), dtype=self._ab.dtype)
        for k in self._keys:
            Ax = Ax + self.get_a(k) @ x.at(k)
        return Ax

    def transpose_multiply(self, e: jnp.ndarray) -> BlockVector:
        """``Aᵀ e`` as a BlockVector over the keys of this factor."""
        result = BlockVector()
        for k in self._keys:
            result.insert(k, self.get_a(k).T @ e)
        return result

    def error_vector(self, x: BlockVector) -> jnp.ndarray:
        return self.multiply(x) - self.get_b()

    def error(self, x: BlockVector) -> jnp.ndarray:
        """``0.5 ‖A x − b‖²``, hard rows weighted by the constrained model."""
        e = self.error_vector(x)
        if self.model is not None:
            return 0.5 * self.model.distance(e)
        return 0.5 * jnp.dot(e, e)

    def gradient_at_zero(self) -> BlockVector:
        """Gradient of ``error`` at ``x = 0``: ``−Aᵀ b``."""
        return self.transpose_multiply(-self.get_b())

    def __repr__(self) -> str:
        keys = ", ".join(format_key(k) for k in self._keys)
        return f"LinearFactor(keys=[{keys}], rows={self.rows}, constrained={self.is_constrained})"
