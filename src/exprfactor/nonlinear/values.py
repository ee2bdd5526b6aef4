# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Variable assignments: Key -> manifold value.

``Values`` is the point an optimizer linearizes around. Each entry stores
the value (a 1-D JAX array in the chart's representation) together with
its ``Manifold`` so that updates computed in the tangent space can be
retracted back onto the manifold:

    x_new = x.retract(dx)           # dx: BlockVector of tangent updates
    dx    = x.local_coordinates(y)  # inverse operation

Values are read-only while factors are being linearized; ``retract``
returns a new assignment.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import jax.numpy as jnp

from exprfactor.core.errors import DuplicateKeyError, KeyNotFoundError
from exprfactor.core.types import Key, format_key
from exprfactor.linear.block_vector import BlockVector
from exprfactor.nonlinear.manifold import Euclidean, Manifold


class Values:
    """Mapping Key -> (value, manifold)."""

    def __init__(self):
        self._values: Dict[Key, jnp.ndarray] = {}
        self._manifolds: Dict[Key, Manifold] = {}

    def insert(self, key: Key, value, manifold: Optional[Manifold] = None) -> None:
        """
        Add a variable.

        Without ``manifold`` the value is treated as a Euclidean vector of
        its own length.
        """
        if key in self._values:
            raise DuplicateKeyError(
                f"Requested to insert variable '{format_key(key)}' already in this Values."
            )
        if manifold is None:
            manifold = Euclidean(jnp.size(jnp.asarray(value)))
        self._values[key] = manifold.check(value)
        self._manifolds[key] = manifold

    def update(self, key: Key, value) -> None:
        manifold = self.manifold(key)
        self._values[key] = manifold.check(value)

    def at(self, key: Key) -> jnp.ndarray:
        try:
            return self._values[key]
        except KeyError:
            raise KeyNotFoundError(
                f"Requested variable '{format_key(key)}' is not in this Values."
            ) from None

    def __getitem__(self, key: Key) -> jnp.ndarray:
        return self.at(key)

    def manifold(self, key: Key) -> Manifold:
        try:
            return self._manifolds[key]
        except KeyError:
            raise KeyNotFoundError(
                f"Requested variable '{format_key(key)}' is not in this Values."
            ) from None

    def exists(self, key: Key) -> bool:
        return key in self._values

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def keys(self) -> List[Key]:
        return sorted(self._values)

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys())

    def items(self) -> Iterator[Tuple[Key, jnp.ndarray]]:
        for k in self.keys():
            yield k, self._values[k]

    def dims(self) -> Dict[Key, int]:
        """Tangent dimension per key."""
        return {k: self._manifolds[k].dim for k in self.keys()}

    def copy(self) -> "Values":
        result = Values()
        result._values = dict(self._values)
        result._manifolds = dict(self._manifolds)
        return result

    # --- Tangent space ---

    def zero_vectors(self) -> BlockVector:
        """Zero tangent vector for every variable."""
        return BlockVector.from_flat(jnp.zeros((sum(self.dims().values()),)), self.dims())

    def retract(self, delta: BlockVector) -> "Values":
        """
        Apply tangent updates.

        Keys absent from ``delta`` are copied unchanged; keys of ``delta``
        absent here raise ``KeyNotFoundError``.
        """
        result = self.copy()
        for k, v in delta.items():
            manifold = self.manifold(k)
            result._values[k] = manifold.retract(self._values[k], v)
        return result

    def local_coordinates(self, other: "Values") -> BlockVector:
        """Tangent vectors taking each of our values to ``other``'s."""
        result = BlockVector()
        for k, a in self.items():
            result.insert(k, self._manifolds[k].local(a, other.at(k)))
        return result

    @classmethod
    def from_mapping(
        cls,
        values: Mapping[Key, jnp.ndarray],
        manifolds: Optional[Mapping[Key, Manifold]] = None,
    ) -> "Values":
        result = cls()
        manifolds = manifolds or {}
        for k, v in values.items():
            result.insert(k, v, manifolds.get(k))
        return result

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}: {self._manifolds[k]!r}" for k in self.keys())
        return f"Values({{{inner}}})"
