# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Key-indexed block vectors.

A ``BlockVector`` is an element of the direct sum of per-variable vector
spaces: one 1-D JAX array per Key. It is the container used for variable
updates (the solution ``dx`` of a linear system), gradients and residual
bookkeeping throughout optimization.

Structure
---------
Two block vectors have *the same structure* when they hold exactly the same
keys and, for each key, arrays of the same length. All binary arithmetic
(add, subtract, dot, add-in-place, ...) assumes matching structure. The
check is an assertion: it runs while ``__debug__`` is true and raises
``StructureMismatchError``; under ``python -O`` it is skipped and the result
of mixing structures is undefined.

Ordering
--------
Insertion order is irrelevant. Iteration, ``keys()`` and the flattened
``vector()`` view always follow ascending key order, so the flattened
vector of two same-structure block vectors lines up element by element.

Construction paths
------------------
``BlockVector.from_flat(x, dims)``
    Pre-allocated path used by solvers: the flat solution vector is cut into
    blocks by a single ``jnp.split`` at precomputed offsets.

``insert(key, vector)``
    Incremental slow path. Each call adds one entry; building a large vector
    this way is markedly slower than ``from_flat``.

Concurrency
-----------
The backing store is a plain ``dict``. Point lookups and inserts of
*distinct* keys from several threads are safe; ``insert`` goes through an
atomic ``dict.setdefault`` so two threads racing on the same key cannot
both succeed. Concurrent mutation of the *same* key (``v[k] = ...``,
``add_in_place``) must be synchronized by the caller.
"""

from __future__ import annotations

from itertools import accumulate
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import jax.numpy as jnp

from exprfactor.core.errors import DuplicateKeyError, KeyNotFoundError, StructureMismatchError
from exprfactor.core.types import Key, KeyFormatter, format_key
from exprfactor.logging_config import get_logger

logger = get_logger(__name__)

KeyVectorPairs = Union[Mapping[Key, jnp.ndarray], Iterable[Tuple[Key, jnp.ndarray]]]


def _as_block(value) -> jnp.ndarray:
    return jnp.ravel(jnp.asarray(value))


class BlockVector:
    """Mapping Key -> 1-D JAX array with block-wise linear algebra."""

    __slots__ = ("_values",)

    def __init__(self, values: Optional[KeyVectorPairs] = None):
        self._values: Dict[Key, jnp.ndarray] = {}
        if values is None:
            return

        if isinstance(values, (Mapping, BlockVector)):
            items = values.items()
        else:
            items = values
        for key, v in items:
            self.insert(key, v)

    # --- Factories ---

    @classmethod
    def from_flat(cls, x: jnp.ndarray, dims: Mapping[Key, int]) -> "BlockVector":
        """
        Slice a flat vector into blocks.

        Blocks are laid out in ascending key order, matching ``vector()``.
        """
        x = _as_block(x)
        keys = sorted(dims)
        widths = [int(dims[k]) for k in keys]
        total = sum(widths)
        if x.shape[0] != total:
            raise StructureMismatchError(
                f"Flat vector has {x.shape[0]} entries but dims require {total}."
            )

        offsets = list(accumulate(widths))[:-1]
        blocks = jnp.split(x, offsets) if keys else []

        result = cls()
        result._values = dict(zip(keys, blocks))
        logger.debug("BlockVector.from_flat: %d blocks, %d entries", len(keys), total)
        return result

    @classmethod
    def zero(cls, other: "BlockVector") -> "BlockVector":
        """Same structure as ``other``, all entries zero."""
        result = cls()
        result._values = {k: jnp.zeros_like(v) for k, v in other._values.items()}
        return result

    @classmethod
    def combine(cls, first: "BlockVector", second: "BlockVector") -> "BlockVector":
        """Union of two block vectors with disjoint keys."""
        result = first.copy()
        result.insert_all(second)
        return result

    def copy(self) -> "BlockVector":
        result = BlockVector()
        result._values = dict(self._values)
        return result

    # --- Lookup ---

    def size(self) -> int:
        return len(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def exists(self, key: Key) -> bool:
        return key in self._values

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def at(self, key: Key) -> jnp.ndarray:
        try:
            return self._values[key]
        except KeyError:
            raise KeyNotFoundError(
                f"Requested variable '{format_key(key)}' is not in this BlockVector."
            ) from None

    def __getitem__(self, key: Key) -> jnp.ndarray:
        return self.at(key)

    def __setitem__(self, key: Key, value) -> None:
        """Overwrite an existing block; the dimension must not change."""
        current = self.at(key)
        block = _as_block(value)
        if block.shape != current.shape:
            raise StructureMismatchError(
                f"Variable '{format_key(key)}' has dimension {current.shape[0]}, "
                f"got a vector of dimension {block.shape[0]}."
            )
        self._values[key] = block

    def dim(self, key: Key) -> int:
        return int(self.at(key).shape[0])

    def keys(self) -> List[Key]:
        return sorted(self._values)

    def items(self) -> Iterator[Tuple[Key, jnp.ndarray]]:
        for k in sorted(self._values):
            yield k, self._values[k]

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys())

    def dims(self) -> Dict[Key, int]:
        return {k: int(v.shape[0]) for k, v in self.items()}

    def total_dim(self) -> int:
        return sum(int(v.shape[0]) for v in self._values.values())

    # --- Mutation ---

    def insert(self, key: Key, value) -> None:
        """
        Add a new block.

        Slow path: prefer ``from_flat`` when the full layout is known up
        front.
        """
        block = _as_block(value)
        if self._values.setdefault(key, block) is not block:
            raise DuplicateKeyError(
                f"Requested to insert variable '{format_key(key)}' already in this BlockVector."
            )

    def try_insert(self, key: Key, value) -> bool:
        """Insert unless the key is present; return whether it was inserted."""
        block = _as_block(value)
        return self._values.setdefault(key, block) is block

    def insert_all(self, other: "BlockVector") -> None:
        """Insert every block of ``other``; fails on the first shared key."""
        for key, v in other.items():
            self.insert(key, v)

    def update(self, other: "BlockVector") -> None:
        """
        Overwrite blocks with those of ``other``.

        Every key of ``other`` must already exist here; nothing is written
        if one is missing.
        """
        missing = [k for k in other._values if k not in self._values]
        if missing:
            raise KeyNotFoundError(
                f"Requested to update variable '{format_key(missing[0])}' "
                "that is not in this BlockVector."
            )
        self._values.update(other._values)

    def erase(self, key: Key) -> None:
        if self._values.pop(key, None) is None:
            raise KeyNotFoundError(
                f"Requested to erase variable '{format_key(key)}' that is not in this BlockVector."
            )

    def set_zero(self) -> None:
        for k, v in self._values.items():
            self._values[k] = jnp.zeros_like(v)

    # --- Structure ---

    def has_same_structure(self, other: "BlockVector") -> bool:
        if len(self._values) != len(other._values):
            return False
        for k, v in self._values.items():
            w = other._values.get(k)
            if w is None or w.shape != v.shape:
                return False
        return True

    def _check_structure(self, other: "BlockVector", op: str) -> None:
        if __debug__:
            if not self.has_same_structure(other):
                raise StructureMismatchError(
                    f"BlockVector.{op} requires both operands to have the same structure."
                )

    # --- Flattening ---

    def vector(self, keys: Optional[Sequence[Key]] = None) -> jnp.ndarray:
        """
        Flat concatenation of the blocks.

        Without ``keys`` the blocks follow ascending key order; with
        ``keys`` they follow the order given.
        """
        order = self.keys() if keys is None else list(keys)
        if not order:
            return jnp.zeros((0,))
        return jnp.concatenate([self.at(k) for k in order])

    def vector_with_dims(self, dims: Mapping[Key, int]) -> jnp.ndarray:
        """Flatten following ``dims`` (ascending key order), checking each dimension."""
        blocks = []
        for k in sorted(dims):
            v = self.at(k)
            if v.shape[0] != dims[k]:
                raise StructureMismatchError(
                    f"Variable '{format_key(k)}' has dimension {v.shape[0]}, expected {dims[k]}."
                )
            blocks.append(v)
        if not blocks:
            return jnp.zeros((0,))
        return jnp.concatenate(blocks)

    # --- Linear algebra ---

    def dot(self, other: "BlockVector") -> jnp.ndarray:
        self._check_structure(other, "dot")
        total = jnp.zeros(())
        for k, v in self._values.items():
            total = total + jnp.dot(v, other._values[k])
        return total

    def squared_norm(self) -> jnp.ndarray:
        total = jnp.zeros(())
        for v in self._values.values():
            total = total + jnp.dot(v, v)
        return total

    def norm(self) -> jnp.ndarray:
        return jnp.sqrt(self.squared_norm())

    def add(self, other: "BlockVector") -> "BlockVector":
        self._check_structure(other, "add")
        result = BlockVector()
        result._values = {k: v + other._values[k] for k, v in self._values.items()}
        return result

    def subtract(self, other: "BlockVector") -> "BlockVector":
        self._check_structure(other, "subtract")
        result = BlockVector()
        result._values = {k: v - other._values[k] for k, v in self._values.items()}
        return result

    def scale(self, alpha: float) -> "BlockVector":
        result = BlockVector()
        result._values = {k: alpha * v for k, v in self._values.items()}
        return result

    def add_in_place(self, other: "BlockVector") -> "BlockVector":
        self._check_structure(other, "add_in_place")
        for k, v in other._values.items():
            self._values[k] = self._values[k] + v
        return self

    def subtract_in_place(self, other: "BlockVector") -> "BlockVector":
        self._check_structure(other, "subtract_in_place")
        for k, v in other._values.items():
            self._values[k] = self._values[k] - v
        return self

    def scale_in_place(self, alpha: float) -> "BlockVector":
        for k, v in self._values.items():
            self._values[k] = alpha * v
        return self

    def add_or_insert(self, other: "BlockVector") -> "BlockVector":
        """Add blocks that exist here, insert the ones that do not."""
        for k, v in other._values.items():
            current = self._values.get(k)
            self._values[k] = v if current is None else current + v
        return self

    def __add__(self, other: "BlockVector") -> "BlockVector":
        return self.add(other)

    def __sub__(self, other: "BlockVector") -> "BlockVector":
        return self.subtract(other)

    def __neg__(self) -> "BlockVector":
        return self.scale(-1.0)

    def __mul__(self, alpha: float) -> "BlockVector":
        return self.scale(alpha)

    __rmul__ = __mul__

    def __iadd__(self, other: "BlockVector") -> "BlockVector":
        return self.add_in_place(other)

    def __isub__(self, other: "BlockVector") -> "BlockVector":
        return self.subtract_in_place(other)

    def __imul__(self, alpha: float) -> "BlockVector":
        return self.scale_in_place(alpha)

    # --- Testable ---

    def equals(self, other: "BlockVector", tol: float = 1e-9) -> bool:
        if not self.has_same_structure(other):
            return False
        return all(
            bool(jnp.allclose(v, other._values[k], rtol=0.0, atol=tol))
            for k, v in self._values.items()
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BlockVector):
            return NotImplemented
        return self.equals(other, tol=0.0)

    __hash__ = None  # mutable container

    def format(self, title: str = "BlockVector: ", formatter: KeyFormatter = format_key) -> str:
        lines = [f"{title}{len(self)} elements"]
        for k, v in self.items():
            lines.append(f"  {formatter(k)}: {v}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}: {v.tolist()}" for k, v in self.items())
        return f"BlockVector({{{inner}}})"
