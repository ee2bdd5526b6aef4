# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Expressions with reverse-mode automatic differentiation.

An ``Expression`` is an immutable tree whose leaves are variables (Keys) or
constants and whose inner nodes apply a JAX-traceable function to the
values of their children. It answers three questions:

    keys_and_dims()           which variables it depends on, with their
                              tangent dimensions, in ascending key order
    value(values)             the predicted value h(x)
    value(values, jacobians)  the same value, and as a side effect the
                              Jacobian block of every key accumulated into
                              a ``JacobianMap``

Jacobians are taken with respect to the *tangent* of every input and of the
output:

    J_k = d local(y0, h(retract(x, δ))) / d δ_k     at δ = 0

where ``y0 = h(x)``. For a Euclidean output this is exactly ``dh/dδ_k``.
All blocks come out of a single ``jax.jacrev`` call, so the cost scales
with the output dimension rather than the number of variables.

Compilation
-----------
With ``ExpressionConfig(jit=True)`` (the default) both the plain and the
differentiated evaluation are wrapped in ``jax.jit`` once, at construction.
The compiled callables are read-only afterwards, so one expression can be
evaluated from several threads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import jax
import jax.numpy as jnp

from exprfactor.core.errors import InvalidArgumentError
from exprfactor.core.types import Key, KeyDim, format_key
from exprfactor.linear.block_matrix import JacobianMap
from exprfactor.logging_config import get_logger
from exprfactor.nonlinear.manifold import Euclidean, Manifold
from exprfactor.nonlinear.values import Values

logger = get_logger(__name__)

Points = Dict[Key, jnp.ndarray]


@dataclass(frozen=True)
class ExpressionConfig:
    jit: bool = True


_LEAF = "leaf"
_CONSTANT = "constant"
_APPLY = "apply"


class Expression:
    """
    Differentiable measurement function over manifold-valued variables.

    Build trees from ``Expression.leaf`` and ``Expression.constant`` and
    combine them with ``Expression(function, *children, manifold=...)``.
    ``function`` receives the children's values positionally.
    """

    def __init__(
        self,
        function: Callable[..., jnp.ndarray],
        *children: "Expression",
        manifold: Manifold,
        config: Optional[ExpressionConfig] = None,
    ):
        self._init(_APPLY, manifold, config, function=function, children=children)

    def _init(
        self,
        kind: str,
        manifold: Manifold,
        config: Optional[ExpressionConfig],
        key: Optional[Key] = None,
        constant: Any = None,
        function: Optional[Callable] = None,
        children: Tuple["Expression", ...] = (),
    ) -> None:
        self._kind = kind
        self.manifold = manifold
        self.config = config or ExpressionConfig()
        self._key = key
        self._constant = constant
        self._function = function
        self._children = tuple(
            c if isinstance(c, Expression) else Expression.constant(c) for c in children
        )

        self._leaf_manifolds = self._collect_leaves()
        self._keys: List[Key] = sorted(self._leaf_manifolds)

        if self.config.jit:
            self._value_fn = jax.jit(self._evaluate)
            self._jacobian_fn = jax.jit(self._value_and_jacobians)
        else:
            self._value_fn = self._evaluate
            self._jacobian_fn = self._value_and_jacobians

    # --- Constructors ---

    @classmethod
    def leaf(cls, key: Key, manifold: Manifold, config: Optional[ExpressionConfig] = None) -> "Expression":
        """Expression that reads variable ``key`` from the assignment."""
        expr = cls.__new__(cls)
        expr._init(_LEAF, manifold, config, key=key)
        return expr

    @classmethod
    def constant(cls, value, manifold: Optional[Manifold] = None) -> "Expression":
        value = jnp.ravel(jnp.asarray(value, dtype=jnp.result_type(float)))
        if manifold is None:
            manifold = Euclidean(value.size)
        expr = cls.__new__(cls)
        # Constants are leaves of larger trees; compiling them alone is wasted work.
        expr._init(_CONSTANT, manifold, ExpressionConfig(jit=False), constant=value)
        return expr

    # --- Structure ---

    def _collect_leaves(self) -> Dict[Key, Manifold]:
        if self._kind == _LEAF:
            return {self._key: self.manifold}

        found: Dict[Key, Manifold] = {}
        for child in self._children:
            for k, m in child._leaf_manifolds.items():
                seen = found.setdefault(k, m)
                if seen != m:
                    raise InvalidArgumentError(
                        f"Variable '{format_key(k)}' is used with two manifolds: {seen!r} and {m!r}."
                    )
        return found

    def keys(self) -> List[Key]:
        return list(self._keys)

    def keys_and_dims(self) -> List[KeyDim]:
        return [(k, self._leaf_manifolds[k].dim) for k in self._keys]

    @property
    def dim(self) -> int:
        return self.manifold.dim

    # --- Evaluation ---

    def _evaluate(self, points: Points) -> jnp.ndarray:
        if self._kind == _LEAF:
            return points[self._key]
        if self._kind == _CONSTANT:
            return self._constant
        args = [c._evaluate(points) for c in self._children]
        return jnp.ravel(self._function(*args))

    def _value_and_jacobians(self, points: Points) -> Tuple[jnp.ndarray, Points]:
        y0 = self._evaluate(points)
        if not self._keys:
            return y0, {}

        def output_tangent(deltas: Points) -> jnp.ndarray:
            moved = {
                k: self._leaf_manifolds[k].retract(points[k], deltas[k]) for k in self._keys
            }
            return self.manifold.local(jax.lax.stop_gradient(y0), self._evaluate(moved))

        zeros = {k: jnp.zeros((self._leaf_manifolds[k].dim,), dtype=points[k].dtype) for k in self._keys}
        # Reverse mode: one pullback per output row, all keys at once
        blocks = jax.jacrev(output_tangent)(zeros)
        return y0, blocks

    def _points(self, values: Values) -> Points:
        # at() raises KeyNotFoundError before anything is traced
        return {k: values.at(k) for k in self._keys}

    def value(self, values: Values, jacobians: Optional[JacobianMap] = None) -> jnp.ndarray:
        """
        Evaluate at ``values``.

        With ``jacobians`` every key's block is accumulated into the map;
        all keys of this expression must have a block there.
        """
        points = self._points(values)
        if jacobians is None:
            return self._value_fn(points)

        y, blocks = self._jacobian_fn(points)
        for k in self._keys:
            jacobians.add(k, blocks[k])
        return y

    def value_and_jacobians(self, values: Values) -> Tuple[jnp.ndarray, List[jnp.ndarray]]:
        """Value plus Jacobian blocks as a list in ``keys()`` order."""
        y, blocks = self._jacobian_fn(self._points(values))
        return y, [blocks[k] for k in self._keys]

    # --- Composition helpers ---

    def apply(self, function: Callable[[jnp.ndarray], jnp.ndarray], manifold: Manifold) -> "Expression":
        """Unary composition ``function(self)`` with output chart ``manifold``."""
        return Expression(function, self, manifold=manifold, config=self.config)

    def _euclidean_binary(self, other: Any, op: Callable, name: str) -> "Expression":
        if not isinstance(other, Expression):
            other = Expression.constant(other, Euclidean(self.dim))
        if not (isinstance(self.manifold, Euclidean) and isinstance(other.manifold, Euclidean)):
            raise InvalidArgumentError(f"Operator '{name}' is only defined for Euclidean expressions.")
        if self.dim != other.dim:
            raise InvalidArgumentError(
                f"Operator '{name}' got dimensions {self.dim} and {other.dim}."
            )
        return Expression(op, self, other, manifold=Euclidean(self.dim), config=self.config)

    def __add__(self, other: Any) -> "Expression":
        return self._euclidean_binary(other, jnp.add, "+")

    def __sub__(self, other: Any) -> "Expression":
        return self._euclidean_binary(other, jnp.subtract, "-")

    def __neg__(self) -> "Expression":
        if not isinstance(self.manifold, Euclidean):
            raise InvalidArgumentError("Negation is only defined for Euclidean expressions.")
        return self.apply(jnp.negative, self.manifold)

    def __mul__(self, scalar: float) -> "Expression":
        if not isinstance(self.manifold, Euclidean):
            raise InvalidArgumentError("Scaling is only defined for Euclidean expressions.")
        return self.apply(lambda v: scalar * v, self.manifold)

    __rmul__ = __mul__

    def __repr__(self) -> str:
        if self._kind == _LEAF:
            return f"Expression.leaf({format_key(self._key)}, {self.manifold!r})"
        if self._kind == _CONSTANT:
            return f"Expression.constant({self._constant.tolist()})"
        name = getattr(self._function, "__name__", "function")
        return f"Expression({name}, {len(self._children)} children, {self.manifold!r})"
