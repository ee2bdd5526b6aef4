# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Expression factors: nonlinear measurements linearized by reverse-mode AD.

An ``ExpressionFactor`` compares a measured value ``z`` with the prediction
``h(x)`` of an ``Expression`` and turns the pair into one block row of a
linear least-squares system.

Residual
--------
The unwhitened residual lives in the tangent space of ``z``:

    r(x) = local(z, h(x))

so for a Euclidean measurement ``r(x) = h(x) − z``: evaluating at
``x = z + δ`` through an identity expression gives ``+δ``.

Linearization
-------------
``linearize(x)`` builds ``[A | b]`` with

    A_k = ∂r / ∂δ_k        (one block per key, via jax.jacrev)
    b   = −r(x)

so that the correction ``dx`` solves ``A dx ≈ b``, i.e. ``h(x ⊕ dx) ≈ z``.
The noise model then whitens all columns of ``[A | b]`` together. For a
constrained noise model the returned factor also carries the model's
``unit()`` substitute so the solver can treat hard rows as equalities.

Activity
--------
``active(x)`` gates the factor. An inactive factor linearizes to ``None``:
no contribution, as opposed to an all-zero factor.

Compilation
-----------
With ``ExpressionConfig(jit=True)`` every factor compiles its own residual
the first time it is linearized, so the first pass over an N-factor graph
pays N compilations even when the factors share one structure. Later calls
reuse the compiled code. ``benchmarks/bench_linearize.py`` reports both.

Numerical problems (NaN, Inf, singular whitening) are not caught here; they
reach the solver as ordinary floating-point values.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple

import jax.numpy as jnp

from exprfactor.core.errors import InvalidArgumentError
from exprfactor.core.types import Key
from exprfactor.linear.block_matrix import BlockMatrix, JacobianMap
from exprfactor.linear.linear_factor import LinearFactor
from exprfactor.linear.noise_model import NoiseModel
from exprfactor.logging_config import get_logger
from exprfactor.nonlinear.expression import Expression
from exprfactor.nonlinear.manifold import Euclidean, Manifold
from exprfactor.nonlinear.values import Values

logger = get_logger(__name__)

ActivePredicate = Callable[[Values], bool]


class ExpressionFactor:
    """Nonlinear factor ``‖local(z, h(x))‖²_Σ`` over the keys of ``h``."""

    def __init__(
        self,
        noise_model: Optional[NoiseModel],
        measurement,
        expression: Expression,
        manifold: Optional[Manifold] = None,
        active: Optional[ActivePredicate] = None,
    ):
        self.manifold = manifold if manifold is not None else expression.manifold

        if noise_model is None:
            raise InvalidArgumentError("ExpressionFactor: no NoiseModel.")
        if noise_model.dim != self.manifold.dim:
            raise InvalidArgumentError(
                "ExpressionFactor was created with a NoiseModel of incorrect dimension: "
                f"{noise_model.dim} != {self.manifold.dim}."
            )

        self.noise_model = noise_model
        self.measurement = self.manifold.check(measurement)
        self.expression = expression
        self._active = active

        # The expression is immutable, so keys and block widths are fixed now.
        keys_and_dims = expression.keys_and_dims()
        self._keys: Tuple[Key, ...] = tuple(k for k, _ in keys_and_dims)
        self._dims: Tuple[int, ...] = tuple(d for _, d in keys_and_dims)
        self.augmented_cols = sum(self._dims) + 1

        # r(x) = local(z, h(x)), differentiated as one expression
        z = self.measurement
        chart = self.manifold
        self._residual = expression.apply(lambda y: chart.local(z, y), Euclidean(chart.dim))

        logger.debug(
            "ExpressionFactor keys=%s dims=%s -> %dx%d",
            list(self._keys), list(self._dims), self.dim, self.augmented_cols,
        )

    # --- Layout ---

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    @property
    def dims(self) -> Tuple[int, ...]:
        return self._dims

    @property
    def dim(self) -> int:
        """Residual dimension, the tangent dimension of the measurement."""
        return self.manifold.dim

    def size(self) -> int:
        return len(self._keys)

    # --- Errors ---

    def active(self, values: Values) -> bool:
        if self._active is None:
            return True
        return bool(self._active(values))

    def unwhitened_error(
        self,
        values: Values,
        jacobians: Optional[List[jnp.ndarray]] = None,
    ) -> jnp.ndarray:
        """
        ``local(z, h(x))``.

        If a list is passed as ``jacobians`` it is replaced in place by one
        ``dim x d_k`` block per key, in ``keys`` order.
        """
        if jacobians is None:
            return self._residual.value(values)

        r, blocks = self._residual.value_and_jacobians(values)
        jacobians[:] = blocks
        return r

    def whitened_error(self, values: Values) -> jnp.ndarray:
        return self.noise_model.whiten(self.unwhitened_error(values))

    def error(self, values: Values) -> jnp.ndarray:
        """``0.5 ‖r(x)‖²_Σ``; zero for an inactive factor."""
        if not self.active(values):
            return jnp.zeros(())
        return 0.5 * self.noise_model.distance(self.unwhitened_error(values))

    # --- Linearization ---

    def linearize(self, values: Values) -> Optional[LinearFactor]:
        if not self.active(values):
            return None

        constrained = self.noise_model.is_constrained
        model = self.noise_model.unit() if constrained else None

        ab = BlockMatrix(self._dims, self.dim, dtype=self.measurement.dtype)
        jacobian_map = JacobianMap(self._keys, ab)

        # Reverse AD happens here; blocks accumulate into the zeroed matrix
        r = self._residual.value(values, jacobian_map)
        ab.set_rhs(-r)

        # Jacobian and RHS columns together
        self.noise_model.whiten_system(ab)

        return LinearFactor(self._keys, ab, model)

    def __repr__(self) -> str:
        return (
            f"ExpressionFactor(keys={list(self._keys)}, dim={self.dim}, "
            f"noise_model={self.noise_model!r})"
        )
