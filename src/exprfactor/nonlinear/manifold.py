# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Manifold charts for Euclidean, SO(3) and SE(3) variables.

Optimization works in a local tangent space while the *state* lives on a
manifold. Every variable and measurement type is described by a chart:

    local(a, b)    -> tangent vector at ``a`` pointing to ``b``
    retract(a, v)  -> point reached from ``a`` along tangent ``v``

with ``local(a, retract(a, v)) == v`` and ``local(a, a) == 0``. Residuals
are computed with ``local`` instead of subtraction, which is meaningless
for rotations and poses.

Charts
------
Euclidean(n)
    ``local(a, b) = b - a``, ``retract(a, v) = a + v``.

SO3
    Rotation vectors. ``local(a, b) = Log(Exp(a)ᵀ Exp(b))``,
    ``retract(a, v) = Log(Exp(a) Exp(v))``.

SE3
    6-vector poses ``[t, w]`` with a right-multiplicative chart:
    ``local(a, b) = relative_pose_se3(a, b)``, ``retract(a, v) = a ∘ v``.

Variable type tags
------------------
``TYPE_TO_MANIFOLD`` maps the string tags used for variables ("pose_se3",
"rot3", "landmark3d", ...) to a chart name, and ``get_manifold`` builds the
chart. Unknown tags fall back to Euclidean.

All chart functions are pure JAX and differentiable with ``jax.jacrev``.
"""

from __future__ import annotations

from typing import Dict, Optional

import jax.numpy as jnp

from exprfactor.core.errors import InvalidArgumentError
from exprfactor.core.math3d import (
    compose_pose_se3,
    relative_pose_se3,
    so3_between,
    so3_compose,
)


class Manifold:
    """Chart interface: ``dim``, ``local``, ``retract``, ``identity``."""

    name = "manifold"
    dim: int = 0

    def local(self, a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def retract(self, a: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def identity(self) -> jnp.ndarray:
        return jnp.zeros((self.dim,))

    def check(self, value: jnp.ndarray) -> jnp.ndarray:
        """Coerce ``value`` to a 1-D array of the expected length."""
        value = jnp.ravel(jnp.asarray(value, dtype=jnp.result_type(float)))
        if value.shape[0] != self.dim:
            raise InvalidArgumentError(
                f"{self!r} expects a vector of length {self.dim}, got {value.shape[0]}."
            )
        return value

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self.dim == other.dim

    def __hash__(self) -> int:
        return hash((type(self), self.dim))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Euclidean(Manifold):
    name = "euclidean"

    def __init__(self, dim: int):
        if dim < 0:
            raise InvalidArgumentError(f"Euclidean dimension must be non-negative, got {dim}.")
        self.dim = int(dim)

    def local(self, a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
        return b - a

    def retract(self, a: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
        return a + v

    def __repr__(self) -> str:
        return f"Euclidean({self.dim})"


class SO3(Manifold):
    name = "so3"
    dim = 3

    def local(self, a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
        return so3_between(a, b)

    def retract(self, a: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
        return so3_compose(a, v)


class SE3(Manifold):
    name = "se3"
    dim = 6

    def local(self, a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
        return relative_pose_se3(a, b)

    def retract(self, a: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
        return compose_pose_se3(a, v)


TYPE_TO_MANIFOLD: Dict[str, str] = {
    "pose_se3": "se3",
    "rot3": "so3",
    "scalar": "euclidean",
    "vector": "euclidean",
    "point3": "euclidean",
    "landmark3d": "euclidean",
    "voxel_cell": "euclidean",
}


def get_manifold_for_var_type(var_type: str) -> str:
    return TYPE_TO_MANIFOLD.get(var_type, "euclidean")


def get_manifold(var_type: str, dim: Optional[int] = None) -> Manifold:
    """
    Build the chart for a variable type tag.

    Euclidean charts need ``dim``; "point3" and "landmark3d" default to 3
    and "scalar" to 1.
    """
    name = get_manifold_for_var_type(var_type)
    if name == "se3":
        return SE3()
    if name == "so3":
        return SO3()

    if dim is None:
        dim = {"scalar": 1, "point3": 3, "landmark3d": 3, "voxel_cell": 3}.get(var_type)
    if dim is None:
        raise InvalidArgumentError(f"Variable type '{var_type}' needs an explicit dimension.")
    return Euclidean(dim)
