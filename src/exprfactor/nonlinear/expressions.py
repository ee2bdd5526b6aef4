# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Measurement expressions for common SLAM factors.

Each helper combines ``Expression`` nodes into the predicted value of one
kind of measurement; wrapping the result in an ``ExpressionFactor`` with a
measured value and a noise model gives the full factor:

    x0 = variable(0, "pose_se3")
    x1 = variable(1, "pose_se3")
    odom = ExpressionFactor(Isotropic.sigma(6, 0.1), z, between(x0, x1))

Families
--------
Relative motion
    ``between(a, b)``   a⁻¹ ∘ b on the chart of ``a``
    ``compose(a, b)``   a ∘ b

Pose / point
    ``transform_to(pose, point)``     world point in the pose frame
    ``transform_from(pose, point)``   pose-frame point in the world frame
    ``rotate(rot, point)``            rotate a point by an SO(3) variable
    ``range_to(pose, point)``         distance from the pose origin
    ``bearing_to(pose, point)``       unit direction in the pose frame

All helpers are built on ``core.math3d`` and differentiate cleanly with
``jax.jacrev``.
"""

from __future__ import annotations

from typing import Optional

import jax.numpy as jnp

from exprfactor.core.errors import InvalidArgumentError
from exprfactor.core.math3d import so3_exp, transform_from as _transform_from, transform_to as _transform_to
from exprfactor.core.types import Key
from exprfactor.nonlinear.expression import Expression, ExpressionConfig
from exprfactor.nonlinear.manifold import SE3, SO3, Euclidean, get_manifold

_EPS = 1e-8


def variable(key: Key, var_type: str, dim: Optional[int] = None,
             config: Optional[ExpressionConfig] = None) -> Expression:
    """Leaf for a variable tagged with ``var_type`` ("pose_se3", "point3", ...)."""
    return Expression.leaf(key, get_manifold(var_type, dim), config=config)


def _require(expr: Expression, manifold_type: type, role: str) -> None:
    if not isinstance(expr.manifold, manifold_type):
        raise InvalidArgumentError(
            f"{role} must live on {manifold_type.__name__}, got {expr.manifold!r}."
        )


def _require_point(expr: Expression) -> None:
    _require(expr, Euclidean, "point")
    if expr.dim != 3:
        raise InvalidArgumentError(f"point must be 3-dimensional, got {expr.dim}.")


def between(a: Expression, b: Expression) -> Expression:
    """
    Relative value a⁻¹ ∘ b.

    Uses the chart of ``a``: relative pose for SE(3), relative rotation for
    SO(3), ``b - a`` for Euclidean variables.
    """
    if a.manifold != b.manifold:
        raise InvalidArgumentError(f"between() got {a.manifold!r} and {b.manifold!r}.")
    manifold = a.manifold

    def relative(x, y):
        return manifold.local(x, y)

    return Expression(relative, a, b, manifold=manifold, config=a.config)


def compose(a: Expression, b: Expression) -> Expression:
    """a ∘ b, the inverse of ``between``."""
    if a.manifold != b.manifold:
        raise InvalidArgumentError(f"compose() got {a.manifold!r} and {b.manifold!r}.")
    manifold = a.manifold

    def composed(x, y):
        return manifold.retract(x, y)

    return Expression(composed, a, b, manifold=manifold, config=a.config)


def transform_to(pose: Expression, point: Expression) -> Expression:
    """
    World point expressed in the pose frame:

        p_pose = Rᵀ (p_world − t)
    """
    _require(pose, SE3, "pose")
    _require_point(point)
    return Expression(_transform_to, pose, point, manifold=Euclidean(3), config=pose.config)


def transform_from(pose: Expression, point: Expression) -> Expression:
    """Pose-frame point expressed in the world frame: R p + t."""
    _require(pose, SE3, "pose")
    _require_point(point)
    return Expression(_transform_from, pose, point, manifold=Euclidean(3), config=pose.config)


def rotate(rot: Expression, point: Expression) -> Expression:
    _require(rot, SO3, "rotation")
    _require_point(point)

    def rotated(w, p):
        return so3_exp(w) @ p

    return Expression(rotated, rot, point, manifold=Euclidean(3), config=rot.config)


def range_to(pose: Expression, point: Expression) -> Expression:
    """Euclidean distance from the pose origin to a world point (1-D)."""
    _require(pose, SE3, "pose")
    _require_point(point)

    def distance(x, p):
        d = p - x[:3]
        # epsilon keeps the gradient finite when the point sits on the origin
        return jnp.sqrt(jnp.dot(d, d) + _EPS)

    return Expression(distance, pose, point, manifold=Euclidean(1), config=pose.config)


def bearing_to(pose: Expression, point: Expression) -> Expression:
    """
    Unit direction to a world point, in the pose frame.

    The output is a 3-vector compared component-wise to a measured
    direction; normalize the measurement before building the factor.
    """
    _require(pose, SE3, "pose")
    _require_point(point)

    def bearing(x, p):
        local = _transform_to(x, p)
        return local / jnp.sqrt(jnp.dot(local, local) + _EPS)

    return Expression(bearing, pose, point, manifold=Euclidean(3), config=pose.config)
