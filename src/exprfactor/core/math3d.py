"""
SO(3) and SE(3) primitives for ExprFactor.

Every function here is written in JAX and is safe to differentiate with
reverse-mode AD at the identity: small-angle branches are selected with a
double ``jnp.where`` so that the unused branch never sees a zero divisor
(its cotangent would otherwise turn into NaN).

Pose convention
---------------
Poses are 6-vectors ``[tx, ty, tz, wx, wy, wz]``: a translation followed by
a rotation vector (axis-angle). The matrix form is

    T = [ Exp(w)  t ]
        [   0     1 ]

Key Functions
-------------
so3_exp(w) / so3_log(R)
    Rotation vector <-> rotation matrix.

compose_pose_se3(a, b)
    a ∘ b in 6-vector form.

relative_pose_se3(a, b)
    a⁻¹ ∘ b in 6-vector form. Together with ``compose_pose_se3`` this is the
    chart pair used by the SE(3) manifold.

transform_from(pose, p) / transform_to(pose, p)
    Map a point from / into the pose frame.
"""

from __future__ import annotations

import jax.numpy as jnp

# theta^2 below which the Taylor expansions are used
_SMALL_ANGLE_SQ = 1e-10


def pose_vec_to_rt(v: jnp.ndarray) -> tuple[jnp.ndarray, jnp.ndarray]:
    """
    Split a 6D pose vector into translation and rotation-vector (axis-angle).
    v: [tx, ty, tz, wx, wy, wz]
    """
    v = jnp.asarray(v)
    return v[0:3], v[3:6]


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    zero = jnp.zeros_like(x)
    return jnp.stack(
        [
            jnp.stack([zero, -z, y]),
            jnp.stack([z, zero, -x]),
            jnp.stack([-y, x, zero]),
        ]
    )


def vee(M: jnp.ndarray) -> jnp.ndarray:
    """
    vee: so(3) -> R^3, inverse of hat.

    Uses the antisymmetric part, so for a rotation matrix it returns
    sin(theta) * axis.
    """
    return jnp.stack(
        [
            M[2, 1] - M[1, 2],
            M[0, 2] - M[2, 0],
            M[1, 0] - M[0, 1],
        ]
    ) / 2.0


def so3_exp(w: jnp.ndarray) -> jnp.ndarray:
    """
    Exponential map from so(3) (rotation vector) to SO(3).

    Rodrigues' formula with second-order Taylor coefficients near zero.
    """
    w = jnp.asarray(w)
    theta2 = jnp.dot(w, w)
    small = theta2 < _SMALL_ANGLE_SQ

    theta2_safe = jnp.where(small, 1.0, theta2)
    theta = jnp.sqrt(theta2_safe)

    a = jnp.where(small, 1.0 - theta2 / 6.0, jnp.sin(theta) / theta)
    b = jnp.where(small, 0.5 - theta2 / 24.0, (1.0 - jnp.cos(theta)) / theta2_safe)

    W = hat(w)
    return jnp.eye(3, dtype=W.dtype) + a * W + b * (W @ W)


def so3_log(R: jnp.ndarray) -> jnp.ndarray:
    """
    Logarithm map SO(3) -> so(3).

    Three regimes:
      - small angle: w ≈ (1 + θ²/6) vee(R)
      - generic:     w = θ / sin θ · vee(R), θ = atan2(sin θ, cos θ)
      - near π:      axis taken from the dominant column of (R + I) / 2

    Returns w in R^3 such that Exp(w) ~ R.
    """
    R = jnp.asarray(R)
    w_sin = vee(R)  # sin(theta) * axis
    sin2 = jnp.dot(w_sin, w_sin)
    cos_theta = jnp.clip((jnp.trace(R) - 1.0) / 2.0, -1.0, 1.0)

    degenerate = sin2 < _SMALL_ANGLE_SQ
    near_pi = degenerate & (cos_theta < 0.0)

    sin_safe = jnp.sqrt(jnp.where(degenerate, 1.0, sin2))
    theta = jnp.arctan2(sin_safe, cos_theta)
    factor = jnp.where(degenerate, 1.0 + sin2 / 6.0, theta / sin_safe)
    w_generic = factor * w_sin

    B = (R + jnp.eye(3, dtype=R.dtype)) / 2.0
    i = jnp.argmax(jnp.diag(B))
    axis = B[:, i] / jnp.sqrt(jnp.maximum(B[i, i], 1e-12))
    w_pi = jnp.pi * axis

    return jnp.where(near_pi, w_pi, w_generic)


def so3_compose(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """Rotation vector of Exp(a) @ Exp(b)."""
    return so3_log(so3_exp(a) @ so3_exp(b))


def so3_between(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """Rotation vector of Exp(a)^T @ Exp(b)."""
    return so3_log(so3_exp(a).T @ so3_exp(b))


def pose_to_matrix(pose: jnp.ndarray) -> jnp.ndarray:
    """4x4 homogeneous matrix of a 6D pose."""
    t, w = pose_vec_to_rt(pose)
    T = jnp.eye(4, dtype=t.dtype)
    T = T.at[:3, :3].set(so3_exp(w))
    T = T.at[:3, 3].set(t)
    return T


def compose_pose_se3(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """
    Compose two SE(3) poses in 6D vector form.

    a, b: [tx, ty, tz, wx, wy, wz]
    Returns: 6D vector for a ∘ b
    """
    ta, wa = pose_vec_to_rt(a)
    tb, wb = pose_vec_to_rt(b)

    Ra = so3_exp(wa)
    Rb = so3_exp(wb)

    t = Ra @ tb + ta
    w = so3_log(Ra @ Rb)
    return jnp.concatenate([t, w])


def inverse_pose_se3(a: jnp.ndarray) -> jnp.ndarray:
    """a⁻¹ in 6D vector form."""
    t, w = pose_vec_to_rt(a)
    R = so3_exp(w)
    return jnp.concatenate([-(R.T @ t), -w])


def relative_pose_se3(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """
    Compute relative pose from a to b in 6D vector form.

      T_rel = T_a^{-1} T_b
      t_rel = R_a^T (t_b - t_a)
      w_rel = log(R_a^T R_b)
    """
    ta, wa = pose_vec_to_rt(a)
    tb, wb = pose_vec_to_rt(b)

    Ra = so3_exp(wa)
    Rb = so3_exp(wb)

    t_rel = Ra.T @ (tb - ta)
    w_rel = so3_log(Ra.T @ Rb)
    return jnp.concatenate([t_rel, w_rel])


def transform_from(pose: jnp.ndarray, p: jnp.ndarray) -> jnp.ndarray:
    """Point in the pose frame -> world frame: R p + t."""
    t, w = pose_vec_to_rt(pose)
    return so3_exp(w) @ p + t


def transform_to(pose: jnp.ndarray, p: jnp.ndarray) -> jnp.ndarray:
    """World point -> pose frame: R^T (p - t)."""
    t, w = pose_vec_to_rt(pose)
    return so3_exp(w).T @ (p - t)


def se3_identity() -> jnp.ndarray:
    """
    Convenience: return the identity SE(3) pose in 6D vector form.
    """
    return jnp.zeros(6)
