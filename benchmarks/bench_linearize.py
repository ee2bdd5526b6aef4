# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.

import time

import jax.numpy as jnp

from exprfactor.linear.noise_model import Isotropic
from exprfactor.nonlinear.expression import ExpressionConfig
from exprfactor.nonlinear.expression_factor import ExpressionFactor
from exprfactor.nonlinear.expressions import between, variable
from exprfactor.nonlinear.manifold import SE3
from exprfactor.nonlinear.values import Values


def build_se3_chain(num_poses: int = 10, use_jit: bool = True):
    """
    SE3 pose chain:
        pose0 --odom--> pose1 --odom--> ... --odom--> pose_{N-1}
    Odom edges of +1m in x, no rotation. Initial values slightly perturbed.
    """
    cfg = ExpressionConfig(jit=use_jit)
    values = Values()
    for i in range(num_poses):
        init_val = jnp.array(
            [
                i + 0.1 * jnp.sin(0.3 * i),  # tx
                0.05 * jnp.cos(0.2 * i),     # ty
                0.0,                         # tz
                0.0,
                0.0,
                0.0,                         # rotation (axis-angle)
            ]
        )
        values.insert(i, init_val, SE3())

    meas = jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    noise = Isotropic.sigma(6, 0.1)
    factors = []
    for i in range(num_poses - 1):
        h = between(variable(i, "pose_se3", config=cfg), variable(i + 1, "pose_se3", config=cfg))
        factors.append(ExpressionFactor(noise, meas, h))

    return values, factors


def run_benchmark(num_poses: int = 50, repeats: int = 20, use_jit: bool = True):
    print("=== ExpressionFactor.linearize Benchmark ===")
    print(f"num_poses = {num_poses}, repeats = {repeats}, use_jit = {use_jit}")

    values, factors = build_se3_chain(num_poses, use_jit)

    # Warmup: with jit every factor compiles its own residual, so this pass
    # grows with the number of factors rather than once per graph
    t0 = time.perf_counter()
    for f in factors:
        f.linearize(values).get_b().block_until_ready()
    t1 = time.perf_counter()
    print(f"First pass (including compile) time: {t1 - t0:.6f} s")
    print(f"First pass per factor: {(t1 - t0) / len(factors) * 1e3:.2f} ms")

    t0 = time.perf_counter()
    for _ in range(repeats):
        for f in factors:
            f.linearize(values).get_b().block_until_ready()
    t1 = time.perf_counter()

    per_factor = (t1 - t0) / (repeats * len(factors))
    print(f"Steady-state time per linearize: {per_factor * 1e6:.1f} us")


if __name__ == "__main__":
    run_benchmark(num_poses=50, repeats=20, use_jit=True)
    run_benchmark(num_poses=50, repeats=5, use_jit=False)
