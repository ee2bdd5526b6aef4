# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
ExprFactor: the linearization core of a nonlinear least-squares engine.

Two pieces carry the package:

BlockVector
    Key-indexed block vectors, the direct-sum container for variable
    updates, gradients and residuals.

ExpressionFactor
    Turns a differentiable measurement ``Expression`` over manifold-valued
    variables into a whitened ``LinearFactor`` using JAX reverse-mode AD.

Typical Usage
-------------
    x = Values()
    x.insert(0, jnp.zeros(6), SE3())
    x.insert(1, jnp.array([0.9, 0.1, 0.0, 0.0, 0.0, 0.05]), SE3())

    odom = ExpressionFactor(
        Isotropic.sigma(6, 0.1),
        jnp.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0]),
        between(variable(0, "pose_se3"), variable(1, "pose_se3")),
    )
    lf = odom.linearize(x)      # LinearFactor over keys (0, 1)
"""

from exprfactor.core.errors import (
    DuplicateKeyError,
    ExprFactorError,
    InvalidArgumentError,
    KeyNotFoundError,
    StructureMismatchError,
)
from exprfactor.core.types import Key
from exprfactor.linear.block_matrix import BlockMatrix, JacobianMap
from exprfactor.linear.block_vector import BlockVector
from exprfactor.linear.linear_factor import LinearFactor
from exprfactor.linear.noise_model import (
    Constrained,
    Diagonal,
    Gaussian,
    Isotropic,
    NoiseModel,
    Unit,
)
from exprfactor.logging_config import configure_logging, get_logger
from exprfactor.nonlinear.expression import Expression, ExpressionConfig
from exprfactor.nonlinear.expression_factor import ExpressionFactor
from exprfactor.nonlinear.expressions import (
    bearing_to,
    between,
    compose,
    range_to,
    rotate,
    transform_from,
    transform_to,
    variable,
)
from exprfactor.nonlinear.manifold import SE3, SO3, Euclidean, Manifold, get_manifold
from exprfactor.nonlinear.values import Values

__version__ = "0.1.0"

__all__ = [
    "BlockMatrix",
    "BlockVector",
    "Constrained",
    "Diagonal",
    "DuplicateKeyError",
    "Euclidean",
    "Expression",
    "ExpressionConfig",
    "ExpressionFactor",
    "ExprFactorError",
    "Gaussian",
    "InvalidArgumentError",
    "Isotropic",
    "JacobianMap",
    "Key",
    "KeyNotFoundError",
    "LinearFactor",
    "Manifold",
    "NoiseModel",
    "SE3",
    "SO3",
    "StructureMismatchError",
    "Unit",
    "Values",
    "bearing_to",
    "between",
    "compose",
    "configure_logging",
    "get_logger",
    "get_manifold",
    "range_to",
    "rotate",
    "transform_from",
    "transform_to",
    "variable",
]
