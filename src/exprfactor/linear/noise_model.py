# Copyright (c) 2025.
# This file is part of ExprFactor, released under the MIT License.
"""
Noise models for whitening residuals and Jacobians.

A noise model turns an unwhitened residual ``r`` with covariance ``Σ`` into
a whitened residual ``R r`` with identity covariance, where ``RᵀR = Σ⁻¹``.
Applying the same ``R`` to the rows of the augmented system ``[A | b]``
makes the linearized problem an ordinary least-squares problem.

Variants
--------
The set is closed and every variant carries a ``kind`` tag:

    Gaussian     full square-root information matrix R
    Diagonal     per-row sigmas
    Isotropic    one sigma for every row
    Unit         sigma = 1 (whitening is the identity)
    Constrained  per-row sigmas where zero marks a hard constraint

Constrained models cannot be represented by finite scale factors: a zero
sigma would need an infinite weight. Their constrained rows are left
unscaled by whitening and the linear factor instead carries ``unit()``, a
constrained model with sigma 0 on hard rows and 1 elsewhere, so the solver
can treat those rows as equality constraints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from exprfactor.core.errors import InvalidArgumentError
from exprfactor.linear.block_matrix import BlockMatrix


def _as_vector(values) -> jnp.ndarray:
    return jnp.ravel(jnp.asarray(values, dtype=jnp.result_type(float)))


@dataclass(frozen=True, eq=False, repr=False)
class NoiseModel:
    """Shared whitening interface."""

    kind: ClassVar[str] = "base"

    @property
    def dim(self) -> int:
        raise NotImplementedError

    @property
    def is_constrained(self) -> bool:
        return False

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def whiten_matrix(self, H: jnp.ndarray) -> jnp.ndarray:
        raise NotImplementedError

    def whiten_system(self, ab: BlockMatrix) -> None:
        """Whiten every column of ``[A | b]`` jointly, in place."""
        ab.matrix = self.whiten_matrix(ab.matrix)

    def distance(self, v: jnp.ndarray) -> jnp.ndarray:
        """Squared Mahalanobis distance ``‖R v‖²``."""
        w = self.whiten(v)
        return jnp.dot(w, w)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dim={self.dim})"


@dataclass(frozen=True, eq=False, repr=False)
class Gaussian(NoiseModel):
    """
    Full-covariance model stored as a triangular square-root information R.

    ``information`` stores the upper factor and ``covariance`` the lower one
    (``R = L⁻¹``); either way ``RᵀR = Σ⁻¹``.
    """

    R: jnp.ndarray

    kind: ClassVar[str] = "gaussian"

    @classmethod
    def sqrt_information(cls, R) -> "Gaussian":
        R = jnp.asarray(R, dtype=jnp.result_type(float))
        if R.ndim != 2 or R.shape[0] != R.shape[1]:
            raise InvalidArgumentError(f"Square-root information must be square, got {R.shape}.")
        return cls(R=R)

    @classmethod
    def information(cls, M) -> "Gaussian":
        M = jnp.asarray(M, dtype=jnp.result_type(float))
        # M = RᵀR with R upper triangular
        L = jnp.linalg.cholesky(M)
        return cls.sqrt_information(L.T)

    @classmethod
    def covariance(cls, S) -> "Gaussian":
        S = jnp.asarray(S, dtype=jnp.result_type(float))
        if S.ndim != 2 or S.shape[0] != S.shape[1]:
            raise InvalidArgumentError(f"Covariance must be square, got {S.shape}.")
        # S = L Lᵀ  =>  S⁻¹ = L⁻ᵀ L⁻¹, so R = L⁻¹
        L = jnp.linalg.cholesky(S)
        R = solve_triangular(L, jnp.eye(S.shape[0], dtype=S.dtype), lower=True)
        return cls(R=R)

    @property
    def dim(self) -> int:
        return int(self.R.shape[0])

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return self.R @ v

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return jnp.linalg.solve(self.R, v)

    def whiten_matrix(self, H: jnp.ndarray) -> jnp.ndarray:
        return self.R @ H


@dataclass(frozen=True, eq=False, repr=False)
class Diagonal(NoiseModel):
    """Independent rows with standard deviations ``sigmas``."""

    sigmas_: jnp.ndarray

    kind: ClassVar[str] = "diagonal"

    @classmethod
    def sigmas(cls, sigmas, smart: bool = True) -> NoiseModel:
        """
        Build from standard deviations.

        With ``smart`` a zero sigma yields a ``Constrained`` model instead
        of an error.
        """
        s = _as_vector(sigmas)
        if smart and bool(jnp.any(s == 0.0)):
            return Constrained.mixed_sigmas(s)
        if bool(jnp.any(s <= 0.0)):
            raise InvalidArgumentError(f"Diagonal sigmas must be positive, got {s.tolist()}.")
        return cls(sigmas_=s)

    @classmethod
    def variances(cls, variances, smart: bool = True) -> NoiseModel:
        return cls.sigmas(jnp.sqrt(_as_vector(variances)), smart=smart)

    @classmethod
    def precisions(cls, precisions) -> NoiseModel:
        p = _as_vector(precisions)
        if bool(jnp.any(p <= 0.0)):
            raise InvalidArgumentError(f"Precisions must be positive, got {p.tolist()}.")
        return cls.sigmas(1.0 / jnp.sqrt(p), smart=False)

    @property
    def dim(self) -> int:
        return int(self.sigmas_.shape[0])

    @property
    def inv_sigmas(self) -> jnp.ndarray:
        return 1.0 / self.sigmas_

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return v * self.inv_sigmas

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return v * self.sigmas_

    def whiten_matrix(self, H: jnp.ndarray) -> jnp.ndarray:
        return H * self.inv_sigmas[:, None]


@dataclass(frozen=True, eq=False, repr=False)
class Isotropic(Diagonal):
    """Every row shares one sigma."""

    kind: ClassVar[str] = "isotropic"

    @classmethod
    def sigmas(cls, sigmas, smart: bool = True) -> NoiseModel:
        s = _as_vector(sigmas)
        if s.size and bool(jnp.any(s != s[0])):
            raise InvalidArgumentError(
                f"{cls.__name__} sigmas must all be equal, got {s.tolist()}; use Diagonal.sigmas."
            )
        return super().sigmas(s, smart=smart)

    @classmethod
    def sigma(cls, dim: int, sigma: float) -> "Isotropic":
        if sigma <= 0.0:
            raise InvalidArgumentError(f"Isotropic sigma must be positive, got {sigma}.")
        return cls(sigmas_=jnp.full((int(dim),), float(sigma)))

    @classmethod
    def variance(cls, dim: int, variance: float) -> "Isotropic":
        return cls.sigma(dim, float(variance) ** 0.5)


@dataclass(frozen=True, eq=False, repr=False)
class Unit(Isotropic):
    """Identity whitening."""

    kind: ClassVar[str] = "unit"

    @classmethod
    def create(cls, dim: int) -> "Unit":
        return cls(sigmas_=jnp.ones((int(dim),)))

    @classmethod
    def sigma(cls, dim: int, sigma: float) -> "Unit":
        if float(sigma) != 1.0:
            raise InvalidArgumentError(f"Unit sigma must be 1, got {sigma}; use Isotropic.sigma.")
        return cls.create(dim)

    @classmethod
    def sigmas(cls, sigmas, smart: bool = True) -> "Unit":
        s = _as_vector(sigmas)
        if bool(jnp.any(s != 1.0)):
            raise InvalidArgumentError(f"Unit sigmas must all be 1, got {s.tolist()}; use Diagonal.sigmas.")
        return cls(sigmas_=s)

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return v

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return v

    def whiten_matrix(self, H: jnp.ndarray) -> jnp.ndarray:
        return H


@dataclass(frozen=True, eq=False, repr=False)
class Constrained(NoiseModel):
    """
    Mixed hard/soft rows.

    Rows with sigma 0 are hard constraints: whitening leaves them untouched
    and ``distance`` weights them by the penalty ``mu``.
    """

    sigmas_: jnp.ndarray
    mu: float = 1000.0

    kind: ClassVar[str] = "constrained"

    @classmethod
    def mixed_sigmas(cls, sigmas, mu: float = 1000.0) -> "Constrained":
        s = _as_vector(sigmas)
        if bool(jnp.any(s < 0.0)):
            raise InvalidArgumentError(f"Constrained sigmas must be non-negative, got {s.tolist()}.")
        return cls(sigmas_=s, mu=float(mu))

    @classmethod
    def all(cls, dim: int, mu: float = 1000.0) -> "Constrained":
        """Every row is a hard constraint."""
        return cls(sigmas_=jnp.zeros((int(dim),)), mu=float(mu))

    @property
    def dim(self) -> int:
        return int(self.sigmas_.shape[0])

    @property
    def is_constrained(self) -> bool:
        return True

    @property
    def constrained_rows(self) -> jnp.ndarray:
        return self.sigmas_ == 0.0

    def _scale(self) -> jnp.ndarray:
        hard = self.constrained_rows
        safe = jnp.where(hard, 1.0, self.sigmas_)
        return jnp.where(hard, 1.0, 1.0 / safe)

    def whiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return v * self._scale()

    def unwhiten(self, v: jnp.ndarray) -> jnp.ndarray:
        return v / self._scale()

    def whiten_matrix(self, H: jnp.ndarray) -> jnp.ndarray:
        return H * self._scale()[:, None]

    def distance(self, v: jnp.ndarray) -> jnp.ndarray:
        w = self.whiten(v)
        weights = jnp.where(self.constrained_rows, self.mu, 1.0)
        return jnp.sum(weights * w * w)

    def unit(self) -> "Constrained":
        """Substitute model for linear factors: sigma 0 on hard rows, 1 elsewhere."""
        return Constrained(
            sigmas_=jnp.where(self.constrained_rows, 0.0, 1.0),
            mu=self.mu,
        )
