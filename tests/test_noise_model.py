from __future__ import annotations

import jax.numpy as jnp
import pytest

from exprfactor.core.errors import InvalidArgumentError
from exprfactor.linear.block_matrix import BlockMatrix
from exprfactor.linear.noise_model import Constrained, Diagonal, Gaussian, Isotropic, Unit


def test_isotropic_whitening_scales_by_inverse_sigma():
    model = Isotropic.sigma(3, 0.5)
    v = jnp.array([1.0, -2.0, 0.5])

    assert model.dim == 3
    assert not model.is_constrained
    assert model.kind == "isotropic"
    assert jnp.allclose(model.whiten(v), 2.0 * v)
    assert jnp.allclose(model.unwhiten(model.whiten(v)), v)
    assert float(model.distance(v)) == pytest.approx(4.0 * 5.25, rel=1e-5)


def test_diagonal_whiten_system_scales_rows_jointly():
    model = Diagonal.sigmas(jnp.array([1.0, 0.1]))
    ab = BlockMatrix([2], rows=2)
    ab.set_block(0, jnp.array([[1.0, 2.0], [3.0, 4.0]]))
    ab.set_rhs(jnp.array([1.0, 1.0]))

    model.whiten_system(ab)

    expected = jnp.array([[1.0, 2.0, 1.0], [30.0, 40.0, 10.0]])
    assert jnp.allclose(ab.matrix, expected, atol=1e-4)


def test_diagonal_factories():
    v = Diagonal.variances(jnp.array([4.0, 9.0]))
    assert jnp.allclose(v.whiten(jnp.array([2.0, 3.0])), jnp.array([1.0, 1.0]))

    p = Diagonal.precisions(jnp.array([4.0, 1.0]))
    assert jnp.allclose(p.whiten(jnp.array([1.0, 1.0])), jnp.array([2.0, 1.0]))

    with pytest.raises(InvalidArgumentError):
        Diagonal.sigmas(jnp.array([1.0, -1.0]))
    with pytest.raises(InvalidArgumentError):
        Diagonal.sigmas(jnp.array([1.0, 0.0]), smart=False)
    with pytest.raises(InvalidArgumentError):
        Isotropic.sigma(2, 0.0)


def test_smart_diagonal_with_zero_sigma_is_constrained():
    model = Diagonal.sigmas(jnp.array([0.0, 2.0]))
    assert isinstance(model, Constrained)
    assert model.is_constrained


def test_gaussian_covariance_whitening_gives_identity_covariance():
    S = jnp.array([[4.0, 1.0], [1.0, 2.0]])
    model = Gaussian.covariance(S)

    # R S Rᵀ = I
    R = model.R
    assert jnp.allclose(R @ S @ R.T, jnp.eye(2), atol=1e-5)
    assert jnp.allclose(R, jnp.tril(R), atol=1e-6)

    v = jnp.array([1.0, -1.0])
    assert float(model.distance(v)) == pytest.approx(float(v @ jnp.linalg.solve(S, v)), rel=1e-5)
    assert jnp.allclose(model.unwhiten(model.whiten(v)), v, atol=1e-5)


def test_gaussian_information_and_shape_check():
    M = jnp.array([[2.0, 0.5], [0.5, 1.0]])
    model = Gaussian.information(M)
    assert jnp.allclose(model.R.T @ model.R, M, atol=1e-5)
    assert jnp.array_equal(model.R, jnp.triu(model.R))

    with pytest.raises(InvalidArgumentError):
        Gaussian.sqrt_information(jnp.ones((2, 3)))


def test_unit_is_identity():
    model = Unit.create(4)
    H = jnp.arange(8.0).reshape(4, 2)
    assert model.dim == 4
    assert jnp.array_equal(model.whiten_matrix(H), H)


def test_unit_factories_reject_non_unit_sigma():
    """Unit whitening is the identity, so only sigma 1 is representable."""
    assert jnp.array_equal(Unit.sigma(2, 1.0).whiten(jnp.ones(2)), jnp.ones(2))
    assert Unit.variances(jnp.ones(3)).dim == 3

    with pytest.raises(InvalidArgumentError):
        Unit.sigma(2, 2.0)
    with pytest.raises(InvalidArgumentError):
        Unit.variance(2, 4.0)
    with pytest.raises(InvalidArgumentError):
        Unit.sigmas(jnp.array([1.0, 2.0]))
    with pytest.raises(InvalidArgumentError):
        Unit.precisions(jnp.array([4.0, 4.0]))


def test_isotropic_sigmas_must_be_uniform():
    model = Isotropic.sigmas(jnp.array([0.5, 0.5]))
    assert model.kind == "isotropic"
    assert jnp.allclose(model.whiten(jnp.ones(2)), jnp.array([2.0, 2.0]))

    with pytest.raises(InvalidArgumentError):
        Isotropic.sigmas(jnp.array([1.0, 2.0]))

    # Non-uniform sigmas belong to Diagonal
    assert Diagonal.sigmas(jnp.array([1.0, 2.0])).kind == "diagonal"


def test_constrained_leaves_hard_rows_unscaled():
    model = Constrained.mixed_sigmas(jnp.array([0.0, 0.5]), mu=100.0)
    H = jnp.array([[1.0, 2.0], [3.0, 4.0]])

    assert model.is_constrained
    assert jnp.allclose(model.whiten_matrix(H), jnp.array([[1.0, 2.0], [6.0, 8.0]]))

    v = jnp.array([1.0, 1.0])
    # hard row weighted by mu, soft row whitened
    assert float(model.distance(v)) == pytest.approx(100.0 + 4.0, rel=1e-5)


def test_constrained_unit_substitute():
    model = Constrained.mixed_sigmas(jnp.array([0.0, 0.5, 3.0]))
    unit = model.unit()

    assert unit.is_constrained
    assert jnp.allclose(unit.sigmas_, jnp.array([0.0, 1.0, 1.0]))
    assert unit.mu == model.mu

    all_hard = Constrained.all(2)
    assert jnp.all(all_hard.constrained_rows)

    with pytest.raises(InvalidArgumentError):
        Constrained.mixed_sigmas(jnp.array([-1.0]))
