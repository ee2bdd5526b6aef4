from __future__ import annotations

import jax.numpy as jnp
import pytest

from exprfactor.core.errors import InvalidArgumentError, KeyNotFoundError
from exprfactor.linear.block_matrix import BlockMatrix, JacobianMap


def test_layout_has_trailing_rhs_column():
    ab = BlockMatrix([3, 2], rows=4)

    assert ab.rows == 4
    assert ab.cols == 3 + 2 + 1
    assert ab.n_blocks == 3
    assert [ab.width(i) for i in range(3)] == [3, 2, 1]
    assert [ab.offset(i) for i in range(3)] == [0, 3, 5]
    assert jnp.all(ab.matrix == 0.0)


def test_blocks_and_rhs_write_to_their_columns():
    ab = BlockMatrix([2, 1], rows=2)
    ab.set_block(0, jnp.eye(2))
    ab.add_to_block(1, jnp.array([[1.0], [2.0]]))
    ab.add_to_block(1, jnp.array([[1.0], [2.0]]))
    ab.set_rhs(jnp.array([5.0, 6.0]))

    expected = jnp.array(
        [
            [1.0, 0.0, 2.0, 5.0],
            [0.0, 1.0, 4.0, 6.0],
        ]
    )
    assert jnp.allclose(ab.matrix, expected)
    assert jnp.allclose(ab.rhs, jnp.array([5.0, 6.0]))
    assert jnp.allclose(ab.block(-1)[:, 0], ab.rhs)

    ab.set_zero()
    assert jnp.all(ab.matrix == 0.0)


def test_block_index_out_of_range():
    ab = BlockMatrix([1], rows=1)
    with pytest.raises(IndexError):
        ab.block(2)


def test_negative_width_rejected():
    with pytest.raises(InvalidArgumentError):
        BlockMatrix([2, -1], rows=3)


def test_jacobian_map_routes_by_key():
    """
    Keys map to blocks by position, whatever their numeric value.
    """
    ab = BlockMatrix([1, 2], rows=2)
    jm = JacobianMap([10, 3], ab)

    jm.add(3, jnp.ones((2, 2)))
    jm.add(10, 2.0 * jnp.ones((2, 1)))

    assert jnp.allclose(jm[10], 2.0 * jnp.ones((2, 1)))
    assert jnp.allclose(ab.block(1), jnp.ones((2, 2)))
    assert 3 in jm and 4 not in jm
    assert jm.keys() == [10, 3]

    with pytest.raises(KeyNotFoundError):
        jm.add(4, jnp.ones((2, 1)))


def test_jacobian_map_key_count_must_match():
    ab = BlockMatrix([1, 2], rows=2)
    with pytest.raises(InvalidArgumentError):
        JacobianMap([0], ab)
