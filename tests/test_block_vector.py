from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import jax.numpy as jnp
import pytest

from exprfactor.core.errors import DuplicateKeyError, KeyNotFoundError, StructureMismatchError
from exprfactor.linear.block_vector import BlockVector


def _example() -> BlockVector:
    v = BlockVector()
    v.insert(0, jnp.array([1.0, 2.0, 3.0]))
    v.insert(1, jnp.array([4.0, 5.0]))
    return v


def test_concrete_scenario():
    """
    {0: [1,2,3], 1: [4,5]}: dims, size, flattening and scaling.
    """
    v = _example()

    assert v.dim(0) == 3
    assert v.dim(1) == 2
    assert v.size() == 2
    assert len(v) == 2
    assert jnp.allclose(v.vector(), jnp.array([1.0, 2.0, 3.0, 4.0, 5.0]))

    scaled = v.scale(2.0)
    assert jnp.allclose(scaled[0], jnp.array([2.0, 4.0, 6.0]))
    assert jnp.allclose(scaled[1], jnp.array([8.0, 10.0]))
    # original untouched
    assert jnp.allclose(v[0], jnp.array([1.0, 2.0, 3.0]))


def test_insertion_order_does_not_change_flattening():
    a = BlockVector()
    a.insert(1, jnp.array([4.0, 5.0]))
    a.insert(0, jnp.array([1.0, 2.0, 3.0]))

    assert a.keys() == [0, 1]
    assert jnp.allclose(a.vector(), _example().vector())


def test_zero_has_same_structure():
    v = _example()
    z = BlockVector.zero(v)

    assert z.has_same_structure(v)
    for _, block in z.items():
        assert jnp.all(block == 0.0)


def test_add_subtract_roundtrip_and_commutativity():
    a = _example()
    b = BlockVector({0: jnp.array([0.5, -1.0, 2.0]), 1: jnp.array([3.0, -7.0])})

    assert ((a + b) - b).equals(a, tol=1e-6)
    assert (a + b).equals(b + a, tol=1e-6)


def test_dot_is_linear():
    a = _example()
    b = BlockVector({0: jnp.array([0.5, -1.0, 2.0]), 1: jnp.array([3.0, -7.0])})
    c = BlockVector({0: jnp.array([1.0, 1.0, -1.0]), 1: jnp.array([0.25, 2.0])})

    lhs = float((a + b).dot(c))
    rhs = float(a.dot(c)) + float(b.dot(c))
    assert lhs == pytest.approx(rhs, rel=1e-5, abs=1e-5)


def test_norms():
    v = _example()
    assert float(v.squared_norm()) == pytest.approx(55.0, rel=1e-6)
    assert float(v.norm()) == pytest.approx(55.0 ** 0.5, rel=1e-6)
    assert float(v.dot(v)) == pytest.approx(55.0, rel=1e-6)


def test_vector_total_length_and_subset_order():
    v = _example()
    v.insert(7, jnp.array([6.0]))

    assert v.vector().shape[0] == sum(v.dim(k) for k in v.keys())
    assert jnp.allclose(v.vector([7, 0]), jnp.array([6.0, 1.0, 2.0, 3.0]))
    assert jnp.allclose(v.vector([1]), jnp.array([4.0, 5.0]))

    with pytest.raises(KeyNotFoundError):
        v.vector([0, 3])


def test_vector_with_dims_checks_dimensions():
    v = _example()
    assert jnp.allclose(v.vector_with_dims({1: 2}), jnp.array([4.0, 5.0]))

    with pytest.raises(StructureMismatchError):
        v.vector_with_dims({0: 2})


def test_insert_at_duplicate():
    v = BlockVector()
    v.insert(3, jnp.array([1.0, 2.0]))

    assert jnp.array_equal(v.at(3), jnp.array([1.0, 2.0]))
    assert v.exists(3)
    assert 3 in v

    with pytest.raises(DuplicateKeyError):
        v.insert(3, jnp.array([9.0, 9.0]))
    # failed insert leaves the block alone
    assert jnp.array_equal(v[3], jnp.array([1.0, 2.0]))


def test_try_insert():
    v = BlockVector()
    assert v.try_insert(0, jnp.array([1.0]))
    assert not v.try_insert(0, jnp.array([2.0]))
    assert jnp.allclose(v[0], jnp.array([1.0]))


def test_concurrent_inserts_of_distinct_keys():
    """Threads inserting their own keys all land in the vector."""
    v = BlockVector()
    n = 32

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda k: v.insert(k, jnp.full((2,), float(k))), range(n)))

    assert v.size() == n
    assert v.keys() == list(range(n))
    assert jnp.array_equal(v.at(7), jnp.array([7.0, 7.0]))


def test_concurrent_try_insert_of_same_key_has_one_winner():
    v = BlockVector()
    n = 16
    barrier = threading.Barrier(n)

    def attempt(i: int) -> bool:
        barrier.wait()
        return v.try_insert(5, jnp.array([float(i)]))

    with ThreadPoolExecutor(max_workers=n) as pool:
        results = list(pool.map(attempt, range(n)))

    assert results.count(True) == 1
    winner = results.index(True)
    assert v.size() == 1
    assert jnp.array_equal(v.at(5), jnp.array([float(winner)]))


def test_at_missing_key():
    v = _example()
    with pytest.raises(KeyNotFoundError):
        v.at(42)
    with pytest.raises(KeyNotFoundError):
        v.dim(42)
    assert not v.exists(42)


def test_erase():
    v = _example()
    v.erase(0)

    assert not v.exists(0)
    assert v.size() == 1

    with pytest.raises(KeyNotFoundError):
        v.erase(0)


def test_update_overwrites_only_existing_keys():
    v = _example()
    v.insert(2, jnp.array([9.0]))

    v.update(BlockVector({1: jnp.array([-1.0, -2.0])}))
    assert jnp.allclose(v[1], jnp.array([-1.0, -2.0]))
    assert jnp.allclose(v[0], jnp.array([1.0, 2.0, 3.0]))
    assert jnp.allclose(v[2], jnp.array([9.0]))

    with pytest.raises(KeyNotFoundError):
        v.update(BlockVector({0: jnp.zeros(3), 5: jnp.zeros(1)}))
    # nothing written when a key is missing
    assert jnp.allclose(v[0], jnp.array([1.0, 2.0, 3.0]))
    assert not v.exists(5)


def test_indexed_write():
    v = _example()
    v[1] = jnp.array([8.0, 9.0])
    assert jnp.allclose(v[1], jnp.array([8.0, 9.0]))

    with pytest.raises(StructureMismatchError):
        v[1] = jnp.array([1.0, 2.0, 3.0])
    with pytest.raises(KeyNotFoundError):
        v[5] = jnp.array([1.0])


def test_from_flat_slices_in_key_order():
    x = jnp.arange(6.0)
    v = BlockVector.from_flat(x, {4: 1, 2: 3, 9: 2})

    assert v.keys() == [2, 4, 9]
    assert jnp.allclose(v[2], jnp.array([0.0, 1.0, 2.0]))
    assert jnp.allclose(v[4], jnp.array([3.0]))
    assert jnp.allclose(v[9], jnp.array([4.0, 5.0]))
    assert jnp.allclose(v.vector(), x)

    with pytest.raises(StructureMismatchError):
        BlockVector.from_flat(jnp.arange(5.0), {0: 3, 1: 3})


def test_structure_mismatch_detected():
    a = _example()
    b = BlockVector({0: jnp.zeros(3), 1: jnp.zeros(3)})
    c = BlockVector({0: jnp.zeros(3)})

    assert not a.has_same_structure(b)
    assert not a.has_same_structure(c)

    with pytest.raises(StructureMismatchError):
        a + b
    with pytest.raises(StructureMismatchError):
        a.dot(c)
    with pytest.raises(StructureMismatchError):
        a.add_in_place(c)


def test_in_place_operators():
    a = _example()
    b = BlockVector({0: jnp.ones(3), 1: jnp.ones(2)})

    a += b
    assert jnp.allclose(a.vector(), jnp.array([2.0, 3.0, 4.0, 5.0, 6.0]))
    a -= b
    assert jnp.allclose(a.vector(), jnp.array([1.0, 2.0, 3.0, 4.0, 5.0]))
    a *= 0.5
    assert jnp.allclose(a.vector(), jnp.array([0.5, 1.0, 1.5, 2.0, 2.5]))

    neg = -a
    assert jnp.allclose(neg.vector(), -a.vector())
    assert jnp.allclose((3.0 * a).vector(), (a * 3.0).vector())


def test_combine_and_add_or_insert():
    first = BlockVector({0: jnp.array([1.0])})
    second = BlockVector({1: jnp.array([2.0, 3.0])})

    both = BlockVector.combine(first, second)
    assert both.keys() == [0, 1]
    assert jnp.allclose(both.vector(), jnp.array([1.0, 2.0, 3.0]))

    with pytest.raises(DuplicateKeyError):
        BlockVector.combine(first, both)

    acc = BlockVector({0: jnp.array([1.0])})
    acc.add_or_insert(both)
    assert jnp.allclose(acc[0], jnp.array([2.0]))
    assert jnp.allclose(acc[1], jnp.array([2.0, 3.0]))


def test_set_zero_and_copy_independence():
    v = _example()
    w = v.copy()
    v.set_zero()

    assert float(v.norm()) == 0.0
    assert jnp.allclose(w.vector(), jnp.array([1.0, 2.0, 3.0, 4.0, 5.0]))


def test_equals_and_repr():
    a = _example()
    b = _example()
    b[1] = jnp.array([4.0, 5.0 + 1e-12])

    assert a.equals(b, tol=1e-6)
    assert a == _example()
    assert not a.equals(BlockVector({0: jnp.zeros(3)}))
    assert "BlockVector" in repr(a)
    assert "2 elements" in str(a)
