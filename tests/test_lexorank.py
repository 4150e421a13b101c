import pytest

from kanban.errors import InvalidArgumentError, KeySpaceExhaustedError
from kanban.lexorank import allocate, spaced_keys, validate_key


def test_empty_container_gets_middle_key():
    assert allocate(None, None) == "i"


def test_key_between_neighbours():
    key = allocate("a", "c")
    assert "a" < key < "c"


def test_key_between_prefix_neighbours():
    key = allocate("a", "a1")
    assert "a" < key < "a1"
    assert not key.endswith("0")


def test_boundary_keys():
    assert allocate(None, "1") < "1"
    assert allocate("z", None) > "z"
    assert allocate(None, "0i") < "0i"


def test_tied_or_reversed_neighbours_have_no_room():
    with pytest.raises(KeySpaceExhaustedError):
        allocate("m", "m")
    with pytest.raises(KeySpaceExhaustedError):
        allocate("n", "m")


def test_resolution_limit():
    with pytest.raises(KeySpaceExhaustedError):
        allocate("a", "a1", max_length=2)
    assert allocate("a", "a1") == "a0i"


def test_repeated_front_inserts_stay_ordered():
    keys = ["i"]
    for _ in range(200):
        keys.insert(0, allocate(None, keys[0]))
    assert keys == sorted(keys)
    assert len(set(keys)) == len(keys)
    for key in keys:
        validate_key(key)


def test_repeated_inserts_between_fixed_neighbours():
    lo, hi = "a", "b"
    for _ in range(100):
        key = allocate(lo, hi)
        assert lo < key < hi
        validate_key(key)
        hi = key


def test_spaced_keys():
    assert spaced_keys(0) == []
    assert spaced_keys(1) == ["i"]
    assert spaced_keys(3) == ["9", "i", "r"]


def test_spaced_keys_for_large_columns():
    keys = spaced_keys(500)
    assert len(keys) == 500
    assert keys == sorted(keys)
    assert len(set(keys)) == 500
    for key in keys:
        validate_key(key)
    for before, after in zip(keys, keys[1:]):
        assert before < allocate(before, after) < after


@pytest.mark.parametrize("key", ["", "A", "a0", "a-b"])
def test_invalid_keys(key):
    with pytest.raises(InvalidArgumentError):
        validate_key(key)
