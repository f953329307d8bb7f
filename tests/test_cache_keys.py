import datetime
from decimal import Decimal

from pydantic_core import PydanticUndefined

from kiln.cache import make_cache_key


def test_scalar_tags():
    """Every scalar is prefixed with its type tag"""
    assert make_cache_key("users", "find_by_id", 1) == "s:users:s:find_by_id:n:1"
    assert make_cache_key(True, False) == "b:true:b:false"
    assert make_cache_key(None) == "null"
    assert make_cache_key(PydanticUndefined) == "undefined"
    assert make_cache_key(1.5) == "n:1.5"


def test_string_and_number_never_collide():
    assert make_cache_key("1") != make_cache_key(1)
    assert make_cache_key(True) != make_cache_key(1)
    assert make_cache_key(None) != make_cache_key("null")


def test_object_key_order_is_irrelevant():
    a = make_cache_key("users", {"name": "x", "age": 3, "meta": {"b": 1, "a": 2}})
    b = make_cache_key("users", {"meta": {"a": 2, "b": 1}, "age": 3, "name": "x"})
    assert a == b


def test_array_order_is_significant():
    assert make_cache_key([1, 2]) != make_cache_key([2, 1])
    assert make_cache_key([1, 2]) == make_cache_key((1, 2))


def test_large_integers_are_tagged():
    big = 2**60
    assert make_cache_key(big) == f"bigint:{big}"
    assert make_cache_key([big]) == f"a:[bigint:{big}]"
    assert make_cache_key(2**53) == f"n:{2**53}"


def test_nested_values_are_typed():
    key = make_cache_key({"ids": ["1", 1, None]})
    assert key == 'o:{"ids":["1",1,null]}'


def test_temporal_and_decimal_values():
    when = datetime.date(2024, 1, 2)
    assert make_cache_key({"d": when}) == 'o:{"d":date:2024-01-02}'
    assert make_cache_key({"d": Decimal("1.10")}) != make_cache_key({"d": "1.10"})


def test_equal_inputs_give_identical_keys():
    parts = ("posts", "find", {"user_id": 1, "tags": ["a", "b"]})
    assert make_cache_key(*parts) == make_cache_key(*parts)


def test_mapping_keys_keep_their_type():
    assert make_cache_key({1: "a"}) != make_cache_key({"1": "a"})
    assert make_cache_key({1: "a"}) == "o:{1:\"a\"}"
    assert make_cache_key({None: 1}) != make_cache_key({"null": 1})


def test_sets_ignore_insertion_order():
    first = {"beta", "alpha", "gamma"}
    second = set()
    for item in ("gamma", "alpha", "beta"):
        second.add(item)
    assert make_cache_key("users", "find", {"name": first}) == make_cache_key(
        "users", "find", {"name": second}
    )
    assert make_cache_key(frozenset([2, 1])) == "set:[1,2]"
    assert make_cache_key({"ids": {1, 2}}) != make_cache_key({"ids": [1, 2]})
