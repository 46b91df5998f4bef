import pytest

from errors import InvalidQuery
from queries import (
    MAX_PAGE,
    Filter,
    clean_distinct,
    is_safe_path,
    page_meta,
    parse_limit,
    parse_page,
    translate_params,
    validate_path,
)


@pytest.mark.parametrize("path", ["brand", "specs.connector", "price.eur", "weight_g", "a-b.c_1"])
def test_safe_paths_accepted(path):
    assert is_safe_path(path)
    assert validate_path(path) == path


@pytest.mark.parametrize("path", ["$where", "a;b", "a b", "", "specs.$gt", "a\n", None, 3])
def test_unsafe_paths_rejected(path):
    assert not is_safe_path(path)
    with pytest.raises(InvalidQuery):
        validate_path(path)


def test_membership_and_range_become_store_conditions():
    flt = Filter.from_mapping({
        "brand": {"$in": ["TBS", "GEPRC"]},
        "price.eur": {"$gte": 10, "$lte": "50.5"},
        "price.currency": "EUR",
    })
    assert flt.to_query("motors") == {
        "category": "motors",
        "brand": {"$in": ["TBS", "GEPRC"]},
        "price.eur": {"$gte": 10, "$lte": 50.5},
        "price.currency": {"$in": ["EUR"]},
    }


def test_range_keeps_only_supplied_bounds():
    flt = Filter().add_range("kv", min=1800).add_range("weight_g", max="40")
    assert flt.conditions() == {"kv": {"$gte": 1800}, "weight_g": {"$lte": 40.0}}


def test_empty_constraints_are_dropped():
    flt = Filter.from_mapping({
        "brand": {"$in": []},
        "kv": {"$gte": "abc", "$lte": None},
        "weight_g": {},
    })
    assert flt.is_empty()
    assert flt.to_query("motors") == {"category": "motors"}


@pytest.mark.parametrize("mapping", [
    {"$where": "sleep(1000)"},
    {"a;b": {"$in": [1]}},
    {"brand": {"$regex": ".*"}},
    {"brand": {"$in": "TBS"}},
    {"$or": [{"$where": "1"}]},
    {"$or": []},
])
def test_injection_attempts_raise(mapping):
    with pytest.raises(InvalidQuery):
        Filter.from_mapping(mapping)


def test_builder_rejects_unsafe_path():
    with pytest.raises(InvalidQuery, match=r"\$where"):
        Filter().add_membership("$where", ["x"])


def test_or_group_is_validated_and_emitted():
    flt = Filter.from_mapping({"$or": [{"brand": "TBS"}, {"kv": {"$gte": 2000}}]})
    assert flt.to_query("motors") == {
        "category": "motors",
        "$or": [{"brand": {"$in": ["TBS"]}}, {"kv": {"$gte": 2000}}],
    }


def test_category_constraint_cannot_be_overridden():
    query = Filter.from_mapping({"category": "frames"}).to_query("motors")
    assert query == {"$and": [{"category": "motors"}, {"category": {"$in": ["frames"]}}]}


def test_query_requires_category():
    with pytest.raises(InvalidQuery):
        Filter().to_query("  ")


def test_from_json_rejects_malformed_filter():
    with pytest.raises(InvalidQuery, match="JSON"):
        Filter.from_json("{brand:")
    with pytest.raises(InvalidQuery):
        Filter.from_json("[1, 2]")
    assert Filter.from_json("").is_empty()


def test_translate_params():
    query = translate_params({
        "page": "2",
        "limit": "10",
        "brand": "TBS, GEPRC,",
        "active": "TRUE",
        "Name": "geprc",
        "model": "Ethix",
        "variant": "   ",
    })
    assert query == {
        "brand": {"$in": ["TBS", "GEPRC"]},
        "active": True,
        "name": {"$regex": "geprc", "$options": "i"},
        "model": "Ethix",
    }


def test_translate_params_escapes_name_regex():
    assert translate_params({"name": "a.b"})["name"]["$regex"] == r"a\.b"


def test_translate_params_only_commas_is_skipped():
    assert translate_params({"brand": ", ,"}) == {}


def test_translate_params_rejects_unsafe_key():
    with pytest.raises(InvalidQuery):
        translate_params({"$where": "1"})


def test_page_meta():
    meta = page_meta(3, 24, 50)
    assert meta["totalPages"] == 3
    assert meta["hasNextPage"] is False
    assert meta["hasPrevPage"] is True
    assert meta["prevPage"] == 2
    assert meta["nextPage"] is None


def test_page_meta_with_no_documents():
    meta = page_meta(1, 24, 0)
    assert meta["totalPages"] == 1
    assert not meta["hasPrevPage"] and not meta["hasNextPage"]


@pytest.mark.parametrize("raw,expected", [(None, 24), ("", 24), ("0", 1), ("500", 200), ("x", 24), ("12", 12)])
def test_parse_limit(raw, expected):
    assert parse_limit(raw) == expected


@pytest.mark.parametrize("raw,expected", [
    (None, 1), ("-3", 1), ("4", 4), ("abc", 1), ("99999999999999999999", MAX_PAGE),
])
def test_parse_page(raw, expected):
    assert parse_page(raw) == expected


def test_clean_distinct_sorts_and_drops_nulls():
    assert clean_distinct(["b", None, 3, "a", 1.5, True, "a"]) == [1.5, 3, "a", "b", True]
