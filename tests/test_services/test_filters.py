# ABOUTME: Unit tests for filter parsing and compilation
# ABOUTME: Covers JSON/flat parsing, predicate splitting, value coercion, and compiled criteria

from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from apiscope.services.authorization import Ability
from apiscope.services.filters import (
    FilterCompiler, coerce, parse_filter, parse_flat, split_predicate, truthy,
)
from apiscope.services.resources import registry
from tests.sample_models import WIDGETS


def _admin():
    api_key = MagicMock(is_admin=True, permission_rules=[])
    return Ability(api_key)


def _reader(**rule):
    api_key = MagicMock(is_admin=False)
    api_key.permission_rules = [MagicMock(action="read", resource="widgets",
                                          conditions=rule.get("conditions"),
                                          columns=rule.get("columns"),
                                          includes=rule.get("includes"))]
    return Ability(api_key)


def _sql(clause):
    return str(clause.compile(compile_kwargs={"literal_binds": True}))


# =============================================================================
# parse_filter()
# =============================================================================

def test_parse_filter_empty():
    assert parse_filter(None).source == "empty"
    assert parse_filter("   ").tree == {}


def test_parse_filter_prefers_json():
    result = parse_filter('{"status_eq": "open", "or": [{"id_eq": 1}]}')

    assert result.source == "json"
    assert result.tree == {"status_eq": "open", "or": [{"id_eq": 1}]}
    assert result.error is None


def test_parse_filter_falls_back_to_flat_form():
    result = parse_filter("status_eq=open&id_in=1&id_in=2")

    assert result.source == "flat"
    assert result.tree == {"status_eq": "open", "id_in": ["1", "2"]}
    assert result.error is not None


def test_parse_filter_json_non_object_is_read_as_flat():
    result = parse_filter("[1, 2]")

    assert result.source == "flat"


def test_parse_flat_keeps_blank_values():
    assert parse_flat("name_eq=&status_eq=open") == {"name_eq": "", "status_eq": "open"}


# =============================================================================
# split_predicate(), truthy(), coerce()
# =============================================================================

@pytest.mark.parametrize("key,expected", [
    ("name_eq", ("name", "eq")),
    ("owner_name_not_eq", ("owner_name", "not_eq")),
    ("status_not_in", ("status", "not_in")),
    ("created_at_gteq", ("created_at", "gteq")),
    ("deleted_at_not_null", ("deleted_at", "not_null")),
    ("name_not_cont", ("name", "not_cont")),
    ("is_public_true", ("is_public", "true")),
])
def test_split_predicate(key, expected):
    assert split_predicate(key) == expected


def test_split_predicate_without_suffix():
    assert split_predicate("name") is None
    assert split_predicate("_eq") is None


def test_truthy():
    assert truthy("1")
    assert truthy("Yes")
    assert truthy(True)
    assert not truthy("0")
    assert not truthy("")


def test_coerce_scalars():
    assert coerce("42", int) == 42
    assert coerce(3.0, int) == 3
    assert coerce("2.5", float) == 2.5
    assert coerce("1.10", Decimal) == Decimal("1.10")
    assert coerce("false", bool) is False
    assert coerce("2024-01-02", date) == date(2024, 1, 2)
    assert coerce("2024-01-02T03:04:05", datetime) == datetime(2024, 1, 2, 3, 4, 5)
    assert coerce(5, str) == "5"
    assert coerce(None, int) is None
    assert coerce("as-is", None) == "as-is"
    assert coerce(str(2 ** 63 - 1), int) == 2 ** 63 - 1


@pytest.mark.parametrize("value,python_type", [
    ("abc", int),
    (True, int),
    (1.5, int),
    ("maybe", bool),
    ("not a date", date),
    ({"a": 1}, str),
    ("abc", Decimal),
    (2 ** 63, int),
    ("-9223372036854775809", int),
])
def test_coerce_rejects_bad_values(value, python_type):
    with pytest.raises(ValueError):
        coerce(value, python_type)


# =============================================================================
# FilterCompiler
# =============================================================================

def test_compile_simple_predicates():
    clauses = FilterCompiler(WIDGETS, _admin(), registry).compile({"status_eq": "open", "price_gt": "10"})

    assert len(clauses) == 2
    assert _sql(clauses[0]) == "widgets.status = 'open'"
    assert _sql(clauses[1]) == "widgets.price > 10.0"


def test_compile_or_group_and_combinator():
    grouped = FilterCompiler(WIDGETS, _admin(), registry).compile({"or": [{"id_eq": 1}, {"id_eq": 2}]})
    combined = FilterCompiler(WIDGETS, _admin(), registry).compile({"id_eq": 1, "status_eq": "open", "m": "or"})

    assert len(grouped) == 1
    assert _sql(grouped[0]) == "widgets.id = 1 OR widgets.id = 2"
    assert len(combined) == 1
    assert " OR " in _sql(combined[0])


def test_compile_matches_hidden_columns_and_drops_unknown_attributes():
    ability = _reader(columns=["id", "status"])
    clauses = FilterCompiler(WIDGETS, ability, registry).compile({
        "secret_code_eq": "S-1",
        "nope_eq": 1,
        "status": "open",
        "status_eq": "open",
    })

    assert [_sql(clause) for clause in clauses] == [
        "widgets.secret_code = 'S-1'",
        "widgets.status = 'open'",
    ]


def test_compile_drops_pattern_predicates_on_non_text_columns():
    clauses = FilterCompiler(WIDGETS, _admin(), registry).compile({"price_cont": "1", "id_start": "2"})

    assert clauses == []


def test_compile_association_predicate_uses_exists():
    clauses = FilterCompiler(WIDGETS, _admin(), registry).compile({"owner_region_eq": "eu", "parts_kind_in": "metal"})

    assert len(clauses) == 2
    assert "EXISTS" in _sql(clauses[0])
    assert "owners.region = 'eu'" in _sql(clauses[0])
    assert "parts.kind IN ('metal')" in _sql(clauses[1])


def test_compile_ignores_non_dict_trees():
    assert FilterCompiler(WIDGETS, _admin(), registry).compile(["status_eq"]) == []
    assert FilterCompiler(WIDGETS, _admin(), registry).compile({"not": "x"}) == []
