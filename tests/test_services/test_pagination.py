# ABOUTME: Unit tests for the pagination engine
# ABOUTME: Covers page link rewriting, per-page clamping, and page arithmetic against a real plan

from unittest.mock import MagicMock

from apiscope.context import RequestContext
from apiscope.services.authorization import Ability
from apiscope.services.injection_guard import guard_filter
from apiscope.services.pagination import PageResult, clamp_per_page, page_url, paginate, parse_page
from apiscope.services.query_compiler import build_projection, compile_plan
from apiscope.services.resources import registry
from tests.conftest import seed_widgets
from tests.sample_models import WIDGETS


def test_page_url_replaces_only_page():
    url = "http://api.example.com/widgets?q=%7B%22status_eq%22%3A%22open%22%7D&page=2&select=id,status"

    assert page_url(url, 1) == "http://api.example.com/widgets?q=%7B%22status_eq%22%3A%22open%22%7D&page=1&select=id,status"


def test_page_url_appends_missing_page():
    assert page_url("http://h/widgets", 2) == "http://h/widgets?page=2"
    assert page_url("http://h/widgets?sort=id+desc", 3) == "http://h/widgets?sort=id+desc&page=3"


def test_page_url_leaves_similar_names_alone():
    url = "http://h/widgets?per_page=2&page=5&xpage=9"

    assert page_url(url, 4) == "http://h/widgets?per_page=2&page=4&xpage=9"


def test_page_url_collapses_repeated_page():
    assert page_url("http://h/w?page=1&a=b&page=7", 2) == "http://h/w?page=2&a=b"


def test_clamp_per_page():
    assert clamp_per_page(None, 100, 1000) == 100
    assert clamp_per_page(0, 100, 1000) == 1
    assert clamp_per_page(-5, 100, 1000) == 1
    assert clamp_per_page(25, 100, 1000) == 25
    assert clamp_per_page(5000, 100, 1000) == 1000
    assert clamp_per_page("25", 100, 1000) == 25
    assert clamp_per_page("many", 100, 1000) == 100


def test_parse_page():
    assert parse_page(None) == 1
    assert parse_page("3") == 3
    assert parse_page(" 2 ") == 2
    assert parse_page("0") == 1
    assert parse_page("-4") == 1
    assert parse_page("abc") == 1
    assert parse_page("2.5") == 1


def _plan():
    ctx = RequestContext(
        request_uuid="r-1",
        url="http://h/widgets",
        api_key=None,
        ability=Ability(MagicMock(is_admin=True), rules=[]),
        registry=registry,
    )
    return compile_plan(ctx, WIDGETS, guard_filter({}), build_projection(ctx, WIDGETS, "id"))


def test_paginate_middle_page(db_session):
    seed_widgets(widget_count=7)

    result = paginate(db_session, _plan(), 2, 3, "http://h/widgets?per_page=3&page=2")

    assert [row["id"] for row in result.records] == [4, 5, 6]
    assert result.total == 7
    assert result.total_pages == 3
    assert result.offset == 3
    assert result.out_of_bounds is False
    assert result.previous_page == "http://h/widgets?per_page=3&page=1"
    assert result.next_page == "http://h/widgets?per_page=3&page=3"
    assert result.last_page is False


def test_paginate_exact_multiple(db_session):
    seed_widgets(widget_count=6)

    result = paginate(db_session, _plan(), 2, 3, "http://h/widgets")

    assert result.total_pages == 2
    assert result.last_page is True
    assert result.next_page is None


def test_paginate_past_the_end(db_session):
    seed_widgets(widget_count=3)

    result = paginate(db_session, _plan(), 4, 3, "http://h/widgets?page=4")

    assert result.records == []
    assert result.out_of_bounds is True
    assert result.total == 3
    assert result.previous_page == "http://h/widgets?page=3"
    assert result.next_page is None


def test_paginate_clamps_page_below_one(db_session):
    seed_widgets(widget_count=3)

    result = paginate(db_session, _plan(), -2, 10, "http://h/widgets")

    assert result.page == 1
    assert result.offset == 0
    assert result.previous_page is None
    assert len(result.records) == 3


def test_meta_keys():
    result = PageResult(records=[], total=0, total_pages=0, page=1, per_page=10, offset=0, out_of_bounds=True)

    assert set(result.meta()) == {
        "total", "total_pages", "last_page", "previous_page", "next_page",
        "out_of_bounds", "offset", "page", "per_page",
    }
