"""Tests for owner-scoped list query building."""
from datetime import date, datetime, timezone

import pytest

from core.query import (
    PRODUCT_SORT_FIELDS,
    ProductFilters,
    QueryError,
    RecordPage,
    ServiceFilters,
    build_product_query,
    build_service_query,
    escape_like,
    normalize_window,
    parse_sort,
    sql_casefold,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_owner_clause_always_comes_first():
    q = build_product_query("user-1", ProductFilters(search="tv", category="c1", status="expired"), NOW)
    assert q.predicate.clauses[0] == "owner_id = ?"
    assert q.predicate.params[0] == "user-1"


def test_empty_owner_is_rejected():
    with pytest.raises(QueryError):
        build_product_query("", ProductFilters())
    with pytest.raises(QueryError):
        build_service_query("", ServiceFilters())


def test_search_spans_four_columns_case_insensitively():
    q = build_product_query("u", ProductFilters(search="  Sony "), NOW)
    clause = q.predicate.clauses[1]
    for column in ("name", "description", "model", "serial_number"):
        assert f"casefold({column}) LIKE ?" in clause
    assert q.predicate.params[1:] == ["%sony%"] * 4


def test_search_term_is_casefolded_beyond_ascii():
    q = build_product_query("u", ProductFilters(search="ÉCRAN Straße"), NOW)
    assert q.predicate.params[1] == "%écran strasse%"
    assert sql_casefold("Ölfilter") == "ölfilter"
    assert sql_casefold(None) is None


def test_like_wildcards_are_escaped():
    assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


@pytest.mark.parametrize("status, expected", [
    ("expired", [("warranty_expiry_date <= ?", "2025-03-01")]),
    ("expiring", [("warranty_expiry_date > ?", "2025-03-01"),
                  ("warranty_expiry_date <= ?", "2025-03-31")]),
    ("active", [("warranty_expiry_date > ?", "2025-03-31")]),
])
def test_status_filter_ranges(status, expected):
    q = build_product_query("u", ProductFilters(status=status), NOW)
    assert list(zip(q.predicate.clauses[1:], q.predicate.params[1:])) == expected


def test_unknown_status_is_rejected():
    with pytest.raises(QueryError):
        build_product_query("u", ProductFilters(status="lapsed"), NOW)


def test_category_and_product_filters():
    q = build_product_query("u", ProductFilters(category="cat-9"), NOW)
    assert "category_id = ?" in q.predicate.clauses
    assert "cat-9" in q.predicate.params

    s = build_service_query("u", ServiceFilters(product="p-1"))
    assert s.predicate.clauses == ["owner_id = ?", "product_id = ?"]
    assert s.predicate.params == ["u", "p-1"]


@pytest.mark.parametrize("page, limit, expected", [
    (None, None, (1, 10)),
    (0, 0, (1, 10)),
    (-2, -5, (1, 10)),
    (3, 25, (3, 25)),
    (2, 1000, (2, 100)),
])
def test_normalize_window(page, limit, expected):
    assert normalize_window(page, limit) == expected


def test_offset_follows_page_and_limit():
    q = build_product_query("u", ProductFilters(page=3, limit=20), NOW)
    assert (q.page, q.limit, q.offset) == (3, 20, 40)


def test_sort_parsing_adds_stable_tie_breaker():
    assert parse_sort("", PRODUCT_SORT_FIELDS, ("created_at", "DESC")) == "created_at DESC, id DESC"
    assert parse_sort("name", PRODUCT_SORT_FIELDS, ("created_at", "DESC")) == "name ASC, id ASC"
    assert parse_sort("warrantyExpiryDate:desc", PRODUCT_SORT_FIELDS, ("created_at", "DESC")) == (
        "warranty_expiry_date DESC, id DESC"
    )


def test_unknown_sort_field_is_rejected():
    with pytest.raises(QueryError):
        parse_sort("password:asc", PRODUCT_SORT_FIELDS, ("created_at", "DESC"))


def test_default_service_sort_is_newest_service_first():
    assert build_service_query("u").order_by == "service_date DESC, id DESC"


def test_record_page_counts_pages():
    page = RecordPage(items=[], total=21, page=1, limit=10)
    assert page.pages == 3
    assert page.pagination() == {"page": 1, "limit": 10, "total": 21, "pages": 3}
    assert RecordPage(items=[], total=0, page=1, limit=10).pages == 0
