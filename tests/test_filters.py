"""Tests for query filter parsing and evaluation."""

from __future__ import annotations

import datetime as dt

import pytest

from notefinder.search.filters import (
    QueryFilter,
    evaluate_all_filters,
    evaluate_filter,
    filterable_fields,
    parse_query_filters,
)


def _filter(field: str, operator: str, value) -> QueryFilter:
    return QueryFilter(field=field, operator=operator, value=value, raw=f"{field}:{value}")


class TestParseQueryFilters:
    """Test parse_query_filters."""

    def test_splits_text_and_filters(self) -> None:
        """Filters are removed from the free text."""
        parsed = parse_query_filters("meeting notes status:draft priority:>=2")
        assert parsed.text == "meeting notes"
        assert [(f.field, f.operator, f.value) for f in parsed.filters] == [
            ("status", "eq", "draft"),
            ("priority", "gte", 2.0),
        ]
        assert parsed.has_filters

    @pytest.mark.parametrize(
        ("raw", "operator"),
        [("a:>1", "gt"), ("a:<1", "lt"), ("a:<=1", "lte"), ("a:~x", "contains"), ("a:-x", "neq")],
    )
    def test_operators(self, raw: str, operator: str) -> None:
        """Each prefix maps to its operator."""
        assert parse_query_filters(raw).filters[0].operator == operator

    def test_quoted_values(self) -> None:
        """Quoted values keep their inner whitespace."""
        parsed = parse_query_filters('project:"big plan" review')
        assert parsed.filters[0].value == "big plan"
        assert parsed.text == "review"

    def test_field_names_lowercased(self) -> None:
        """Field names are case-insensitive."""
        assert parse_query_filters("Status:Draft").filters[0].field == "status"

    def test_urls_are_not_filters(self) -> None:
        """A scheme followed by // stays in the text."""
        parsed = parse_query_filters("see https://example.com")
        assert parsed.filters == []
        assert parsed.text == "see https://example.com"

    def test_plain_query(self) -> None:
        """No filters leaves the text alone apart from whitespace."""
        parsed = parse_query_filters("  just   words ")
        assert parsed.text == "just words"
        assert not parsed.has_filters


class TestEvaluateFilter:
    """Test evaluate_filter across value types."""

    def test_equality_case_insensitive_and_lists(self) -> None:
        """Equality ignores case and matches any list element."""
        assert evaluate_filter(_filter("status", "eq", "draft"), {"status": "Draft"})
        assert evaluate_filter(_filter("tags", "eq", "work"), {"tags": ["home", "work"]})
        assert not evaluate_filter(_filter("status", "eq", "done"), {"status": "draft"})

    def test_numeric_equality(self) -> None:
        """Numbers compare numerically."""
        assert evaluate_filter(_filter("priority", "eq", 2.0), {"priority": 2})
        assert evaluate_filter(_filter("priority", "eq", 2.0), {"priority": "2"})

    def test_boolean_fields(self) -> None:
        """Booleans accept true/false and 1/0."""
        assert evaluate_filter(_filter("done", "eq", "true"), {"done": True})
        assert evaluate_filter(_filter("done", "eq", 0.0), {"done": False})
        assert not evaluate_filter(_filter("done", "eq", "true"), {"done": False})

    def test_missing_field(self) -> None:
        """Only negation is satisfied by a missing field."""
        assert not evaluate_filter(_filter("status", "eq", "draft"), {})
        assert evaluate_filter(_filter("status", "neq", "archived"), {})

    def test_negation(self) -> None:
        """Negation excludes the value."""
        assert not evaluate_filter(_filter("status", "neq", "archived"), {"status": "archived"})
        assert evaluate_filter(_filter("status", "neq", "archived"), {"status": "draft"})

    def test_numeric_comparison(self) -> None:
        """Numeric strings compare as numbers."""
        assert evaluate_filter(_filter("priority", "gt", 2.0), {"priority": "10"})
        assert not evaluate_filter(_filter("priority", "lte", 2.0), {"priority": 3})

    def test_date_comparison(self) -> None:
        """Dates compare chronologically, including partial dates and years."""
        fields = {"due": dt.date(2024, 5, 10)}
        assert evaluate_filter(_filter("due", "gte", "2024-05"), fields)
        assert evaluate_filter(_filter("due", "lt", 2025.0), fields)
        assert evaluate_filter(_filter("due", "gt", "2024-05-09T12:00:00Z"), fields)
        assert not evaluate_filter(_filter("due", "lt", "2024"), fields)

    def test_text_comparison_fallback(self) -> None:
        """Non-numeric, non-date values compare as text."""
        assert evaluate_filter(_filter("name", "lt", "beta"), {"name": "Alpha"})

    def test_contains(self) -> None:
        """Substring match is case-insensitive."""
        assert evaluate_filter(_filter("title", "contains", "meet"), {"title": "Weekly Meeting"})
        assert evaluate_filter(_filter("tags", "contains", "pro"), {"tags": ["project"]})

    def test_all_filters_and_combined(self) -> None:
        """Every filter must pass."""
        fields = {"status": "draft", "priority": 3}
        filters = [_filter("status", "eq", "draft"), _filter("priority", "gt", 5.0)]
        assert not evaluate_all_filters(filters, fields)
        assert evaluate_all_filters(filters[:1], fields)
        assert evaluate_all_filters([], fields)


class TestFilterableFields:
    """Test filterable_fields."""

    def test_includes_tags_and_aliases(self, make_doc) -> None:
        """Front matter keys are lowercased; tags and aliases are added."""
        doc = make_doc("a.md", tags={"b", "a"}, aliases=["Alpha"], fields={"Status": "draft"})
        assert filterable_fields(doc) == {"status": "draft", "tags": ["a", "b"], "aliases": ["Alpha"]}
