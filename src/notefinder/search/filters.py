"""``field:value`` filters embedded in search queries.

Supported forms::

    status:draft        equality, case-insensitive, any element of a list
    priority:>2         also <, >=, <= (numeric, then date, then text order)
    title:~meeting      substring
    status:-archived    negation; a missing field satisfies it
    project:"big plan"  quoted values keep their whitespace

Filters are AND-combined and removed from the free-text part of the query.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import operator
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Sequence

from notefinder.errors import ConfigurationError
from notefinder.models import Document

LOGGER = logging.getLogger(__name__)

FilterOperator = Literal["eq", "gt", "lt", "gte", "lte", "contains", "neq"]

FILTER_RE = re.compile(r"(\w+):(>=|<=|>|<|~|-)?(\"[^\"]+\"|'[^']+'|[^\s]+)")
_PARTIAL_DATE_RE = re.compile(r"^(\d{4})(?:-(\d{2}))?(?:-(\d{2}))?$")

_OPERATORS: Dict[str | None, FilterOperator] = {
    ">=": "gte",
    "<=": "lte",
    ">": "gt",
    "<": "lt",
    "~": "contains",
    "-": "neq",
    None: "eq",
}

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "gt": operator.gt,
    "lt": operator.lt,
    "gte": operator.ge,
    "lte": operator.le,
}


@dataclass(slots=True, frozen=True)
class QueryFilter:
    field: str
    operator: FilterOperator
    value: str | float
    raw: str


@dataclass(slots=True)
class ParsedQuery:
    text: str
    filters: List[QueryFilter] = field(default_factory=list)

    @property
    def has_filters(self) -> bool:
        return bool(self.filters)


def _parse_value(raw_value: str) -> str | float:
    value = raw_value
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    if not value.strip():
        raise ConfigurationError(f"filter value is empty: {raw_value!r}")
    number = _to_number(value)
    return number if number is not None else value


def parse_filter(match: re.Match[str]) -> QueryFilter:
    name, symbol, raw_value = match.group(1), match.group(2), match.group(3)
    if raw_value.startswith("//"):
        raise ConfigurationError(f"not a filter: {match.group(0)!r}")
    return QueryFilter(
        field=name.lower(),
        operator=_OPERATORS[symbol],
        value=_parse_value(raw_value),
        raw=match.group(0),
    )


def parse_query_filters(query: str) -> ParsedQuery:
    """Split ``query`` into free text and filters.

    Malformed filters are logged and ignored; the rest of the query runs.
    """
    filters: List[QueryFilter] = []
    text = query
    for match in FILTER_RE.finditer(query):
        try:
            parsed = parse_filter(match)
        except ConfigurationError as exc:
            LOGGER.debug("Ignoring query filter: %s", exc)
            if not match.group(3).startswith("//"):
                text = text.replace(match.group(0), " ", 1)
            continue
        filters.append(parsed)
        text = text.replace(parsed.raw, " ", 1)

    text = re.sub(r"\s+", " ", text).strip()
    if filters:
        LOGGER.debug("Parsed %d filter(s); remaining text query %r", len(filters), text)
    return ParsedQuery(text=text, filters=filters)


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _to_timestamp(value: Any) -> float | None:
    if isinstance(value, dt.datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=dt.timezone.utc)
        return moment.timestamp()
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day, tzinfo=dt.timezone.utc).timestamp()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if 1900 <= value <= 2100:
            return dt.datetime(int(value), 1, 1, tzinfo=dt.timezone.utc).timestamp()
        return None
    if isinstance(value, str):
        text = value.strip()
        partial = _PARTIAL_DATE_RE.match(text)
        if partial:
            year, month, day = partial.group(1), partial.group(2) or "01", partial.group(3) or "01"
            try:
                return dt.datetime(int(year), int(month), int(day), tzinfo=dt.timezone.utc).timestamp()
            except ValueError:
                return None
        try:
            return _to_timestamp(dt.datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _equal(field_value: Any, value: str | float) -> bool:
    if isinstance(field_value, (list, tuple, set, frozenset)):
        return any(_equal(item, value) for item in field_value)
    if isinstance(field_value, bool):
        flag = str(value).lower()
        if isinstance(value, float):
            flag = "1" if value == 1 else "0" if value == 0 else flag
        return (field_value and flag in ("true", "1")) or (not field_value and flag in ("false", "0"))
    number = _to_number(field_value)
    if number is not None and isinstance(value, float):
        return number == value
    return _as_text(field_value).lower() == _as_text(value).lower()


def _as_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    return str(value)


def _compare(field_value: Any, value: str | float, op: str) -> bool:
    compare = _COMPARATORS[op]
    if isinstance(field_value, (list, tuple, set, frozenset)):
        return any(_compare(item, value, op) for item in field_value)

    left, right = _to_number(field_value), _to_number(value)
    if left is not None and right is not None:
        return compare(left, right)

    left_date, right_date = _to_timestamp(field_value), _to_timestamp(value)
    if left_date is not None and right_date is not None:
        return compare(left_date, right_date)

    LOGGER.debug("Comparing %r with %r as text", field_value, value)
    return compare(_as_text(field_value).casefold(), _as_text(value).casefold())


def _contains(field_value: Any, value: str | float) -> bool:
    if isinstance(field_value, (list, tuple, set, frozenset)):
        return any(_contains(item, value) for item in field_value)
    return _as_text(value).lower() in _as_text(field_value).lower()


def evaluate_filter(query_filter: QueryFilter, fields: Mapping[str, Any]) -> bool:
    field_value = fields.get(query_filter.field)
    if field_value is None:
        return query_filter.operator == "neq"

    op = query_filter.operator
    if op == "eq":
        return _equal(field_value, query_filter.value)
    if op == "neq":
        return not _equal(field_value, query_filter.value)
    if op == "contains":
        return _contains(field_value, query_filter.value)
    return _compare(field_value, query_filter.value, op)


def evaluate_all_filters(filters: Sequence[QueryFilter], fields: Mapping[str, Any]) -> bool:
    return all(evaluate_filter(query_filter, fields) for query_filter in filters)


def filterable_fields(document: Document) -> Dict[str, Any]:
    """Structured fields keyed in lower case, plus ``tags`` and ``aliases``."""
    values: Dict[str, Any] = {str(key).lower(): value for key, value in document.metadata.fields.items()}
    if document.metadata.tags:
        values["tags"] = sorted(document.metadata.tags)
    if document.metadata.aliases:
        values["aliases"] = list(document.metadata.aliases)
    return values
