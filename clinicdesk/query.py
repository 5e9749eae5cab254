"""
Filter, sort and paginate behavior shared by every list view.

`query` is a pure function: it re-filters and re-sorts the full collection on each
call and never mutates its input. Sorting relies on Python's stable sort, so records
with equal keys keep their relative input order in both directions.
"""
# clinicdesk/query.py

import math
from dataclasses import dataclass
from datetime import datetime, time
from typing import List, Optional, Sequence, Tuple

from clinicdesk import config
from clinicdesk.errors import ValidationError
from clinicdesk.models import parse_timestamp, to_epoch_ms

PATIENT_SEARCH_FIELDS = ("name", "record_number", "phone", "address")
APPOINTMENT_SEARCH_FIELDS = ("patientName",)
INVOICE_SEARCH_FIELDS = ("invoiceNumber", "patientName")

DATE_FIELDS = frozenset({"date", "created_at", "updated_at", "appointmentDate", "timestamp"})

_START_OF_DAY = time(0, 0, 0, 0)
_END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class QueryResult:
    items: List[dict]
    total_items: int
    total_pages: int
    page: int
    page_size: int


def matches_search(record: dict, search_term: str, fields: Sequence[str]) -> bool:
    """Case-insensitive substring match of `search_term` against any of `fields`."""
    term = (search_term or "").strip().lower()
    if not term:
        return True
    for field in fields:
        value = record.get(field)
        if value is not None and term in str(value).lower():
            return True
    return False


def _bound(value, end_of_day: bool) -> Optional[datetime]:
    if value is None or value == "":
        return None
    moment = parse_timestamp(value)
    if moment is None:
        raise ValidationError(f"Invalid date range bound: {value!r}", field="date_range")
    day = moment.date()
    return datetime.combine(day, _END_OF_DAY if end_of_day else _START_OF_DAY)


def in_date_range(record: dict, field: str, date_range: Tuple) -> bool:
    """Inclusive day-granularity range check on `record[field]`.

    The start bound is moved to 00:00:00.000 and the end bound to 23:59:59.999 of
    their days. Either bound may be None. Records with no parseable date are excluded
    whenever a bound is set.
    """
    start, end = date_range if date_range else (None, None)
    start_at = _bound(start, end_of_day=False)
    end_at = _bound(end, end_of_day=True)
    if start_at is None and end_at is None:
        return True
    moment = parse_timestamp(record.get(field))
    if moment is None:
        return False
    if start_at is not None and moment < start_at:
        return False
    if end_at is not None and moment > end_at:
        return False
    return True


def sort_key(field: str):
    """Builds a key function for `field`. Date-like fields compare by epoch milliseconds."""
    if field in DATE_FIELDS:
        return lambda record: to_epoch_ms(record.get(field))

    def key(record):
        value = record.get(field)
        if value is None:
            return (0, 0)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (1, value)
        return (2, str(value))

    return key


def query(
    records: Sequence[dict],
    search_term: str = "",
    search_fields: Sequence[str] = (),
    date_field: Optional[str] = None,
    date_range: Optional[Tuple] = None,
    sort_field: Optional[str] = None,
    sort_direction: str = "asc",
    page: int = 1,
    page_size: int = None,
) -> QueryResult:
    """Filters, sorts and paginates `records`.

    Args:
        records: The full collection.
        search_term: Text matched case-insensitively against `search_fields`.
        search_fields: Record keys to search.
        date_field: Record key used for the date-range filter.
        date_range: `(start, end)`; dates, datetimes or ISO strings, either may be None.
        sort_field: Record key to sort by; None keeps collection order.
        sort_direction: 'asc' or 'desc'.
        page: 1-based page number. The caller is responsible for keeping it in range.
        page_size: Items per page; defaults to `config.PAGE_SIZE`.

    Returns:
        QueryResult with the page slice and the total number of matching records.
    """
    if sort_direction not in ("asc", "desc"):
        raise ValidationError(f"Invalid sort direction: {sort_direction}", field="sort_direction")
    page_size = page_size or config.PAGE_SIZE

    filtered = [r for r in records if matches_search(r, search_term, search_fields)]
    if date_field and date_range and any(b not in (None, "") for b in date_range):
        filtered = [r for r in filtered if in_date_range(r, date_field, date_range)]

    if sort_field:
        filtered = sorted(filtered, key=sort_key(sort_field), reverse=sort_direction == "desc")

    total_items = len(filtered)
    start = (page - 1) * page_size
    items = filtered[start:start + page_size] if start >= 0 else []
    return QueryResult(
        items=items,
        total_items=total_items,
        total_pages=math.ceil(total_items / page_size),
        page=page,
        page_size=page_size,
    )
