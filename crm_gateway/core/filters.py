import json
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Type, Union
import logging

from sqlalchemy import DateTime, and_, or_
from sqlalchemy.sql.elements import ColumnElement

from crm_gateway.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

COLUMN_FILTER_OPERATORS = (
    "equals", "contains", "startsWith", "endsWith", "in", "notIn",
    "range", "gte", "lte", "gt", "lt",
)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def parse_boolean(value: Union[bool, str, None]) -> Optional[bool]:
    """Query-string booleans: ``None`` stays ``None``, anything but "true" is False."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def parse_datetime(value: Union[str, datetime, int, float]) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _date_bound(name: str, value: Union[str, datetime, int, float]) -> datetime:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError, OverflowError, OSError):
        raise ValidationError(f"Invalid {name}: {value}")


def build_date_range_filter(column, start_date: Optional[str] = None,
                            end_date: Optional[str] = None) -> Optional[ColumnElement]:
    """Inclusive ``start_date <= column <= end_date``; either bound may be omitted."""
    clauses = []
    if start_date:
        clauses.append(column >= _date_bound("startDate", start_date))
    if end_date:
        clauses.append(column <= _date_bound("endDate", end_date))
    if not clauses:
        return None
    return and_(*clauses)


def parse_column_filters(column_filters: Union[str, Dict[str, Any], None]) -> Optional[Dict[str, Any]]:
    """Column filters arrive either as a dict or as the JSON text of one."""
    if not column_filters:
        return None
    if isinstance(column_filters, str):
        try:
            parsed = json.loads(column_filters)
        except ValueError:
            logger.warning("Ignoring malformed column filters")
            return None
        return parsed if isinstance(parsed, dict) else None
    return column_filters


def _coerce(column, value: Any) -> Any:
    if isinstance(column.type, DateTime):
        return parse_datetime(value)
    return float(value) if not isinstance(value, (int, float)) else value


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else [value]


def build_single_condition(column, column_filter: Dict[str, Any]) -> Optional[ColumnElement]:
    operator = column_filter.get("operator")
    value = column_filter.get("value")
    value2 = column_filter.get("value2")

    if operator == "equals":
        return column == value
    if operator == "contains":
        return column.ilike(f"%{value}%")
    if operator == "startsWith":
        return column.ilike(f"{value}%")
    if operator == "endsWith":
        return column.ilike(f"%{value}")
    if operator == "in":
        return column.in_(_as_list(value))
    if operator == "notIn":
        return column.not_in(_as_list(value))
    if operator == "range":
        bounds = []
        if value is not None:
            bounds.append(column >= _coerce(column, value))
        if value2 is not None:
            bounds.append(column <= _coerce(column, value2))
        return and_(*bounds) if bounds else None
    if operator == "gte":
        return column >= _coerce(column, value)
    if operator == "lte":
        return column <= _coerce(column, value)
    if operator == "gt":
        return column > _coerce(column, value)
    if operator == "lt":
        return column < _coerce(column, value)
    return None


def build_column_filters(model: Type[Any], column_filters: Union[str, Dict[str, Any], None]) -> List[ColumnElement]:
    """
    Translate frontend column filters into SQLAlchemy conditions.

    ``column_filters`` maps a field name (camelCase or snake_case) to one filter
    ``{"operator", "value", "value2"}`` or a list of them. Several filters on the
    same field are ORed; different fields are ANDed by the caller. Unknown
    fields and operators are skipped.
    """
    parsed = parse_column_filters(column_filters)
    if not parsed:
        return []

    conditions: List[ColumnElement] = []
    for field, spec in parsed.items():
        column = getattr(model, to_snake_case(field), None)
        if column is None or not hasattr(column, "ilike"):
            logger.debug(f"Skipping column filter on unknown field {field}")
            continue

        per_field = []
        for single in _as_list(spec):
            if not isinstance(single, dict):
                continue
            try:
                condition = build_single_condition(column, single)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring column filter on {field}: {e}")
                continue
            if condition is not None:
                per_field.append(condition)

        if len(per_field) > 1:
            conditions.append(or_(*per_field))
        elif per_field:
            conditions.append(per_field[0])

    return conditions


def extract_pagination(page: Any = None, limit: Any = None, default_limit: int = 10,
                       max_limit: int = 100) -> Tuple[int, int]:
    """Page is at least 1; limit falls back to ``default_limit`` and is clamped to 1..max_limit."""
    try:
        page = int(page) if page is not None else 1
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit) if limit else default_limit
    except (TypeError, ValueError):
        limit = default_limit
    return max(page, 1), min(max(limit, 1), max_limit)


def pagination_meta(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }
