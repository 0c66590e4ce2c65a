"""Dict-driven query filtering shared by the services' search methods.

A filter value is either a plain value (equality), a list (IN), or a dict
``{"operator": "<op>", "value": ...}`` with op one of
``=, !=, >, >=, <, <=, in, not_in, like, ilike, is_null``.
"""

from __future__ import annotations

from typing import Any, Dict, Type

from sqlalchemy.orm import Query

_OPERATORS = {
    "=": lambda col, v: col == v,
    "!=": lambda col, v: col != v,
    ">": lambda col, v: col > v,
    ">=": lambda col, v: col >= v,
    "<": lambda col, v: col < v,
    "<=": lambda col, v: col <= v,
    "in": lambda col, v: col.in_(v),
    "not_in": lambda col, v: col.notin_(v),
    "like": lambda col, v: col.like(v),
    "ilike": lambda col, v: col.ilike(v),
    "is_null": lambda col, v: col.is_(None) if v else col.isnot(None),
}


def apply_filters(query: Query, model: Type[Any], filters: Dict[str, Any]) -> Query:
    """Apply filters to query. Unknown columns raise ValueError."""
    for field, value in (filters or {}).items():
        column = getattr(model, field, None)
        if column is None:
            raise ValueError(f"Unknown filter field: {field}")
        if isinstance(value, dict):
            op = value.get("operator", "=")
            if op not in _OPERATORS:
                raise ValueError(f"Unsupported filter operator: {op}")
            query = query.filter(_OPERATORS[op](column, value.get("value")))
        elif isinstance(value, (list, tuple, set)):
            query = query.filter(column.in_(list(value)))
        else:
            query = query.filter(column == value)
    return query
