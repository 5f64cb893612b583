from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import asc, desc

WILDCARD = '%'

# Operators understood by ``build_conditions``; filter args map to 'eq' unless rewritten.
OPERATOR_REGISTRY: Dict[str, Callable[[Any, Any], Any]] = {
    'eq': lambda col, v: col.is_(None) if v is None else col == v,
    'like': lambda col, v: col.like(v),
}


def has_wildcard(value: Any) -> bool:
    return isinstance(value, str) and WILDCARD in value


def translate_filters(filters: Mapping[str, Any], *, wildcards: bool = False) -> Dict[str, tuple]:
    """Return ``{attribute: (op, value)}`` for a filter mapping.

    With ``wildcards`` enabled a value containing ``%`` becomes a pattern
    match, every other value stays exact equality.
    """
    out: Dict[str, tuple] = {}
    for key, value in filters.items():
        op = 'like' if wildcards and has_wildcard(value) else 'eq'
        out[key] = (op, value)
    return out


def build_conditions(model_cls: Any, translated: Mapping[str, tuple]) -> List[Any]:
    conditions = []
    for key, (op, value) in translated.items():
        column = getattr(model_cls, key)
        conditions.append(OPERATOR_REGISTRY[op](column, value))
    return conditions


def build_order_by(model_cls: Any, order: Optional[Sequence[Sequence[str]]], allowed: Sequence[str]) -> List[Any]:
    """Translate ``[[column, direction], ...]`` into ORDER BY clauses.

    Direction defaults to ASC. Unknown columns or directions raise ValueError,
    which Strawberry reports as a field error.
    """
    clauses = []
    for item in order or []:
        if not item:
            continue
        column_name = item[0]
        direction = (item[1] if len(item) > 1 and item[1] else 'ASC').upper()
        if column_name not in allowed:
            raise ValueError(f"Cannot order by unknown attribute {column_name!r}")
        if direction not in ('ASC', 'DESC'):
            raise ValueError(f"Invalid order direction {item[1]!r}; expected ASC or DESC")
        column = getattr(model_cls, column_name)
        clauses.append(asc(column) if direction == 'ASC' else desc(column))
    return clauses
