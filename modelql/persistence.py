"""ORM operations behind the generated resolvers.

Everything here takes an ``AsyncSession`` and entity definitions; none of it
knows about GraphQL. Callers own transaction boundaries (commit/rollback) and
serialize access to a shared session.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import with_parent

from .cascade import CascadeNode
from .core.filters import build_conditions, build_order_by, translate_filters
from .metadata import Association, EntityDefinition

_logger = logging.getLogger("modelql")


def _filtered_select(entity: EntityDefinition, filters: Mapping[str, Any], *, wildcards: bool):
    model = entity.model
    conditions = build_conditions(model, translate_filters(filters, wildcards=wildcards))
    return select(model).where(*conditions), conditions


def _allowed_order(entity: EntityDefinition) -> List[str]:
    return [a.name for a in entity.visible_attributes]


async def find_one(session: Any, entity: EntityDefinition, filters: Mapping[str, Any]) -> Any:
    stmt, _ = _filtered_select(entity, filters, wildcards=False)
    result = await session.scalars(stmt.limit(1))
    return result.first()


async def find_by_key(session: Any, entity: EntityDefinition, key: Any) -> Any:
    return await find_one(session, entity, {entity.primary_key: key})


async def find_all(
    session: Any,
    entity: EntityDefinition,
    filters: Mapping[str, Any],
    *,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    order: Optional[Sequence[Sequence[str]]] = None,
) -> List[Any]:
    stmt, _ = _filtered_select(entity, filters, wildcards=False)
    stmt = stmt.order_by(*build_order_by(entity.model, order, _allowed_order(entity)))
    if limit is not None:
        stmt = stmt.limit(limit)
    if offset:
        stmt = stmt.offset(offset)
    result = await session.scalars(stmt)
    return list(result.all())


async def find_and_count_all(
    session: Any,
    entity: EntityDefinition,
    filters: Mapping[str, Any],
    *,
    limit: int,
    offset: int,
    order: Optional[Sequence[Sequence[str]]] = None,
) -> Tuple[int, List[Any]]:
    """Count every matching row and fetch one page of them.

    Filter values containing ``%`` are matched with LIKE.
    """
    stmt, conditions = _filtered_select(entity, filters, wildcards=True)
    total = await session.scalar(select(func.count()).select_from(entity.model).where(*conditions))
    stmt = stmt.order_by(*build_order_by(entity.model, order, _allowed_order(entity)))
    result = await session.scalars(stmt.limit(limit).offset(offset))
    return int(total or 0), list(result.all())


def scalar_values(entity: EntityDefinition, data: Mapping[str, Any], *, include_key: bool = True) -> Dict[str, Any]:
    names = {a.name for a in entity.attributes if include_key or not a.primary_key}
    return {k: v for k, v in data.items() if k in names}


def build_instance(entity: EntityDefinition, data: Mapping[str, Any], cascade: Sequence[CascadeNode]) -> Any:
    """Build a transient instance with the nested HasMany children named in ``cascade``."""
    instance = entity.model(**scalar_values(entity, data))
    for node in cascade:
        items = data.get(node.name)
        if items is None:
            continue
        setattr(instance, node.name, [build_instance(node.entity, item, node.include) for item in items])
    return instance


async def create(session: Any, entity: EntityDefinition, data: Mapping[str, Any], cascade: Sequence[CascadeNode]) -> Any:
    instance = build_instance(entity, data, cascade)
    session.add(instance)
    await session.flush()
    return instance


async def update(session: Any, entity: EntityDefinition, instance: Any, data: Mapping[str, Any]) -> Any:
    for key, value in scalar_values(entity, data, include_key=False).items():
        setattr(instance, key, value)
    await session.flush()
    return instance


def link_to_parent(association: Association, parent: Any, child: Any) -> None:
    """Copy the parent's key into the child's foreign key column(s)."""
    prop = association.relationship
    parent_mapper = prop.parent
    child_mapper = prop.mapper
    for local, remote in prop.local_remote_pairs:
        parent_attr = parent_mapper.get_property_by_column(local).key
        child_attr = child_mapper.get_property_by_column(remote).key
        setattr(child, child_attr, getattr(parent, parent_attr))


async def upsert_array(session: Any, parent: Any, node: CascadeNode, items: Sequence[Mapping[str, Any]]) -> List[Any]:
    """Reconcile the ``node`` collection of ``parent`` with ``items``.

    Items whose primary key matches an existing child update it (recursing
    into the child's own cascade); other items are created under the parent;
    existing children missing from ``items`` are deleted.
    """
    child_entity = node.entity
    pk = child_entity.primary_key
    owner_attr = getattr(type(parent), node.name)
    existing = (await session.scalars(select(child_entity.model).where(with_parent(parent, owner_attr)))).all()
    by_key = {getattr(row, pk): row for row in existing}
    kept = set()
    out: List[Any] = []
    for item in items:
        key = item.get(pk)
        row = by_key.get(key) if key is not None else None
        if row is None:
            row = build_instance(child_entity, item, node.include)
            link_to_parent(node.association, parent, row)
            session.add(row)
        else:
            kept.add(key)
            for attr, value in scalar_values(child_entity, item, include_key=False).items():
                setattr(row, attr, value)
            for sub in node.include:
                if item.get(sub.name) is not None:
                    await upsert_array(session, row, sub, item[sub.name])
        out.append(row)
    for key, row in by_key.items():
        if key not in kept:
            await session.delete(row)
    await session.flush()
    _logger.debug(
        "modelql: upserted %s.%s (%d items, %d removed)",
        type(parent).__name__, node.name, len(out), len(by_key) - len(kept),
    )
    return out


async def destroy(session: Any, entity: EntityDefinition, key: Any) -> int:
    """Delete the row with primary key ``key``; return the number of rows removed (0 or 1)."""
    row = await find_by_key(session, entity, key)
    if row is None:
        return 0
    await session.delete(row)
    await session.flush()
    return 1


async def load_related(session: Any, entity: EntityDefinition, instance: Any, association: Association) -> Any:
    """Fetch the rows behind one association of ``instance`` without batching."""
    owner_attr = getattr(entity.model, association.name)
    prop = association.relationship
    stmt = select(prop.mapper.class_).where(with_parent(instance, owner_attr))
    if prop.order_by:
        stmt = stmt.order_by(*prop.order_by)
    result = await session.scalars(stmt)
    rows = list(result.all())
    if association.is_collection:
        return rows
    return rows[0] if rows else None


def snapshot(entity: EntityDefinition, instance: Any) -> Any:
    """Detached copy of the loaded column values of ``instance`` (never added to a session).

    Reads the instance state directly so an expired column is skipped instead
    of triggering a lazy load; refresh the instance first to capture it.
    """
    loaded = sa_inspect(instance).dict
    values = {a.name: loaded[a.name] for a in entity.attributes if a.name in loaded}
    return entity.model(**values)
