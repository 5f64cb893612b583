"""DataLoaders for batch-loading associations.

Prevents N+1 queries when resolving association fields: within one request
every ``posts`` field of every ``User`` row resolved in the same tick is
served by a single SELECT.

Usage:
    context = {
        "db_session": session,
        "dataloader_context": DataLoaderContext(session),
    }
    await schema.execute(query, context_value=context)

Without a ``dataloader_context`` the association resolvers fall back to one
query per parent row.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import selectinload
from strawberry.dataloader import DataLoader

from .core.utils import get_context_lock, get_loader_context, require_db_session
from .persistence import load_related

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .metadata import Association, EntityDefinition


class DataLoaderContext:
    """Request-scoped cache of one DataLoader per (entity, association).

    Args:
        session: AsyncSession scoped to the current request. When omitted,
            the session found on the request context is used.
    """

    def __init__(self, session: Optional[AsyncSession] = None) -> None:
        self.session = session
        self._loaders: Dict[Tuple[str, str], DataLoader] = {}

    def loader_for(
        self,
        entity: EntityDefinition,
        association: Association,
        session: AsyncSession,
        lock: asyncio.Lock,
    ) -> DataLoader:
        key = (entity.name, association.name)
        loader = self._loaders.get(key)
        if loader is None:
            async def _load(keys: List[Any]) -> List[Any]:
                return await batch_load_association(session, lock, entity, association, keys)

            loader = DataLoader(load_fn=_load)
            self._loaders[key] = loader
        return loader

    def clear(self) -> None:
        for loader in self._loaders.values():
            loader.clear_all()


async def batch_load_association(
    session: AsyncSession,
    lock: asyncio.Lock,
    entity: EntityDefinition,
    association: Association,
    keys: List[Any],
) -> List[Any]:
    """Batch load one association for many owners of ``entity``.

    Returns:
        One value per key, in key order: a list for collection associations,
        an instance or None otherwise
    """
    model = entity.model
    pk_column = getattr(model, entity.primary_key)
    stmt = (
        select(model)
        .where(pk_column.in_(keys))
        .options(selectinload(getattr(model, association.name)))
        .execution_options(populate_existing=True)
    )
    async with lock:
        owners = (await session.scalars(stmt)).all()
    related = {getattr(owner, entity.primary_key): getattr(owner, association.name) for owner in owners}
    if association.is_collection:
        return [list(related.get(key) or []) for key in keys]
    return [related.get(key) for key in keys]


async def resolve_association(info: Any, entity: EntityDefinition, association: Association, instance: Any) -> Any:
    """Load ``association`` of ``instance``, batched when the request carries a DataLoaderContext."""
    lock = get_context_lock(info)
    loader_ctx = get_loader_context(info)
    if isinstance(loader_ctx, DataLoaderContext):
        session = loader_ctx.session or require_db_session(info)
        key = getattr(instance, entity.primary_key)
        return await loader_ctx.loader_for(entity, association, session, lock).load(key)
    session = require_db_session(loader_ctx)
    async with lock:
        return await load_related(session, entity, instance, association)
