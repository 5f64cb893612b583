"""Mutation root: add/update/delete per entity, with cascading nested writes.

``addOrder`` creates the order together with the nested ``items`` (and their
own HasMany children) given in the input. ``updateOrder`` reconciles each
nested HasMany array present in the input with the stored children. Writes
commit at the end of the resolver and roll back when any part fails.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from functools import partial
from typing import Any, Dict, List, Optional

import strawberry
from strawberry.types.field import StrawberryField

from .cascade import CascadeNode, deep_associations
from .core.utils import get_context_lock, input_to_dict, require_db_session, with_arguments
from .errors import RecordNotFoundError
from .events import ADDED, DELETED, UPDATED, publish_change
from .metadata import EntityDefinition
from .model_types import ModelTypes, root_type
from .naming import entity_names
from .overrides import MUTATION, ResolverSource, discovered_overrides, inline_overrides, merge_layers
from .persistence import create, destroy, find_by_key, snapshot, update, upsert_array
from .pubsub import PubSub

_logger = logging.getLogger("modelql")


async def _rollback(session: Any, lock: asyncio.Lock, entity: EntityDefinition, verb: str) -> None:
    _logger.warning("modelql: %s %s failed, rolling back", verb.lower(), entity.name)
    async with lock:
        await session.rollback()


def _add_field(
    entity: EntityDefinition,
    types: ModelTypes,
    cascade: List[CascadeNode],
    pub_sub: Optional[PubSub],
) -> StrawberryField:
    arg = entity.name

    async def resolve(info, **kwargs):
        data = input_to_dict(kwargs[arg])
        session = require_db_session(info)
        lock = get_context_lock(info)
        try:
            async with lock:
                instance = await create(session, entity, data, cascade)
                await session.commit()
        except Exception:
            await _rollback(session, lock, entity, ADDED)
            raise
        async with lock:
            await session.refresh(instance)
        publish_change(pub_sub, entity, ADDED, instance)
        return instance

    resolver = with_arguments(
        resolve,
        {arg: (types.input_types[entity.name], inspect.Parameter.empty)},
        types.output_types[entity.name],
        name=f"add_{entity.name}",
    )
    return strawberry.mutation(resolver=resolver, description=f"Create a {entity.name} with its nested rows")


def _update_field(
    entity: EntityDefinition,
    types: ModelTypes,
    cascade: List[CascadeNode],
    pub_sub: Optional[PubSub],
) -> StrawberryField:
    arg = entity.name
    pk = entity.primary_key

    async def resolve(info, **kwargs):
        data = input_to_dict(kwargs[arg])
        key = data.get(pk)
        if key is None:
            raise ValueError(f"{arg}.{pk} is required to update a {entity.name}")
        session = require_db_session(info)
        lock = get_context_lock(info)
        async with lock:
            instance = await find_by_key(session, entity, key)
        if instance is None:
            raise RecordNotFoundError(entity.name, key)

        async def locked(operation, *args):
            async with lock:
                return await operation(session, *args)

        operations = [
            locked(upsert_array, instance, node, data[node.name])
            for node in cascade
            if data.get(node.name) is not None
        ]
        operations.append(locked(update, entity, instance, data))
        # wait for every operation before deciding; gather does not cancel siblings
        results = await asyncio.gather(*operations, return_exceptions=True)
        failure = next((r for r in results if isinstance(r, BaseException)), None)
        if failure is None:
            try:
                async with lock:
                    # the flush expires columns set by SQL expressions (onupdate=func.now())
                    await session.refresh(instance)
                    # taken before commit: committed instances expire and cannot lazy-load here
                    event_value = snapshot(entity, instance)
                    await session.commit()
            except Exception:
                await _rollback(session, lock, entity, UPDATED)
                raise
        else:
            await _rollback(session, lock, entity, UPDATED)
            raise failure
        publish_change(pub_sub, entity, UPDATED, event_value)
        async with lock:
            return await find_by_key(session, entity, key)

    resolver = with_arguments(
        resolve,
        {arg: (types.input_types[entity.name], inspect.Parameter.empty)},
        Optional[types.output_types[entity.name]],
        name=f"update_{entity.name}",
    )
    return strawberry.mutation(
        resolver=resolver,
        description=f"Update a {entity.name} by primary key; nested arrays replace the stored children",
    )


def _delete_field(entity: EntityDefinition, pub_sub: Optional[PubSub]) -> StrawberryField:
    pk = entity.primary_key
    pk_type = entity.primary_key_attribute.python_type

    async def resolve(info, **kwargs):
        key = kwargs[pk]
        session = require_db_session(info)
        lock = get_context_lock(info)
        try:
            async with lock:
                deleted = await destroy(session, entity, key)
                await session.commit()
        except Exception:
            await _rollback(session, lock, entity, DELETED)
            raise
        if deleted == 1:
            publish_change(pub_sub, entity, DELETED, key)
        return deleted

    resolver = with_arguments(resolve, {pk: (pk_type, inspect.Parameter.empty)}, int, name=f"delete_{entity.name}")
    return strawberry.mutation(
        resolver=resolver, description=f"Delete a {entity.name} by primary key; returns the number of rows removed"
    )


def wrap_mutation_override(entity: EntityDefinition, types: ModelTypes, fn) -> StrawberryField:
    """Expose a plain callable as a mutation taking the entity input and returning the entity."""

    async def resolve(info, **kwargs):
        result = fn(info, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    resolver = with_arguments(
        resolve,
        {entity.name: Optional[types.input_types[entity.name]]},
        Optional[types.output_types[entity.name]],
        name=getattr(fn, '__name__', f"resolve_{entity.name}_override"),
    )
    return strawberry.mutation(resolver=resolver, description=inspect.getdoc(fn))


def generated_mutation_fields(
    entity: EntityDefinition,
    types: ModelTypes,
    pub_sub: Optional[PubSub] = None,
) -> Dict[str, StrawberryField]:
    names = entity_names(entity)
    cascade = deep_associations(entity.name, types.entities)
    _logger.debug("modelql: %s cascades into %s", entity.name, [n.name for n in cascade])
    return {
        f"add{names.type}": _add_field(entity, types, cascade, pub_sub),
        f"update{names.type}": _update_field(entity, types, cascade, pub_sub),
        f"delete{names.type}": _delete_field(entity, pub_sub),
    }


def generate_mutation_root(
    types: ModelTypes,
    *,
    resolver_source: Optional[ResolverSource] = None,
    pub_sub: Optional[PubSub] = None,
) -> Any:
    """Build the Mutation root type; change events go to ``pub_sub`` when one is given."""
    generated: Dict[str, Any] = {}
    inline: Dict[str, Any] = {}
    for entity in types.entities.values():
        generated.update(generated_mutation_fields(entity, types, pub_sub))
        inline.update(inline_overrides(entity, MUTATION, partial(wrap_mutation_override, entity, types)))
    fields = merge_layers(MUTATION, generated, discovered_overrides(resolver_source, MUTATION), inline)
    _logger.debug("modelql: mutation fields %s", sorted(fields))
    return root_type('Mutation', fields, "Root mutation generated from the models")
