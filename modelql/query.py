"""Query root: a single-row, a list and a paginated field per entity."""
from __future__ import annotations

import inspect
import logging
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Tuple

import strawberry
from strawberry.types.field import StrawberryField

from .core.utils import get_context_lock, get_db_session, get_loader_context, require_db_session, with_arguments
from .metadata import EntityDefinition
from .model_types import ModelTypes, root_type
from .naming import entity_names
from .overrides import QUERY, ResolverSource, discovered_overrides, inline_overrides, merge_layers
from .persistence import find_all, find_and_count_all, find_one

_logger = logging.getLogger("modelql")

DEFAULT_PAGE_SIZE = 10

OrderArg = Optional[List[List[str]]]

LIST_ARGUMENTS: Dict[str, Any] = {'limit': Optional[int], 'offset': Optional[int], 'order': OrderArg}
PAGE_ARGUMENTS: Dict[str, Any] = {'page': Optional[int], 'pageSize': Optional[int], 'order': OrderArg}
# a column with one of these names gets no filter argument
RESERVED_ARGUMENTS = frozenset(LIST_ARGUMENTS) | frozenset(PAGE_ARGUMENTS)


@strawberry.type(name="PageInfo", description="Type for api pagination")
class PageInfo:
    total: int
    pageSize: int
    page: int


def filter_arguments(entity: EntityDefinition) -> Dict[str, Any]:
    """One optional argument per visible scalar attribute."""
    return {
        a.name: Optional[a.python_type]
        for a in entity.visible_attributes
        if a.name not in RESERVED_ARGUMENTS
    }


def selected_filters(entity: EntityDefinition, arguments: Mapping[str, Any]) -> Dict[str, Any]:
    # omitted arguments arrive as None and do not filter
    return {
        a.name: arguments[a.name]
        for a in entity.visible_attributes
        if a.name not in RESERVED_ARGUMENTS and arguments.get(a.name) is not None
    }


def page_window(page: Optional[int], page_size: Optional[int]) -> Tuple[int, int]:
    """Return ``(limit, offset)`` for a 1-based page number."""
    limit = page_size or DEFAULT_PAGE_SIZE
    if page is None:
        return limit, 0
    if page < 1:
        raise ValueError(f"page must be 1 or greater, got {page}")
    return limit, (page - 1) * limit


def result_type(entity: EntityDefinition, output_type: Any) -> Any:
    """The ``<Entity>Result`` envelope of the paginated field."""
    name = f"{entity_names(entity).type}Result"
    handle = type(name, (), {
        '__module__': __name__,
        '__annotations__': {'info': PageInfo, 'results': List[output_type]},
    })
    return strawberry.type(handle, name=name, description=f"Paginated {entity.name} rows")


def _single_field(entity: EntityDefinition, output_type: Any) -> StrawberryField:
    async def resolve(info, **kwargs):
        session = require_db_session(info)
        async with get_context_lock(info):
            return await find_one(session, entity, selected_filters(entity, kwargs))

    resolver = with_arguments(
        resolve, filter_arguments(entity), Optional[output_type], name=f"resolve_{entity_names(entity).singular}"
    )
    return strawberry.field(resolver=resolver, description=f"Get one {entity.name} row matching the filters")


def _list_field(entity: EntityDefinition, output_type: Any) -> StrawberryField:
    async def resolve(info, **kwargs):
        session = require_db_session(info)
        async with get_context_lock(info):
            return await find_all(
                session,
                entity,
                selected_filters(entity, kwargs),
                limit=kwargs.get('limit'),
                offset=kwargs.get('offset'),
                order=kwargs.get('order'),
            )

    resolver = with_arguments(
        resolve,
        {**filter_arguments(entity), **LIST_ARGUMENTS},
        List[output_type],
        name=f"resolve_{entity_names(entity).plural}",
    )
    return strawberry.field(resolver=resolver, description=f"Get {entity.name} rows matching the filters")


def _paginated_field(entity: EntityDefinition, output_type: Any) -> StrawberryField:
    envelope = result_type(entity, output_type)

    async def resolve(info, **kwargs):
        page = kwargs.get('page')
        limit, offset = page_window(page, kwargs.get('pageSize'))
        # prefer the session attached to the batching context
        session = get_db_session(get_loader_context(info)) or require_db_session(info)
        async with get_context_lock(info):
            total, rows = await find_and_count_all(
                session,
                entity,
                selected_filters(entity, kwargs),
                limit=limit,
                offset=offset,
                order=kwargs.get('order'),
            )
        info_value = PageInfo(total=total, pageSize=limit, page=page or 1)
        return envelope(info=info_value, results=rows)

    resolver = with_arguments(
        resolve,
        {**filter_arguments(entity), **PAGE_ARGUMENTS},
        envelope,
        name=f"resolve_{entity_names(entity).singular}Restful",
    )
    return strawberry.field(
        resolver=resolver,
        description=f"Get one page of {entity.name} rows; filter values containing % match with LIKE",
    )


def wrap_query_override(entity: EntityDefinition, output_type: Any, fn) -> StrawberryField:
    """Expose a plain callable as a list field with the entity's filter and list arguments."""

    async def resolve(info, **kwargs):
        result = fn(info, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    resolver = with_arguments(
        resolve,
        {**filter_arguments(entity), **LIST_ARGUMENTS},
        List[output_type],
        name=getattr(fn, '__name__', f"resolve_{entity.name}_override"),
    )
    return strawberry.field(resolver=resolver, description=inspect.getdoc(fn))


def generated_query_fields(entity: EntityDefinition, output_type: Any) -> Dict[str, StrawberryField]:
    names = entity_names(entity)
    return {
        names.singular: _single_field(entity, output_type),
        names.plural: _list_field(entity, output_type),
        f"{names.singular}Restful": _paginated_field(entity, output_type),
    }


def generate_query_root(types: ModelTypes, *, resolver_source: Optional[ResolverSource] = None) -> Any:
    """Build the Query root type for every entity in ``types``."""
    generated: Dict[str, Any] = {}
    inline: Dict[str, Any] = {}
    for name, entity in types.entities.items():
        output_type = types.output_types[name]
        generated.update(generated_query_fields(entity, output_type))
        inline.update(inline_overrides(entity, QUERY, partial(wrap_query_override, entity, output_type)))
    fields = merge_layers(QUERY, generated, discovered_overrides(resolver_source, QUERY), inline)
    _logger.debug("modelql: query fields %s", sorted(fields))
    return root_type('Query', fields, "Root query generated from the models")
