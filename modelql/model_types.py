"""Strawberry output/input types derived from entity definitions.

Types reference each other through *handles*: a plain class is created for
every entity before any field is attached, and association fields annotate
with those handles. ``strawberry.type``/``strawberry.input`` decorate the
handle in place, and Strawberry only resolves field annotations when the
schema is converted, so cyclic entity graphs build in any order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence, Tuple

import strawberry
from strawberry import UNSET

from .core.utils import with_arguments
from .loaders import resolve_association
from .metadata import Association, EntityDefinition, load_entities
from .naming import entity_names

_logger = logging.getLogger("modelql")

# name -> (annotation, class attribute or None)
FieldSpecs = Dict[str, Tuple[Any, Any]]
# entity name -> [(attribute name, python type, nullable, description)]
ScalarCache = MutableMapping[str, List[Tuple[str, Any, bool, Optional[str]]]]


@dataclass
class ModelTypes:
    output_types: Dict[str, Any]
    input_types: Dict[str, Any]
    entities: Dict[str, EntityDefinition]


def new_handle(name: str) -> type:
    """Plain class standing in for a generated type until it is decorated."""
    return type(name, (), {'__module__': __name__, '__doc__': None})


def _association_resolver(entity: EntityDefinition, association: Association, annotation: Any):
    async def resolve(root, info, **_):
        return await resolve_association(info, entity, association, root)

    return with_arguments(resolve, {}, annotation, root=True, name=f"resolve_{entity.name}_{association.name}")


def association_fields(
    entity: EntityDefinition,
    associations: Sequence[Association],
    types: Mapping[str, Any],
    is_input: bool = False,
) -> FieldSpecs:
    """Return the association fields of an entity.

    HasMany and BelongsToMany associations become lists of the target type,
    BelongsTo a single (nullable) reference. Output fields resolve through the
    ORM; input fields are structural only.
    """
    fields: FieldSpecs = {}
    for assoc in associations:
        target = types[assoc.target]
        if is_input:
            annotation = Optional[List[target]] if assoc.is_collection else Optional[target]
            fields[assoc.name] = (annotation, UNSET)
            continue
        annotation = List[target] if assoc.is_collection else Optional[target]
        fields[assoc.name] = (
            annotation,
            strawberry.field(resolver=_association_resolver(entity, assoc, annotation)),
        )
    return fields


def scalar_fields(entity: EntityDefinition, is_input: bool = False, cache: Optional[ScalarCache] = None) -> FieldSpecs:
    """Scalar attribute fields, sensitive attributes excluded.

    Output fields keep column nullability; input fields are all optional and
    default to UNSET so one input type serves both create and partial update.
    """
    specs = cache.get(entity.name) if cache is not None else None
    if specs is None:
        specs = [(a.name, a.python_type, a.nullable, a.description) for a in entity.visible_attributes]
        if cache is not None:
            cache[entity.name] = specs
    fields: FieldSpecs = {}
    for name, py_type, nullable, description in specs:
        if is_input:
            value = strawberry.field(default=UNSET, description=description) if description else UNSET
            fields[name] = (Optional[py_type], value)
        else:
            annotation = Optional[py_type] if nullable else py_type
            fields[name] = (annotation, strawberry.field(description=description) if description else None)
    return fields


def build_type(
    entity: EntityDefinition,
    types: Mapping[str, Any],
    is_input: bool = False,
    cache: Optional[ScalarCache] = None,
) -> Any:
    """Attach fields to the entity's handle in ``types`` and decorate it."""
    handle = types[entity.name]
    names = entity_names(entity)
    fields = scalar_fields(entity, is_input, cache)
    fields.update(association_fields(entity, entity.associations, types, is_input))
    annotations: Dict[str, Any] = {}
    for name, (annotation, value) in fields.items():
        annotations[name] = annotation
        if value is not None:
            setattr(handle, name, value)
    handle.__annotations__ = annotations
    description = entity.description or (
        f"The name of the model is {entity.name}, this comment is generated automatically."
    )
    _logger.debug("modelql: built %s type %s with fields %s", 'input' if is_input else 'output', entity.name, list(fields))
    if is_input:
        return strawberry.input(handle, name=f"{names.type}Input", description=description)
    return strawberry.type(handle, name=names.type, description=description)


def root_type(name: str, fields: Mapping[str, Any], description: Optional[str] = None) -> Any:
    """Decorate a root (Query/Mutation/Subscription) type holding ``fields``."""
    namespace: Dict[str, Any] = {'__module__': __name__, '__doc__': description, '__annotations__': {}}
    namespace.update(fields)
    return strawberry.type(type(name, (), namespace), name=name, description=description)


def generate_model_types(models: Any) -> ModelTypes:
    """Build one output and one input type per entity.

    ``models`` is anything ``load_entities`` accepts, or an already loaded
    mapping of entity name -> EntityDefinition.
    """
    if isinstance(models, Mapping) and models and all(isinstance(v, EntityDefinition) for v in models.values()):
        entities = dict(models)
    else:
        entities = load_entities(models)
    output_types: Dict[str, Any] = {name: new_handle(entity_names(e).type) for name, e in entities.items()}
    input_types: Dict[str, Any] = {name: new_handle(f"{entity_names(e).type}Input") for name, e in entities.items()}
    cache: ScalarCache = {}
    for name, entity in entities.items():
        output_types[name] = build_type(entity, output_types, cache=cache)
        input_types[name] = build_type(entity, input_types, is_input=True, cache=cache)
    return ModelTypes(output_types=output_types, input_types=input_types, entities=entities)
