"""Entity metadata read from SQLAlchemy mappers.

The rest of modelql never touches mappers directly: it works on the
``EntityDefinition`` records produced here, which are validated once, when
the schema is built.
"""
from __future__ import annotations

import datetime as _dt
import logging
import uuid as _py_uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import strawberry
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper, configure_mappers
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE, ONETOMANY
from sqlalchemy.sql import sqltypes
from sqlalchemy.types import TypeDecorator
from strawberry.scalars import JSON

from .errors import EntityDefinitionError

_logger = logging.getLogger("modelql")

BELONGS_TO = 'BelongsTo'
HAS_MANY = 'HasMany'
BELONGS_TO_MANY = 'BelongsToMany'

_KIND_BY_DIRECTION = {
    MANYTOONE: BELONGS_TO,
    ONETOMANY: HAS_MANY,
    MANYTOMANY: BELONGS_TO_MANY,
}

# Attributes never exposed in generated types, whatever their column info says.
SENSITIVE_ATTRIBUTES = frozenset({'password', 'contrasena'})


@dataclass(frozen=True)
class Attribute:
    name: str
    python_type: Any
    nullable: bool = True
    primary_key: bool = False
    sensitive: bool = False
    description: Optional[str] = None


@dataclass(frozen=True)
class Association:
    kind: str
    name: str
    target: str
    relationship: Any = field(default=None, compare=False, repr=False)

    @property
    def is_collection(self) -> bool:
        return self.kind in (HAS_MANY, BELONGS_TO_MANY)


@dataclass(frozen=True)
class EntityDefinition:
    name: str
    model: Any = field(compare=False, repr=False)
    primary_key: str
    attributes: Tuple[Attribute, ...]
    associations: Tuple[Association, ...] = ()
    resolvers: Mapping[str, Mapping[str, Any]] = field(default_factory=dict, compare=False, repr=False)
    plural: Optional[str] = None
    description: Optional[str] = None

    @property
    def visible_attributes(self) -> Tuple[Attribute, ...]:
        return tuple(a for a in self.attributes if not a.sensitive)

    @property
    def primary_key_attribute(self) -> Attribute:
        for attr in self.attributes:
            if attr.name == self.primary_key:
                return attr
        raise EntityDefinitionError(self.name, f"primary key {self.primary_key!r} is not a column attribute")

    def association(self, name: str) -> Association:
        for assoc in self.associations:
            if assoc.name == name:
                return assoc
        raise KeyError(name)


def sa_python_type(sqlatype: Any) -> Any:
    """Map a SQLAlchemy column type to a Python (annotation) type.

    Defaults to str for unknown types (safe GraphQL scalar mapping).
    """
    if isinstance(sqlatype, TypeDecorator):
        return sa_python_type(sqlatype.impl)
    # Enum before String: sqlalchemy.Enum subclasses String
    if isinstance(sqlatype, sqltypes.Enum):
        enum_cls = getattr(sqlatype, 'enum_class', None)
        if enum_cls is not None and issubclass(enum_cls, Enum):
            if not any(hasattr(enum_cls, a) for a in ('_enum_definition', '__strawberry_definition__')):
                strawberry.enum(enum_cls)
            return enum_cls
        return str
    if isinstance(sqlatype, sqltypes.Boolean):
        return bool
    if isinstance(sqlatype, sqltypes.Integer):
        return int
    if isinstance(sqlatype, sqltypes.DateTime):
        return _dt.datetime
    if isinstance(sqlatype, sqltypes.Date):
        return _dt.date
    if isinstance(sqlatype, sqltypes.Time):
        return _dt.time
    if isinstance(sqlatype, (sqltypes.Numeric, sqltypes.Float)):
        return float
    if isinstance(sqlatype, sqltypes.Uuid):
        return _py_uuid.UUID
    if isinstance(sqlatype, sqltypes.JSON):
        return JSON
    if isinstance(sqlatype, sqltypes.String):
        return str
    return str


def _is_sensitive(name: str, column: Any) -> bool:
    info = getattr(column, 'info', None) or {}
    return bool(info.get('sensitive')) or name in SENSITIVE_ATTRIBUTES


def iter_mappers(models: Any) -> List[Mapper]:
    """Return the mappers of every user entity in ``models``.

    ``models`` may be a declarative base, a SQLAlchemy ``registry`` or a
    mapping of name -> model. Mapping values that are not mapped classes
    (the base itself, engines, operator tables) are skipped.
    """
    registry = getattr(models, 'registry', None) if not isinstance(models, Mapping) else None
    if registry is None and hasattr(models, 'mappers'):
        registry = models
    if registry is not None:
        return sorted(registry.mappers, key=lambda m: m.class_.__name__)
    if not isinstance(models, Mapping):
        raise TypeError(f"Expected a declarative base, registry or mapping of models, got {type(models)!r}")
    mappers: List[Mapper] = []
    for key, value in models.items():
        if not isinstance(value, type):
            _logger.debug("modelql: skipping non-model entry %s", key)
            continue
        mapper = sa_inspect(value, raiseerr=False)
        if not isinstance(mapper, Mapper):
            _logger.debug("modelql: skipping unmapped entry %s", key)
            continue
        mappers.append(mapper)
    return mappers


def _attributes(mapper: Mapper) -> Tuple[Attribute, ...]:
    pk_columns = set(mapper.primary_key)
    out: List[Attribute] = []
    for prop in mapper.column_attrs:
        column = prop.columns[0]
        out.append(Attribute(
            name=prop.key,
            python_type=sa_python_type(column.type),
            nullable=bool(getattr(column, 'nullable', True)),
            primary_key=column in pk_columns,
            sensitive=_is_sensitive(prop.key, column),
            description=getattr(column, 'comment', None),
        ))
    return tuple(out)


def _associations(mapper: Mapper) -> Tuple[Association, ...]:
    out: List[Association] = []
    for rel in mapper.relationships:
        kind = _KIND_BY_DIRECTION[rel.direction]
        # A one-to-one declared with uselist=False behaves as a single reference
        if kind == HAS_MANY and not rel.uselist:
            kind = BELONGS_TO
        out.append(Association(kind=kind, name=rel.key, target=rel.mapper.class_.__name__, relationship=rel))
    return tuple(out)


def entity_from_mapper(mapper: Mapper) -> EntityDefinition:
    model = mapper.class_
    name = model.__name__
    if not mapper.primary_key:
        raise EntityDefinitionError(name, "no primary key")
    pk_prop = mapper.get_property_by_column(mapper.primary_key[0])
    description = model.__doc__ or getattr(getattr(model, '__table__', None), 'comment', None)
    return EntityDefinition(
        name=name,
        model=model,
        primary_key=pk_prop.key,
        attributes=_attributes(mapper),
        associations=_associations(mapper),
        resolvers=dict(getattr(model, '__resolvers__', None) or {}),
        plural=getattr(model, '__plural__', None),
        description=description.strip() if isinstance(description, str) else None,
    )


def load_entities(models: Any) -> Dict[str, EntityDefinition]:
    """Read and validate every entity in ``models``, keyed by entity name."""
    # relationship direction and target are only known once mappers are configured
    configure_mappers()
    entities: Dict[str, EntityDefinition] = {}
    for mapper in iter_mappers(models):
        entity = entity_from_mapper(mapper)
        if entity.name in entities:
            raise EntityDefinitionError(entity.name, "declared twice")
        entities[entity.name] = entity
    validate_entities(entities.values(), entities)
    _logger.debug("modelql: loaded entities %s", sorted(entities))
    return entities


def validate_entities(entities: Iterable[EntityDefinition], known: Mapping[str, EntityDefinition]) -> None:
    for entity in entities:
        entity.primary_key_attribute  # raises when the key is not a column attribute
        for assoc in entity.associations:
            if assoc.target not in known:
                raise EntityDefinitionError(
                    entity.name, f"association {assoc.name!r} targets unknown entity {assoc.target!r}"
                )
        for kind in entity.resolvers:
            if kind not in ('query', 'mutation'):
                raise EntityDefinitionError(entity.name, f"unknown resolver block {kind!r} in __resolvers__")
