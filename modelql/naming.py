"""Common naming utilities for modelql.

Every generated GraphQL name (types, root fields, event topics and payload
keys) is derived here from the entity name so the rest of the package never
concatenates names by hand.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

__all__ = [
    "camel_to_snake",
    "snake_to_camel",
    "lower_first",
    "upper_first",
    "pluralize",
    "EntityNames",
    "entity_names",
]

_IRREGULAR_ENDINGS = ("s", "x", "z", "ch", "sh")

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def lower_first(name: str) -> str:
    return name[:1].lower() + name[1:] if name else name


def upper_first(name: str) -> str:
    return name[:1].upper() + name[1:] if name else name


def camel_to_snake(name: str) -> str:
    """``OrderItem`` -> ``order_item``; a run of capitals is one word (``HTTPRequest`` -> ``http_request``)."""
    return _WORD_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str, pascal: bool = False) -> str:
    """``order_item`` -> ``orderItem`` (``OrderItem`` with ``pascal=True``)."""
    words = [w for w in name.split("_") if w]
    joined = "".join(words[:1] + [upper_first(w) for w in words[1:]])
    return upper_first(joined) if pascal else lower_first(joined)


def pluralize(name: str) -> str:
    """Naive English plural keeping the original casing of the stem."""
    if not name:
        return name
    if name.endswith('y') and name[-2:].lower() not in ('ay', 'ey', 'iy', 'oy', 'uy'):
        return name[:-1] + 'ies'
    if name.lower().endswith(_IRREGULAR_ENDINGS):
        return name + 'es'
    return name + 's'


@dataclass(frozen=True)
class EntityNames:
    """Display names of one entity.

    For ``OrderItem``: singular ``orderItem``, plural ``orderItems``,
    type ``OrderItem``, type_plural ``OrderItems``, upper_snake ``ORDER_ITEM``.
    """

    singular: str
    plural: str
    type: str
    type_plural: str
    upper_snake: str

    def topic(self, verb: str) -> str:
        return f"{self.upper_snake}_{verb.upper()}"

    def event_field(self, verb: str) -> str:
        return f"{self.singular}{verb.capitalize()}"


def entity_names(entity: Any) -> EntityNames:
    """Names for an entity definition (or anything exposing ``name``/``plural``).

    A model may pin its plural with a ``__plural__`` class attribute; the
    metadata layer copies it to ``EntityDefinition.plural``.
    """
    name = getattr(entity, 'name', entity)
    type_name = upper_first(snake_to_camel(name, pascal=True) if '_' in name else name)
    plural = getattr(entity, 'plural', None) or pluralize(type_name)
    return EntityNames(
        singular=lower_first(type_name),
        plural=lower_first(plural),
        type=type_name,
        type_plural=upper_first(plural),
        upper_snake=camel_to_snake(type_name).upper(),
    )
