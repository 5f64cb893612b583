"""Deep HasMany discovery used by the create/update mutations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from .metadata import HAS_MANY, Association, EntityDefinition


@dataclass(frozen=True)
class CascadeNode:
    """One HasMany edge and everything cascading below its target."""

    association: Association
    entity: EntityDefinition
    include: Tuple['CascadeNode', ...] = ()

    @property
    def name(self) -> str:
        return self.association.name


def deep_associations(
    entity_name: str,
    entities: Mapping[str, EntityDefinition],
    _path: Optional[Tuple[str, ...]] = None,
) -> List[CascadeNode]:
    """Return every HasMany chain reachable from ``entity_name``, recursively.

    BelongsTo and BelongsToMany edges are not followed. An edge leading back
    to an entity already on the current path (A has-many B has-many A, or a
    self-referencing tree) is kept with an empty ``include``, so the walk
    always terminates.
    """
    path = (_path or ()) + (entity_name,)
    nodes: List[CascadeNode] = []
    for assoc in entities[entity_name].associations:
        if assoc.kind != HAS_MANY:
            continue
        target = entities[assoc.target]
        if assoc.target in path:
            include: Tuple[CascadeNode, ...] = ()
        else:
            include = tuple(deep_associations(assoc.target, entities, path))
        nodes.append(CascadeNode(association=assoc, entity=target, include=include))
    return nodes
