"""Change events published by mutations and consumed by subscriptions.

Topic ``ORDER_ITEM_ADDED`` carries ``{"orderItemAdded": <row>}``.
"""
from __future__ import annotations

from typing import Any, Optional

from .metadata import EntityDefinition
from .naming import entity_names
from .pubsub import PubSub

ADDED = 'ADDED'
UPDATED = 'UPDATED'
DELETED = 'DELETED'
VERBS = (ADDED, UPDATED, DELETED)


def topic_for(entity: EntityDefinition, verb: str) -> str:
    return entity_names(entity).topic(verb)


def payload_key(entity: EntityDefinition, verb: str) -> str:
    return entity_names(entity).event_field(verb)


def publish_change(pubsub: Optional[PubSub], entity: EntityDefinition, verb: str, value: Any) -> int:
    """Publish one change event; a missing bus (subscriptions disabled) publishes nothing."""
    if pubsub is None:
        return 0
    return pubsub.publish(topic_for(entity, verb), {payload_key(entity, verb): value})
