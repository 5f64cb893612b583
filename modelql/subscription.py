"""Subscription root: added/updated/deleted streams per entity.

Each field subscribes to one bus topic when the client starts iterating and
unsubscribes when the stream ends (client disconnect or ``aclose``).
"""
from __future__ import annotations

import logging
from typing import Any, AsyncGenerator, Dict, Mapping, Optional

import strawberry
from strawberry.types.field import StrawberryField

from .core.utils import with_arguments
from .events import ADDED, DELETED, UPDATED, payload_key, topic_for
from .metadata import EntityDefinition
from .model_types import ModelTypes, root_type
from .pubsub import PubSub

_logger = logging.getLogger("modelql")


def _event_field(pub_sub: PubSub, entity: EntityDefinition, verb: str, value_type: Any) -> StrawberryField:
    topic = topic_for(entity, verb)
    field_name = payload_key(entity, verb)

    async def subscribe(info, **_):
        subscription = pub_sub.subscribe(topic)
        try:
            async for payload in subscription:
                # payloads published by the generated mutations are keyed by field name
                if isinstance(payload, Mapping) and field_name in payload:
                    yield payload[field_name]
                else:
                    yield payload
        finally:
            subscription.unsubscribe()
            _logger.debug("modelql: %s subscriber left", topic)

    resolver = with_arguments(subscribe, {}, AsyncGenerator[value_type, None], name=field_name)
    return strawberry.subscription(resolver=resolver, description=f"Published on {topic}")


def generated_subscription_fields(
    entity: EntityDefinition, types: ModelTypes, pub_sub: PubSub
) -> Dict[str, StrawberryField]:
    output_type = types.output_types[entity.name]
    pk_type = entity.primary_key_attribute.python_type
    return {
        payload_key(entity, ADDED): _event_field(pub_sub, entity, ADDED, output_type),
        payload_key(entity, UPDATED): _event_field(pub_sub, entity, UPDATED, output_type),
        payload_key(entity, DELETED): _event_field(pub_sub, entity, DELETED, pk_type),
    }


def generate_subscription_root(types: ModelTypes, pub_sub: PubSub) -> Optional[Any]:
    """Build the Subscription root type, or None when there are no entities."""
    fields: Dict[str, Any] = {}
    for entity in types.entities.values():
        fields.update(generated_subscription_fields(entity, types, pub_sub))
    if not fields:
        return None
    _logger.debug("modelql: subscription fields %s", sorted(fields))
    return root_type('Subscription', fields, "Change events of the generated mutations")
