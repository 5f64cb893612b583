"""Schema assembly: models in, ``strawberry.Schema`` out."""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields as dc_fields, replace
from typing import Any, Optional

import strawberry
from strawberry.schema.config import StrawberryConfig

from .errors import SchemaConfigurationError
from .model_types import ModelTypes, generate_model_types
from .mutation import generate_mutation_root
from .overrides import ResolverDirectory, ResolverSource
from .pubsub import PubSub, get_default_pubsub
from .query import generate_query_root
from .subscription import generate_subscription_root

_logger = logging.getLogger("modelql")


@dataclass
class SchemaOptions:
    """Options of ``generate_schema``.

    Attributes:
        customs_dir_path: directory holding ``query/`` and ``mutation/``
            custom resolver modules
        resolver_source: any ``ResolverSource``; takes precedence over
            ``customs_dir_path``
        subscriptions: build the Subscription root and publish change events
        pub_sub: bus for change events; the process-wide bus when omitted
        strawberry_config: passed to ``strawberry.Schema``; defaults to
            ``StrawberryConfig(auto_camel_case=False)`` so column names stay verbatim
    """

    customs_dir_path: Optional[str] = None
    resolver_source: Optional[ResolverSource] = None
    subscriptions: bool = False
    pub_sub: Optional[PubSub] = None
    strawberry_config: Optional[StrawberryConfig] = None

    def source(self) -> Optional[ResolverSource]:
        if self.resolver_source is not None:
            return self.resolver_source
        if self.customs_dir_path:
            return ResolverDirectory(self.customs_dir_path)
        return None

    def config(self) -> StrawberryConfig:
        if self.strawberry_config is not None:
            return self.strawberry_config
        return StrawberryConfig(auto_camel_case=False)


@dataclass
class SchemaRoots:
    query: Any
    mutation: Optional[Any]
    subscription: Optional[Any]
    types: ModelTypes
    pub_sub: Optional[PubSub] = None


def _options(options: Optional[SchemaOptions], overrides: dict) -> SchemaOptions:
    options = options or SchemaOptions()
    unknown = set(overrides) - {f.name for f in dc_fields(SchemaOptions)}
    if unknown:
        raise TypeError(f"Unknown schema options: {', '.join(sorted(unknown))}")
    return replace(options, **overrides) if overrides else options


def generate_schema_roots(
    models: Any,
    types: Optional[ModelTypes] = None,
    *,
    options: Optional[SchemaOptions] = None,
    **overrides: Any,
) -> SchemaRoots:
    """Build the Query, Mutation and (optionally) Subscription roots.

    Args:
        models: a declarative base, a SQLAlchemy registry or a mapping of models
        types: previously generated ``ModelTypes`` to reuse
        options: ``SchemaOptions``; keyword ``overrides`` replace single options
    """
    opts = _options(options, overrides)
    if types is None:
        types = generate_model_types(models)
    if not types.entities:
        raise SchemaConfigurationError("No mapped entities found; nothing to build a schema from")
    source = opts.source()
    pub_sub = None
    if opts.subscriptions:
        pub_sub = opts.pub_sub or get_default_pubsub()
    query = generate_query_root(types, resolver_source=source)
    mutation = generate_mutation_root(types, resolver_source=source, pub_sub=pub_sub)
    subscription = generate_subscription_root(types, pub_sub) if pub_sub is not None else None
    _logger.debug(
        "modelql: built schema roots for %s (subscriptions %s)",
        sorted(types.entities), 'on' if subscription is not None else 'off',
    )
    return SchemaRoots(query=query, mutation=mutation, subscription=subscription, types=types, pub_sub=pub_sub)


def generate_schema(
    models: Any,
    types: Optional[ModelTypes] = None,
    *,
    options: Optional[SchemaOptions] = None,
    **overrides: Any,
) -> strawberry.Schema:
    """Generate a complete ``strawberry.Schema`` from ``models``.

    Usage:
        schema = generate_schema(Base, subscriptions=True, customs_dir_path="resolvers")
        await schema.execute(query, context_value={"db_session": session})
    """
    opts = _options(options, overrides)
    roots = generate_schema_roots(models, types, options=opts)
    return strawberry.Schema(
        query=roots.query,
        mutation=roots.mutation,
        subscription=roots.subscription,
        config=opts.config(),
    )
