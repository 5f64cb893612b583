"""modelql public API and lightweight lazy exports.

Importing ``modelql`` does not import Strawberry or SQLAlchemy; the schema
machinery is loaded on first attribute access, so model modules may import
``modelql`` helpers without pulling in the whole package.

Exposes:
- generate_schema, generate_schema_roots, SchemaOptions, SchemaRoots
- generate_model_types, ModelTypes
- generate_query_root, generate_mutation_root, generate_subscription_root
- deep_associations, PubSub, get_default_pubsub, DataLoaderContext
- ResolverDirectory and the exceptions of ``modelql.errors``
"""
from __future__ import annotations

_LAZY_EXPORTS = {
    'generate_schema': 'schema',
    'generate_schema_roots': 'schema',
    'SchemaOptions': 'schema',
    'SchemaRoots': 'schema',
    'generate_model_types': 'model_types',
    'ModelTypes': 'model_types',
    'generate_query_root': 'query',
    'PageInfo': 'query',
    'generate_mutation_root': 'mutation',
    'generate_subscription_root': 'subscription',
    'deep_associations': 'cascade',
    'CascadeNode': 'cascade',
    'PubSub': 'pubsub',
    'get_default_pubsub': 'pubsub',
    'DataLoaderContext': 'loaders',
    'ResolverDirectory': 'overrides',
    'load_entities': 'metadata',
    'EntityDefinition': 'metadata',
    'entity_names': 'naming',
    'ModelQLError': 'errors',
    'SchemaConfigurationError': 'errors',
    'EntityDefinitionError': 'errors',
    'CustomResolverError': 'errors',
    'RecordNotFoundError': 'errors',
}


def __getattr__(name: str):  # PEP 562 lazy exports
    import importlib as _importlib
    module = _LAZY_EXPORTS.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(_importlib.import_module(f"{__name__}.{module}"), name)


__all__ = sorted(_LAZY_EXPORTS)
