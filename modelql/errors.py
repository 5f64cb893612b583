"""Exceptions raised by modelql.

Configuration problems surface while the schema is being built; the only
request-time error of our own is ``RecordNotFoundError``. Store failures are
SQLAlchemy's and propagate unchanged.
"""
from __future__ import annotations


class ModelQLError(Exception):
    """Base class for modelql errors."""


class SchemaConfigurationError(ModelQLError):
    """Schema could not be derived from the supplied configuration."""


class EntityDefinitionError(SchemaConfigurationError):
    """Entity metadata is missing or malformed (no primary key, dangling association)."""

    def __init__(self, entity: str, message: str):
        self.entity = entity
        super().__init__(f"{entity}: {message}")


class CustomResolverError(SchemaConfigurationError):
    """Custom resolver discovery failed (unreadable directory, bad export)."""


class RecordNotFoundError(ModelQLError):
    """No row matches the primary key supplied to a mutation."""

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} with primary key {key!r} not found")
