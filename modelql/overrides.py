"""Custom resolver overrides.

Root fields come from three layers, merged from lowest to highest priority:

1. generated fields (``order``, ``orders``, ``orderRestful``, ``addOrder``...)
2. fields discovered by a ``ResolverSource`` (by default a directory of modules)
3. inline overrides declared on the models::

       class Order(Base):
           __resolvers__ = {
               "query": {"bigOrders": big_orders},            # plain callable
               "mutation": {"archiveOrder": archive_field},   # strawberry field
           }

A later layer replaces an earlier field of the same name.
"""
from __future__ import annotations

import copy
import hashlib
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

import strawberry
from strawberry.types.field import StrawberryField

from .errors import CustomResolverError, EntityDefinitionError
from .metadata import EntityDefinition

_logger = logging.getLogger("modelql")

QUERY = 'query'
MUTATION = 'mutation'
RESOLVER_KINDS = (QUERY, MUTATION)

RESOLVER_EXPORT = 'resolver'
NAME_EXPORT = 'name'


class ResolverSource(Protocol):
    """Supplies externally defined root fields."""

    def list_resolvers(self, kind: str) -> List[Tuple[str, Any]]:
        ...


def is_field_descriptor(value: Any) -> bool:
    return isinstance(value, StrawberryField)


def copy_field(value: StrawberryField) -> StrawberryField:
    # Strawberry binds a field to the class it is attached to; every schema gets its own copy
    return copy.copy(value)


class ResolverDirectory:
    """Discover custom root fields in ``<path>/query`` and ``<path>/mutation``.

    Each ``*.py`` file (files starting with ``_`` are skipped) must export a
    Strawberry field, or a fully annotated callable, as ``resolver``. The
    field is named after the module's ``name`` export, else the field's own
    GraphQL name, else the file stem.
    A missing sub-directory contributes nothing; a missing root directory
    is a configuration error.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._cache: Dict[str, List[Tuple[str, Any]]] = {}

    def list_resolvers(self, kind: str) -> List[Tuple[str, Any]]:
        if kind not in RESOLVER_KINDS:
            raise ValueError(f"Unknown resolver kind {kind!r}")
        if kind in self._cache:
            return list(self._cache[kind])
        if not self.path.is_dir():
            raise CustomResolverError(f"Custom resolver directory {str(self.path)!r} does not exist or is not a directory")
        directory = self.path / kind
        found: List[Tuple[str, Any]] = []
        if directory.is_dir():
            for file in sorted(directory.glob('*.py')):
                if file.name.startswith('_'):
                    continue
                found.append(self._load_resolver(kind, file))
        self._cache[kind] = found
        _logger.debug("modelql: discovered %s resolvers %s in %s", kind, [n for n, _ in found], directory)
        return list(found)

    def _load_resolver(self, kind: str, file: Path) -> Tuple[str, Any]:
        module = self._load_module(kind, file)
        descriptor = getattr(module, RESOLVER_EXPORT, None)
        if not (is_field_descriptor(descriptor) or callable(descriptor)):
            raise CustomResolverError(
                f"{file} must export a strawberry field or a callable as {RESOLVER_EXPORT!r}, got {type(descriptor).__name__}"
            )
        graphql_name = descriptor.graphql_name if is_field_descriptor(descriptor) else None
        name = getattr(module, NAME_EXPORT, None) or graphql_name or file.stem
        return name, descriptor

    def _load_module(self, kind: str, file: Path) -> ModuleType:
        digest = hashlib.md5(str(file.resolve()).encode('utf-8')).hexdigest()[:10]
        module_name = f"_modelql_custom_{kind}_{file.stem}_{digest}"
        if module_name in sys.modules:
            return sys.modules[module_name]
        spec = importlib.util.spec_from_file_location(module_name, file)
        if spec is None or spec.loader is None:
            raise CustomResolverError(f"Could not load custom resolver module {file}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            sys.modules.pop(module_name, None)
            raise CustomResolverError(f"Failed to import custom resolver module {file}: {exc}") from exc
        return module


def discovered_overrides(source: Optional[ResolverSource], kind: str) -> Dict[str, StrawberryField]:
    """Fields supplied by ``source``; plain callables become fields typed by their own annotations."""
    if source is None:
        return {}
    out: Dict[str, StrawberryField] = {}
    for name, descriptor in source.list_resolvers(kind):
        if is_field_descriptor(descriptor):
            out[name] = copy_field(descriptor)
        elif callable(descriptor):
            out[name] = strawberry.mutation(resolver=descriptor) if kind == MUTATION else strawberry.field(resolver=descriptor)
        else:
            raise CustomResolverError(f"Discovered {kind} resolver {name!r} is neither a strawberry field nor a callable")
    return out


def inline_overrides(
    entity: EntityDefinition,
    kind: str,
    wrap: Callable[[Callable[..., Any]], StrawberryField],
) -> Dict[str, StrawberryField]:
    """Overrides declared in the entity's ``__resolvers__`` block.

    Strawberry fields are used verbatim; plain callables go through ``wrap``,
    which turns them into a field typed after the entity.
    """
    block = entity.resolvers.get(kind) or {}
    out: Dict[str, StrawberryField] = {}
    for name, value in block.items():
        if is_field_descriptor(value):
            out[name] = copy_field(value)
        elif callable(value):
            out[name] = wrap(value)
        else:
            raise EntityDefinitionError(entity.name, f"{kind} override {name!r} is neither a strawberry field nor a callable")
    return out


def merge_layers(kind: str, *layers: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge field layers given from lowest to highest priority."""
    merged: Dict[str, Any] = {}
    for layer in layers:
        for name, value in layer.items():
            if name in merged:
                _logger.info("modelql: %s field %r overridden by a custom resolver", kind, name)
            merged[name] = value
    return merged
