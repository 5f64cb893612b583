from __future__ import annotations

import asyncio
import inspect
from dataclasses import fields as _dc_fields, is_dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from strawberry import UNSET
from strawberry.types import Info

__all__ = [
    'SESSION_KEYS',
    'LOADER_CONTEXT_KEY',
    'context_get',
    'get_db_session',
    'require_db_session',
    'get_context_lock',
    'get_loader_context',
    'input_to_dict',
    'with_arguments',
]

SESSION_KEYS = ('db_session', 'db', 'session', 'async_session')
LOADER_CONTEXT_KEY = 'dataloader_context'
_LOCK_KEY = '_modelql_db_lock'


def _context_of(info_or_ctx: Any) -> Any:
    if isinstance(info_or_ctx, Info):
        return info_or_ctx.context
    return info_or_ctx


def context_get(ctx: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a dict-like or attribute-style context."""
    if ctx is None:
        return default
    if isinstance(ctx, dict):
        return ctx.get(key, default)
    getter = getattr(ctx, 'get', None)
    if callable(getter):
        return getter(key, default)
    return getattr(ctx, key, default)


def get_db_session(info_or_ctx: Any) -> Any | None:
    """Best-effort extraction of an AsyncSession-like object from context.

    Accepts either a Strawberry ``Info`` or a plain context object/dict. Tries
    common keys/attributes in order: ``db_session``, ``db``, ``session``,
    ``async_session``.

    Returns:
        The session object if found; otherwise ``None``.
    """
    ctx = _context_of(info_or_ctx)
    for key in SESSION_KEYS:
        value = context_get(ctx, key)
        if value is not None:
            return value
    return None


def require_db_session(info_or_ctx: Any) -> Any:
    session = get_db_session(info_or_ctx)
    if session is None:
        raise RuntimeError(
            "No database session on the request context; pass one as "
            f"one of {', '.join(SESSION_KEYS)}"
        )
    return session


def get_context_lock(info_or_ctx: Any) -> asyncio.Lock:
    """Return a per-request asyncio.Lock stored on the context to serialize session access.

    One AsyncSession does not allow concurrent operations, while Strawberry
    resolves sibling fields concurrently; every resolver touching the session
    goes through this lock. Contexts that cannot hold attributes get a fresh
    lock, which only serializes the caller itself.
    """
    ctx = _context_of(info_or_ctx)
    lock = context_get(ctx, _LOCK_KEY)
    if lock is not None:
        return lock
    lock = asyncio.Lock()
    if isinstance(ctx, dict):
        ctx[_LOCK_KEY] = lock
    elif ctx is not None:
        try:
            setattr(ctx, _LOCK_KEY, lock)
        except AttributeError:
            pass
    return lock


def get_loader_context(info_or_ctx: Any) -> Any:
    """Return the batching context supplied by the caller, or the raw context.

    Falling back to the raw context keeps association resolvers working
    without request-scoped batching.
    """
    ctx = _context_of(info_or_ctx)
    loader_ctx = context_get(ctx, LOADER_CONTEXT_KEY)
    return loader_ctx if loader_ctx is not None else ctx


def input_to_dict(obj: Any) -> Any:
    """Convert a Strawberry input instance (or nested list/dict) to plain Python dicts/lists.

    Omitted (UNSET) input fields are dropped so callers can tell "absent" from
    an explicit null.
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, Enum):
        return obj
    if isinstance(obj, (list, tuple)):
        return [input_to_dict(x) for x in obj]
    if isinstance(obj, dict):
        return {k: input_to_dict(v) for k, v in obj.items() if v is not UNSET}
    if is_dataclass(obj) and not isinstance(obj, type):
        out: Dict[str, Any] = {}
        for f in _dc_fields(obj):
            value = getattr(obj, f.name, UNSET)
            if value is UNSET:
                continue
            out[f.name] = input_to_dict(value)
        return out
    return obj


def with_arguments(
    fn: Callable[..., Any],
    arguments: Dict[str, Any],
    return_type: Any,
    *,
    root: bool = False,
    name: Optional[str] = None,
) -> Callable[..., Any]:
    """Expose ``arguments`` (name -> annotation or (annotation, default)) as GraphQL args of ``fn``.

    ``fn`` takes ``info`` (and ``root`` when requested) plus ``**kwargs``;
    Strawberry reads the generated signature to build the field arguments.
    Arguments default to ``None`` unless an explicit default is given;
    pass ``inspect.Parameter.empty`` as default for a required argument.
    """
    params = []
    if root:
        params.append(inspect.Parameter('root', inspect.Parameter.POSITIONAL_OR_KEYWORD))
    params.append(inspect.Parameter('info', inspect.Parameter.POSITIONAL_OR_KEYWORD, annotation=Info))
    annotations: Dict[str, Any] = {'info': Info}
    for arg_name, spec in arguments.items():
        annotation, default = spec if isinstance(spec, tuple) else (spec, None)
        params.append(inspect.Parameter(arg_name, inspect.Parameter.KEYWORD_ONLY, annotation=annotation, default=default))
        annotations[arg_name] = annotation
    annotations['return'] = return_type
    fn.__signature__ = inspect.Signature(params, return_annotation=return_type)  # type: ignore[attr-defined]
    fn.__annotations__ = annotations
    if name:
        fn.__name__ = name
        fn.__qualname__ = name
    return fn
