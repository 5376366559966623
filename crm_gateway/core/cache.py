import functools
from typing import Any, Dict, Iterable, List, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder

from crm_gateway.core.config import settings
from crm_gateway.core.logging import get_logger
from crm_gateway.core.redis_client import redis_client

logger = get_logger(__name__)


def generate_key(module: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
    """``module:endpoint`` followed by ``:k:v`` for each param, sorted by key."""
    parts = [module, endpoint]
    for key in sorted(params or {}):
        parts.append(f"{key}:{params[key]}")
    return ":".join(parts)


def _find_request(kwargs: Dict[str, Any]) -> Optional[Request]:
    for value in kwargs.values():
        if isinstance(value, Request):
            return value
    return None


def _find_user_id(kwargs: Dict[str, Any]) -> Optional[str]:
    user = kwargs.get("current_user")
    return getattr(user, "id", None)


def build_cache_key(
    module: str,
    endpoint: str,
    request: Optional[Request],
    user_id: Optional[str] = None,
    include_user_id: bool = False,
    include_query: bool = False,
) -> str:
    params: Dict[str, Any] = {}
    if include_user_id and user_id:
        params["userId"] = user_id
    if request is not None:
        params.update(request.path_params)
        if include_query:
            params.update({k: v for k, v in request.query_params.items() if v not in (None, "")})
    return generate_key(module, endpoint, params or None)


def invalidation_patterns(
    module: str,
    endpoint: Optional[str],
    request: Optional[Request],
    user_id: Optional[str] = None,
    include_user_id: bool = False,
    additional_keys: Iterable[str] = (),
) -> List[str]:
    """Keys or ``*`` patterns a mutation on ``module``/``endpoint`` makes stale."""
    patterns: List[str] = []
    if endpoint:
        params: Dict[str, Any] = dict(request.path_params) if request is not None else {}
        if include_user_id and user_id:
            params["userId"] = user_id
        if params:
            patterns.append(generate_key(module, endpoint, params))
        else:
            patterns.append(f"{module}:{endpoint}")
            patterns.append(f"{module}:{endpoint}:*")
    else:
        patterns.append(f"{module}:*")
    patterns.extend(additional_keys)
    return patterns


def cached(
    module: str,
    endpoint: str,
    include_user_id: bool = False,
    include_query: bool = False,
    ttl: Optional[int] = settings.CACHE_DEFAULT_TTL,
):
    """
    Read-through cache for an async endpoint.

    The endpoint should accept a ``request: Request`` argument so path and
    query params can take part in the key; a ``current_user`` argument
    supplies the user id. A ttl of 0 or None bypasses the cache. Redis
    failures are logged and treated as a miss.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not ttl:
                return await func(*args, **kwargs)

            key = build_cache_key(
                module,
                endpoint,
                _find_request(kwargs),
                _find_user_id(kwargs),
                include_user_id=include_user_id,
                include_query=include_query,
            )

            try:
                hit = await redis_client.get_json(key)
            except Exception as e:
                logger.warning("Cache read failed", key=key, error=str(e))
                hit = None
            if hit is not None:
                return hit

            result = await func(*args, **kwargs)

            try:
                await redis_client.set_json(key, jsonable_encoder(result), ttl)
            except Exception as e:
                logger.warning("Cache write failed", key=key, error=str(e))
            return result

        return wrapper

    return decorator


def invalidates_cache(
    module: str,
    endpoint: Optional[str] = None,
    include_user_id: bool = False,
    additional_keys: Iterable[str] = (),
):
    """Delete the derived cache keys after the wrapped mutation succeeds."""
    additional_keys = tuple(additional_keys)

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)

            patterns = invalidation_patterns(
                module,
                endpoint,
                _find_request(kwargs),
                _find_user_id(kwargs),
                include_user_id=include_user_id,
                additional_keys=additional_keys,
            )
            try:
                await redis_client.delete_patterns(patterns)
            except Exception as e:
                logger.warning("Cache invalidation failed", patterns=patterns, error=str(e))
            return result

        return wrapper

    return decorator
