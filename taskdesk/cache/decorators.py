from functools import wraps
from typing import Callable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from taskdesk.cache.layer import cache_layer


def request_cache_key(request: Request) -> str:
    """Exact request path plus query string, e.g. ``/tasks?status=Pending``."""
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _default_key(request: Request, *_, **__) -> str:
    return request_cache_key(request)


def cached_response(key_builder: Callable[..., str] = None, l2_ttl: int = None):
    """
    Decorator for async FastAPI endpoints returning JSON-able data.
    key_builder receives the same args/kwargs as the endpoint.
    Example:
      @router.get("/")
      @cached_response(l2_ttl=300)
      async def list_things(request: Request, ...): ...
    """

    build_key = key_builder or _default_key

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            key = build_key(*args, **kwargs)

            # loader closure calls the wrapped endpoint
            async def loader():
                value = await fn(*args, **kwargs)
                return jsonable_encoder(value, by_alias=True)

            body = await cache_layer.get(key, loader=loader, l2_ttl=l2_ttl)
            return JSONResponse(content=body)

        return wrapper

    return decorator
