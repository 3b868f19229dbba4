import logging
from functools import wraps
from typing import Callable, Optional

from pydantic import ValidationError
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)


def cache_aside(
    key_builder: Callable[..., str],
    model: type[SQLModel],
    ttl: Callable[[object], Optional[int]] = lambda repo: None,
    scope: Optional[Callable[..., bool]] = None,
):
    """
    Cache-aside read for repository methods returning a model or None.

    key_builder receives the method's args/kwargs (without self). The wrapped
    method runs only on a miss, and its result is cached as JSON. scope(entity,
    *args, **kwargs) must hold for a cached entity to be returned. Passing
    fresh=True skips the cache entirely.

    Example:
      @cache_aside(lambda project_id, owner_id: f"project:{project_id}", Project)
      async def get_by_id(self, project_id, owner_id): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, fresh: bool = False, **kwargs):
            if fresh:
                return await fn(self, *args, **kwargs)

            key = key_builder(*args, **kwargs)

            async def loader():
                value = await fn(self, *args, **kwargs)
                if value is None:
                    return None
                return value.model_dump(mode="json")

            raw = await self.cache.get(key, loader=loader, ttl=ttl(self))
            if raw is None:
                return None

            try:
                entity = model.model_validate(raw)
            except (ValidationError, TypeError) as e:
                logger.warning(f"Unreadable cache entry {key}, reading from store: {e}")
                await self.cache.delete(key)
                return await fn(self, *args, **kwargs)

            if scope is not None and not scope(entity, *args, **kwargs):
                return None
            return entity

        return wrapper

    return decorator
