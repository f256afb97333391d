from __future__ import annotations
import time
import uuid
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from . import store

settings = get_settings()


class DefaultEventMissing(LookupError):
    pass


class DefaultEventResolver:
    """Looks up the event that v1-legacy payloads (and event-less attendees) belong to.

    The id is cached for ``ttl_seconds``; call ``invalidate()`` after changing
    or deleting the default event.
    """

    def __init__(self, slug: str, ttl_seconds: int, clock=time.monotonic):
        self.slug = slug
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: tuple[uuid.UUID, float] | None = None

    async def resolve(self, db: AsyncSession) -> uuid.UUID:
        now = self._clock()
        if self._cached and self._cached[1] > now:
            return self._cached[0]
        event = await store.get_event_by_slug(db, self.slug)
        if event is None:
            raise DefaultEventMissing(f"default event {self.slug!r} not found")
        self._cached = (event.id, now + self.ttl_seconds)
        return event.id

    async def resolve_or_none(self, db: AsyncSession) -> uuid.UUID | None:
        try:
            return await self.resolve(db)
        except DefaultEventMissing:
            return None

    def bind(self, db: AsyncSession):
        """Zero-arg coroutine function for ``codec.decode``."""
        async def _resolve() -> uuid.UUID:
            return await self.resolve(db)
        return _resolve

    def invalidate(self) -> None:
        self._cached = None


_resolver: DefaultEventResolver | None = None

def get_default_event_resolver() -> DefaultEventResolver:
    global _resolver
    if _resolver is None:
        _resolver = DefaultEventResolver(settings.default_event_slug, settings.default_event_cache_ttl_seconds)
    return _resolver
