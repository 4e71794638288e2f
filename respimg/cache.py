"""Per-build memo of transcoded images."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple

from .results import Placeholder, SizedVariant

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    path: str
    mtime: float


@dataclass(frozen=True)
class CachedImage:
    variants: List[SizedVariant]
    placeholder: Optional[Placeholder] = None


class ProcessedImageCache:
    """
    Insert-once map from CacheKey to CachedImage, scoped to one build.

    Concurrent lookups of a key that is still being produced await the same
    task, so every key is computed at most once.
    """

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, CachedImage] = {}
        self._pending: Dict[CacheKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Optional[CachedImage]:
        return self._entries.get(key)

    def items(self) -> Iterator[Tuple[CacheKey, CachedImage]]:
        return iter(list(self._entries.items()))

    def processed_paths(self) -> set:
        return {key.path for key in self._entries}

    def insert(self, key: CacheKey, entry: CachedImage) -> CachedImage:
        # First writer wins, later inserts get the stored entry back.
        return self._entries.setdefault(key, entry)

    async def get_or_create(
        self,
        key: CacheKey,
        factory: Callable[[], Awaitable[CachedImage]],
    ) -> Tuple[CachedImage, bool]:
        """Return (entry, hit). factory runs only when nothing is stored or in flight."""
        cached = self.get(key)
        if cached is not None:
            return cached, True

        task = self._pending.get(key)
        if task is not None:
            logger.debug("Waiting for in-flight processing of %s", key.path)
            return await asyncio.shield(task), True

        task = asyncio.ensure_future(factory())
        self._pending[key] = task
        try:
            entry = await task
        finally:
            self._pending.pop(key, None)
        return self.insert(key, entry), False
