"""
Preprocess Cache
================

Bounded in-memory cache of restyled images.

Restyling is the slowest and most expensive single call in the pipeline,
and users often regenerate grids from the same photo. Entries are keyed
by the photo, the style prompt and the full-body flag.

Design Rules:
    - Owned by the application context, never module state
    - Fixed capacity, oldest-inserted entry evicted first
    - Re-putting an existing key refreshes its value, not its position
"""

import hashlib
import logging
from collections import OrderedDict
from typing import Optional


logger = logging.getLogger(__name__)


class PreprocessCache:
    """
    Bounded FIFO cache for restyled images.

    Attributes:
        max_entries: Maximum cached images
        hits: Lookups that found an entry
        misses: Lookups that did not

    Example:
        cache = PreprocessCache(max_entries=10)
        key = cache.key(photo_b64, "watercolor", full_body=False)
        if (hit := cache.get(key)) is None:
            cache.put(key, restyled_b64)
    """

    def __init__(self, max_entries: int = 10) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self.max_entries = max_entries
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        self.hits: int = 0
        self.misses: int = 0

    @staticmethod
    def key(image_base64: str, style_prompt: Optional[str], full_body: bool) -> str:
        """Content key for a restyle request."""
        digest = hashlib.sha256()
        digest.update(image_base64.encode("utf-8"))
        digest.update(b"\x00")
        digest.update((style_prompt or "").encode("utf-8"))
        digest.update(b"\x01" if full_body else b"\x00")
        return digest.hexdigest()

    def get(self, key: str) -> Optional[str]:
        value = self._entries.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def put(self, key: str, value: str) -> None:
        """Store a value, evicting the oldest entry when over capacity."""
        self._entries[key] = value

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Preprocess cache full, evicted {evicted[:12]}")

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def metrics(self) -> dict:
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }
