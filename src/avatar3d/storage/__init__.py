"""
Storage Module
==============

Bounded, explicitly owned stores:
    - PreprocessCache: restyled images keyed by photo + style
    - RenderHistory: past renders, newest first, optional JSON persistence
"""

from avatar3d.storage.cache import PreprocessCache
from avatar3d.storage.history import RenderHistory, RenderNotFoundError, RenderStoreError


__all__ = [
    "PreprocessCache",
    "RenderHistory",
    "RenderNotFoundError",
    "RenderStoreError",
]
