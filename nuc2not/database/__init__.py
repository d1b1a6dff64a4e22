"""Durable local storage for cached items, blobs and migration records."""

from .store import CacheStore, safe_filename, slugify

__all__ = ["CacheStore", "safe_filename", "slugify"]
