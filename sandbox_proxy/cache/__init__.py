from .cache import CacheEntry, CachedContent, CompressingCache, cache_key

__all__ = ["CacheEntry", "CachedContent", "CompressingCache", "cache_key"]
