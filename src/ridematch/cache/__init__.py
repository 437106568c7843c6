from .backends import CacheBackend, InMemoryCacheBackend, RedisCacheBackend

__all__ = ["CacheBackend", "InMemoryCacheBackend", "RedisCacheBackend"]
