from .backends import CacheBackend, MemoryCache, RedisCache, get_cache, set_cache
from .keys import USER_RATING_PREFIX, ratings_page_key, user_achievements_prefix, user_rating_key

__all__ = [
    "CacheBackend",
    "MemoryCache",
    "RedisCache",
    "get_cache",
    "set_cache",
    "ratings_page_key",
    "user_achievements_prefix",
    "user_rating_key",
    "USER_RATING_PREFIX",
]
