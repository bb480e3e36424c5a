# Utils package for Canvas Lite

from .safe_kuzu_manager import (
    get_safe_kuzu_manager,
    reset_safe_kuzu_manager,
    safe_query_value,
)

from .simple_cache import (
    cache_get,
    cache_set,
    cache_delete,
    cache_clear,
    cached,
)

__all__ = [
    'get_safe_kuzu_manager',
    'reset_safe_kuzu_manager',
    'safe_query_value',
    'cache_get',
    'cache_set',
    'cache_delete',
    'cache_clear',
    'cached',
]
