"""Request-scoped caching primitives"""

from .keys import make_cache_key
from .request_cache import ANY_RECORD, RequestCache

__all__ = ["ANY_RECORD", "RequestCache", "make_cache_key"]
