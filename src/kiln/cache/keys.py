"""Build stable, type-tagged cache keys from arbitrary argument tuples"""

import datetime as _dt
import json
import uuid
from decimal import Decimal
from typing import Any

from pydantic_core import PydanticUndefined

# Integers beyond this magnitude are tagged separately from ordinary numbers
_SAFE_INTEGER = 2**53


def _is_big(value: int) -> bool:
    return abs(value) > _SAFE_INTEGER


def _stable_stringify(value: Any) -> str:
    """Encode a nested value with sorted object keys"""
    if value is None:
        return "null"
    if value is PydanticUndefined:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"bigint:{value}" if _is_big(value) else str(value)
    if isinstance(value, float):
        return json.dumps(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_stable_stringify(item) for item in value) + "]"
    if isinstance(value, (set, frozenset)):
        return "set:[" + ",".join(sorted(_stable_stringify(item) for item in value)) + "]"
    if isinstance(value, dict):
        # Keys keep their type tag so 1 and "1" stay distinct
        items = sorted(
            (_stable_stringify(k), _stable_stringify(v)) for k, v in value.items()
        )
        return "{" + ",".join(f"{k}:{v}" for k, v in items) + "}"
    if isinstance(value, Decimal):
        return f"decimal:{value}"
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return f"{type(value).__name__}:{value.isoformat()}"
    if isinstance(value, uuid.UUID):
        return f"uuid:{value}"
    return json.dumps(str(value))


def _encode_part(part: Any) -> str:
    if part is None:
        return "null"
    if part is PydanticUndefined:
        return "undefined"
    if isinstance(part, bool):
        return "b:true" if part else "b:false"
    if isinstance(part, int):
        return f"bigint:{part}" if _is_big(part) else f"n:{part}"
    if isinstance(part, float):
        return f"n:{part!r}"
    if isinstance(part, str):
        return f"s:{part}"
    if isinstance(part, (list, tuple)):
        return "a:" + _stable_stringify(part)
    if isinstance(part, dict):
        return "o:" + _stable_stringify(part)
    if isinstance(part, (set, frozenset)):
        return _stable_stringify(part)
    return f"{type(part).__name__}:{part}"


def make_cache_key(*parts: Any) -> str:
    """Create a stable, unique cache key from any number of arguments

    Every part is prefixed with a type tag so that values with the same text
    but different types never collide. Mappings are encoded with their keys
    sorted; sequences keep their order.

    Args:
        *parts: Values that together identify a cached result.

    Returns:
        The encoded key.

    Examples:
        >>> make_cache_key("users", "find_by_id", 1)
        's:users:s:find_by_id:n:1'
        >>> make_cache_key({"y": 2, "x": 1}) == make_cache_key({"x": 1, "y": 2})
        True
        >>> make_cache_key("1") == make_cache_key(1)
        False
    """
    return ":".join(_encode_part(part) for part in parts)
