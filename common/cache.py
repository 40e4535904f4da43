# common/cache.py
from __future__ import annotations
import time
from typing import Any, Dict, Optional, Tuple


def now_ms() -> float:
    return time.time() * 1000


class DefaultCache:
    """
    Small in-proc key/value cache. `expired_time` is an absolute epoch-ms deadline;
    None means the value never expires.
    """

    def __init__(self) -> None:
        self.values: Dict[str, Tuple[Any, Optional[float]]] = {}

    @staticmethod
    def _key(key: str, namespace: Optional[str] = None) -> str:
        return f"{namespace}/{key}" if namespace else key

    async def get(self, key: str, namespace: Optional[str] = None) -> Any:
        hit = self.values.get(self._key(key, namespace))
        if hit is None:
            return None
        value, expired_time = hit
        if expired_time is None or expired_time - now_ms() > 0:
            return value
        return None

    async def set(self, key: str, value: Any,
                  expired_time: Optional[float] = None,
                  namespace: Optional[str] = None) -> bool:
        self.values[self._key(key, namespace)] = (value, expired_time)
        return True


internal_cache = DefaultCache()
