"""
进程内缓存后端
"""
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple


class CacheBackend:
    """缓存后端接口，可替换为 Redis 等共享缓存实现"""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def items(self, prefix: str = "") -> Dict[str, Any]:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class TTLCacheBackend(CacheBackend):
    """
    带过期时间的LRU缓存

    每个键可以单独设置TTL，过期的键在读取时惰性清除；
    容量满时淘汰最久未使用的键。
    """
    def __init__(self, capacity: int = 10000, timer: Callable[[], float] = time.monotonic):
        self.capacity = capacity
        self.timer = timer
        self.cache: "OrderedDict[str, Tuple[Any, Optional[float]]]" = OrderedDict()
        self.lock = threading.Lock()

    def _expired(self, expires_at: Optional[float], now: float) -> bool:
        return expires_at is not None and now >= expires_at

    def get(self, key: str) -> Optional[Any]:
        with self.lock:
            entry = self.cache.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at, self.timer()):
                del self.cache[key]
                return None
            self.cache.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self.lock:
            expires_at = self.timer() + ttl if ttl is not None else None
            if key in self.cache:
                self.cache.move_to_end(key)
            elif len(self.cache) >= self.capacity:
                self.cache.popitem(last=False)
            self.cache[key] = (value, expires_at)

    def delete(self, key: str) -> bool:
        with self.lock:
            return self.cache.pop(key, None) is not None

    def items(self, prefix: str = "") -> Dict[str, Any]:
        with self.lock:
            now = self.timer()
            result = {}
            for key in list(self.cache.keys()):
                value, expires_at = self.cache[key]
                if self._expired(expires_at, now):
                    del self.cache[key]
                    continue
                if key.startswith(prefix):
                    result[key] = value
            return result

    def clear(self) -> None:
        with self.lock:
            self.cache.clear()
