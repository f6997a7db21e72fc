"""
读穿/写穿缓存

持久化存储是权威数据源，缓存只是加速层：
- 读：先查缓存，未命中时从存储加载并回填缓存
- 写：先写存储，成功后再写缓存（缓存失败只记录日志）
"""
import json
import logging
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from .backend import CacheBackend

logger = logging.getLogger(__name__)

V = TypeVar("V")
T = TypeVar("T")


class ReadThroughCache(Generic[V]):
    def __init__(self, backend: CacheBackend, namespace: str, default_ttl: Optional[float] = None):
        self.backend = backend
        self.namespace = namespace
        self.default_ttl = default_ttl

    def _key(self, key: Any) -> str:
        return f"{self.namespace}:{key}"

    def _encode(self, value: V) -> str:
        return json.dumps(value)

    def _decode(self, raw: str) -> V:
        return json.loads(raw)

    def peek(self, key: Any) -> Optional[V]:
        """只查缓存，不回源"""
        try:
            raw = self.backend.get(self._key(key))
        except Exception as e:
            logger.warning(f"Cache read failed for {self._key(key)}: {e}")
            return None
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping undecodable cache entry {self._key(key)}: {e}")
            self.invalidate(key)
            return None

    def put(self, key: Any, value: V, ttl: Optional[float] = None) -> bool:
        """只写缓存，失败时记录日志并返回False"""
        try:
            self.backend.set(self._key(key), self._encode(value), ttl if ttl is not None else self.default_ttl)
            return True
        except Exception as e:
            logger.warning(f"Cache write failed for {self._key(key)}: {e}")
            return False

    def invalidate(self, key: Any) -> bool:
        try:
            return self.backend.delete(self._key(key))
        except Exception as e:
            logger.warning(f"Cache delete failed for {self._key(key)}: {e}")
            return False

    def get(self, key: Any, load: Callable[[], Optional[V]], ttl: Optional[float] = None) -> Optional[V]:
        """
        读穿：缓存未命中时调用 load 从存储加载并回填

        Args:
            key: 缓存键
            load: 从持久化存储加载的函数，返回None表示不存在
            ttl: 回填时使用的过期时间

        Returns:
            Optional[V]: 缓存值或存储值
        """
        cached = self.peek(key)
        if cached is not None:
            return cached
        value = load()
        if value is not None:
            self.put(key, value, ttl)
        return value

    def write(self, key: Any, value: V, persist: Callable[[], T], ttl: Optional[float] = None) -> T:
        """
        写穿：先持久化，再写缓存

        persist 抛出的异常原样向上传播，此时缓存不会被修改。
        """
        result = persist()
        self.put(key, value, ttl)
        return result

    def entries(self) -> Dict[str, V]:
        """返回命名空间下所有未过期的条目（键不含命名空间前缀）"""
        prefix = f"{self.namespace}:"
        try:
            raw_items = self.backend.items(prefix)
        except Exception as e:
            logger.warning(f"Cache scan failed for {prefix}*: {e}")
            return {}
        result: Dict[str, V] = {}
        for full_key, raw in raw_items.items():
            try:
                result[full_key[len(prefix):]] = self._decode(raw)
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping undecodable cache entry {full_key}: {e}")
        return result
