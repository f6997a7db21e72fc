"""
三类缓存：人脸描述符、最近考勤标记、会话投影
"""
import datetime
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from .backend import CacheBackend
from .read_through import ReadThroughCache

logger = logging.getLogger(__name__)

Descriptors = List[List[float]]


class DescriptorCache(ReadThroughCache[Descriptors]):
    """
    人员ID -> 描述符列表

    额外维护一个"图库已完整加载"标记，记录完整图库包含的人员ID集合。
    标记缺失，或缓存中的条目与集合不一致（条目被LRU淘汰、过期，
    或重启后单独写入了部分人员）时，匹配前都会从存储全量重建。
    """
    COMPLETE_KEY = "__complete__"

    def __init__(self, backend: CacheBackend, ttl: float):
        super().__init__(backend, "descriptors", ttl)
        # 完整标记必须早于它所担保的条目过期
        self._meta = ReadThroughCache[List[int]](backend, "descriptors_meta", ttl * 0.95)
        self._rebuild_lock = threading.RLock()

    def _members(self) -> Optional[Set[int]]:
        members = self._meta.peek(self.COMPLETE_KEY)
        if not isinstance(members, list):
            return None
        return {int(person_id) for person_id in members}

    def _set_members(self, members: Set[int]) -> None:
        self._meta.put(self.COMPLETE_KEY, sorted(members))

    def put(self, key: Any, value: Descriptors, ttl: Optional[float] = None) -> bool:
        with self._rebuild_lock:
            stored = super().put(key, value, ttl)
            members = self._members()
            if members is not None and int(key) not in members:
                if stored:
                    self._set_members(members | {int(key)})
                else:
                    self._meta.invalidate(self.COMPLETE_KEY)
            return stored

    def invalidate(self, key: Any) -> bool:
        with self._rebuild_lock:
            removed = super().invalidate(key)
            members = self._members()
            if members is not None and int(key) in members:
                self._set_members(members - {int(key)})
            return removed

    def get_all(self) -> Dict[int, Descriptors]:
        return {int(person_id): value for person_id, value in self.entries().items()}

    def complete_gallery(self) -> Optional[Dict[int, Descriptors]]:
        """
        返回缓存中的完整图库

        Returns:
            Optional[Dict[int, Descriptors]]: 标记存在且条目集合与标记一致时返回图库，否则返回None
        """
        members = self._members()
        if members is None:
            return None
        gallery = self.get_all()
        if set(gallery.keys()) != members:
            logger.info(
                f"Descriptor cache lost {len(members - set(gallery.keys()))} persons, marking incomplete"
            )
            return None
        return gallery

    def is_complete(self) -> bool:
        return self.complete_gallery() is not None

    def replace_all(self, gallery: Dict[int, Descriptors]) -> None:
        """
        用存储中的完整图库覆盖缓存

        先删除旧条目再整体写入，多次并发调用的结果相同。
        """
        with self._rebuild_lock:
            self._meta.invalidate(self.COMPLETE_KEY)
            for person_id in self.entries().keys():
                self.invalidate(person_id)
            for person_id, descriptors in gallery.items():
                self.put(person_id, descriptors)
            self._set_members(set(gallery.keys()))
        logger.info(f"Descriptor cache rebuilt with {len(gallery)} persons")


@dataclass(frozen=True)
class RecentAttendanceMarker:
    last_type: str
    timestamp: datetime.datetime


class AttendanceMarkerCache(ReadThroughCache[RecentAttendanceMarker]):
    """人员ID -> 最近一次考勤（类型和时间），仅用于判断下一次类型和重复打卡"""

    def __init__(self, backend: CacheBackend, ttl: float):
        super().__init__(backend, "recent_attendance", ttl)

    def _encode(self, value: RecentAttendanceMarker) -> str:
        return super()._encode({
            "lastType": value.last_type,
            "timestamp": value.timestamp.isoformat(),
        })

    def _decode(self, raw: str) -> RecentAttendanceMarker:
        data = super()._decode(raw)
        try:
            return RecentAttendanceMarker(
                last_type=data["lastType"],
                timestamp=datetime.datetime.fromisoformat(data["timestamp"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed marker: {e}") from e


@dataclass(frozen=True)
class SessionProjection:
    person_id: int
    role: str
    name: str


class SessionCache(ReadThroughCache[SessionProjection]):
    """会话ID -> 会话投影（人员ID、角色、姓名）"""

    def __init__(self, backend: CacheBackend, ttl: float):
        super().__init__(backend, "session", ttl)

    def _encode(self, value: SessionProjection) -> str:
        return super()._encode({
            "personId": value.person_id,
            "role": value.role,
            "name": value.name,
        })

    def _decode(self, raw: str) -> SessionProjection:
        data = super()._decode(raw)
        try:
            return SessionProjection(person_id=int(data["personId"]), role=data["role"], name=data["name"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed session projection: {e}") from e
