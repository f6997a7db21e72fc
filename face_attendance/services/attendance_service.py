"""
考勤服务：进出类型判定、重复打卡抑制、打卡流程编排
"""
import datetime
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..cache import AttendanceMarkerCache, RecentAttendanceMarker
from ..exceptions import NotFoundError, RateLimitedError, ValidationError
from ..models.attendance import AttendanceEvent, AttendanceCorrection, ENTRY, EXIT
from ..models.person import Person
from ..repositories import AttendanceRepository, PersonRepository
from ..utils.clock import Clock, utcnow, day_window
from ..utils.locks import KeyedLock
from ..utils.logger import log_attendance_check
from .embedder import FaceEmbedder, extract_detection
from .image_store import ImageStore
from .match_engine import MatchEngine

logger = logging.getLogger(__name__)

ATTENDANCE_TYPES = (ENTRY, EXIT)


def opposite(attendance_type: str) -> str:
    return EXIT if attendance_type == ENTRY else ENTRY


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass
class CheckInResult:
    person: Person
    event: AttendanceEvent
    type: str
    confidence: float
    message: str


@dataclass
class AttendanceStats:
    total_persons: int
    present_today: int
    total_entries: int
    total_exits: int
    avg_attendance_hours: Optional[float]


class AttendanceService:
    """
    每个人员在同一自然日内严格按 ENTRY / EXIT 交替；
    新的一天第一次打卡总是 ENTRY，不要求前一天已经 EXIT。
    """
    def __init__(
        self,
        attendance_repository: AttendanceRepository,
        person_repository: PersonRepository,
        match_engine: MatchEngine,
        marker_cache: AttendanceMarkerCache,
        image_store: ImageStore,
        min_interval_seconds: int,
        tz_name: str,
        clock: Clock = utcnow
    ):
        self.attendance_repository = attendance_repository
        self.person_repository = person_repository
        self.match_engine = match_engine
        self.marker_cache = marker_cache
        self.image_store = image_store
        self.min_interval = datetime.timedelta(seconds=min_interval_seconds)
        self.tz_name = tz_name
        self.clock = clock
        self._person_locks = KeyedLock()

    def today_window(self, now: Optional[datetime.datetime] = None) -> Tuple[datetime.datetime, datetime.datetime]:
        return day_window(now or self.clock(), self.tz_name)

    def recent_marker(self, db: Session, person_id: int,
                      now: Optional[datetime.datetime] = None) -> Optional[RecentAttendanceMarker]:
        """
        获取最近考勤标记，缓存未命中时由当天最后一条考勤记录重建
        """
        def _load() -> Optional[RecentAttendanceMarker]:
            start, end = self.today_window(now)
            last = self.attendance_repository.last_event_between(db, person_id, start, end)
            if last is None:
                return None
            return RecentAttendanceMarker(last_type=last.type, timestamp=last.timestamp)

        return self.marker_cache.get(person_id, _load)

    def _type_after(self, db: Session, person_id: int, marker: Optional[RecentAttendanceMarker],
                    now: datetime.datetime) -> str:
        start, end = self.today_window(now)
        # 前一天遗留的标记不参与类型判定
        if marker is not None and marker.timestamp >= start:
            return opposite(marker.last_type)
        last_today = self.attendance_repository.last_event_between(db, person_id, start, end)
        if last_today is not None:
            return opposite(last_today.type)
        return ENTRY

    def determine_type(self, db: Session, person_id: int) -> str:
        """
        判定下一次考勤类型

        1. 有当天的最近标记：取相反类型
        2. 否则查询当天 [零点, 次日零点) 的最后一条记录：取相反类型
        3. 当天没有记录（无论以前是否有记录）：ENTRY
        """
        now = self.clock()
        marker = self.recent_marker(db, person_id, now)
        return self._type_after(db, person_id, marker, now)

    def remaining_wait(self, marker: Optional[RecentAttendanceMarker],
                       now: datetime.datetime) -> Optional[datetime.timedelta]:
        """距离下一次允许打卡的剩余时间，不受限制时返回None"""
        if marker is None:
            return None
        elapsed = now - marker.timestamp
        if elapsed < self.min_interval:
            return self.min_interval - elapsed
        return None

    def record(
        self,
        db: Session,
        person_id: int,
        confidence: float,
        *,
        image_bytes: Optional[bytes] = None,
        location: Optional[Location] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> AttendanceEvent:
        """
        为已识别的人员写入一条考勤事件

        读取标记、判定类型、写入存储、更新标记在同一人员锁内完成。
        存储写入失败时抛出 PersistenceError 且不修改标记；
        标记写入失败只记录日志，下次读取时由存储回填。

        Raises:
            RateLimitedError: 距上次考勤不足最小间隔
            PersistenceError: 存储写入失败
        """
        with self._person_locks.hold(person_id):
            now = self.clock()
            marker = self.recent_marker(db, person_id, now)

            wait = self.remaining_wait(marker, now)
            if wait is not None:
                seconds = wait.total_seconds()
                raise RateLimitedError(
                    f"打卡过于频繁，请在{math.ceil(seconds)}秒后重试",
                    retry_after_seconds=seconds,
                )

            attendance_type = self._type_after(db, person_id, marker, now)

            image_url = None
            if image_bytes:
                image_url = self.image_store.save_attendance_image(image_bytes, person_id, attendance_type, now)

            try:
                event = self.attendance_repository.create(db, obj_in={
                    "person_id": person_id,
                    "type": attendance_type,
                    "timestamp": now,
                    "confidence": round(float(confidence), 6),
                    "image_url": image_url,
                    "latitude": location.latitude if location else None,
                    "longitude": location.longitude if location else None,
                    "ip_address": ip_address,
                    "user_agent": user_agent,
                })
            except Exception:
                self.image_store.delete(image_url)
                raise

            self.marker_cache.put(person_id, RecentAttendanceMarker(last_type=event.type, timestamp=event.timestamp))
            return event

    @log_attendance_check
    def check_in(
        self,
        db: Session,
        *,
        image_bytes: bytes,
        embedder: FaceEmbedder,
        location: Optional[Location] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> CheckInResult:
        """
        刷脸打卡：提取描述符 -> 匹配人员 -> 判定类型并写入考勤

        Raises:
            ValidationError: 图片中未检测到人脸
            NotFoundError: 未匹配到激活人员
            RateLimitedError: 重复打卡
            UpstreamError: 特征提取模型异常
        """
        detection = extract_detection(embedder, image_bytes)
        if detection is None:
            raise ValidationError("图片中未检测到人脸，请确保面部清晰可见")

        match = self.match_engine.identify(db, detection.descriptor)
        if match is None:
            raise NotFoundError("未能识别人脸，请确认已注册或联系管理员")

        person = self.person_repository.get(db, match.person_id)
        if person is None or not person.is_active:
            raise NotFoundError("未能识别人脸，请确认已注册或联系管理员")

        event = self.record(
            db,
            person.id,
            match.confidence,
            image_bytes=image_bytes,
            location=location,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        greeting = "欢迎" if event.type == ENTRY else "再见"
        logger.info(f"Attendance recorded: {person.name} - {event.type} (confidence: {match.confidence:.2f})")
        return CheckInResult(
            person=person,
            event=event,
            type=event.type,
            confidence=match.confidence,
            message=f"{greeting}，{person.name}！",
        )

    def history(
        self,
        db: Session,
        *,
        person_id: Optional[int] = None,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[AttendanceEvent], int, int]:
        """
        分页查询考勤历史

        Returns:
            Tuple[List[AttendanceEvent], int, int]: 记录、总数、总页数
        """
        if page < 1 or limit < 1:
            raise ValidationError("分页参数必须大于0")
        if start is not None and end is not None and start >= end:
            raise ValidationError("开始时间必须早于结束时间")
        items, total = self.attendance_repository.history(
            db, person_id=person_id, start=start, end=end, skip=(page - 1) * limit, limit=limit
        )
        return items, total, math.ceil(total / limit)

    def today_events(self, db: Session, person_id: Optional[int] = None) -> List[AttendanceEvent]:
        start, end = self.today_window()
        return self.attendance_repository.events_between(db, start, end, person_id)

    def person_status(self, db: Session, person_id: int) -> Dict[str, object]:
        """人员当天的在岗状态：当天最后一条记录为 ENTRY 即视为在岗"""
        if self.person_repository.get(db, person_id) is None:
            raise NotFoundError("人员不存在")
        start, end = self.today_window()
        last = self.attendance_repository.last_event_between(db, person_id, start, end)
        return {
            "personId": person_id,
            "present": last is not None and last.type == ENTRY,
            "lastEvent": last,
            "nextType": opposite(last.type) if last is not None else ENTRY,
        }

    def stats(
        self,
        db: Session,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None
    ) -> AttendanceStats:
        """
        考勤统计

        平均在岗时长 = 每人每天第一次 ENTRY 到最后一次 EXIT 的小时数的平均值
        """
        events = self.attendance_repository.events_between(db, start, end)
        today_start, today_end = self.today_window()

        entries = sum(1 for event in events if event.type == ENTRY)
        exits = len(events) - entries

        days: Dict[Tuple[int, datetime.datetime], Dict[str, List[datetime.datetime]]] = defaultdict(
            lambda: {ENTRY: [], EXIT: []}
        )
        for event in events:
            day_start = day_window(event.timestamp, self.tz_name)[0]
            days[(event.person_id, day_start)][event.type].append(event.timestamp)

        durations = [
            (max(bucket[EXIT]) - min(bucket[ENTRY])).total_seconds() / 3600.0
            for bucket in days.values()
            if bucket[ENTRY] and bucket[EXIT]
        ]

        return AttendanceStats(
            total_persons=self.person_repository.count_active(db),
            present_today=self.attendance_repository.distinct_persons_between(db, today_start, today_end),
            total_entries=entries,
            total_exits=exits,
            avg_attendance_hours=round(sum(durations) / len(durations), 2) if durations else None,
        )

    def correct(
        self,
        db: Session,
        attendance_id: int,
        *,
        corrected_by: int,
        reason: str,
        new_type: Optional[str] = None,
        new_timestamp: Optional[datetime.datetime] = None
    ) -> Tuple[AttendanceEvent, AttendanceCorrection]:
        """
        管理员更正考勤记录，原值和新值写入更正日志
        """
        if new_type is None and new_timestamp is None:
            raise ValidationError("至少需要更正类型或时间之一")
        if new_type is not None and new_type not in ATTENDANCE_TYPES:
            raise ValidationError("考勤类型必须是 ENTRY 或 EXIT")
        if not reason or not reason.strip():
            raise ValidationError("更正原因不能为空")

        event = self.attendance_repository.get(db, attendance_id)
        if event is None:
            raise NotFoundError("考勤记录不存在")

        correction = self.attendance_repository.correct(
            db,
            event,
            new_type=new_type or event.type,
            new_timestamp=new_timestamp or event.timestamp,
            corrected_by=corrected_by,
            reason=reason.strip(),
            corrected_at=self.clock(),
        )
        self.marker_cache.invalidate(event.person_id)
        logger.info(f"Attendance {attendance_id} corrected by person {corrected_by}: {reason}")
        return event, correction

    def delete_event(self, db: Session, attendance_id: int) -> int:
        event = self.attendance_repository.get(db, attendance_id)
        if event is None:
            raise NotFoundError("考勤记录不存在")
        # 提交后已删除对象的属性不可再访问
        person_id, image_url = event.person_id, event.image_url
        self.attendance_repository.delete(db, id=attendance_id)
        self.image_store.delete(image_url)
        self.marker_cache.invalidate(person_id)
        logger.info(f"Deleted attendance record {attendance_id}")
        return attendance_id

    def cleanup_old_images(self, db: Session, days_old: int = 30) -> int:
        """删除超过指定天数的考勤图片，并清空记录中的图片路径"""
        cutoff = self.clock() - datetime.timedelta(days=days_old)
        deleted = 0
        for event in self.attendance_repository.with_images_before(db, cutoff):
            if self.image_store.delete(event.image_url):
                deleted += 1
            self.attendance_repository.update(db, db_obj=event, obj_in={"image_url": None})
        if deleted:
            logger.info(f"Cleaned up {deleted} old attendance images")
        return deleted
