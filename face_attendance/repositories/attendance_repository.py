"""
考勤记录仓储类
"""
import datetime
from typing import Optional, List, Tuple

from sqlalchemy.orm import Session

from .base_repository import BaseRepository
from ..models.attendance import AttendanceEvent, AttendanceCorrection


class AttendanceRepository(BaseRepository[AttendanceEvent]):
    """
    考勤事件仓储操作
    """
    def __init__(self):
        super().__init__(AttendanceEvent)

    def _filtered(
        self,
        db: Session,
        person_id: Optional[int] = None,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None
    ):
        query = db.query(self.model)
        if person_id is not None:
            query = query.filter(self.model.person_id == person_id)
        if start is not None:
            query = query.filter(self.model.timestamp >= start)
        if end is not None:
            query = query.filter(self.model.timestamp < end)
        return query

    def last_event_between(
        self,
        db: Session,
        person_id: int,
        start: datetime.datetime,
        end: datetime.datetime
    ) -> Optional[AttendanceEvent]:
        """
        获取人员在 [start, end) 时间窗口内的最近一条考勤事件

        Args:
            db: 数据库会话
            person_id: 人员ID
            start: 窗口开始（包含）
            end: 窗口结束（不包含）

        Returns:
            Optional[AttendanceEvent]: 最近的事件，不存在则返回None
        """
        return self._filtered(db, person_id, start, end)\
            .order_by(self.model.timestamp.desc(), self.model.id.desc())\
            .first()

    def events_between(
        self,
        db: Session,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        person_id: Optional[int] = None
    ) -> List[AttendanceEvent]:
        """按时间倒序返回窗口内的事件"""
        return self._filtered(db, person_id, start, end)\
            .order_by(self.model.timestamp.desc(), self.model.id.desc())\
            .all()

    def history(
        self,
        db: Session,
        *,
        person_id: Optional[int] = None,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[AttendanceEvent], int]:
        """
        分页查询考勤历史

        Returns:
            Tuple[List[AttendanceEvent], int]: 当前页记录和总数
        """
        query = self._filtered(db, person_id, start, end)
        total = query.count()
        items = query.order_by(self.model.timestamp.desc(), self.model.id.desc())\
            .offset(skip)\
            .limit(limit)\
            .all()
        return items, total

    def distinct_persons_between(self, db: Session, start: datetime.datetime, end: datetime.datetime) -> int:
        return self._filtered(db, None, start, end)\
            .with_entities(self.model.person_id)\
            .distinct()\
            .count()

    def correct(
        self,
        db: Session,
        event: AttendanceEvent,
        *,
        new_type: str,
        new_timestamp: datetime.datetime,
        corrected_by: int,
        reason: str,
        corrected_at: datetime.datetime
    ) -> AttendanceCorrection:
        """
        更正考勤事件，并在同一事务中追加更正日志
        """
        correction = AttendanceCorrection(
            attendance_id=event.id,
            corrected_by=corrected_by,
            corrected_at=corrected_at,
            reason=reason,
            original_type=event.type,
            original_timestamp=event.timestamp,
            new_type=new_type,
            new_timestamp=new_timestamp,
        )

        def _apply():
            event.type = new_type
            event.timestamp = new_timestamp
            db.add(event)
            db.add(correction)
            return correction

        self._write(db, "更正考勤记录", _apply)
        db.refresh(correction)
        return correction

    def corrections_for(self, db: Session, attendance_id: int) -> List[AttendanceCorrection]:
        return db.query(AttendanceCorrection)\
            .filter(AttendanceCorrection.attendance_id == attendance_id)\
            .order_by(AttendanceCorrection.corrected_at)\
            .all()

    def with_images_before(self, db: Session, cutoff: datetime.datetime) -> List[AttendanceEvent]:
        return db.query(self.model)\
            .filter(self.model.timestamp < cutoff, self.model.image_url.isnot(None))\
            .all()
