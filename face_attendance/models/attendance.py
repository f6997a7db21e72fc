"""
考勤记录数据模型
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Index

from ..database import Base
from ..utils.clock import utcnow

ENTRY = "ENTRY"
EXIT = "EXIT"


class AttendanceEvent(Base):
    """考勤事件表（只追加，修改须记录到更正表）"""
    __tablename__ = "attendance_events"
    __table_args__ = (
        Index("ix_attendance_person_ts", "person_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # 按ID弱引用人员，不建立反向关系
    person_id = Column(Integer, nullable=False, index=True)

    type = Column(String(8), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    confidence = Column(Float, nullable=False)
    image_url = Column(String(512), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)


class AttendanceCorrection(Base):
    """考勤更正日志表"""
    __tablename__ = "attendance_corrections"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    attendance_id = Column(Integer, nullable=False, index=True)
    corrected_by = Column(Integer, nullable=False)
    corrected_at = Column(DateTime, nullable=False, default=utcnow)
    reason = Column(Text, nullable=False)
    original_type = Column(String(8), nullable=False)
    original_timestamp = Column(DateTime, nullable=False)
    new_type = Column(String(8), nullable=False)
    new_timestamp = Column(DateTime, nullable=False)
