"""
登录会话数据模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime

from ..database import Base
from ..utils.clock import utcnow


class LoginSession(Base):
    """登录会话表，持久化存储中的权威会话记录"""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    session_id = Column(String(64), unique=True, index=True, nullable=False)
    person_id = Column(Integer, index=True, nullable=False)
    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def is_valid(self, now) -> bool:
        """会话有效当且仅当处于激活状态且未过期"""
        return bool(self.is_active) and now < self.expires_at
