"""
登录会话仓储类（会话持久化存储）
"""
import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .base_repository import BaseRepository
from ..models.session import LoginSession


class SessionRepository(BaseRepository[LoginSession]):
    """
    会话数据仓储操作
    """
    def __init__(self):
        super().__init__(LoginSession)

    def insert(
        self,
        db: Session,
        *,
        session_id: str,
        person_id: int,
        issued_at: datetime.datetime,
        expires_at: datetime.datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> LoginSession:
        return self.create(db, obj_in={
            "session_id": session_id,
            "person_id": person_id,
            "issued_at": issued_at,
            "expires_at": expires_at,
            "is_active": True,
            "ip_address": ip_address,
            "user_agent": user_agent,
        })

    def find_by_session_id(self, db: Session, session_id: str) -> Optional[LoginSession]:
        return db.query(self.model).filter(self.model.session_id == session_id).first()

    def find_active_by_session_id(
        self,
        db: Session,
        session_id: str,
        now: datetime.datetime
    ) -> Optional[LoginSession]:
        """
        获取激活且未过期的会话

        Args:
            db: 数据库会话
            session_id: 会话标识
            now: 当前时间，用于显式检查过期时间

        Returns:
            Optional[LoginSession]: 有效会话，否则返回None
        """
        return db.query(self.model)\
            .filter(
                self.model.session_id == session_id,
                self.model.is_active.is_(True),
                self.model.expires_at > now,
            )\
            .first()

    def rotate(
        self,
        db: Session,
        *,
        old_session_id: str,
        new_session_id: str,
        new_expires_at: datetime.datetime,
        now: datetime.datetime
    ) -> bool:
        """
        原子地把有效会话的标识和过期时间更新为新值

        旧标识与新标识的切换在同一条 UPDATE 语句中完成，
        不存在新旧令牌同时有效的窗口。

        Returns:
            bool: 是否更新成功（旧会话已失效或已被并发刷新时为False）
        """
        def _rotate():
            return db.query(self.model)\
                .filter(
                    self.model.session_id == old_session_id,
                    self.model.is_active.is_(True),
                    self.model.expires_at > now,
                )\
                .update(
                    {
                        self.model.session_id: new_session_id,
                        self.model.expires_at: new_expires_at,
                        self.model.updated_at: now,
                    },
                    synchronize_session=False,
                )

        return self._write(db, "刷新会话", _rotate) == 1

    def deactivate(self, db: Session, session_id: str) -> bool:
        def _deactivate():
            return db.query(self.model)\
                .filter(self.model.session_id == session_id, self.model.is_active.is_(True))\
                .update({self.model.is_active: False}, synchronize_session=False)

        return self._write(db, "注销会话", _deactivate) > 0

    def deactivate_all_for_person(self, db: Session, person_id: int) -> int:
        def _deactivate():
            return db.query(self.model)\
                .filter(self.model.person_id == person_id, self.model.is_active.is_(True))\
                .update({self.model.is_active: False}, synchronize_session=False)

        return self._write(db, "注销全部会话", _deactivate)

    def delete_expired_or_inactive(self, db: Session, now: datetime.datetime) -> int:
        def _delete():
            return db.query(self.model)\
                .filter(or_(self.model.expires_at <= now, self.model.is_active.is_(False)))\
                .delete(synchronize_session=False)

        return self._write(db, "清理过期会话", _delete)
