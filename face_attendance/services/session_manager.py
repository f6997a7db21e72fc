"""
会话管理：签发、校验、刷新、注销
"""
import datetime
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..cache import SessionCache, SessionProjection
from ..exceptions import AuthError
from ..models.person import Person
from ..repositories import SessionRepository, PersonRepository
from ..utils.clock import Clock, utcnow
from ..utils.logger import log_session_event
from .token_signer import TokenSigner, TokenPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class IssuedToken:
    token: str
    session_id: str
    person_id: int
    expires_at: datetime.datetime


@dataclass(frozen=True)
class Identity:
    """通过校验的会话身份，附加到请求上下文"""
    person_id: int
    role: str
    name: str
    session_id: str
    expires_at: datetime.datetime

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class SessionManager:
    """
    会话状态分布在缓存（会话投影）和持久化存储（权威记录）中

    - 校验时先验签名和过期，再查缓存，缓存未命中回源存储并回填
    - 写入时先写存储，再写缓存
    """
    def __init__(
        self,
        session_repository: SessionRepository,
        person_repository: PersonRepository,
        session_cache: SessionCache,
        token_signer: TokenSigner,
        token_ttl_seconds: int,
        cache_ttl_seconds: int,
        clock: Clock = utcnow
    ):
        self.session_repository = session_repository
        self.person_repository = person_repository
        self.session_cache = session_cache
        self.token_signer = token_signer
        self.token_ttl = datetime.timedelta(seconds=token_ttl_seconds)
        self.cache_ttl_seconds = cache_ttl_seconds
        self.clock = clock

    def _now(self) -> datetime.datetime:
        # 令牌中的时间精确到秒，存储中的过期时间与之保持一致
        return self.clock().replace(microsecond=0)

    def _cache_ttl(self, expires_at: datetime.datetime, now: datetime.datetime) -> float:
        """缓存投影的TTL不超过会话剩余有效期"""
        remaining = (expires_at - now).total_seconds()
        return max(0.0, min(float(self.cache_ttl_seconds), remaining))

    @staticmethod
    def _new_session_id() -> str:
        return secrets.token_hex(32)

    def _sign(self, person_id: int, role: str, session_id: str,
              issued_at: datetime.datetime, expires_at: datetime.datetime) -> str:
        return self.token_signer.sign(TokenPayload(
            person_id=person_id,
            role=role,
            session_id=session_id,
            issued_at=issued_at,
            expires_at=expires_at,
        ))

    @log_session_event("issue")
    def issue(self, db: Session, person: Person, client: ClientContext = ClientContext()) -> IssuedToken:
        """
        为人员创建新会话并签发令牌

        同一人员的其他会话不受影响，直到被显式注销。

        Args:
            db: 数据库会话
            person: 已通过身份验证的人员
            client: 客户端IP和User-Agent

        Returns:
            IssuedToken: 令牌、会话标识和过期时间
        """
        now = self._now()
        expires_at = now + self.token_ttl
        session_id = self._new_session_id()
        projection = SessionProjection(person_id=person.id, role=person.role, name=person.name)

        self.session_cache.write(
            session_id,
            projection,
            persist=lambda: self.session_repository.insert(
                db,
                session_id=session_id,
                person_id=person.id,
                issued_at=now,
                expires_at=expires_at,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            ),
            ttl=self._cache_ttl(expires_at, now),
        )

        token = self._sign(person.id, person.role, session_id, now, expires_at)
        return IssuedToken(token=token, session_id=session_id, person_id=person.id, expires_at=expires_at)

    def _load_projection(self, db: Session, payload: TokenPayload) -> Optional[SessionProjection]:
        """缓存未命中时从存储重建会话投影"""
        now = self.clock()
        row = self.session_repository.find_active_by_session_id(db, payload.session_id, now)
        # 查询条件之外再显式检查一次，防止缓存与时钟偏差
        if row is None or not row.is_valid(now) or row.person_id != payload.person_id:
            return None
        person = self.person_repository.get(db, row.person_id)
        if person is None or not person.is_active:
            return None
        return SessionProjection(person_id=person.id, role=person.role, name=person.name)

    def validate(self, db: Session, token: str) -> Identity:
        """
        校验令牌并返回会话身份

        Raises:
            AuthError: 令牌无效、令牌过期、会话不存在或已失效
        """
        payload = self.token_signer.verify(token)

        projection = self.session_cache.get(
            payload.session_id,
            lambda: self._load_projection(db, payload),
            ttl=self._cache_ttl(payload.expires_at, self.clock()),
        )
        if projection is None or projection.person_id != payload.person_id:
            raise AuthError("会话不存在或已过期", reason=AuthError.SESSION_NOT_FOUND)

        return Identity(
            person_id=projection.person_id,
            role=projection.role,
            name=projection.name,
            session_id=payload.session_id,
            expires_at=payload.expires_at,
        )

    @log_session_event("refresh")
    def refresh(self, db: Session, old_token: str) -> IssuedToken:
        """
        用仍然有效的旧令牌换取新令牌

        存储中的会话记录原地更新为新的会话标识和过期时间，
        旧令牌在刷新完成后立即失效。
        """
        identity = self.validate(db, old_token)

        now = self._now()
        expires_at = now + self.token_ttl
        new_session_id = self._new_session_id()

        self.session_cache.invalidate(identity.session_id)
        rotated = self.session_repository.rotate(
            db,
            old_session_id=identity.session_id,
            new_session_id=new_session_id,
            new_expires_at=expires_at,
            now=self.clock(),
        )
        if not rotated:
            raise AuthError("会话不存在或已过期", reason=AuthError.SESSION_NOT_FOUND)
        # 并发校验可能在轮换前回填了旧投影，轮换后再清除一次
        self.session_cache.invalidate(identity.session_id)
        self.session_cache.put(
            new_session_id,
            SessionProjection(person_id=identity.person_id, role=identity.role, name=identity.name),
            ttl=self._cache_ttl(expires_at, now),
        )

        token = self._sign(identity.person_id, identity.role, new_session_id, now, expires_at)
        return IssuedToken(token=token, session_id=new_session_id, person_id=identity.person_id,
                           expires_at=expires_at)

    @log_session_event("revoke")
    def revoke(self, db: Session, session_id: str) -> bool:
        """注销单个会话，并删除对应的缓存投影"""
        deactivated = self.session_repository.deactivate(db, session_id)
        self.session_cache.invalidate(session_id)
        return deactivated

    @log_session_event("revoke_all")
    def revoke_all(self, db: Session, person_id: int) -> int:
        """
        注销人员的全部会话

        缓存投影尽力清除；清除不到的投影在缓存TTL内仍可能命中。
        """
        count = self.session_repository.deactivate_all_for_person(db, person_id)
        for session_id, projection in self.session_cache.entries().items():
            if projection.person_id == person_id:
                self.session_cache.invalidate(session_id)
        logger.info(f"Deactivated {count} sessions for person {person_id}")
        return count

    def cleanup_expired(self, db: Session) -> int:
        """删除存储中已过期或已失效的会话记录"""
        deleted = self.session_repository.delete_expired_or_inactive(db, self.clock())
        if deleted:
            logger.info(f"Cleaned up {deleted} expired sessions")
        return deleted
