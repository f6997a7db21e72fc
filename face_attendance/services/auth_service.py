"""
认证服务：登录、注销、刷新令牌
"""
from sqlalchemy.orm import Session

from .person_service import PersonService
from .session_manager import SessionManager, ClientContext, Identity, IssuedToken


class AuthService:
    def __init__(self, person_service: PersonService, session_manager: SessionManager):
        self.person_service = person_service
        self.session_manager = session_manager

    def login(self, db: Session, email: str, password: str, client: ClientContext = ClientContext()) -> IssuedToken:
        """
        邮箱密码登录，成功后创建新会话

        Raises:
            AuthError: 邮箱或密码错误、账号已停用
        """
        person = self.person_service.authenticate(db, email, password)
        return self.session_manager.issue(db, person, client)

    def logout(self, db: Session, identity: Identity) -> bool:
        return self.session_manager.revoke(db, identity.session_id)

    def logout_all(self, db: Session, identity: Identity) -> int:
        return self.session_manager.revoke_all(db, identity.person_id)

    def refresh(self, db: Session, token: str) -> IssuedToken:
        return self.session_manager.refresh(db, token)
