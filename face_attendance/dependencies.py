"""
FastAPI 依赖：数据库会话、服务容器、当前身份
"""
from typing import Iterator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .container import ServiceContainer
from .exceptions import AuthError, ForbiddenError
from .services.session_manager import ClientContext, Identity


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_db(container: ServiceContainer = Depends(get_container)) -> Iterator[Session]:
    """
    获取数据库会话

    Yields:
        Session: SQLAlchemy数据库会话，请求结束后自动关闭
    """
    db = container.new_session()
    try:
        yield db
    finally:
        db.close()


def get_client_context(request: Request) -> ClientContext:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientContext(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


def extract_token(request: Request) -> Optional[str]:
    """优先读取 Authorization: Bearer 头，其次读取会话Cookie"""
    authorization = request.headers.get("authorization")
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    container = get_container(request)
    return request.cookies.get(container.config.SESSION_COOKIE_NAME)


def get_current_identity(
    request: Request,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> Identity:
    token = extract_token(request)
    if not token:
        raise AuthError("缺少访问令牌", reason=AuthError.MISSING_TOKEN)
    return container.session_manager.validate(db, token)


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("需要管理员权限")
    return identity
