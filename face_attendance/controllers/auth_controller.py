"""
认证控制器
"""
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..container import ServiceContainer
from ..dependencies import get_container, get_db, get_client_context, get_current_identity, extract_token
from ..exceptions import AuthError
from ..schemas.request import LoginRequest, ChangePasswordRequest, BootstrapAdminRequest
from ..schemas.response import (
    SuccessWithData,
    ErrorResponse,
    Unauthorized,
    TokenData,
    IdentityData,
    PersonData,
    to_timestamp
)
from ..services.session_manager import ClientContext, Identity, IssuedToken

router = APIRouter(prefix="/auth", tags=["Auth"])


def _set_session_cookie(response: Response, container: ServiceContainer, issued: IssuedToken) -> None:
    response.set_cookie(
        key=container.config.SESSION_COOKIE_NAME,
        value=issued.token,
        max_age=container.config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=not container.config.DEBUG,
        samesite="strict",
    )


@router.post(
    "/login",
    response_model=SuccessWithData,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": Unauthorized}
    }
)
def login(
    request: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    client: ClientContext = Depends(get_client_context),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """
    邮箱密码登录

    成功后令牌同时通过响应体和 HttpOnly Cookie 返回
    """
    issued = container.auth_service.login(db, request.email, request.password, client)
    _set_session_cookie(response, container, issued)
    person = container.person_service.get(db, issued.person_id)
    return SuccessWithData(
        data=TokenData(
            token=issued.token,
            expiresAt=to_timestamp(issued.expires_at),
            person=PersonData.from_model(person),
        ).model_dump()
    )


@router.post("/logout", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def logout(
    response: Response,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """注销当前会话"""
    container.auth_service.logout(db, identity)
    response.delete_cookie(container.config.SESSION_COOKIE_NAME)
    return SuccessWithData(data={"message": "已退出登录"})


@router.post("/logout-all", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def logout_all(
    response: Response,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """注销当前人员在所有设备上的会话"""
    count = container.auth_service.logout_all(db, identity)
    response.delete_cookie(container.config.SESSION_COOKIE_NAME)
    return SuccessWithData(data={"message": "已退出所有设备", "revokedSessions": count})


@router.post("/refresh", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def refresh(
    http_request: Request,
    response: Response,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """用仍然有效的令牌换取新令牌，旧令牌立即失效"""
    token = extract_token(http_request)
    if not token:
        raise AuthError("缺少访问令牌", reason=AuthError.MISSING_TOKEN)
    issued = container.auth_service.refresh(db, token)
    _set_session_cookie(response, container, issued)
    return SuccessWithData(
        data=TokenData(token=issued.token, expiresAt=to_timestamp(issued.expires_at)).model_dump()
    )


@router.get("/verify", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def verify(identity: Identity = Depends(get_current_identity)) -> SuccessWithData:
    """校验当前令牌并返回会话身份"""
    return SuccessWithData(
        data=IdentityData(
            personId=identity.person_id,
            name=identity.name,
            role=identity.role,
            expiresAt=to_timestamp(identity.expires_at),
        ).model_dump()
    )


@router.put(
    "/password",
    response_model=SuccessWithData,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": Unauthorized}
    }
)
def change_password(
    request: ChangePasswordRequest,
    response: Response,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """修改密码，成功后所有会话都需要重新登录"""
    count = container.person_service.change_password(
        db, identity.person_id, request.oldPassword, request.newPassword
    )
    response.delete_cookie(container.config.SESSION_COOKIE_NAME)
    return SuccessWithData(data={"message": "密码已修改，请重新登录", "revokedSessions": count})


@router.post(
    "/bootstrap-admin",
    response_model=SuccessWithData,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse}
    }
)
def bootstrap_admin(
    request: BootstrapAdminRequest,
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """系统中还没有管理员时创建第一个管理员"""
    person = container.person_service.bootstrap_admin(
        db, name=request.name, email=request.email, password=request.password
    )
    return SuccessWithData(data=PersonData.from_model(person).model_dump())
