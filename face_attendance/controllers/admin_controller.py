"""
运维控制器：会话清理、图片清理、健康检查
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..container import ServiceContainer
from ..dependencies import get_container, get_db, require_admin
from ..schemas.response import SuccessWithData, ErrorResponse
from ..services.session_manager import Identity

router = APIRouter(prefix="/admin", tags=["Admin"])
health_router = APIRouter(tags=["Health"])


@router.post("/sessions/cleanup", response_model=SuccessWithData, responses={403: {"model": ErrorResponse}})
def cleanup_sessions(
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """删除已过期或已注销的会话记录"""
    deleted = container.session_manager.cleanup_expired(db)
    return SuccessWithData(data={"deletedSessions": deleted})


@router.post("/images/cleanup", response_model=SuccessWithData, responses={403: {"model": ErrorResponse}})
def cleanup_images(
    days: int = Query(30, ge=1, description="删除多少天以前的打卡图片"),
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    deleted = container.attendance_service.cleanup_old_images(db, days)
    return SuccessWithData(data={"deletedImages": deleted})


@health_router.get("/health", response_model=SuccessWithData)
def health(
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    db.execute(text("SELECT 1"))
    return SuccessWithData(data={
        "status": "ok",
        "descriptorCacheComplete": container.descriptor_cache.is_complete(),
    })
