"""
考勤控制器
"""
import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..container import ServiceContainer
from ..dependencies import get_container, get_db, get_client_context, get_current_identity, require_admin
from ..exceptions import ForbiddenError
from ..schemas.request import CheckInRequest, CorrectAttendanceRequest, to_naive_utc
from ..schemas.response import (
    SuccessWithData,
    ErrorResponse,
    RateLimited,
    Unauthorized,
    AttendanceData,
    CheckInData,
    CorrectionData,
    HistoryData,
    StatsData
)
from ..services.attendance_service import Location
from ..services.embedder import decode_base64_image
from ..services.session_manager import ClientContext, Identity

router = APIRouter(prefix="/attendance", tags=["Attendance"])


def _visible_person_id(identity: Identity, person_id: Optional[int]) -> Optional[int]:
    """普通人员只能查看自己的考勤"""
    if identity.is_admin:
        return person_id
    if person_id is not None and person_id != identity.person_id:
        raise ForbiddenError("只能查看本人的考勤记录")
    return identity.person_id


@router.post(
    "/check",
    response_model=SuccessWithData,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": RateLimited},
        502: {"model": ErrorResponse}
    }
)
def check_attendance(
    request: CheckInRequest,
    db: Session = Depends(get_db),
    client: ClientContext = Depends(get_client_context),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """
    刷脸打卡（考勤终端调用，无需登录）

    系统自动识别人员并判定本次为 ENTRY 还是 EXIT
    """
    image_bytes = decode_base64_image(request.faceImageBase64, container.config.MAX_IMAGE_BYTES)
    location = None
    if request.latitude is not None and request.longitude is not None:
        location = Location(latitude=request.latitude, longitude=request.longitude)

    result = container.attendance_service.check_in(
        db,
        image_bytes=image_bytes,
        embedder=container.embedder,
        location=location,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )
    return SuccessWithData(
        data=CheckInData(
            person={"personId": result.person.id, "name": result.person.name},
            attendance=AttendanceData.from_model(result.event),
            type=result.type,
            confidence=round(result.confidence, 4),
            message=result.message,
        ).model_dump()
    )


@router.get("/history", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def get_history(
    personId: Optional[int] = Query(None, description="人员ID，管理员可查看任意人员"),
    startDate: Optional[datetime.datetime] = Query(None, description="开始时间（包含）"),
    endDate: Optional[datetime.datetime] = Query(None, description="结束时间（不包含）"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """分页查询考勤历史，按时间倒序"""
    items, total, total_pages = container.attendance_service.history(
        db,
        person_id=_visible_person_id(identity, personId),
        start=to_naive_utc(startDate),
        end=to_naive_utc(endDate),
        page=page,
        limit=limit,
    )
    return SuccessWithData(
        data=HistoryData(
            items=[AttendanceData.from_model(event) for event in items],
            total=total,
            page=page,
            limit=limit,
            totalPages=total_pages,
        ).model_dump()
    )


@router.get("/today", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def get_today(
    personId: Optional[int] = Query(None),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    events = container.attendance_service.today_events(db, _visible_person_id(identity, personId))
    return SuccessWithData(data={"items": [AttendanceData.from_model(event).model_dump() for event in events]})


@router.get("/status/{person_id}", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def get_status(
    person_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """人员今日是否在岗，以及下一次打卡的类型"""
    status = container.attendance_service.person_status(db, _visible_person_id(identity, person_id))
    last_event = status["lastEvent"]
    return SuccessWithData(data={
        "personId": status["personId"],
        "present": status["present"],
        "nextType": status["nextType"],
        "lastEvent": AttendanceData.from_model(last_event).model_dump() if last_event is not None else None,
    })


@router.get("/stats", response_model=SuccessWithData, responses={401: {"model": Unauthorized}})
def get_stats(
    startDate: Optional[datetime.datetime] = Query(None),
    endDate: Optional[datetime.datetime] = Query(None),
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    stats = container.attendance_service.stats(db, to_naive_utc(startDate), to_naive_utc(endDate))
    return SuccessWithData(
        data=StatsData(
            totalPersons=stats.total_persons,
            presentToday=stats.present_today,
            totalEntries=stats.total_entries,
            totalExits=stats.total_exits,
            avgAttendanceHours=stats.avg_attendance_hours,
        ).model_dump()
    )


@router.put(
    "/{attendance_id}/correct",
    response_model=SuccessWithData,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse}
    }
)
def correct_attendance(
    attendance_id: int,
    request: CorrectAttendanceRequest,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """管理员更正考勤记录，原值保留在更正日志中"""
    event, correction = container.attendance_service.correct(
        db,
        attendance_id,
        corrected_by=identity.person_id,
        reason=request.reason,
        new_type=request.type,
        new_timestamp=request.timestamp,
    )
    return SuccessWithData(data={
        "attendance": AttendanceData.from_model(event).model_dump(),
        "correction": CorrectionData.from_model(correction).model_dump(),
    })


@router.delete(
    "/{attendance_id}",
    response_model=SuccessWithData,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse}
    }
)
def delete_attendance(
    attendance_id: int,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    container.attendance_service.delete_event(db, attendance_id)
    return SuccessWithData(data={"attendanceId": attendance_id, "message": "考勤记录已删除"})
