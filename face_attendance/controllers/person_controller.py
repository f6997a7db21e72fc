"""
人员管理控制器（仅管理员）
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..container import ServiceContainer
from ..dependencies import get_container, get_db, require_admin
from ..schemas.request import CreatePersonRequest, DescriptorsRequest, PersonStatusRequest
from ..schemas.response import SuccessWithData, ErrorResponse, Unauthorized, PersonData
from ..services.embedder import decode_base64_image
from ..services.session_manager import Identity

router = APIRouter(prefix="/persons", tags=["Persons"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": Unauthorized},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse}
}


def _vectors_from_request(request: DescriptorsRequest, container: ServiceContainer) -> List[List[float]]:
    """请求中直接给出描述符时原样使用，否则从图片中提取"""
    if request.descriptors:
        return request.descriptors
    return _vectors_from_images(request.faceImagesBase64, container)


def _vectors_from_images(images_base64: List[str], container: ServiceContainer) -> List[List[float]]:
    images = [decode_base64_image(image, container.config.MAX_IMAGE_BYTES) for image in images_base64]
    return container.person_service.descriptors_from_images(container.embedder, images)


@router.post("", response_model=SuccessWithData, responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}})
def create_person(
    request: CreatePersonRequest,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """
    注册人员，可同时提交人脸图片

    Args:
        request: 姓名、邮箱、密码、角色和可选的人脸图片
        identity: 当前管理员
        db: 数据库会话
        container: 服务容器

    Returns:
        SuccessWithData: 新人员信息
    """
    # 先提取描述符，图片不合格时不创建人员
    vectors = _vectors_from_images(request.faceImagesBase64, container) if request.faceImagesBase64 else []
    person = container.person_service.register(
        db,
        name=request.name,
        email=request.email,
        password=request.password,
        role=request.role,
    )
    if vectors:
        person = container.person_service.add_descriptors(db, person.id, vectors)
    return SuccessWithData(data=PersonData.from_model(person).model_dump())


@router.get("", response_model=SuccessWithData, responses=ERROR_RESPONSES)
def list_persons(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    persons = container.person_service.list_persons(db, skip=skip, limit=limit)
    return SuccessWithData(data={"items": [PersonData.from_model(p).model_dump() for p in persons]})


@router.get("/{person_id}", response_model=SuccessWithData, responses=ERROR_RESPONSES)
def get_person(
    person_id: int,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    person = container.person_service.get(db, person_id)
    return SuccessWithData(data=PersonData.from_model(person).model_dump())


@router.post("/{person_id}/descriptors", response_model=SuccessWithData, responses=ERROR_RESPONSES)
def add_descriptors(
    person_id: int,
    request: DescriptorsRequest,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """追加人脸样本"""
    container.person_service.get(db, person_id)
    vectors = _vectors_from_request(request, container)
    person = container.person_service.add_descriptors(db, person_id, vectors)
    return SuccessWithData(data=PersonData.from_model(person).model_dump())


@router.put("/{person_id}/descriptors", response_model=SuccessWithData, responses=ERROR_RESPONSES)
def replace_descriptors(
    person_id: int,
    request: DescriptorsRequest,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """替换全部人脸样本"""
    container.person_service.get(db, person_id)
    vectors = _vectors_from_request(request, container)
    person = container.person_service.replace_descriptors(db, person_id, vectors)
    return SuccessWithData(data=PersonData.from_model(person).model_dump())


@router.delete("/{person_id}/descriptors", response_model=SuccessWithData, responses=ERROR_RESPONSES)
def clear_descriptors(
    person_id: int,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    person = container.person_service.clear_descriptors(db, person_id)
    return SuccessWithData(data=PersonData.from_model(person).model_dump())


@router.put("/{person_id}/status", response_model=SuccessWithData, responses=ERROR_RESPONSES)
def set_person_status(
    person_id: int,
    request: PersonStatusRequest,
    identity: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    container: ServiceContainer = Depends(get_container)
) -> SuccessWithData:
    """启用或停用人员，停用后立即无法刷脸打卡且全部会话失效"""
    person = container.person_service.set_active(db, person_id, request.isActive)
    return SuccessWithData(data=PersonData.from_model(person).model_dump())
