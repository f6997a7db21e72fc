"""
响应数据模型
"""
import datetime
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, Field

from ..utils.clock import epoch_seconds


def to_timestamp(value: Optional[datetime.datetime]) -> Optional[int]:
    """数据库中的UTC时间转换为Unix时间戳（秒）"""
    return int(epoch_seconds(value)) if value is not None else None


class BaseResponse(BaseModel):
    """基础响应模型"""
    code: str = Field(..., description="响应码，0表示成功，1表示失败")


class SuccessWithData(BaseResponse):
    """带数据的成功响应"""
    code: Literal["0"] = "0"
    data: Dict[str, Any] = Field(..., description="响应数据")


class ErrorResponse(BaseModel):
    """错误响应"""
    code: Literal[1] = 1
    message: str = Field(..., description="错误信息")


class RateLimited(ErrorResponse):
    """重复打卡"""
    retryAfterSeconds: float = Field(..., description="距离允许再次打卡的秒数")


class Unauthorized(ErrorResponse):
    """未授权错误"""
    reason: str = Field(..., description="invalid_token / expired_token / session_not_found / ...")


class PersonData(BaseModel):
    """人员数据"""
    personId: int = Field(..., description="人员ID")
    name: str = Field(..., description="姓名")
    email: str = Field(..., description="邮箱")
    role: str = Field(..., description="角色")
    isActive: bool = Field(..., description="是否启用")
    descriptorCount: int = Field(0, description="已登记的人脸样本数")
    createdAt: Optional[int] = Field(None, description="创建时间（Unix时间戳，单位：秒）")
    updatedAt: Optional[int] = Field(None, description="最后更新时间（Unix时间戳，单位：秒）")

    @classmethod
    def from_model(cls, person) -> "PersonData":
        return cls(
            personId=person.id,
            name=person.name,
            email=person.email,
            role=person.role,
            isActive=bool(person.is_active),
            descriptorCount=len(person.descriptors),
            createdAt=to_timestamp(person.created_at),
            updatedAt=to_timestamp(person.updated_at),
        )


class AttendanceData(BaseModel):
    """考勤记录"""
    attendanceId: int = Field(..., description="考勤记录ID")
    personId: int = Field(..., description="人员ID")
    type: str = Field(..., description="ENTRY 或 EXIT")
    timestamp: int = Field(..., description="考勤时间（Unix时间戳，单位：秒）")
    confidence: float = Field(..., description="识别置信度")
    imageUrl: Optional[str] = Field(None, description="打卡图片相对路径")
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_model(cls, event) -> "AttendanceData":
        return cls(
            attendanceId=event.id,
            personId=event.person_id,
            type=event.type,
            timestamp=to_timestamp(event.timestamp),
            confidence=event.confidence,
            imageUrl=event.image_url,
            latitude=event.latitude,
            longitude=event.longitude,
        )


class CheckInData(BaseModel):
    """打卡结果"""
    person: Dict[str, Any] = Field(..., description="识别到的人员（personId, name）")
    attendance: AttendanceData
    type: str = Field(..., description="ENTRY 或 EXIT")
    confidence: float = Field(..., description="识别置信度 = 1 - 距离")
    message: str = Field(..., description="提示信息")


class CorrectionData(BaseModel):
    """考勤更正日志"""
    correctionId: int
    attendanceId: int
    correctedBy: int
    correctedAt: int
    reason: str
    originalType: str
    originalTimestamp: int
    newType: str
    newTimestamp: int

    @classmethod
    def from_model(cls, correction) -> "CorrectionData":
        return cls(
            correctionId=correction.id,
            attendanceId=correction.attendance_id,
            correctedBy=correction.corrected_by,
            correctedAt=to_timestamp(correction.corrected_at),
            reason=correction.reason,
            originalType=correction.original_type,
            originalTimestamp=to_timestamp(correction.original_timestamp),
            newType=correction.new_type,
            newTimestamp=to_timestamp(correction.new_timestamp),
        )


class HistoryData(BaseModel):
    """考勤历史分页结果"""
    items: List[AttendanceData]
    total: int
    page: int
    limit: int
    totalPages: int


class StatsData(BaseModel):
    """考勤统计"""
    totalPersons: int = Field(..., description="启用人员数")
    presentToday: int = Field(..., description="今日有考勤记录的人数")
    totalEntries: int
    totalExits: int
    avgAttendanceHours: Optional[float] = Field(None, description="平均在岗时长（小时）")


class TokenData(BaseModel):
    """登录/刷新结果"""
    token: str = Field(..., description="访问令牌")
    expiresAt: int = Field(..., description="过期时间（Unix时间戳，单位：秒）")
    person: Optional[PersonData] = None


class IdentityData(BaseModel):
    """当前会话身份"""
    personId: int
    name: str
    role: str
    expiresAt: int
