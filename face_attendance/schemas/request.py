"""
请求数据模型
"""
import datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


def to_naive_utc(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """带时区的时间统一转换为不带时区的UTC时间"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(datetime.timezone.utc).replace(tzinfo=None)


class LoginRequest(BaseModel):
    """登录请求"""
    email: str = Field(..., description="邮箱")
    password: str = Field(..., description="密码")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not v or "@" not in v:
            raise ValueError("邮箱格式不正确")
        return v


class CreatePersonRequest(BaseModel):
    """注册人员请求"""
    name: str = Field(..., description="姓名", max_length=50)
    email: str = Field(..., description="邮箱")
    password: str = Field(..., description="密码，至少6位")
    role: Literal["admin", "standard"] = Field("standard", description="角色")
    faceImagesBase64: List[str] = Field(
        default_factory=list,
        description="Base64编码的人脸图片列表，可选"
    )

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("姓名不能为空")
        return v.strip()

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not v or "@" not in v:
            raise ValueError("邮箱格式不正确")
        return v


class BootstrapAdminRequest(BaseModel):
    """创建首个管理员请求"""
    name: str = Field(..., description="姓名", max_length=50)
    email: str = Field(..., description="邮箱")
    password: str = Field(..., description="密码，至少6位")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if not v or "@" not in v:
            raise ValueError("邮箱格式不正确")
        return v


class DescriptorsRequest(BaseModel):
    """
    人脸样本请求

    可以直接提交128维描述符，也可以提交图片由服务端提取
    """
    descriptors: List[List[float]] = Field(default_factory=list, description="128维人脸描述符列表")
    faceImagesBase64: List[str] = Field(default_factory=list, description="Base64编码的人脸图片列表")

    @model_validator(mode='after')
    def validate_source(self):
        if not self.descriptors and not self.faceImagesBase64:
            raise ValueError("描述符和图片不能同时为空")
        if self.descriptors and self.faceImagesBase64:
            raise ValueError("描述符和图片只能提交其中一种")
        return self


class PersonStatusRequest(BaseModel):
    """启用/停用人员请求"""
    isActive: bool = Field(..., description="是否启用")


class ChangePasswordRequest(BaseModel):
    """修改密码请求"""
    oldPassword: str = Field(..., description="原密码")
    newPassword: str = Field(..., description="新密码，至少6位")


class CheckInRequest(BaseModel):
    """刷脸打卡请求"""
    faceImageBase64: str = Field(..., description="Base64编码的人脸图片")
    latitude: Optional[float] = Field(None, ge=-90, le=90, description="纬度")
    longitude: Optional[float] = Field(None, ge=-180, le=180, description="经度")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "faceImageBase64": "/9j/4AAQSkZJRg...",
                "latitude": 23.05,
                "longitude": 113.39
            }
        }
    )

    @field_validator('faceImageBase64')
    @classmethod
    def validate_image(cls, v):
        if not v or not v.strip():
            raise ValueError("图片数据不能为空")
        return v

    @model_validator(mode='after')
    def validate_location(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("经纬度必须同时提供")
        return self


class CorrectAttendanceRequest(BaseModel):
    """更正考勤记录请求"""
    type: Optional[Literal["ENTRY", "EXIT"]] = Field(None, description="更正后的考勤类型")
    timestamp: Optional[datetime.datetime] = Field(None, description="更正后的考勤时间")
    reason: str = Field(..., description="更正原因", max_length=500)

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, v):
        return to_naive_utc(v)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, v):
        if not v or not v.strip():
            raise ValueError("更正原因不能为空")
        return v.strip()

    @model_validator(mode='after')
    def validate_change(self):
        if self.type is None and self.timestamp is None:
            raise ValueError("至少需要更正类型或时间之一")
        return self
