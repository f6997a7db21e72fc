from .request import (
    LoginRequest,
    CreatePersonRequest,
    BootstrapAdminRequest,
    DescriptorsRequest,
    PersonStatusRequest,
    ChangePasswordRequest,
    CheckInRequest,
    CorrectAttendanceRequest
)
from .response import (
    BaseResponse,
    SuccessWithData,
    ErrorResponse,
    RateLimited,
    Unauthorized,
    PersonData,
    AttendanceData,
    CheckInData,
    CorrectionData,
    HistoryData,
    StatsData,
    TokenData,
    IdentityData
)

__all__ = [
    "LoginRequest",
    "CreatePersonRequest",
    "BootstrapAdminRequest",
    "DescriptorsRequest",
    "PersonStatusRequest",
    "ChangePasswordRequest",
    "CheckInRequest",
    "CorrectAttendanceRequest",
    "BaseResponse",
    "SuccessWithData",
    "ErrorResponse",
    "RateLimited",
    "Unauthorized",
    "PersonData",
    "AttendanceData",
    "CheckInData",
    "CorrectionData",
    "HistoryData",
    "StatsData",
    "TokenData",
    "IdentityData"
]
