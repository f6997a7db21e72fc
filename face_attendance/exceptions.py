"""
自定义异常及异常处理器
"""
import math
import logging
from typing import List, Dict, Any, Optional

from fastapi import Request, status, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from .config import Config

logger = logging.getLogger(__name__)


class AppError(Exception):
    """业务异常基类"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "服务器内部错误"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """输入数据格式错误（描述符长度、图片格式等）"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "无效的请求参数"


class AuthError(AppError):
    """令牌无效、过期或会话已失效"""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "未授权"

    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    SESSION_NOT_FOUND = "session_not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    MISSING_TOKEN = "missing_token"

    def __init__(self, message: Optional[str] = None, reason: str = INVALID_TOKEN):
        super().__init__(message)
        self.reason = reason


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "需要管理员权限"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "资源不存在"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "资源已存在"


class RateLimitedError(AppError):
    """重复打卡抑制窗口内的请求"""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "操作过于频繁，请稍后再试"

    def __init__(self, message: Optional[str] = None, retry_after_seconds: float = 0.0):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class PersistenceError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "数据存储失败"


class UpstreamError(AppError):
    """人脸特征提取服务异常"""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "人脸识别服务不可用"


# 预期内的业务结果，记录为 warning 而非 error
EXPECTED_ERRORS = (ValidationError, AuthError, ForbiddenError, NotFoundError,
                   ConflictError, RateLimitedError)


def app_exception_handler(request: Request, exc: AppError):
    """处理业务异常"""
    content: Dict[str, Any] = {
        "code": 1,
        "message": exc.message
    }
    headers = None
    if isinstance(exc, RateLimitedError):
        content["retryAfterSeconds"] = exc.retry_after_seconds
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after_seconds)))}
    if isinstance(exc, AuthError):
        content["reason"] = exc.reason

    response = JSONResponse(status_code=exc.status_code, content=content, headers=headers)
    if isinstance(exc, AuthError):
        # 认证失败时清除客户端持有的会话凭证
        response.delete_cookie(Config.SESSION_COOKIE_NAME)
    if not isinstance(exc, EXPECTED_ERRORS):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return response


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """处理请求验证错误"""
    errors: List[Dict[str, Any]] = exc.errors()
    if not errors:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "code": 1,
                "message": "无效的请求参数"
            }
        )

    # 获取第一个错误
    error = errors[0]
    field_name = (error.get("loc") or ["未知字段"])[-1]
    error_type = error.get("type", "unknown")
    error_msg = error.get("msg", "无效的请求参数")

    # 根据错误类型提供更详细的错误信息
    if error_type == "missing":
        message = f"缺少必要参数: {field_name}"
    elif error_type == "value_error":
        message = f"参数值错误: {field_name} {error_msg}"
    elif error_type == "json_invalid":
        message = "JSON格式错误: 请检查请求体格式是否正确"
    else:
        message = f"{field_name}: {error_msg}"

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "code": 1,
            "message": message
        }
    )


def http_exception_handler(request: Request, exc: HTTPException):
    """处理 HTTP 异常"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": 1,
            "message": exc.detail
        }
    )


def general_exception_handler(request: Request, exc: Exception):
    """处理一般异常"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": 1,
            "message": str(exc) if str(exc) else "服务器内部错误"
        }
    )
