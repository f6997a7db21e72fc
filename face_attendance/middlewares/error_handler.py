"""
错误处理中间件
"""
import logging
import traceback
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    全局错误处理中间件
    捕获异常处理器之外逃逸的异常，记录日志并返回500错误响应
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(
                f"Unhandled error on {request.method} {request.url.path}: {e}\n{traceback.format_exc()}"
            )
            return JSONResponse(
                status_code=500,
                content={
                    "code": 1,
                    "message": "服务器内部错误"
                }
            )
