"""
请求日志中间件
"""
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("face_attendance.request")


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """
    请求日志中间件
    记录每个请求的处理时间和基本信息
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        path = request.url.path
        method = request.method

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            logger.error(f"[{method}] {path} - 500 - {process_time:.2f}ms - Error: {e}")
            # 交给错误处理中间件
            raise

        process_time = (time.time() - start_time) * 1000
        logger.info(f"[{method}] {path} - {response.status_code} - {process_time:.2f}ms")
        return response
