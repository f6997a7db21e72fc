from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from face_attendance.config import Config
from face_attendance.container import ServiceContainer
from face_attendance.controllers.admin_controller import router as admin_router, health_router
from face_attendance.controllers.attendance_controller import router as attendance_router
from face_attendance.controllers.auth_controller import router as auth_router
from face_attendance.controllers.person_controller import router as person_router
from face_attendance.database import init_db
from face_attendance.exceptions import (
    AppError,
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    general_exception_handler
)
from face_attendance.middlewares import ErrorHandlerMiddleware, RequestLoggerMiddleware
from face_attendance.utils.logger import attendance_logger


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    创建应用实例

    Args:
        container: 服务容器，为None时按 Config 创建

    Returns:
        FastAPI: 应用实例
    """
    container = container or ServiceContainer()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(container.engine)
        container.warm_up()
        attendance_logger.logger.info(f"{container.config.PROJECT_NAME} started")
        yield
        container.shutdown()

    app = FastAPI(
        title=container.config.PROJECT_NAME,
        description="人脸识别考勤 API",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.container = container

    # 添加CORS中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 注册中间件
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestLoggerMiddleware)

    # 注册异常处理器
    app.add_exception_handler(AppError, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # 注册路由
    app.include_router(auth_router, prefix=Config.API_V1_STR)
    app.include_router(person_router, prefix=Config.API_V1_STR)
    app.include_router(attendance_router, prefix=Config.API_V1_STR)
    app.include_router(admin_router, prefix=Config.API_V1_STR)
    app.include_router(health_router, prefix=Config.API_V1_STR)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=3000,
        reload=Config.DEBUG
    )
