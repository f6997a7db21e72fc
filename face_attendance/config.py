"""
应用程序配置设置
"""
import os
from typing import Dict, Any


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    # 数据库设置
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./face_attendance.db")

    # API设置
    API_V1_STR = "/api/v1"

    # 安全设置
    SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-here")
    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
    SESSION_CACHE_TTL_SECONDS = int(os.getenv("SESSION_CACHE_TTL_SECONDS", "86400"))
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "access_token")

    # 人脸匹配设置
    FACE_DISTANCE_THRESHOLD = float(os.getenv("FACE_DISTANCE_THRESHOLD", "0.4"))
    FACE_TIE_MARGIN = float(os.getenv("FACE_TIE_MARGIN", "0.01"))
    FACE_DETECTION_MIN_CONFIDENCE = float(os.getenv("FACE_DETECTION_MIN_CONFIDENCE", "0.6"))
    DESCRIPTOR_CACHE_TTL_SECONDS = int(os.getenv("DESCRIPTOR_CACHE_TTL_SECONDS", "3600"))
    MAX_DESCRIPTORS_PER_PERSON = int(os.getenv("MAX_DESCRIPTORS_PER_PERSON", "10"))

    # 考勤设置
    ATTENDANCE_MIN_INTERVAL_SECONDS = int(os.getenv("ATTENDANCE_MIN_INTERVAL_SECONDS", "300"))
    RECENT_ATTENDANCE_TTL_SECONDS = int(os.getenv("RECENT_ATTENDANCE_TTL_SECONDS", "3600"))
    WORKDAY_TZ = os.getenv("WORKDAY_TZ", "UTC")

    # 文件设置
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
    MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))

    # 日志设置
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # 应用设置
    DEBUG = _env_bool("DEBUG", "true")
    PROJECT_NAME = "Face Attendance API"

    @classmethod
    def get_settings(cls) -> Dict[str, Any]:
        """
        获取所有设置

        Returns:
            Dict[str, Any]: 所有配置设置的字典
        """
        return {
            key: value for key, value in cls.__dict__.items()
            if not key.startswith('_') and not callable(value)
            and not isinstance(value, classmethod)
        }
