"""
考勤图片存储
"""
import datetime
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


class ImageStore:
    def __init__(self, upload_dir: str):
        self.upload_dir = upload_dir

    def _path(self, relative: str) -> str:
        return os.path.join(self.upload_dir, relative)

    def save_attendance_image(
        self,
        image_bytes: bytes,
        person_id: int,
        attendance_type: str,
        timestamp: datetime.datetime
    ) -> Optional[str]:
        """
        保存打卡图片

        Returns:
            Optional[str]: 相对于上传目录的路径，保存失败时返回None
        """
        try:
            directory = self._path("attendance")
            os.makedirs(directory, exist_ok=True)
            stamp = timestamp.strftime("%Y%m%dT%H%M%S%f")
            filename = f"{person_id}_{attendance_type}_{stamp}.jpg"
            with open(os.path.join(directory, filename), "wb") as f:
                f.write(image_bytes)
            return f"attendance/{filename}"
        except OSError as e:
            logger.error(f"Failed to save attendance image for person {person_id}: {e}")
            return None

    def delete(self, relative: Optional[str]) -> bool:
        if not relative:
            return False
        path = self._path(relative)
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete image {path}: {e}")
            return False
