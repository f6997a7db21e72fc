import logging
import os
import sys
import functools
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional, Callable

from ..config import Config
from ..exceptions import EXPECTED_ERRORS


class AttendanceLogger:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(AttendanceLogger, cls).__new__(cls)
            cls._instance._initialize_logger()
        return cls._instance

    def _initialize_logger(self):
        """初始化日志记录器"""
        self.logger = logging.getLogger('face_attendance')
        self.logger.setLevel(getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO))

        # 设置日志格式
        formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # 创建日志目录
        log_dir = Config.LOG_DIR
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)

        # 创建文件处理器
        log_file = os.path.join(log_dir, f'face_attendance_{datetime.now().strftime("%Y%m%d")}.log')
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)

        # 添加处理器
        self.logger.addHandler(file_handler)
        self.logger.addHandler(console_handler)

    def log_attendance(
        self,
        person_id: Optional[int],
        success: bool,
        details: Dict[str, Any],
        failure_reason: Optional[str] = None
    ):
        """记录考勤打卡日志"""
        log_data = {
            'person_id': person_id,
            'success': success,
            'timestamp': datetime.now().isoformat(),
            'details': details
        }

        if failure_reason:
            log_data['failure_reason'] = failure_reason

        if success:
            self.logger.info(f"Attendance check successful: {log_data}")
        else:
            self.logger.warning(f"Attendance check rejected: {log_data}")

    def log_auth(
        self,
        person_id: Optional[int],
        action: str,
        success: bool,
        details: Dict[str, Any],
        failure_reason: Optional[str] = None
    ):
        """记录会话相关日志（登录、刷新、注销）"""
        log_data = {
            'person_id': person_id,
            'action': action,
            'success': success,
            'timestamp': datetime.now().isoformat(),
            'details': details
        }

        if failure_reason:
            log_data['failure_reason'] = failure_reason

        if success:
            self.logger.info(f"Session {action} successful: {log_data}")
        else:
            self.logger.warning(f"Session {action} failed: {log_data}")

    def log_error(self, error: str, context: Dict[str, Any], failure_reason: Optional[str] = None):
        """记录错误日志"""
        log_data = {
            'error': error,
            'timestamp': datetime.now().isoformat(),
            'context': context
        }
        if failure_reason:
            log_data['failure_reason'] = failure_reason
        self.logger.error(f"Error occurred: {log_data}")


def _person_id_of(result: Any) -> Optional[int]:
    person = getattr(result, 'person', None)
    if person is not None:
        return getattr(person, 'id', None)
    return getattr(result, 'person_id', None)


def log_attendance_check(func: Callable):
    """考勤打卡日志装饰器"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            result = func(*args, **kwargs)
            attendance_logger.log_attendance(
                person_id=_person_id_of(result),
                success=True,
                details={
                    'type': getattr(result, 'type', None),
                    'confidence': getattr(result, 'confidence', None),
                    'ip_address': kwargs.get('ip_address')
                }
            )
            return result
        except EXPECTED_ERRORS as e:
            attendance_logger.log_attendance(
                person_id=None,
                success=False,
                details={'ip_address': kwargs.get('ip_address')},
                failure_reason=e.message
            )
            raise
        except Exception as e:
            attendance_logger.log_error(
                str(e),
                {
                    'function': func.__name__,
                    'kwargs': str({k: v for k, v in kwargs.items() if k != 'image_bytes'}),
                    'traceback': traceback.format_exc()
                }
            )
            raise
    return wrapper


def log_session_event(action: str):
    """会话操作日志装饰器"""
    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
                attendance_logger.log_auth(
                    person_id=_person_id_of(result) or kwargs.get('person_id'),
                    action=action,
                    success=True,
                    details={'ip_address': kwargs.get('ip_address')}
                )
                return result
            except EXPECTED_ERRORS as e:
                attendance_logger.log_auth(
                    person_id=kwargs.get('person_id'),
                    action=action,
                    success=False,
                    details={'ip_address': kwargs.get('ip_address')},
                    failure_reason=getattr(e, 'reason', None) or e.message
                )
                raise
            except Exception as e:
                attendance_logger.log_error(
                    str(e),
                    {
                        'function': func.__name__,
                        'action': action,
                        'traceback': traceback.format_exc()
                    }
                )
                raise
        return wrapper
    return decorator


# 创建全局日志记录器实例
attendance_logger = AttendanceLogger()
