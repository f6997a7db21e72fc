from .person_repository import PersonRepository
from .attendance_repository import AttendanceRepository
from .session_repository import SessionRepository

__all__ = [
    "PersonRepository",
    "AttendanceRepository",
    "SessionRepository",
]
