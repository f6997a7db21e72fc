from .person import Person, FaceDescriptor, ROLE_ADMIN, ROLE_STANDARD
from .attendance import AttendanceEvent, AttendanceCorrection, ENTRY, EXIT
from .session import LoginSession

__all__ = [
    "Person",
    "FaceDescriptor",
    "AttendanceEvent",
    "AttendanceCorrection",
    "LoginSession",
    "ROLE_ADMIN",
    "ROLE_STANDARD",
    "ENTRY",
    "EXIT",
]
