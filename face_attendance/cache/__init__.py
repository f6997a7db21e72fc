from .backend import CacheBackend, TTLCacheBackend
from .read_through import ReadThroughCache
from .stores import (
    DescriptorCache,
    AttendanceMarkerCache,
    RecentAttendanceMarker,
    SessionCache,
    SessionProjection,
)

__all__ = [
    "CacheBackend",
    "TTLCacheBackend",
    "ReadThroughCache",
    "DescriptorCache",
    "AttendanceMarkerCache",
    "RecentAttendanceMarker",
    "SessionCache",
    "SessionProjection",
]
