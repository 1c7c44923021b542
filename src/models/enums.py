from __future__ import annotations

from enum import StrEnum


class UserRole(StrEnum):
    __slots__ = ()

    STUDENT = "student"
    TEACHER = "teacher"
    STAFF = "staff"
    ADMIN = "admin"


class PrivacyLevel(StrEnum):
    __slots__ = ()

    PUBLIC = "public"
    FRIENDS = "friends"
    PRIVATE = "private"


class Capability(StrEnum):
    __slots__ = ()

    VIEW_LOCATION = "view_location"
    VIEW_HISTORY = "view_history"
    MODIFY_PRIVACY = "modify_privacy"
    EXPORT_DATA = "export_data"
    DELETE_DATA = "delete_data"


class DataType(StrEnum):
    __slots__ = ()

    LOCATION = "location"
    BUILDING_ENTRY = "building_entry"
    ROOM_OCCUPANCY = "room_occupancy"
    MOVEMENT_PATTERNS = "movement_patterns"
    TIMESTAMPS = "timestamps"
    DURATION_TRACKING = "duration_tracking"
    PROXIMITY = "proximity"
    INTERACTION_FREQUENCY = "interaction_frequency"
    GROUP_FORMATION = "group_formation"


class AuditResult(StrEnum):
    __slots__ = ()

    GRANTED = "granted"
    DENIED = "denied"
    UPDATED = "updated"
    REJECTED = "rejected"


class ResultType(StrEnum):
    __slots__ = ()

    USER = "user"
    LOCATION = "location"
    EVENT = "event"
    ANALYTICS = "analytics"


class QueryIntent(StrEnum):
    __slots__ = ()

    LIBRARY_OCCUPANTS = "library_occupants"
    TEACHERS_ON_CAMPUS = "teachers_on_campus"
    MOVEMENT_PATTERN = "movement_pattern"
    AFTER_HOURS_ALERT = "after_hours_alert"
    CAMPUS_ACTIVITY = "campus_activity"
    CAMPUS_OVERVIEW = "campus_overview"


class AlertType(StrEnum):
    __slots__ = ()

    AFTER_HOURS_ACCESS = "after_hours_access"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    UNUSUAL_MOVEMENT = "unusual_movement"
    PRIVACY_VIOLATION_ATTEMPT = "privacy_violation_attempt"


class AlertSeverity(StrEnum):
    __slots__ = ()

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
