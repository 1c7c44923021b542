from src.models.analytics import (
    Alert,
    CampusOverview,
    InactiveUser,
    LocationStat,
    MovementHistogram,
    OccupancyReport,
    PrivacyMetric,
    Visit,
)
from src.models.enums import (
    AlertSeverity,
    AlertType,
    AuditResult,
    Capability,
    DataType,
    PrivacyLevel,
    QueryIntent,
    ResultType,
    UserRole,
)
from src.models.errors import (
    CampusError,
    ConsentNotWithdrawableError,
    InvalidQueryError,
    PermissionDeniedError,
    PolicyImmutableError,
)
from src.models.location import LocationEvent
from src.models.privacy import (
    AuditLogEntry,
    ConsentRecord,
    PrivacyPolicy,
    PrivacySettings,
    PrivacySettingsUpdate,
)
from src.models.request import LocationReport, QueryRequest
from src.models.response import QueryResponse, QueryResult
from src.models.user import Actor, UserIdentity

__all__ = [
    "Actor",
    "Alert",
    "AlertSeverity",
    "AlertType",
    "AuditLogEntry",
    "AuditResult",
    "CampusError",
    "CampusOverview",
    "Capability",
    "ConsentNotWithdrawableError",
    "ConsentRecord",
    "DataType",
    "InactiveUser",
    "InvalidQueryError",
    "LocationEvent",
    "LocationReport",
    "LocationStat",
    "MovementHistogram",
    "OccupancyReport",
    "PermissionDeniedError",
    "PolicyImmutableError",
    "PrivacyLevel",
    "PrivacyMetric",
    "PrivacyPolicy",
    "PrivacySettings",
    "PrivacySettingsUpdate",
    "QueryIntent",
    "QueryRequest",
    "QueryResponse",
    "QueryResult",
    "ResultType",
    "UserIdentity",
    "UserRole",
    "Visit",
]
