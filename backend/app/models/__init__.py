"""SQLAlchemy models for the query workflow service."""

from app.models.query import (
    QueryApplication, Query, Role, Team, MarkedForTeam,
    ApplicationStatus, QueryStatus, QueryAction,
)
from app.models.approval import (
    ApprovalRequest, RequestType, RequestStatus, RequestPriority, Decision,
)
from app.models.query_event import QueryEvent, EventKind
from app.models.error_log import ErrorLog, ErrorSeverity

__all__ = [
    "QueryApplication", "Query", "Role", "Team", "MarkedForTeam",
    "ApplicationStatus", "QueryStatus", "QueryAction",
    "ApprovalRequest", "RequestType", "RequestStatus", "RequestPriority", "Decision",
    "QueryEvent", "EventKind",
    "ErrorLog", "ErrorSeverity",
]
