"""Aggregate status derivation and dashboard statistics.

An application is ``resolved`` exactly when every one of its queries holds a
terminal status.  ``recompute_application`` is the only place that writes
``QueryApplication.status``; every mutation that touches a child query must
call it before committing.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Iterable

from app.models.query import (
    ApplicationStatus, MarkedForTeam, QueryApplication, QueryStatus,
)

TERMINAL_STATUSES = frozenset({
    QueryStatus.APPROVED.value,
    QueryStatus.DEFERRED.value,
    QueryStatus.OTC.value,
    QueryStatus.RESOLVED.value,
})

ALL_QUERIES_RESOLVED = "All queries resolved"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def derive_application_status(query_statuses: Iterable[str]) -> ApplicationStatus:
    """``resolved`` iff every status is terminal.

    An empty sequence is treated as pending; applications are never created
    without queries.
    """
    statuses = list(query_statuses)
    if statuses and all(is_terminal(s) for s in statuses):
        return ApplicationStatus.RESOLVED
    return ApplicationStatus.PENDING


def recompute_application(
    application: QueryApplication,
    actor: str,
    now: datetime | None = None,
) -> ApplicationStatus:
    """Re-derive the aggregate status from all children and stamp the result."""
    now = now or utcnow()
    new_status = derive_application_status(q.status for q in application.queries)

    if new_status == ApplicationStatus.RESOLVED:
        if application.status != ApplicationStatus.RESOLVED.value:
            application.resolved_at = now
            application.resolved_by = actor
            application.resolution_reason = ALL_QUERIES_RESOLVED
        application.is_resolved = True
    else:
        application.resolved_at = None
        application.resolved_by = None
        application.resolution_reason = None
        application.is_resolved = False

    application.status = new_status.value
    application.last_updated = now
    return new_status


def check_invariant(application: QueryApplication) -> bool:
    """True when the stored aggregate status matches its children."""
    expected = derive_application_status(q.status for q in application.queries)
    return application.status == expected.value


# ── Statistics ───────────────────────────────────────────────

def empty_statistics() -> dict:
    return {
        "total": 0,
        "pending": 0,
        "resolved": 0,
        "queries_by_status": {s.value: 0 for s in QueryStatus},
        "applications_by_team": {t.value: 0 for t in MarkedForTeam},
        "management": {"pending": 0, "approved": 0, "otc": 0, "deferral": 0, "total": 0},
    }


def compute_statistics(applications: Iterable[QueryApplication]) -> dict:
    """Counts derived from current application state; nothing is stored."""
    stats = empty_statistics()
    by_status: Counter = Counter()
    by_team: Counter = Counter()
    management: Counter = Counter()

    for application in applications:
        stats["total"] += 1
        if application.status == ApplicationStatus.RESOLVED.value:
            stats["resolved"] += 1
        else:
            stats["pending"] += 1
        by_team[application.marked_for_team] += 1

        child_statuses = {q.status for q in application.queries}
        for q in application.queries:
            by_status[q.status] += 1

        # An application counts toward each status any of its queries holds
        if application.status == ApplicationStatus.PENDING.value:
            management["pending"] += 1
        if QueryStatus.APPROVED.value in child_statuses:
            management["approved"] += 1
        if QueryStatus.OTC.value in child_statuses:
            management["otc"] += 1
        if QueryStatus.DEFERRED.value in child_statuses:
            management["deferral"] += 1

    stats["queries_by_status"].update(by_status)
    stats["applications_by_team"].update(by_team)
    stats["management"].update(management)
    stats["management"]["total"] = stats["total"]
    return stats
