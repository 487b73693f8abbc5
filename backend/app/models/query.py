"""Query workflow models.

Provides: QueryApplication (aggregate root, one loan case under query) and
Query (child item owned by exactly one application), plus the enums shared by
the workflow services.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Integer, Numeric, Boolean, DateTime, ForeignKey, Text, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


# ── Enums ────────────────────────────────────────────────────

class Role(str, enum.Enum):
    OPERATIONS = "operations"
    SALES = "sales"
    CREDIT = "credit"
    MANAGEMENT = "management"


class Team(str, enum.Enum):
    SALES = "sales"
    CREDIT = "credit"


class MarkedForTeam(str, enum.Enum):
    SALES = "sales"
    CREDIT = "credit"
    BOTH = "both"


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class QueryStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DEFERRED = "deferred"
    OTC = "otc"
    RESOLVED = "resolved"


class QueryAction(str, enum.Enum):
    APPROVE = "approve"
    DEFERRAL = "deferral"
    OTC = "otc"


ACTION_TO_STATUS = {
    QueryAction.APPROVE: QueryStatus.APPROVED,
    QueryAction.DEFERRAL: QueryStatus.DEFERRED,
    QueryAction.OTC: QueryStatus.OTC,
}

ACTION_TO_RESOLUTION_TYPE = {
    QueryAction.APPROVE: "approved",
    QueryAction.DEFERRAL: "deferral",
    QueryAction.OTC: "otc",
}


# ── QueryApplication ─────────────────────────────────────────

class QueryApplication(Base):
    __tablename__ = "query_applications"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    app_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    branch: Mapped[str] = mapped_column(String(120), nullable=False)
    branch_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Team targeting (immutable after creation)
    send_to_sales: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    send_to_credit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    marked_for_team: Mapped[str] = mapped_column(String(10), nullable=False)

    # Loan facts used for approval request snapshots
    loan_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    loan_type: Mapped[str | None] = mapped_column(String(60), nullable=True)

    # Aggregate status, derived from the child queries
    status: Mapped[str] = mapped_column(
        String(20), default=ApplicationStatus.PENDING.value, nullable=False, index=True,
    )
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolution_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_by: Mapped[str] = mapped_column(String(200), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    queries = relationship(
        "Query", back_populates="application",
        cascade="all, delete-orphan", order_by="Query.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


# ── Query ────────────────────────────────────────────────────

class Query(Base):
    __tablename__ = "queries"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    application_id: Mapped[str] = mapped_column(
        ForeignKey("query_applications.id"), nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=QueryStatus.PENDING.value, nullable=False, index=True,
    )

    # Provenance of the raise
    sender: Mapped[str] = mapped_column(String(200), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    # Resolution
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(200), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Revert
    reverted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reverted_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    revert_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    application = relationship("QueryApplication", back_populates="queries")
