"""Approval request model for Management-gated query actions.

A request references its query by id only; the application context it carries
is a snapshot taken when the request was raised and is never refreshed.
"""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Integer, Numeric, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class RequestType(str, enum.Enum):
    APPROVE = "approve"
    DEFERRAL = "deferral"
    OTC = "otc"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Decision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    query_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    application_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(200), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_by: Mapped[str] = mapped_column(String(200), nullable=False)
    request_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True,
    )

    status: Mapped[str] = mapped_column(
        String(20), default=RequestStatus.PENDING.value, nullable=False, index=True,
    )
    priority: Mapped[str] = mapped_column(
        String(10), default=RequestPriority.MEDIUM.value, nullable=False,
    )

    # Snapshot at request time
    app_no: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    branch: Mapped[str] = mapped_column(String(120), nullable=False)
    branch_code: Mapped[str] = mapped_column(String(20), nullable=False)
    marked_for_team: Mapped[str] = mapped_column(String(10), nullable=False)
    loan_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    loan_type: Mapped[str | None] = mapped_column(String(60), nullable=True)
    query_text: Mapped[str] = mapped_column(Text, nullable=False)

    # Decision
    processed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    process_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
