"""Query event log: append-only audit trail and chat history."""

import enum
from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class EventKind(str, enum.Enum):
    ACTION = "action"
    MESSAGE = "message"
    REVERT = "revert"
    REQUEST = "request"


class QueryEvent(Base):
    __tablename__ = "query_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    query_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    application_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    team: Mapped[str | None] = mapped_column(String(40), nullable=True)

    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True,
    )
