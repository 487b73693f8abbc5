"""Persistence access for query applications, approval requests and events.

All workflow services go through ``QueryRepository``; nothing else writes these
tables.  Database failures surface as ``StorageError`` and a failed commit
rolls the session back, so a state change and its event are stored together or
not at all.
"""

import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.approval import ApprovalRequest
from app.models.query import Query, QueryApplication, Team
from app.models.query_event import QueryEvent
from app.services.query_errors import StorageError

logger = logging.getLogger(__name__)


class QueryRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _scalars(self, stmt) -> list:
        try:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Query workflow read failed: %s", e)
            raise StorageError("Storage read failed") from e

    async def _scalar(self, stmt):
        rows = await self._scalars(stmt)
        return rows[0] if rows else None

    @staticmethod
    def _locking(stmt, for_update: bool):
        if for_update:
            # FOR UPDATE is a no-op on SQLite; the version column still guards writes
            return stmt.with_for_update().execution_options(populate_existing=True)
        return stmt

    # ── Applications ─────────────────────────────────────────

    async def get_application(
        self, application_id: str, *, for_update: bool = False,
    ) -> Optional[QueryApplication]:
        stmt = select(QueryApplication).where(QueryApplication.id == application_id)
        return await self._scalar(self._locking(stmt, for_update))

    async def get_application_by_app_no(self, app_no: str) -> Optional[QueryApplication]:
        return await self._scalar(
            select(QueryApplication).where(QueryApplication.app_no == app_no)
        )

    async def resolve_application_id(self, query_id: str) -> Optional[str]:
        """Map a query id (or an application id) to its owning application id."""
        app_id = await self._scalar(
            select(QueryApplication.id).where(QueryApplication.id == query_id)
        )
        if app_id:
            return app_id
        return await self._scalar(
            select(Query.application_id).where(Query.id == query_id)
        )

    async def find_query(
        self, query_id: str, *, for_update: bool = False,
    ) -> tuple[Optional[QueryApplication], Optional[Query]]:
        """Return ``(application, query)``.

        ``query`` is None when ``query_id`` names the application itself, and
        both are None when the id resolves to neither.
        """
        application_id = await self.resolve_application_id(query_id)
        if application_id is None:
            return None, None
        application = await self.get_application(application_id, for_update=for_update)
        if application is None:
            return None, None
        if application.id == query_id:
            return application, None
        query = next((q for q in application.queries if q.id == query_id), None)
        return application, query

    async def add_application(self, application: QueryApplication) -> QueryApplication:
        self.db.add(application)
        await self.flush()
        return application

    async def list_applications(
        self,
        *,
        status: Optional[str] = None,
        app_no: Optional[str] = None,
        branch_code: Optional[str] = None,
        team: Optional[Team] = None,
    ) -> list[QueryApplication]:
        stmt = select(QueryApplication)
        if status:
            stmt = stmt.where(QueryApplication.status == status)
        if app_no:
            stmt = stmt.where(QueryApplication.app_no.ilike(f"%{app_no}%"))
        if branch_code:
            stmt = stmt.where(QueryApplication.branch_code == branch_code.upper())
        if team == Team.SALES:
            stmt = stmt.where(QueryApplication.send_to_sales.is_(True))
        elif team == Team.CREDIT:
            stmt = stmt.where(QueryApplication.send_to_credit.is_(True))
        stmt = stmt.order_by(QueryApplication.last_updated.desc(), QueryApplication.app_no)
        return await self._scalars(stmt)

    async def get_applications(self, application_ids: Sequence[str]) -> dict[str, QueryApplication]:
        if not application_ids:
            return {}
        rows = await self._scalars(
            select(QueryApplication).where(QueryApplication.id.in_(set(application_ids)))
        )
        return {a.id: a for a in rows}

    # ── Approval requests ────────────────────────────────────

    async def get_request(
        self, request_id: str, *, for_update: bool = False,
    ) -> Optional[ApprovalRequest]:
        stmt = select(ApprovalRequest).where(ApprovalRequest.id == request_id)
        return await self._scalar(self._locking(stmt, for_update))

    async def add_request(self, request: ApprovalRequest) -> ApprovalRequest:
        self.db.add(request)
        await self.flush()
        return request

    async def list_requests(
        self,
        *,
        status: Optional[str] = None,
        query_id: Optional[str] = None,
    ) -> list[ApprovalRequest]:
        stmt = select(ApprovalRequest)
        if status:
            stmt = stmt.where(ApprovalRequest.status == status)
        if query_id:
            stmt = stmt.where(
                (ApprovalRequest.query_id == query_id)
                | (ApprovalRequest.application_id == query_id)
            )
        stmt = stmt.order_by(ApprovalRequest.request_date.desc(), ApprovalRequest.id)
        return await self._scalars(stmt)

    # ── Events ───────────────────────────────────────────────

    async def append_event(self, event: QueryEvent) -> QueryEvent:
        self.db.add(event)
        await self.flush()
        return event

    async def list_events(
        self,
        *,
        query_id: Optional[str] = None,
        application_ids: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
        kinds: Optional[Sequence[str]] = None,
        exclude_system: bool = False,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> list[QueryEvent]:
        stmt = select(QueryEvent)
        if query_id is not None:
            stmt = stmt.where(QueryEvent.query_id == query_id)
        if application_ids is not None:
            stmt = stmt.where(QueryEvent.application_id.in_(set(application_ids)))
        if since is not None:
            stmt = stmt.where(QueryEvent.timestamp > since)
        if kinds:
            stmt = stmt.where(QueryEvent.kind.in_(list(kinds)))
        if exclude_system:
            stmt = stmt.where(QueryEvent.is_system.is_(False))
        # Ids are assigned in append order, which is the order mutations were accepted
        if newest_first:
            stmt = stmt.order_by(QueryEvent.id.desc())
        else:
            stmt = stmt.order_by(QueryEvent.id)
        if limit:
            stmt = stmt.limit(limit)
        return await self._scalars(stmt)

    # ── Unit of work ─────────────────────────────────────────

    async def flush(self) -> None:
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Query workflow flush failed: %s", e)
            raise StorageError("Storage write failed") from e

    async def commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Query workflow commit failed: %s", e)
            raise StorageError("Storage write failed") from e

    async def rollback(self) -> None:
        await self.db.rollback()
