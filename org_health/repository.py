"""
Organization Health - Snapshot Repository.

============================================================
PURPOSE
============================================================
SQLAlchemy implementation of the SnapshotStore interface.

- Upsert keyed by (organization_id, score_date)
- Latest-per-organization queries for the query facade
- Point-in-time lookups for trend derivation

Sessions are synchronous; every call runs in a worker thread
(asyncio.to_thread) so the event loop is never blocked.

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .database import transaction_scope
from .models import HealthSnapshotRecord, to_utc
from .store import SnapshotStore
from .types import HealthSnapshot


logger = logging.getLogger(__name__)


class SqlAlchemySnapshotStore(SnapshotStore):
    """
    Repository for health snapshot persistence.

    ============================================================
    METHODS
    ============================================================
    - upsert: Insert or replace the organization-day snapshot
    - get_latest: Most recent snapshot for one organization
    - list_latest: Most recent snapshot for every organization
    - find_at_or_before: Trend reference lookup
    - history: Snapshots in a time range

    ============================================================
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        """
        Initialize repository.

        Args:
            session_factory: SQLAlchemy session factory
        """
        self._session_factory = session_factory

    # --------------------------------------------------------
    # WRITE OPERATIONS
    # --------------------------------------------------------

    async def upsert(self, snapshot: HealthSnapshot) -> None:
        """
        Write the snapshot in a worker thread.

        The thread cannot be interrupted. If the caller is cancelled,
        this waits for the thread to commit or roll back before the
        cancellation propagates, so the row state is final once
        upsert returns or raises.
        """
        write = asyncio.ensure_future(asyncio.to_thread(self._upsert_sync, snapshot))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            await asyncio.wait({write})
            if not write.cancelled() and write.exception() is not None:
                logger.warning(
                    f"Cancelled snapshot write for {snapshot.organization_id} failed: {write.exception()}"
                )
            raise

    def _upsert_sync(self, snapshot: HealthSnapshot) -> None:
        try:
            with transaction_scope(self._session_factory) as session:
                self._write(session, snapshot)
        except IntegrityError:
            # Concurrent insert for the same organization-day; last writer wins
            logger.debug(f"Upsert conflict for {snapshot.organization_id} on {snapshot.snapshot_date}, retrying as update")
            with transaction_scope(self._session_factory) as session:
                self._write(session, snapshot)

    @staticmethod
    def _write(session: Session, snapshot: HealthSnapshot) -> None:
        stmt = select(HealthSnapshotRecord).where(
            and_(
                HealthSnapshotRecord.organization_id == snapshot.organization_id,
                HealthSnapshotRecord.score_date == snapshot.snapshot_date,
            )
        )
        existing = session.execute(stmt).scalar_one_or_none()
        if existing is not None:
            existing.apply(snapshot)
        else:
            session.add(HealthSnapshotRecord.from_snapshot(snapshot))

    # --------------------------------------------------------
    # READ OPERATIONS
    # --------------------------------------------------------

    async def get_latest(self, organization_id: str) -> Optional[HealthSnapshot]:
        return await asyncio.to_thread(self._get_latest_sync, organization_id)

    def _get_latest_sync(self, organization_id: str) -> Optional[HealthSnapshot]:
        stmt = (
            select(HealthSnapshotRecord)
            .where(HealthSnapshotRecord.organization_id == organization_id)
            .order_by(desc(HealthSnapshotRecord.score_date))
            .limit(1)
        )
        with self._session_factory() as session:
            record = session.execute(stmt).scalar_one_or_none()
            return record.to_snapshot() if record else None

    async def list_latest(self) -> List[HealthSnapshot]:
        return await asyncio.to_thread(self._list_latest_sync)

    def _list_latest_sync(self) -> List[HealthSnapshot]:
        latest_dates = (
            select(
                HealthSnapshotRecord.organization_id.label("organization_id"),
                func.max(HealthSnapshotRecord.score_date).label("max_date"),
            )
            .group_by(HealthSnapshotRecord.organization_id)
            .subquery()
        )
        stmt = select(HealthSnapshotRecord).join(
            latest_dates,
            and_(
                HealthSnapshotRecord.organization_id == latest_dates.c.organization_id,
                HealthSnapshotRecord.score_date == latest_dates.c.max_date,
            ),
        )
        with self._session_factory() as session:
            return [r.to_snapshot() for r in session.execute(stmt).scalars().all()]

    async def find_at_or_before(
        self,
        organization_id: str,
        cutoff: datetime,
    ) -> Optional[HealthSnapshot]:
        return await asyncio.to_thread(self._find_at_or_before_sync, organization_id, cutoff)

    def _find_at_or_before_sync(self, organization_id: str, cutoff: datetime) -> Optional[HealthSnapshot]:
        stmt = (
            select(HealthSnapshotRecord)
            .where(
                and_(
                    HealthSnapshotRecord.organization_id == organization_id,
                    HealthSnapshotRecord.computed_at <= to_utc(cutoff),
                )
            )
            .order_by(desc(HealthSnapshotRecord.computed_at))
            .limit(1)
        )
        with self._session_factory() as session:
            record = session.execute(stmt).scalar_one_or_none()
            return record.to_snapshot() if record else None

    async def history(
        self,
        organization_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[HealthSnapshot]:
        return await asyncio.to_thread(self._history_sync, organization_id, since, until)

    def _history_sync(
        self,
        organization_id: str,
        since: Optional[datetime],
        until: Optional[datetime],
    ) -> List[HealthSnapshot]:
        conditions = [HealthSnapshotRecord.organization_id == organization_id]
        if since is not None:
            conditions.append(HealthSnapshotRecord.computed_at >= to_utc(since))
        if until is not None:
            conditions.append(HealthSnapshotRecord.computed_at <= to_utc(until))
        stmt = (
            select(HealthSnapshotRecord)
            .where(and_(*conditions))
            .order_by(HealthSnapshotRecord.computed_at)
        )
        with self._session_factory() as session:
            return [r.to_snapshot() for r in session.execute(stmt).scalars().all()]

    async def count(self, organization_id: Optional[str] = None) -> int:
        return await asyncio.to_thread(self._count_sync, organization_id)

    def _count_sync(self, organization_id: Optional[str]) -> int:
        stmt = select(func.count()).select_from(HealthSnapshotRecord)
        if organization_id is not None:
            stmt = stmt.where(HealthSnapshotRecord.organization_id == organization_id)
        with self._session_factory() as session:
            return int(session.execute(stmt).scalar_one())
