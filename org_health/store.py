"""
Organization Health - Snapshot Store.

============================================================
PURPOSE
============================================================
The snapshot store is the only shared resource between
recalculation workers.

- Writes are keyed by (organization_id, snapshot_date)
- A write for an existing key REPLACES that day's snapshot
- Conflicting writes are last-writer-wins
- Reads never mutate

============================================================
IMPLEMENTATIONS
============================================================
- InMemorySnapshotStore: process-local, used by tests / demos
- SqlAlchemySnapshotStore: see repository.py

============================================================
"""

import threading
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from .types import HealthSnapshot


class SnapshotStore(ABC):
    """Abstract async interface for snapshot persistence."""

    @abstractmethod
    async def upsert(self, snapshot: HealthSnapshot) -> None:
        """Insert or replace the snapshot for its organization-day."""

    @abstractmethod
    async def get_latest(self, organization_id: str) -> Optional[HealthSnapshot]:
        """Most recent snapshot for an organization."""

    @abstractmethod
    async def list_latest(self) -> List[HealthSnapshot]:
        """Most recent snapshot for every organization."""

    @abstractmethod
    async def find_at_or_before(
        self,
        organization_id: str,
        cutoff: datetime,
    ) -> Optional[HealthSnapshot]:
        """Latest snapshot with computed_at <= cutoff."""

    @abstractmethod
    async def history(
        self,
        organization_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[HealthSnapshot]:
        """Snapshots for an organization, oldest first."""

    @abstractmethod
    async def count(self, organization_id: Optional[str] = None) -> int:
        """Number of stored snapshots."""


class InMemorySnapshotStore(SnapshotStore):
    """
    Process-local snapshot store.

    Thread-safe; safe to share between asyncio workers.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[str, Dict[date, HealthSnapshot]] = {}
        self._lock = threading.RLock()
        self._write_count = 0

    @property
    def write_count(self) -> int:
        """Total upserts performed (including replacements)."""
        return self._write_count

    async def upsert(self, snapshot: HealthSnapshot) -> None:
        with self._lock:
            per_org = self._snapshots.setdefault(snapshot.organization_id, {})
            per_org[snapshot.snapshot_date] = snapshot
            self._write_count += 1

    async def get_latest(self, organization_id: str) -> Optional[HealthSnapshot]:
        with self._lock:
            return self._latest(organization_id)

    async def list_latest(self) -> List[HealthSnapshot]:
        with self._lock:
            latest = [self._latest(org_id) for org_id in self._snapshots]
        return [s for s in latest if s is not None]

    async def find_at_or_before(
        self,
        organization_id: str,
        cutoff: datetime,
    ) -> Optional[HealthSnapshot]:
        with self._lock:
            candidates = [
                s for s in self._snapshots.get(organization_id, {}).values()
                if s.computed_at <= cutoff
            ]
        if not candidates:
            return None
        return max(candidates, key=_sort_key)

    async def history(
        self,
        organization_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[HealthSnapshot]:
        with self._lock:
            snapshots = list(self._snapshots.get(organization_id, {}).values())
        if since is not None:
            snapshots = [s for s in snapshots if s.computed_at >= since]
        if until is not None:
            snapshots = [s for s in snapshots if s.computed_at <= until]
        return sorted(snapshots, key=_sort_key)

    async def count(self, organization_id: Optional[str] = None) -> int:
        with self._lock:
            if organization_id is not None:
                return len(self._snapshots.get(organization_id, {}))
            return sum(len(v) for v in self._snapshots.values())

    def _latest(self, organization_id: str) -> Optional[HealthSnapshot]:
        per_org = self._snapshots.get(organization_id)
        if not per_org:
            return None
        return max(per_org.values(), key=_sort_key)


def _sort_key(snapshot: HealthSnapshot) -> Tuple[date, datetime]:
    return (snapshot.snapshot_date, snapshot.computed_at)
