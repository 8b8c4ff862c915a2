"""
Organization Health - Recalculation Orchestrator.

============================================================
RESPONSIBILITY
============================================================
Drives the scoring pipeline for one organization or for the
full active-organization set.

Per organization (strictly sequential):
    collect -> normalize -> composite -> classify
            -> recommendations -> trend -> persist

============================================================
RUN STATE MACHINE
============================================================

    IDLE -> RUNNING -> COMPLETED
                    -> COMPLETED_WITH_ERRORS

- Full runs fan out to a bounded worker pool
- Organization failures are logged and recorded, never fatal
- Same-day reruns replace that day's snapshot (store upsert)
- Cancellation: no new organization is started once observed;
  in-flight organizations finish (written fully or not at all)

============================================================
"""

import asyncio
import inspect
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union
import logging

from .calculator import CompositeScoreCalculator
from .classifier import RiskClassifier
from .clock import ClockProtocol, SystemClock
from .config import ScoringConfig
from .exceptions import (
    OrgHealthError,
    PersistenceError,
    RunNotFoundError,
    TotalCollectionFailure,
)
from .normalizer import CategoryNormalizer
from .recommendations import RecommendationBuilder
from .sources import CollectionResult, MetricSourceAdapter
from .store import SnapshotStore
from .trend import TrendTracker
from .types import CategoryMetric, HealthSnapshot, Organization, TrendResult


logger = logging.getLogger(__name__)


ALL_ORGANIZATIONS = "all"


# =============================================================
# ORGANIZATION DIRECTORY
# =============================================================


class OrganizationDirectory(ABC):
    """Source of tenant organizations."""

    @abstractmethod
    async def list_active(self) -> List[Organization]:
        """All active organizations."""

    @abstractmethod
    async def get(self, organization_id: str) -> Optional[Organization]:
        """One organization, or None if unknown."""


class StaticOrganizationDirectory(OrganizationDirectory):
    """In-memory organization directory."""

    def __init__(self, organizations: Iterable[Organization] = ()) -> None:
        self._organizations: Dict[str, Organization] = {o.id: o for o in organizations}

    def add(self, organization: Organization) -> None:
        self._organizations[organization.id] = organization

    async def list_active(self) -> List[Organization]:
        return [o for o in self._organizations.values() if o.is_active]

    async def get(self, organization_id: str) -> Optional[Organization]:
        return self._organizations.get(organization_id)


# =============================================================
# RUN MODELS
# =============================================================


class RunState(str, Enum):
    """Lifecycle of a recalculation run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.COMPLETED_WITH_ERRORS)


@dataclass(frozen=True)
class OrganizationFailure:
    """One organization that produced no snapshot in a run."""
    organization_id: Optional[str]
    error_type: str
    message: str
    failed_categories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "error_type": self.error_type,
            "message": self.message,
            "failed_categories": list(self.failed_categories),
        }


@dataclass
class RunStatus:
    """Pollable status of a recalculation run."""
    run_id: str
    scope: str
    state: RunState = RunState.IDLE
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    total: int = 0
    succeeded: int = 0
    partial: int = 0
    skipped: int = 0
    cancelled: bool = False
    failures: List[OrganizationFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def is_finished(self) -> bool:
        return self.state.is_terminal

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scope": self.scope,
            "state": self.state.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total": self.total,
            "succeeded": self.succeeded,
            "partial": self.partial,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass(frozen=True)
class SnapshotWrittenEvent:
    """Delivered to snapshot listeners after a successful write."""
    snapshot: HealthSnapshot
    previous: Optional[HealthSnapshot]
    trend: TrendResult

    @property
    def risk_changed(self) -> bool:
        return self.previous is not None and self.previous.risk_level != self.snapshot.risk_level


SnapshotListener = Callable[[SnapshotWrittenEvent], Union[None, Awaitable[None]]]


# =============================================================
# ORCHESTRATOR
# =============================================================


class RecalculationOrchestrator:
    """
    Runs health score recalculation.

    ============================================================
    USAGE
    ============================================================

    ```python
    orchestrator = RecalculationOrchestrator(
        config=ScoringConfig.default(),
        adapter=adapter,
        store=InMemorySnapshotStore(),
        directory=StaticOrganizationDirectory(orgs),
    )

    run_id = await orchestrator.recalculate("all")   # fire-and-forget
    status = orchestrator.get_run(run_id)            # poll
    status = await orchestrator.wait(run_id)         # or await
    ```

    ============================================================
    """

    RETRY_DELAY_SECONDS = 0.05
    # Finished runs kept for status polling; oldest are dropped first
    MAX_RUN_HISTORY = 100

    def __init__(
        self,
        config: ScoringConfig,
        adapter: MetricSourceAdapter,
        store: SnapshotStore,
        directory: OrganizationDirectory,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config
        self._adapter = adapter
        self._store = store
        self._directory = directory
        self._clock = clock or SystemClock()

        self._normalizer = CategoryNormalizer(config)
        self._calculator = CompositeScoreCalculator()
        self._classifier = RiskClassifier(config.thresholds)
        self._recommendations = RecommendationBuilder(config)
        self._trends = TrendTracker(store, config)

        self._runs: Dict[str, RunStatus] = {}
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._listeners: List[SnapshotListener] = []

        logger.info(
            f"RecalculationOrchestrator initialized "
            f"(categories={config.category_names}, max_concurrency={config.max_concurrency})"
        )

    # =========================================================
    # LISTENERS
    # =========================================================

    def add_snapshot_listener(self, listener: SnapshotListener) -> None:
        """Register a callback invoked after every snapshot write."""
        self._listeners.append(listener)

    # =========================================================
    # TRIGGER INTERFACE
    # =========================================================

    async def recalculate(self, scope: str = ALL_ORGANIZATIONS) -> str:
        """
        Start a run in the background and return its id.

        Args:
            scope: "all" or an organization id
        """
        status = self._new_run(scope)
        self._tasks[status.run_id] = asyncio.create_task(
            self._execute(status),
            name=f"org-health-run-{status.run_id}",
        )
        return status.run_id

    async def run(self, scope: str = ALL_ORGANIZATIONS) -> RunStatus:
        """Run to completion and return the final status."""
        status = self._new_run(scope)
        return await self._execute(status)

    def get_run(self, run_id: str) -> RunStatus:
        try:
            return self._runs[run_id]
        except KeyError:
            raise RunNotFoundError(run_id) from None

    def list_runs(self) -> List[RunStatus]:
        return list(self._runs.values())

    def cancel(self, run_id: str) -> bool:
        """
        Signal cancellation of a run.

        Returns False if the run already finished.
        """
        status = self.get_run(run_id)
        if status.is_finished:
            return False
        logger.info(f"Cancellation requested for run {run_id}")
        event = self._cancel_events.get(run_id)
        if event is None:
            return False
        event.set()
        return True

    async def wait(self, run_id: str) -> RunStatus:
        """Wait for a background run to finish."""
        status = self.get_run(run_id)
        task = self._tasks.get(run_id)
        if task is not None:
            await task
        return status

    # =========================================================
    # RUN EXECUTION
    # =========================================================

    def _new_run(self, scope: str) -> RunStatus:
        run_id = uuid.uuid4().hex
        status = RunStatus(run_id=run_id, scope=scope or ALL_ORGANIZATIONS)
        self._runs[run_id] = status
        self._cancel_events[run_id] = asyncio.Event()
        return status

    def _prune_runs(self) -> None:
        # _runs is kept in completion order
        finished = [run_id for run_id, run in self._runs.items() if run.is_finished]
        for run_id in finished[: max(0, len(finished) - self.MAX_RUN_HISTORY)]:
            del self._runs[run_id]

    async def _execute(self, status: RunStatus) -> RunStatus:
        cancel_event = self._cancel_events[status.run_id]
        status.state = RunState.RUNNING
        status.started_at = self._clock.now()
        logger.info(f"Health score run {status.run_id} started (scope={status.scope})")

        try:
            organizations = await self._resolve_scope(status)
            status.total = len(organizations)
            await self._run_pool(organizations, status, cancel_event)
        except Exception as e:
            logger.exception(f"Health score run {status.run_id} aborted: {e}")
            status.failures.append(
                OrganizationFailure(
                    organization_id=None,
                    error_type=type(e).__name__,
                    message=str(e),
                )
            )
        finally:
            status.skipped = max(0, status.total - status.succeeded - status.failed)
            status.cancelled = cancel_event.is_set()
            status.finished_at = self._clock.now()
            status.state = RunState.COMPLETED_WITH_ERRORS if status.failures else RunState.COMPLETED
            self._tasks.pop(status.run_id, None)
            self._cancel_events.pop(status.run_id, None)
            self._runs[status.run_id] = self._runs.pop(status.run_id, status)
            self._prune_runs()

        log = logger.warning if status.failures else logger.info
        log(
            f"Health score run {status.run_id} finished: state={status.state.value} "
            f"total={status.total} succeeded={status.succeeded} partial={status.partial} "
            f"failed={status.failed} skipped={status.skipped} cancelled={status.cancelled}"
        )
        return status

    async def _resolve_scope(self, status: RunStatus) -> List[Organization]:
        if status.scope == ALL_ORGANIZATIONS:
            return await self._directory.list_active()

        organization = await self._directory.get(status.scope)
        if organization is None or not organization.is_active:
            reason = "unknown organization" if organization is None else "organization is inactive"
            logger.error(f"Health score run {status.run_id}: {reason} {status.scope}")
            status.failures.append(
                OrganizationFailure(
                    organization_id=status.scope,
                    error_type="OrganizationNotFound",
                    message=reason,
                )
            )
            return []
        return [organization]

    async def _run_pool(
        self,
        organizations: List[Organization],
        status: RunStatus,
        cancel_event: asyncio.Event,
    ) -> None:
        if not organizations:
            return

        pending = iter(organizations)

        async def worker() -> None:
            while not cancel_event.is_set():
                organization = next(pending, None)
                if organization is None:
                    return
                await self._process_organization(organization, status)

        worker_count = min(self._config.max_concurrency, len(organizations))
        await asyncio.gather(*(worker() for _ in range(worker_count)))

    async def _process_organization(self, organization: Organization, status: RunStatus) -> None:
        try:
            snapshot = await self.score_organization(organization)
            previous = await self._store.get_latest(organization.id)
            trend = await self._trends.trend(organization.id, snapshot.composite_score, snapshot.computed_at)
            await self._persist(snapshot)
        except TotalCollectionFailure as e:
            logger.error(
                f"Health score failed for org {organization.id}: all categories absent "
                f"(failed categories: {', '.join(e.failed_categories)})"
            )
            status.failures.append(
                OrganizationFailure(
                    organization_id=organization.id,
                    error_type=type(e).__name__,
                    message=e.message,
                    failed_categories=e.failed_categories,
                )
            )
            return
        except OrgHealthError as e:
            logger.error(f"Health score failed for org {organization.id}: {e.message}")
            status.failures.append(
                OrganizationFailure(
                    organization_id=organization.id,
                    error_type=type(e).__name__,
                    message=e.message,
                )
            )
            return
        except Exception as e:
            logger.exception(f"Unexpected error scoring org {organization.id}: {e}")
            status.failures.append(
                OrganizationFailure(
                    organization_id=organization.id,
                    error_type=type(e).__name__,
                    message=str(e),
                )
            )
            return

        status.succeeded += 1
        if snapshot.is_partial:
            status.partial += 1
        logger.debug(
            f"Org {organization.id} scored {snapshot.composite_score} ({snapshot.risk_level.value}, "
            f"trend={trend.direction.value}, partial={snapshot.is_partial})"
        )
        await self._notify(SnapshotWrittenEvent(snapshot=snapshot, previous=previous, trend=trend))

    # =========================================================
    # PIPELINE
    # =========================================================

    async def score_organization(self, organization: Organization) -> HealthSnapshot:
        """
        Compute (but do not persist) a snapshot for one organization.

        Raises:
            TotalCollectionFailure: If no category could be collected
        """
        results = await self._adapter.collect(organization.id)
        metrics = self._build_metrics(organization.id, results)

        try:
            composite = self._calculator.compute(metrics)
        except TotalCollectionFailure as e:
            raise TotalCollectionFailure(organization.id, e.failed_categories) from None

        if composite.is_partial:
            missing = [m.category for m in metrics if not m.is_present]
            logger.info(f"Org {organization.id} scored with partial data (missing: {', '.join(missing)})")

        return HealthSnapshot(
            organization_id=organization.id,
            organization_name=organization.name or None,
            computed_at=self._clock.now(),
            composite_score=composite.score,
            risk_level=self._classifier.classify(composite.score),
            categories=tuple(metrics),
            is_partial=composite.is_partial,
            recommendations=tuple(self._recommendations.build(metrics)),
        )

    def _build_metrics(
        self,
        organization_id: str,
        results: Dict[str, CollectionResult],
    ) -> List[CategoryMetric]:
        metrics: List[CategoryMetric] = []
        for category in self._config.category_names:
            weight = self._config.get_weight(category)
            result = results.get(category)
            if result is None or not result.is_present:
                error = result.error if result is not None else "not collected"
                metrics.append(CategoryMetric.absent(category, weight, error))
                continue
            metrics.append(
                CategoryMetric(
                    category=category,
                    raw_value=result.raw_value,
                    normalized_score=self._normalizer.normalize(category, result.raw_value),
                    weight=weight,
                )
            )
        return metrics

    async def _persist(self, snapshot: HealthSnapshot) -> None:
        attempts = self._config.persistence_retries
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            write = asyncio.ensure_future(self._store.upsert(snapshot))
            try:
                await asyncio.wait_for(
                    asyncio.shield(write),
                    timeout=self._config.persistence_timeout_seconds,
                )
                return
            except asyncio.TimeoutError as e:
                last_error = e
                if await self._settle_timed_out_write(write, snapshot):
                    logger.warning(
                        f"Snapshot write for org {snapshot.organization_id} finished after the "
                        f"{self._config.persistence_timeout_seconds}s deadline (attempt {attempt}/{attempts})"
                    )
                    return
                logger.warning(
                    f"Snapshot write timed out for org {snapshot.organization_id} "
                    f"(attempt {attempt}/{attempts})"
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Snapshot write failed for org {snapshot.organization_id} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
            if attempt < attempts:
                await asyncio.sleep(self.RETRY_DELAY_SECONDS * attempt)

        raise PersistenceError(snapshot.organization_id, attempts, last_error)

    async def _settle_timed_out_write(self, write: asyncio.Future, snapshot: HealthSnapshot) -> bool:
        """
        Cancel a write that missed its deadline and wait for it to settle.

        Returns True if the snapshot was stored anyway, in which case the
        organization counts as written rather than failed.
        """
        write.cancel()
        await asyncio.wait({write})
        if not write.cancelled():
            return write.exception() is None

        try:
            latest = await self._store.get_latest(snapshot.organization_id)
        except Exception as e:
            logger.warning(f"Could not check timed-out write for org {snapshot.organization_id}: {e}")
            return False
        return (
            latest is not None
            and latest.computed_at == snapshot.computed_at
            and latest.composite_score == snapshot.composite_score
        )

    async def _notify(self, event: SnapshotWrittenEvent) -> None:
        for listener in self._listeners:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    f"Snapshot listener {getattr(listener, '__name__', listener)!r} failed "
                    f"for org {event.snapshot.organization_id}: {e}"
                )
