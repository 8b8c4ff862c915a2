"""
Tests for the recalculation orchestrator.

============================================================
PURPOSE
============================================================
Covers run-level behavior:
1. Full and single-organization runs
2. Failure isolation between organizations
3. Same-day idempotence
4. Bounded concurrency
5. Cancellation
6. Persistence retries
7. Snapshot listeners

============================================================
"""

import asyncio
import time
from datetime import timedelta

import pytest

from org_health import (
    CallableMetricSource,
    InMemorySnapshotStore,
    MetricSourceAdapter,
    Organization,
    OrganizationDirectory,
    PersistenceError,
    RecalculationOrchestrator,
    RiskLevel,
    RunNotFoundError,
    RunState,
    ScoringConfig,
    StaticMetricSource,
    StaticOrganizationDirectory,
    TotalCollectionFailure,
    TrendDirection,
)


# ============================================================
# HELPERS
# ============================================================

class FlakyStore(InMemorySnapshotStore):
    """Fails the first `failures` upserts."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def upsert(self, snapshot):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RuntimeError("database is locked")
        await super().upsert(snapshot)


class SlowStore(InMemorySnapshotStore):
    async def upsert(self, snapshot):
        await asyncio.sleep(1.0)
        await super().upsert(snapshot)


class BrokenDirectory(OrganizationDirectory):
    async def list_active(self):
        raise RuntimeError("directory unavailable")

    async def get(self, organization_id):
        raise RuntimeError("directory unavailable")


def make_orchestrator(config, sources, store, organizations, clock):
    return RecalculationOrchestrator(
        config=config,
        adapter=MetricSourceAdapter(config, sources),
        store=store,
        directory=StaticOrganizationDirectory(organizations),
        clock=clock,
    )


# ============================================================
# FULL RUN TESTS
# ============================================================

class TestFullRun:
    """Tests for recalculating every active organization."""

    @pytest.mark.asyncio
    async def test_scores_every_organization(self, orchestrator, store, now, category_values, expected_full_score):
        status = await orchestrator.run()

        assert status.state == RunState.COMPLETED
        assert status.total == 3
        assert status.succeeded == 3
        assert status.failed == 0
        assert status.skipped == 0
        assert status.cancelled is False
        assert status.started_at == now
        assert status.finished_at == now

        snapshot = await store.get_latest("org-1")
        assert snapshot.composite_score == expected_full_score
        assert snapshot.risk_level == RiskLevel.HEALTHY
        assert snapshot.is_partial is False
        assert snapshot.organization_name == "Drop Dead Salon"
        assert snapshot.computed_at == now
        assert [m.category for m in snapshot.categories] == list(category_values)

    @pytest.mark.asyncio
    async def test_partial_data_still_scores(self, orchestrator, store, sources):
        sources["engagement"].set_value("org-1", None)

        status = await orchestrator.run()

        snapshot = await store.get_latest("org-1")
        # (80*0.25 + 70*0.30 + 90*0.20) / 0.75 = 78.67
        assert snapshot.composite_score == 79
        assert snapshot.is_partial is True
        assert snapshot.missing_categories == ("engagement",)
        assert snapshot.get_category("engagement").error == "no value returned"
        assert status.partial == 1
        assert status.state == RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_inactive_organizations_excluded(self, orchestrator, directory, store):
        directory.add(Organization("org-9", "Closed Salon", is_active=False))

        status = await orchestrator.run()

        assert status.total == 3
        assert await store.get_latest("org-9") is None

    @pytest.mark.asyncio
    async def test_empty_directory(self, config, store, clock, source_factory):
        orchestrator = make_orchestrator(config, source_factory(), store, [], clock)

        status = await orchestrator.run()

        assert status.state == RunState.COMPLETED
        assert status.total == 0


# ============================================================
# FAILURE ISOLATION TESTS
# ============================================================

class TestFailureIsolation:
    """One organization's failure never affects the others."""

    @pytest.mark.asyncio
    async def test_total_failure_isolated(
        self, config, store, clock, snapshot_factory, now, source_factory, category_values, expected_full_score
    ):
        organizations = [Organization(f"org-{i}", f"Salon {i}") for i in range(1, 6)]
        sources = source_factory()
        for source in sources:
            source.set_value("org-3", RuntimeError("upstream down"))
        previous = snapshot_factory("org-3", 55, computed_at=now - timedelta(days=1))
        await store.upsert(previous)

        orchestrator = make_orchestrator(config, sources, store, organizations, clock)
        status = await orchestrator.run()

        assert status.state == RunState.COMPLETED_WITH_ERRORS
        assert status.succeeded == 4
        assert status.failed == 1
        failure = status.failures[0]
        assert failure.organization_id == "org-3"
        assert failure.error_type == "TotalCollectionFailure"
        assert failure.failed_categories == list(category_values)

        assert await store.get_latest("org-3") == previous
        for org_id in ("org-1", "org-2", "org-4", "org-5"):
            assert (await store.get_latest(org_id)).composite_score == expected_full_score

    @pytest.mark.asyncio
    async def test_unexpected_error_isolated(self, config, store, clock, source_factory):
        async def explode(organization_id):
            if organization_id == "org-2":
                raise ZeroDivisionError("bad math")
            return 50

        sources = source_factory()
        sources[0] = CallableMetricSource("adoption", explode)
        organizations = [Organization("org-1"), Organization("org-2")]
        orchestrator = make_orchestrator(config, sources, store, organizations, clock)

        status = await orchestrator.run()

        # adoption absent for org-2, others still collected
        assert status.succeeded == 2
        assert (await store.get_latest("org-2")).is_partial is True

    @pytest.mark.asyncio
    async def test_directory_failure_recorded(self, config, adapter, store, clock):
        orchestrator = RecalculationOrchestrator(config, adapter, store, BrokenDirectory(), clock)

        status = await orchestrator.run()

        assert status.state == RunState.COMPLETED_WITH_ERRORS
        assert status.failures[0].organization_id is None
        assert status.failures[0].error_type == "RuntimeError"
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_score_organization_total_failure(self, config, store, clock):
        orchestrator = make_orchestrator(config, [], store, [], clock)

        with pytest.raises(TotalCollectionFailure) as exc_info:
            await orchestrator.score_organization(Organization("org-1"))

        assert exc_info.value.organization_id == "org-1"


# ============================================================
# IDEMPOTENCE TESTS
# ============================================================

class TestIdempotence:
    """Tests for same-day reruns."""

    @pytest.mark.asyncio
    async def test_same_day_rerun_replaces_snapshot(self, orchestrator, store, clock):
        await orchestrator.run()
        first = await store.get_latest("org-1")

        clock.advance(hours=1)
        await orchestrator.run()
        second = await store.get_latest("org-1")

        for org_id in ("org-1", "org-2", "org-3"):
            assert await store.count(org_id) == 1
        assert store.write_count == 6
        assert second.composite_score == first.composite_score
        assert second.computed_at == first.computed_at + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_next_day_run_adds_snapshot(self, orchestrator, store, clock):
        await orchestrator.run()
        clock.advance(days=1)
        await orchestrator.run()

        assert await store.count("org-1") == 2
        assert await store.count() == 6

    @pytest.mark.asyncio
    async def test_score_organization_does_not_persist(self, orchestrator, organizations, store, expected_full_score):
        snapshot = await orchestrator.score_organization(organizations[0])

        assert snapshot.composite_score == expected_full_score
        assert snapshot.recommendations == ()
        assert await store.count() == 0


# ============================================================
# CONCURRENCY TESTS
# ============================================================

class TestConcurrency:
    """Tests for the bounded worker pool."""

    @pytest.mark.asyncio
    async def test_bounded_parallelism(self, store, clock, source_factory):
        config = ScoringConfig(max_concurrency=8)
        in_flight = 0
        peak = 0

        async def tracked(organization_id):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return 75

        sources = source_factory()
        sources[0] = CallableMetricSource("adoption", tracked)
        organizations = [Organization(f"org-{i:03d}") for i in range(100)]
        orchestrator = make_orchestrator(config, sources, store, organizations, clock)

        start = time.perf_counter()
        status = await orchestrator.run()
        elapsed = time.perf_counter() - start

        assert status.succeeded == 100
        assert await store.count() == 100
        assert 1 < peak <= 8
        # serial would take 100 * 0.02 = 2.0s
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_single_worker_is_serial(self, store, clock, source_factory):
        config = ScoringConfig(max_concurrency=1)
        in_flight = 0
        peak = 0

        async def tracked(organization_id):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return 75

        sources = source_factory()
        sources[0] = CallableMetricSource("adoption", tracked)
        organizations = [Organization(f"org-{i}") for i in range(5)]
        orchestrator = make_orchestrator(config, sources, store, organizations, clock)

        await orchestrator.run()

        assert peak == 1


# ============================================================
# CANCELLATION TESTS
# ============================================================

class TestCancellation:
    """Tests for cancelling a background run."""

    @pytest.mark.asyncio
    async def test_cancel_stops_new_organizations(self, store, clock, source_factory):
        config = ScoringConfig(max_concurrency=2)
        organizations = [Organization(f"org-{i}") for i in range(20)]
        orchestrator = make_orchestrator(
            config, source_factory(delay_seconds=0.05), store, organizations, clock
        )

        run_id = await orchestrator.recalculate()
        await asyncio.sleep(0.07)
        assert orchestrator.cancel(run_id) is True
        status = await orchestrator.wait(run_id)

        assert status.cancelled is True
        assert status.state == RunState.COMPLETED
        assert 0 < status.succeeded < 20
        assert status.skipped == 20 - status.succeeded
        # in-flight organizations finish fully, nothing half-written
        assert await store.count() == status.succeeded

    @pytest.mark.asyncio
    async def test_cancel_finished_run(self, orchestrator):
        status = await orchestrator.run()

        assert orchestrator.cancel(status.run_id) is False
        assert status.cancelled is False

    def test_cancel_unknown_run(self, orchestrator):
        with pytest.raises(RunNotFoundError):
            orchestrator.cancel("missing")


# ============================================================
# PERSISTENCE TESTS
# ============================================================

class TestPersistenceRetries:
    """Tests for snapshot write retries."""

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, config, clock, source_factory):
        store = FlakyStore(failures=2)
        orchestrator = make_orchestrator(config, source_factory(), store, [Organization("org-1")], clock)

        status = await orchestrator.run()

        assert status.succeeded == 1
        assert store.attempts == 3
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_recorded(self, config, clock, source_factory):
        store = FlakyStore(failures=10)
        orchestrator = make_orchestrator(
            config, source_factory(), store, [Organization("org-1"), Organization("org-2")], clock
        )

        status = await orchestrator.run()

        assert status.state == RunState.COMPLETED_WITH_ERRORS
        assert status.failed == 2
        assert {f.error_type for f in status.failures} == {"PersistenceError"}
        assert "after 3 attempt(s)" in status.failures[0].message
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_write_timeout(self, clock, source_factory):
        config = ScoringConfig(persistence_timeout_seconds=0.05, persistence_retries=2)
        store = SlowStore()
        orchestrator = make_orchestrator(config, source_factory(), store, [Organization("org-1")], clock)

        status = await orchestrator.run()

        assert status.failed == 1
        assert status.failures[0].error_type == "PersistenceError"
        assert status.failures[0].message == "Snapshot write failed after 2 attempt(s): TimeoutError"
        assert await store.count() == 0

    def test_persistence_error_names_exception_without_message(self):
        error = PersistenceError("org-1", 1, asyncio.TimeoutError())

        assert error.message == "Snapshot write failed after 1 attempt(s): TimeoutError"
        assert error.details["original_error"] == "TimeoutError"
        assert PersistenceError("org-1", 1).message.endswith(": unknown error")


# ============================================================
# SCOPE AND RUN TRACKING TESTS
# ============================================================

class TestScopeAndRuns:
    """Tests for run scope and status tracking."""

    @pytest.mark.asyncio
    async def test_single_organization_scope(self, orchestrator, store):
        status = await orchestrator.run("org-2")

        assert status.scope == "org-2"
        assert status.total == 1
        assert status.succeeded == 1
        assert await store.get_latest("org-2") is not None
        assert await store.get_latest("org-1") is None

    @pytest.mark.asyncio
    async def test_unknown_organization(self, orchestrator, store):
        status = await orchestrator.run("org-404")

        assert status.state == RunState.COMPLETED_WITH_ERRORS
        assert status.total == 0
        assert status.failures[0].error_type == "OrganizationNotFound"
        assert status.failures[0].message == "unknown organization"
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_inactive_organization(self, orchestrator, directory):
        directory.add(Organization("org-9", "Closed Salon", is_active=False))

        status = await orchestrator.run("org-9")

        assert status.failures[0].message == "organization is inactive"

    @pytest.mark.asyncio
    async def test_fire_and_forget(self, orchestrator, store):
        run_id = await orchestrator.recalculate()
        status = await orchestrator.wait(run_id)

        assert status.state == RunState.COMPLETED
        assert orchestrator.get_run(run_id) is status
        assert status in orchestrator.list_runs()
        assert await store.count() == 3

    def test_unknown_run(self, orchestrator):
        with pytest.raises(RunNotFoundError):
            orchestrator.get_run("missing")

    @pytest.mark.asyncio
    async def test_run_history_is_capped(self, orchestrator):
        orchestrator.MAX_RUN_HISTORY = 3

        statuses = [await orchestrator.run("org-1") for _ in range(5)]

        assert orchestrator.list_runs() == statuses[2:]
        with pytest.raises(RunNotFoundError):
            orchestrator.get_run(statuses[0].run_id)
        assert orchestrator._cancel_events == {}

    @pytest.mark.asyncio
    async def test_running_run_survives_pruning(self, store, clock, source_factory):
        config = ScoringConfig(max_concurrency=1)
        orchestrator = make_orchestrator(
            config, source_factory(delay_seconds=0.05), store, [Organization("org-1")], clock
        )
        orchestrator.MAX_RUN_HISTORY = 1

        background = await orchestrator.recalculate()
        for _ in range(3):
            await orchestrator.run("org-404")

        assert not orchestrator.get_run(background).is_finished
        status = await orchestrator.wait(background)
        assert orchestrator.list_runs() == [status]

    @pytest.mark.asyncio
    async def test_status_to_dict(self, orchestrator):
        status = await orchestrator.run("org-404")

        data = status.to_dict()

        assert data["state"] == "completed_with_errors"
        assert data["failed"] == 1
        assert data["failures"][0]["organization_id"] == "org-404"


# ============================================================
# LISTENER TESTS
# ============================================================

class TestSnapshotListeners:
    """Tests for post-write callbacks."""

    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self, orchestrator):
        sync_events = []
        async_events = []

        async def on_written(event):
            async_events.append(event)

        orchestrator.add_snapshot_listener(sync_events.append)
        orchestrator.add_snapshot_listener(on_written)

        await orchestrator.run()

        assert len(sync_events) == 3
        assert len(async_events) == 3

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_run(self, orchestrator, store):
        def broken(event):
            raise RuntimeError("notification service down")

        orchestrator.add_snapshot_listener(broken)

        status = await orchestrator.run()

        assert status.state == RunState.COMPLETED
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_event_carries_previous_and_trend(
        self, orchestrator, store, snapshot_factory, now, expected_full_score
    ):
        await store.upsert(snapshot_factory("org-1", 40, computed_at=now - timedelta(days=8)))
        events = {}
        orchestrator.add_snapshot_listener(lambda e: events.__setitem__(e.snapshot.organization_id, e))

        await orchestrator.run()

        event = events["org-1"]
        assert event.previous.composite_score == 40
        assert event.risk_changed is True
        assert event.trend.direction == TrendDirection.UP
        assert event.trend.delta == expected_full_score - 40

        assert events["org-2"].previous is None
        assert events["org-2"].risk_changed is False
