"""
Tests for DueProcessingScheduler.

Covers:
- Discovery of organizations with due schedules or due auto-reversals
- Per-organization session: commit on success, rollback on failure
- ``kinds`` filter and explicit organization lists
- Background thread start / stop
"""

from datetime import date
from uuid import uuid4

from ledger_batch.domain.types import ProcessingKind
from ledger_batch.services.due_processor import DueScheduleProcessor
from ledger_batch.services.scheduler import DueProcessingScheduler, organizations_with_due_work
from ledger_kernel.models.journal import JournalEntryStatus
from ledger_kernel.models.recurring import ScheduleStatus


def _scheduler(session_factory, clock, **kwargs):
    return DueProcessingScheduler(session_factory, clock=clock, **kwargs)


class TestDiscovery:

    def test_finds_due_schedule_owner(self, session, org_id, rent_schedule):
        assert organizations_with_due_work(session, date(2024, 1, 10)) == [org_id]
        assert organizations_with_due_work(session, date(2024, 1, 9)) == []

    def test_finds_due_auto_reversal_owner(self, session, org_id, reversal_service, posted_entry):
        reversal_service.schedule_auto_reversal(posted_entry.id, date(2024, 4, 1))
        assert organizations_with_due_work(session, date(2024, 4, 1)) == [org_id]

    def test_paused_schedule_not_due(self, session, recurring_service, rent_schedule):
        recurring_service.pause_schedule(rent_schedule.id)
        assert organizations_with_due_work(session, date(2024, 3, 15)) == []


class TestTick:

    def test_processes_and_commits(self, session, session_factory, deterministic_clock, org_id, rent_schedule):
        scheduler = _scheduler(session_factory, deterministic_clock)

        result = scheduler.tick()

        assert result.organizations == 1
        (run,) = result.runs
        assert run.organization_id == org_id
        assert run.for_date == date(2024, 3, 15)
        assert run.committed
        assert run.due_schedules.successful == 1
        assert run.auto_reversals.processed == 0
        assert result.processed == 1

        session.expire_all()
        assert rent_schedule.next_run_date == date(2024, 2, 10)
        assert rent_schedule.occurrences_count == 1

    def test_auto_reversal_kind_only(
        self, session, session_factory, deterministic_clock, reversal_service, posted_entry, rent_schedule
    ):
        reversal_service.schedule_auto_reversal(posted_entry.id, date(2024, 3, 12))
        scheduler = _scheduler(session_factory, deterministic_clock, kinds=[ProcessingKind.AUTO_REVERSALS])

        (run,) = scheduler.tick().runs

        assert run.due_schedules is None
        assert run.auto_reversals.successful == 1
        session.expire_all()
        assert posted_entry.status == JournalEntryStatus.REVERSED
        assert rent_schedule.occurrences_count == 0

    def test_failed_organization_rolled_back(
        self, session, session_factory, deterministic_clock, org_id, rent_schedule
    ):
        def _failing_processor(sess, ctx, clock):
            processor = DueScheduleProcessor(sess, ctx, clock=clock)
            processor.process_due_schedules(for_date=clock.today())
            raise RuntimeError("connection lost")

        scheduler = _scheduler(session_factory, deterministic_clock, processor_factory=_failing_processor)

        (run,) = scheduler.tick().runs

        assert not run.committed
        assert run.error == "connection lost"
        session.expire_all()
        assert rent_schedule.next_run_date == date(2024, 1, 10)
        assert rent_schedule.status == ScheduleStatus.ACTIVE

    def test_one_organization_failure_isolated(
        self, session, session_factory, deterministic_clock, org_id, rent_schedule
    ):
        other_org = uuid4()

        def _processor(sess, ctx, clock):
            if ctx.organization_id == other_org:
                raise RuntimeError("broken organization")
            return DueScheduleProcessor(sess, ctx, clock=clock)

        scheduler = _scheduler(
            session_factory,
            deterministic_clock,
            processor_factory=_processor,
            organization_ids=[other_org, org_id],
        )

        runs = {run.organization_id: run for run in scheduler.tick().runs}

        assert not runs[other_org].committed
        assert runs[org_id].committed
        assert runs[org_id].failed_items == 0
        session.expire_all()
        assert rent_schedule.occurrences_count == 1

    def test_nothing_due(self, session_factory, deterministic_clock):
        result = _scheduler(session_factory, deterministic_clock).tick(for_date=date(2024, 3, 15))
        assert result.runs == ()
        assert result.processed == 0


class TestBackgroundThread:

    def test_start_and_stop(self, session_factory, deterministic_clock):
        scheduler = _scheduler(
            session_factory, deterministic_clock, organization_ids=[], tick_interval_seconds=3600
        )
        scheduler.start()
        assert scheduler.is_running
        scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_stop_before_start(self, session_factory, deterministic_clock):
        scheduler = _scheduler(session_factory, deterministic_clock, organization_ids=[])
        scheduler.stop()
        assert not scheduler.is_running
