"""Job scheduler tests.

Tests for:
- Registering cron jobs (disabled schedules paused)
- Retry scheduling after a failed run
- Manual runs, enable / disable and status
"""
import pytest

from config.schedules import (
    JOB_HEALTH_CHECK, MONTHLY_RENT_PAYMENT, PAYMENT_ANALYTICS,
)
from jobs.execution_log import JobLogFilter, JobLogger
from jobs.registry import JobRegistry, create_default_registry
from jobs.rent_generation import RentGenerationJob
from jobs.scheduler import JobScheduler
from jobs.scheduling import ScheduleRegistry
from jobs.types import JobContext


@pytest.fixture
def schedules():
    return ScheduleRegistry.from_config()


@pytest.fixture
def context(temp_db, outbox, gateway, test_settings):
    return JobContext(
        db=temp_db, email=outbox, gateway=gateway,
        job_logger=JobLogger(temp_db), settings=test_settings,
    )


@pytest.fixture
def scheduler(schedules, context):
    job_scheduler = JobScheduler(create_default_registry(), schedules, context)
    yield job_scheduler
    job_scheduler.stop()


class TestRegisterAll:
    """Test register_all()."""

    def test_every_schedule_added(self, scheduler):
        scheduled = scheduler.register_all()

        assert len(scheduled) == 6
        assert scheduler.scheduler.get_job(MONTHLY_RENT_PAYMENT) is not None

    def test_disabled_schedule_added_paused(self, schedules, context):
        schedules.disable(PAYMENT_ANALYTICS)
        job_scheduler = JobScheduler(create_default_registry(), schedules, context)

        job_scheduler.register_all()

        assert job_scheduler.scheduler.get_job(PAYMENT_ANALYTICS).next_run_time is None

    def test_schedule_without_job_skipped(self, schedules, context):
        job_scheduler = JobScheduler(JobRegistry([RentGenerationJob()]), schedules, context)

        assert job_scheduler.register_all() == [MONTHLY_RENT_PAYMENT]

    def test_context_gets_schedules(self, scheduler, schedules):
        assert scheduler.context.schedules is schedules


class TestRetries:
    """Test execute() and schedule_retry()."""

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, scheduler):
        # No payment configuration: the rent job fails
        result = await scheduler.execute(MONTHLY_RENT_PAYMENT)

        assert result.success is False
        retry = scheduler.scheduler.get_job(f"{MONTHLY_RENT_PAYMENT}-retry-1")
        assert retry is not None
        assert retry.args[:2] == (MONTHLY_RENT_PAYMENT, 1)

    @pytest.mark.asyncio
    async def test_retry_count_is_logged(self, scheduler, context):
        await scheduler.execute(MONTHLY_RENT_PAYMENT, retry_count=2)

        entries = context.job_logger.query(JobLogFilter(job_name=MONTHLY_RENT_PAYMENT))
        assert entries[0].retry_count == 2
        assert entries[0].max_retries == 3

    @pytest.mark.asyncio
    async def test_exhausted_policy_stops_retrying(self, scheduler):
        await scheduler.execute(MONTHLY_RENT_PAYMENT, retry_count=3)

        assert scheduler.scheduler.get_job(f"{MONTHLY_RENT_PAYMENT}-retry-4") is None

    @pytest.mark.asyncio
    async def test_success_does_not_retry(self, scheduler):
        result = await scheduler.execute(JOB_HEALTH_CHECK)

        assert result.success is True
        assert scheduler.scheduler.get_job(f"{JOB_HEALTH_CHECK}-retry-1") is None

    @pytest.mark.asyncio
    async def test_run_now_never_retries(self, scheduler):
        result = await scheduler.run_now(MONTHLY_RENT_PAYMENT, {"month": 6, "year": 2024})

        assert result.success is False
        assert scheduler.scheduler.get_job(f"{MONTHLY_RENT_PAYMENT}-retry-1") is None

    def test_schedule_retry_unknown_slug(self, scheduler):
        assert scheduler.schedule_retry("no-such-job", 1) is None


class TestControl:
    """Test enable / disable / status."""

    def test_disable_and_enable(self, scheduler, schedules):
        scheduler.register_all()

        assert scheduler.disable_job(PAYMENT_ANALYTICS) is True
        assert schedules.is_enabled(PAYMENT_ANALYTICS) is False
        assert scheduler.scheduler.get_job(PAYMENT_ANALYTICS).next_run_time is None

        assert scheduler.enable_job(PAYMENT_ANALYTICS) is True
        assert schedules.is_enabled(PAYMENT_ANALYTICS) is True

    def test_unknown_slug(self, scheduler):
        assert scheduler.disable_job("no-such-job") is False
        assert scheduler.enable_job("no-such-job") is False

    def test_job_status(self, scheduler):
        scheduler.register_all()

        status = scheduler.get_job_status()

        assert len(status) == 6
        assert all(s["scheduled"] for s in status)
        rent = next(s for s in status if s["slug"] == MONTHLY_RENT_PAYMENT)
        assert rent["cron"] == "0 6 1 * *"
        assert rent["queue"] == "payment-jobs"
