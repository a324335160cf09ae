"""Job analytics and reporting tests.

Tests for:
- Report period resolution
- Job analytics (rates, distributions, breakdowns)
- Payment figures read from job outputs
- Recommendations
- Report assembly, CSV export and the scheduled analytics job
"""
from datetime import datetime, timedelta

import pytest

from config.schedules import (
    AUTO_PAY_PROCESSING, MONTHLY_RENT_PAYMENT, OVERDUE_PAYMENT_NOTIFICATION,
    PAYMENT_REMINDER_EMAIL,
)
from jobs.analytics import (
    PERFORMING_WELL, CustomerEngagement, JobAnalytics, JobAnalyticsData,
    PaymentAnalyticsJob, PaymentSystemAnalytics,
)
from jobs.execution_log import JobLogger
from jobs.types import ReportType
from tests.conftest import Clock, add_pending_payment, add_tenant

REFERENCE = datetime(2024, 6, 10, 23, 0)


@pytest.fixture
def clock():
    return Clock(datetime(2024, 6, 10, 9, 0))


@pytest.fixture
def job_logger(temp_db, clock):
    return JobLogger(temp_db, clock=clock)


@pytest.fixture
def analytics(temp_db, clock, job_logger):
    return JobAnalytics(temp_db, clock=clock, job_logger=job_logger)


def record(job_logger, clock, job_name, job_id, success=True, seconds=2, data=None, error=None):
    handle = job_logger.log_start(job_name, job_id)
    clock.advance(seconds=seconds)
    job_logger.log_completion(
        handle, success,
        output={"data": data or {}},
        error_message=error,
    )


class TestResolvePeriod:
    """Test resolve_period()."""

    def test_daily(self, analytics):
        start, end = analytics.resolve_period("daily", datetime(2024, 6, 10, 15, 0))
        assert start == datetime(2024, 6, 10)
        assert end == datetime(2024, 6, 10, 23, 59, 59, 999999)

    def test_weekly(self, analytics):
        start, _ = analytics.resolve_period(ReportType.WEEKLY, datetime(2024, 6, 10, 15, 0))
        assert start == datetime(2024, 6, 3)

    def test_monthly_clamps_to_shorter_month(self, analytics):
        start, _ = analytics.resolve_period("monthly", datetime(2024, 3, 31, 12, 0))
        assert start == datetime(2024, 2, 29)

    def test_custom(self, analytics):
        start, end = datetime(2024, 5, 1), datetime(2024, 5, 31)
        assert analytics.resolve_period("custom", start=start, end=end) == (start, end)

    def test_custom_requires_bounds(self, analytics):
        with pytest.raises(ValueError):
            analytics.resolve_period("custom", start=datetime(2024, 5, 1))

    def test_custom_rejects_reversed_bounds(self, analytics):
        with pytest.raises(ValueError):
            analytics.resolve_period("custom", start=datetime(2024, 5, 31), end=datetime(2024, 5, 1))

    def test_unknown_type(self, analytics):
        with pytest.raises(ValueError):
            analytics.resolve_period("yearly")


class TestJobAnalytics:
    """Test generate_job_analytics()."""

    def test_empty_window(self, analytics):
        data = analytics.generate_job_analytics(datetime(2024, 6, 8), datetime(2024, 6, 10, 23, 59))

        assert data.period == "2024-06-08 to 2024-06-10"
        assert data.total_jobs == 0
        assert data.success_rate == 1.0
        assert len(data.hourly_distribution) == 24
        assert data.daily_distribution == {"2024-06-08": 0, "2024-06-09": 0, "2024-06-10": 0}
        assert [p.total_jobs for p in data.performance_trends] == [0, 0, 0]

    def test_rates_and_distributions(self, analytics, job_logger, clock):
        record(job_logger, clock, PAYMENT_REMINDER_EMAIL, "rem-1", seconds=2)
        clock.advance(hours=5)
        record(job_logger, clock, AUTO_PAY_PROCESSING, "ap-1", seconds=4)
        record(job_logger, clock, AUTO_PAY_PROCESSING, "ap-2", success=False,
               seconds=6, error="Gateway down")
        job_logger.log_start(MONTHLY_RENT_PAYMENT, "rent-running")

        data = analytics.generate_job_analytics(datetime(2024, 6, 10), REFERENCE)

        assert data.total_jobs == 4
        assert data.successful_jobs == 2
        assert data.failed_jobs == 1
        assert data.success_rate == pytest.approx(2 / 3)
        assert data.average_execution_time_ms == pytest.approx(4000)
        assert data.total_execution_time_ms == 12000
        assert data.hourly_distribution["09:00"] == 1
        assert data.hourly_distribution["14:00"] == 3
        assert data.daily_distribution == {"2024-06-10": 4}
        assert data.failure_reasons == {"Gateway down": 1}

        auto_pay = data.job_breakdown[AUTO_PAY_PROCESSING]
        assert auto_pay.executions == 2
        assert auto_pay.failures == 1
        assert auto_pay.success_rate == pytest.approx(0.5)


class TestPaymentSystemAnalytics:
    """Test generate_payment_system_analytics()."""

    def test_counts_from_job_outputs(self, temp_db):
        job_logger = JobLogger(temp_db)
        analytics = JobAnalytics(temp_db, job_logger=job_logger)
        customer, booking = add_tenant(temp_db)
        add_pending_payment(temp_db, customer, booking, datetime(2024, 6, 5))
        add_pending_payment(temp_db, customer, booking, datetime(2024, 7, 5))

        outputs = [
            (PAYMENT_REMINDER_EMAIL, {"sent_emails": 3}),
            (PAYMENT_REMINDER_EMAIL, {"sent_emails": 2}),
            (OVERDUE_PAYMENT_NOTIFICATION, {"sent_notifications": 1}),
            (AUTO_PAY_PROCESSING, {"processed_payments": 3, "failed_payments": 1}),
        ]
        for i, (job_name, data) in enumerate(outputs):
            handle = job_logger.log_start(job_name, f"run-{i}")
            job_logger.log_completion(handle, True, output={"data": data})

        now = datetime.now()
        result = analytics.generate_payment_system_analytics(
            now - timedelta(hours=1), now + timedelta(hours=1)
        )

        assert result.total_payments_generated == 2
        assert result.total_payment_amount == pytest.approx(24000)
        assert result.average_payment_amount == pytest.approx(12000)
        assert result.total_reminders_sent == 5
        assert result.total_overdue_notifications == 1
        assert result.total_auto_pay_processed == 3
        assert result.total_auto_pay_failed == 1
        assert result.auto_pay_failure_rate == pytest.approx(0.25)
        assert result.job_success_rate == 1.0
        assert result.customer_engagement is None


class TestRecommendations:
    """Test generate_recommendations()."""

    def test_healthy_system(self):
        recommendations = JobAnalytics.generate_recommendations(
            JobAnalyticsData(period="p"), PaymentSystemAnalytics()
        )
        assert recommendations == [PERFORMING_WELL]

    def test_every_threshold(self):
        data = JobAnalyticsData(period="p", success_rate=0.9, average_execution_time_ms=90000)
        payments = PaymentSystemAnalytics(
            total_auto_pay_processed=8, total_auto_pay_failed=2,
            customer_engagement=CustomerEngagement(reminder_open_rate=0.5),
        )

        recommendations = JobAnalytics.generate_recommendations(data, payments)

        assert len(recommendations) == 4
        assert recommendations[0].startswith("Job success rate is below 95%")
        assert recommendations[3].startswith("Email reminder open rate is below 80%")

    def test_unknown_engagement_is_not_flagged(self):
        recommendations = JobAnalytics.generate_recommendations(
            JobAnalyticsData(period="p"), PaymentSystemAnalytics(customer_engagement=None)
        )
        assert recommendations == [PERFORMING_WELL]


class TestReports:
    """Test generate_report() and export_analytics_csv()."""

    def test_daily_report(self, analytics, job_logger, clock):
        record(job_logger, clock, AUTO_PAY_PROCESSING, "ap-1", success=False, error="Timeout")

        report = analytics.generate_report("daily", reference=REFERENCE)

        assert report.report_type == ReportType.DAILY
        assert report.report_id.startswith("report-daily-")
        assert report.period_start == datetime(2024, 6, 10)
        assert report.summary.total_jobs == 1
        assert report.summary.critical_issues == 1
        assert report.recommendations[0].startswith("Job success rate is below 95%")

    def test_csv_export(self, analytics, job_logger, clock):
        record(job_logger, clock, PAYMENT_REMINDER_EMAIL, "rem-1")
        data = analytics.generate_job_analytics(datetime(2024, 6, 10), REFERENCE)

        export = analytics.export_analytics_csv(data)

        lines = export.data.splitlines()
        assert export.filename == "job-analytics-2024-06-10.csv"
        assert export.size == len(export.data)
        assert lines[0].startswith("Period,Total Jobs")
        assert lines[1].startswith("2024-06-10 to 2024-06-10,1,1,0")
        assert any(line.startswith(PAYMENT_REMINDER_EMAIL) for line in lines[3:])


class TestPaymentAnalyticsJob:
    """Test the scheduled analytics job."""

    def test_run(self, make_ctx):
        result = PaymentAnalyticsJob().run(make_ctx(REFERENCE), {"reportDate": "2024-06-09"})

        assert result.success is True
        assert result.message == "Payment analytics generated for 2024-06-09"
        assert result.data["report_id"].startswith("report-daily-")
        assert result.data["period_start"] == datetime(2024, 6, 9)
        assert result.data["recommendations"] == [PERFORMING_WELL]
        assert result.data["csv_export"]["filename"] == "job-analytics-2024-06-10.csv"
