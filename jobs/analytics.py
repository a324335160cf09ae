"""任务统计与报表

报表只基于任务执行日志和支付记录表生成，不会修改任何支付或预订数据。
"""
import csv
import io
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from loguru import logger

from config.schedules import (
    PAYMENT_ANALYTICS, MONTHLY_RENT_PAYMENT, PAYMENT_REMINDER_EMAIL,
    OVERDUE_PAYMENT_NOTIFICATION, AUTO_PAY_PROCESSING
)
from config.settings import local_now
from database.models import JOB_COMPLETED, JOB_FAILED
from .base import BaseJob
from .execution_log import JobLogEntry, JobLogger
from .types import AnalyticsInput, JobContext, JobResult, ReportType
from .utils import clamped_date, start_of_day

PAYMENT_JOB_NAMES = (
    MONTHLY_RENT_PAYMENT,
    PAYMENT_REMINDER_EMAIL,
    OVERDUE_PAYMENT_NOTIFICATION,
    AUTO_PAY_PROCESSING,
)

MIN_SUCCESS_RATE = 0.95
MAX_AVERAGE_EXECUTION_MS = 60 * 1000
MAX_AUTO_PAY_FAILURE_RATE = 0.10
MIN_REMINDER_OPEN_RATE = 0.80

PERFORMING_WELL = (
    "System is performing well. Continue monitoring and consider "
    "implementing additional optimizations."
)


@dataclass
class JobPerformance:
    executions: int
    success_rate: float
    average_time_ms: float
    total_time_ms: int
    failures: int


@dataclass
class PerformanceTrendPoint:
    date: str
    success_rate: float
    average_time_ms: float
    total_jobs: int


@dataclass
class JobAnalyticsData:
    period: str
    total_jobs: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    success_rate: float = 1.0
    average_execution_time_ms: float = 0.0
    total_execution_time_ms: int = 0
    job_breakdown: Dict[str, JobPerformance] = field(default_factory=dict)
    hourly_distribution: Dict[str, int] = field(default_factory=dict)
    daily_distribution: Dict[str, int] = field(default_factory=dict)
    failure_reasons: Dict[str, int] = field(default_factory=dict)
    performance_trends: List[PerformanceTrendPoint] = field(default_factory=list)


@dataclass
class CustomerEngagement:
    """邮件互动率，仅在提供追踪数据时可知。"""
    reminder_open_rate: float
    reminder_click_rate: float = 0.0
    overdue_response_rate: float = 0.0


@dataclass
class PaymentSystemAnalytics:
    total_payments_generated: int = 0
    total_payment_amount: float = 0.0
    average_payment_amount: float = 0.0
    total_reminders_sent: int = 0
    total_overdue_notifications: int = 0
    total_auto_pay_processed: int = 0
    total_auto_pay_failed: int = 0
    job_success_rate: float = 1.0
    average_job_execution_time_ms: float = 0.0
    customer_engagement: Optional[CustomerEngagement] = None

    @property
    def auto_pay_failure_rate(self) -> float:
        attempts = self.total_auto_pay_processed + self.total_auto_pay_failed
        return self.total_auto_pay_failed / attempts if attempts else 0.0


@dataclass
class ReportSummary:
    total_jobs: int
    success_rate: float
    average_execution_time_ms: float
    critical_issues: int


@dataclass
class JobReport:
    report_id: str
    report_type: ReportType
    generated_at: datetime
    period_start: datetime
    period_end: datetime
    summary: ReportSummary
    details: JobAnalyticsData
    payment_analytics: PaymentSystemAnalytics
    recommendations: List[str]


@dataclass
class AnalyticsExport:
    filename: str
    data: str

    @property
    def size(self) -> int:
        return len(self.data)


def end_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=23, minute=59, second=59, microsecond=999999)


def one_month_before(moment: datetime) -> datetime:
    """上一个自然月的同一天，截断到当月最后一天。"""
    year, month = moment.year, moment.month - 1
    if month == 0:
        year, month = year - 1, 12
    return clamped_date(year, month, moment.day)


def _finished_success_rate(entries: List[JobLogEntry]) -> float:
    finished = [e for e in entries if e.status in (JOB_COMPLETED, JOB_FAILED)]
    if not finished:
        return 1.0
    return sum(1 for e in finished if e.success) / len(finished)


def _average_time(entries: List[JobLogEntry]) -> float:
    durations = [e.duration_ms for e in entries if e.duration_ms is not None]
    return sum(durations) / len(durations) if durations else 0.0


def _output_count(entry: JobLogEntry, key: str) -> int:
    data = (entry.output or {}).get("data") or {}
    value = data.get(key)
    return int(value) if isinstance(value, (int, float)) else 0


def _days_between(start: datetime, end: datetime) -> List[str]:
    days = []
    current = start_of_day(start)
    while current <= end:
        days.append(current.strftime("%Y-%m-%d"))
        current += timedelta(days=1)
    return days


class JobAnalytics:
    """基于任务日志和支付记录生成统计与报表。

    Args:
        db: 数据库管理器。
        clock: 返回当前时间的可调用对象。
        job_logger: 读取日志条目的记录器，未提供时自动创建。
    """

    def __init__(self, db, clock: Optional[Callable[[], datetime]] = None,
                 job_logger: Optional[JobLogger] = None):
        self.db = db
        self.clock = clock or local_now
        self.job_logger = job_logger or JobLogger(db, clock=self.clock)

    def resolve_period(self, report_type: Union[ReportType, str],
                       reference: Optional[datetime] = None,
                       start: Optional[datetime] = None,
                       end: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """计算报表的具体时间窗口。

        Args:
            report_type: daily、weekly、monthly 或 custom。
            reference: 周期结束的日期，默认当前时间。
            start: 自定义周期的开始。
            end: 自定义周期的结束。

        Returns:
            ``(start, end)``，均包含边界。

        Raises:
            ValueError: 未知类型，或自定义周期缺少起止时间。
        """
        report_type = ReportType(report_type)
        reference = reference or self.clock()

        if report_type == ReportType.CUSTOM:
            if start is None or end is None:
                raise ValueError("Custom report requires start and end dates")
            if start > end:
                raise ValueError("Report start date must not be after its end date")
            return start, end

        period_end = end_of_day(reference)
        if report_type == ReportType.DAILY:
            period_start = start_of_day(reference)
        elif report_type == ReportType.WEEKLY:
            period_start = start_of_day(reference - timedelta(days=7))
        else:
            period_start = one_month_before(reference)
        return period_start, period_end

    def generate_job_analytics(self, start: datetime, end: datetime) -> JobAnalyticsData:
        entries = self.job_logger.entries_between(start, end)
        analytics = JobAnalyticsData(
            period=f"{start:%Y-%m-%d} to {end:%Y-%m-%d}",
            hourly_distribution={f"{hour:02d}:00": 0 for hour in range(24)},
        )
        days = _days_between(start, end)
        analytics.daily_distribution = {day: 0 for day in days}
        if not entries:
            analytics.performance_trends = [
                PerformanceTrendPoint(date=day, success_rate=1.0, average_time_ms=0.0, total_jobs=0)
                for day in days
            ]
            return analytics

        analytics.total_jobs = len(entries)
        analytics.successful_jobs = sum(1 for e in entries if e.success)
        analytics.failed_jobs = sum(1 for e in entries if e.status == JOB_FAILED)
        analytics.success_rate = _finished_success_rate(entries)
        analytics.average_execution_time_ms = _average_time(entries)
        analytics.total_execution_time_ms = sum(e.duration_ms or 0 for e in entries)

        by_job: Dict[str, List[JobLogEntry]] = {}
        by_day: Dict[str, List[JobLogEntry]] = {}
        for entry in entries:
            by_job.setdefault(entry.job_name, []).append(entry)
            day = entry.start_time.strftime("%Y-%m-%d")
            by_day.setdefault(day, []).append(entry)
            analytics.hourly_distribution[f"{entry.start_time.hour:02d}:00"] += 1
            analytics.daily_distribution[day] = analytics.daily_distribution.get(day, 0) + 1

        analytics.job_breakdown = {
            name: JobPerformance(
                executions=len(group),
                success_rate=_finished_success_rate(group),
                average_time_ms=_average_time(group),
                total_time_ms=sum(e.duration_ms or 0 for e in group),
                failures=sum(1 for e in group if e.status == JOB_FAILED),
            )
            for name, group in sorted(by_job.items())
        }

        reasons = Counter(
            e.error_message for e in entries
            if e.status == JOB_FAILED and e.error_message
        )
        analytics.failure_reasons = dict(reasons.most_common())

        analytics.performance_trends = [
            PerformanceTrendPoint(
                date=day,
                success_rate=_finished_success_rate(by_day.get(day, [])),
                average_time_ms=_average_time(by_day.get(day, [])),
                total_jobs=len(by_day.get(day, [])),
            )
            for day in analytics.daily_distribution
        ]
        return analytics

    def generate_payment_system_analytics(self, start: datetime, end: datetime,
                                          engagement: Optional[CustomerEngagement] = None
                                          ) -> PaymentSystemAnalytics:
        """时间窗口内的支付数据。

        提醒、逾期通知和自动扣款的次数取自窗口内支付任务的输出。
        """
        payments = self.db.payments.created_between(start, end)
        total_amount = float(sum(p.amount or 0 for p in payments))

        entries = self.job_logger.entries_between(start, end)
        payment_entries = [e for e in entries if e.job_name in PAYMENT_JOB_NAMES]

        def _total(job_name: str, key: str) -> int:
            return sum(
                _output_count(e, key) for e in payment_entries
                if e.job_name == job_name
            )

        return PaymentSystemAnalytics(
            total_payments_generated=len(payments),
            total_payment_amount=total_amount,
            average_payment_amount=total_amount / len(payments) if payments else 0.0,
            total_reminders_sent=_total(PAYMENT_REMINDER_EMAIL, "sent_emails"),
            total_overdue_notifications=_total(OVERDUE_PAYMENT_NOTIFICATION, "sent_notifications"),
            total_auto_pay_processed=_total(AUTO_PAY_PROCESSING, "processed_payments"),
            total_auto_pay_failed=_total(AUTO_PAY_PROCESSING, "failed_payments"),
            job_success_rate=_finished_success_rate(entries),
            average_job_execution_time_ms=_average_time(entries),
            customer_engagement=engagement,
        )

    @staticmethod
    def generate_recommendations(analytics: JobAnalyticsData,
                                 payment_analytics: PaymentSystemAnalytics) -> List[str]:
        recommendations = []

        if analytics.success_rate < MIN_SUCCESS_RATE:
            recommendations.append(
                "Job success rate is below 95%. Consider investigating failure "
                "reasons and improving error handling."
            )
        if analytics.average_execution_time_ms > MAX_AVERAGE_EXECUTION_MS:
            recommendations.append(
                "Average job execution time is high. Consider optimizing job "
                "performance or increasing resources."
            )
        if payment_analytics.auto_pay_failure_rate > MAX_AUTO_PAY_FAILURE_RATE:
            recommendations.append(
                "Auto-pay failure rate is above 10%. Consider reviewing payment "
                "method validation and retry logic."
            )
        engagement = payment_analytics.customer_engagement
        if engagement is not None and engagement.reminder_open_rate < MIN_REMINDER_OPEN_RATE:
            recommendations.append(
                "Email reminder open rate is below 80%. Consider improving email "
                "subject lines and content."
            )

        if not recommendations:
            recommendations.append(PERFORMING_WELL)
        return recommendations

    def generate_report(self, report_type: Union[ReportType, str] = ReportType.DAILY,
                        start: Optional[datetime] = None,
                        end: Optional[datetime] = None,
                        reference: Optional[datetime] = None,
                        engagement: Optional[CustomerEngagement] = None) -> JobReport:
        """生成指定周期或自定义周期的报表。

        Raises:
            ValueError: 无法解析周期时抛出。
        """
        report_type = ReportType(report_type)
        now = self.clock()
        period_start, period_end = self.resolve_period(report_type, reference, start, end)

        analytics = self.generate_job_analytics(period_start, period_end)
        payment_analytics = self.generate_payment_system_analytics(
            period_start, period_end, engagement
        )
        recommendations = self.generate_recommendations(analytics, payment_analytics)

        report = JobReport(
            report_id=f"report-{report_type.value}-{int(now.timestamp() * 1000)}",
            report_type=report_type,
            generated_at=now,
            period_start=period_start,
            period_end=period_end,
            summary=ReportSummary(
                total_jobs=analytics.total_jobs,
                success_rate=analytics.success_rate,
                average_execution_time_ms=analytics.average_execution_time_ms,
                critical_issues=len(analytics.failure_reasons),
            ),
            details=analytics,
            payment_analytics=payment_analytics,
            recommendations=recommendations,
        )
        logger.info(f"Generated {report_type.value} report {report.report_id}")
        return report

    def export_analytics_csv(self, analytics: JobAnalyticsData,
                             filename: Optional[str] = None) -> AnalyticsExport:
        """将汇总及各任务明细导出为 CSV。"""
        filename = filename or f"job-analytics-{self.clock():%Y-%m-%d}.csv"
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([
            "Period", "Total Jobs", "Successful Jobs", "Failed Jobs",
            "Success Rate", "Average Execution Time (ms)", "Total Execution Time (ms)",
        ])
        writer.writerow([
            analytics.period, analytics.total_jobs, analytics.successful_jobs,
            analytics.failed_jobs, round(analytics.success_rate, 4),
            round(analytics.average_execution_time_ms), analytics.total_execution_time_ms,
        ])
        if analytics.job_breakdown:
            writer.writerow([])
            writer.writerow([
                "Job", "Executions", "Success Rate", "Average Time (ms)",
                "Total Time (ms)", "Failures",
            ])
            for name, perf in analytics.job_breakdown.items():
                writer.writerow([
                    name, perf.executions, round(perf.success_rate, 4),
                    round(perf.average_time_ms), perf.total_time_ms, perf.failures,
                ])
        return AnalyticsExport(filename=filename, data=buffer.getvalue())


class PaymentAnalyticsJob(BaseJob):
    """每日统计报表任务。"""

    slug = PAYMENT_ANALYTICS
    description = "Payment analytics"
    input_type = AnalyticsInput

    def execute(self, ctx: JobContext, params: AnalyticsInput) -> JobResult:
        analytics = JobAnalytics(ctx.db, clock=ctx.clock, job_logger=ctx.job_logger)
        report_date = params.report_date or ctx.clock()
        report = analytics.generate_report(ReportType.DAILY, reference=report_date)
        export = analytics.export_analytics_csv(report.details)

        data: Dict[str, Any] = {
            "report_id": report.report_id,
            "period_start": report.period_start,
            "period_end": report.period_end,
            "summary": report.summary,
            "payment_analytics": report.payment_analytics,
            "recommendations": report.recommendations,
            "csv_export": {"filename": export.filename, "size": export.size},
        }
        return JobResult.ok(f"Payment analytics generated for {report_date:%Y-%m-%d}", data)
