"""任务系统健康监控

健康检查读取最近 24 小时的任务执行日志，并报告发现的最严重级别：

- warning：存在禁用的调度、运行中的任务过多、平均耗时过长
- critical：成功率过低、存在卡住的任务、队列异常

健康结果每次检查时都从日志重新计算，不单独保存状态。
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from config.schedules import JOB_HEALTH_CHECK
from config.settings import Settings, settings as default_settings
from database.models import JOB_COMPLETED, JOB_FAILED, JOB_RUNNING, JOB_CANCELLED
from notifications.base import EmailDispatcher, EmailMessage
from notifications.templates import render_health_alert
from .base import BaseJob, call_with_timeout
from .execution_log import JobLogEntry, JobLogFilter, JobLogger, format_duration
from .scheduling import ScheduleRegistry
from .types import HealthLevel, JobContext, JobResult

METRICS_WINDOW = timedelta(hours=24)


@dataclass
class SystemHealthMetrics:
    total_jobs: int = 0
    running_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    average_execution_time_ms: float = 0.0
    success_rate: float = 1.0
    system_status: HealthLevel = HealthLevel.HEALTHY
    issues: List[str] = field(default_factory=list)


@dataclass
class StuckJob:
    job_name: str
    job_id: str
    queue: Optional[str]
    start_time: datetime
    running_ms: int
    max_execution_ms: int


@dataclass
class QueueStatus:
    name: str
    running: int = 0
    completed: int = 0
    failed: int = 0
    stuck: int = 0
    healthy: bool = True


@dataclass
class QueueHealthReport:
    healthy: bool
    queues: Dict[str, QueueStatus]
    issues: List[str] = field(default_factory=list)


@dataclass
class HealthStatus:
    status: HealthLevel
    message: str
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)


def _worst(current: HealthLevel, candidate: HealthLevel) -> HealthLevel:
    return candidate if candidate.rank > current.rank else current


class JobMonitor:
    """基于任务执行日志的健康监控器。

    Args:
        db: 数据库管理器。
        schedules: 调度注册表（调度状态、队列、耗时上限）。
        settings: 各项阈值，默认使用全局配置。
        clock: 返回当前时间的可调用对象。
        job_logger: 读取日志条目的记录器，未提供时自动创建。
        email: 发送告警邮件的发送器。
    """

    def __init__(self, db, schedules: Optional[ScheduleRegistry] = None,
                 settings: Optional[Settings] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 job_logger: Optional[JobLogger] = None,
                 email: Optional[EmailDispatcher] = None):
        self.db = db
        self.schedules = schedules or ScheduleRegistry()
        self.settings = settings or default_settings
        self.clock = clock or self.settings.now
        self.job_logger = job_logger or JobLogger(db, clock=self.clock)
        self.email = email

    @property
    def max_execution_ms(self) -> int:
        return self.settings.job_max_execution_minutes * 60 * 1000

    def _window_entries(self, now: datetime) -> List[JobLogEntry]:
        return self.job_logger.entries_between(now - METRICS_WINDOW, now)

    def get_system_metrics(self, now: Optional[datetime] = None) -> SystemHealthMetrics:
        """最近 24 小时的运行次数与比率。

        成功率按已结束的运行（completed 或 failed）计算，没有已结束的运行时为 1.0。
        """
        now = now or self.clock()
        entries = self._window_entries(now)

        running = sum(1 for e in entries if e.status == JOB_RUNNING)
        completed = sum(1 for e in entries if e.status == JOB_COMPLETED)
        failed = sum(1 for e in entries if e.status == JOB_FAILED)
        cancelled = sum(1 for e in entries if e.status == JOB_CANCELLED)
        finished = completed + failed
        successful = sum(1 for e in entries if e.status == JOB_COMPLETED and e.success)
        success_rate = successful / finished if finished else 1.0

        durations = [e.duration_ms for e in entries if e.duration_ms is not None]
        average = sum(durations) / len(durations) if durations else 0.0

        status = HealthLevel.HEALTHY
        issues = []
        if success_rate < self.settings.health_min_success_rate:
            issues.append("Low success rate")
            status = HealthLevel.CRITICAL
        if running > self.settings.health_max_running_jobs:
            issues.append("High number of running jobs")
            status = _worst(status, HealthLevel.WARNING)
        if average > self.max_execution_ms:
            issues.append("High average execution time")
            status = _worst(status, HealthLevel.WARNING)

        return SystemHealthMetrics(
            total_jobs=len(entries),
            running_jobs=running,
            completed_jobs=completed,
            failed_jobs=failed,
            cancelled_jobs=cancelled,
            average_execution_time_ms=average,
            success_rate=success_rate,
            system_status=status,
            issues=issues,
        )

    def get_stuck_jobs(self, now: Optional[datetime] = None) -> List[StuckJob]:
        """运行时间超过耗时上限的任务。"""
        now = now or self.clock()
        stuck = []
        for entry in self.job_logger.query(JobLogFilter(status=JOB_RUNNING, limit=0)):
            definition = self.schedules.get(entry.job_name)
            ceiling = definition.max_execution_ms if definition else self.max_execution_ms
            running_ms = int((now - entry.start_time).total_seconds() * 1000)
            if running_ms > ceiling:
                stuck.append(StuckJob(
                    job_name=entry.job_name,
                    job_id=entry.job_id,
                    queue=entry.queue or (definition.queue if definition else None),
                    start_time=entry.start_time,
                    running_ms=running_ms,
                    max_execution_ms=ceiling,
                ))
        return stuck

    def check_queue_health(self, now: Optional[datetime] = None,
                           stuck_jobs: Optional[List[StuckJob]] = None) -> QueueHealthReport:
        """各队列的积压情况。

        队列中运行中的任务超过 ``queue_max_running`` 个，或有任务卡住时，
        视为队列异常。
        """
        now = now or self.clock()
        stuck_jobs = self.get_stuck_jobs(now) if stuck_jobs is None else stuck_jobs
        queues: Dict[str, QueueStatus] = {
            name: QueueStatus(name=name) for name in self.schedules.queues()
        }

        def _queue_of(entry_queue: Optional[str], job_name: str) -> Optional[str]:
            if entry_queue:
                return entry_queue
            definition = self.schedules.get(job_name)
            return definition.queue if definition else None

        for entry in self.job_logger.query(JobLogFilter(status=JOB_RUNNING, limit=0)):
            name = _queue_of(entry.queue, entry.job_name)
            if name:
                queues.setdefault(name, QueueStatus(name=name)).running += 1

        for entry in self._window_entries(now):
            name = _queue_of(entry.queue, entry.job_name)
            if not name:
                continue
            queue = queues.setdefault(name, QueueStatus(name=name))
            if entry.status == JOB_COMPLETED:
                queue.completed += 1
            elif entry.status == JOB_FAILED:
                queue.failed += 1

        for job in stuck_jobs:
            if job.queue:
                queues.setdefault(job.queue, QueueStatus(name=job.queue)).stuck += 1

        issues = []
        for queue in queues.values():
            if queue.running > self.settings.queue_max_running:
                queue.healthy = False
                issues.append(f"{queue.name} has {queue.running} running jobs")
            if queue.stuck:
                queue.healthy = False
                issues.append(f"{queue.name} has {queue.stuck} stuck jobs")

        return QueueHealthReport(
            healthy=all(q.healthy for q in queues.values()),
            queues=queues,
            issues=issues,
        )

    def perform_health_check(self) -> HealthStatus:
        """计算整体健康状态，取最严重的结果。

        检查过程中出错本身也报告为 critical。
        """
        now = self.clock()
        try:
            schedule_status = self.schedules.status(now)
            metrics = self.get_system_metrics(now)
            stuck_jobs = self.get_stuck_jobs(now)
            queue_health = self.check_queue_health(now, stuck_jobs)

            status = HealthLevel.HEALTHY
            issues = []

            if schedule_status["disabled"] > 0:
                issues.append(f"{schedule_status['disabled']} job schedules are disabled")
                status = _worst(status, HealthLevel.WARNING)
            if metrics.success_rate < self.settings.health_min_success_rate:
                issues.append(f"Low success rate: {metrics.success_rate * 100:.1f}%")
                status = _worst(status, HealthLevel.CRITICAL)
            if metrics.running_jobs > self.settings.health_max_running_jobs:
                issues.append(f"High number of running jobs: {metrics.running_jobs}")
                status = _worst(status, HealthLevel.WARNING)
            if metrics.average_execution_time_ms > self.max_execution_ms:
                issues.append(
                    f"High average execution time: {format_duration(metrics.average_execution_time_ms)}"
                )
                status = _worst(status, HealthLevel.WARNING)
            if stuck_jobs:
                issues.append(f"{len(stuck_jobs)} jobs appear to be stuck")
                status = _worst(status, HealthLevel.CRITICAL)
            if not queue_health.healthy:
                issues.append(f"Queue health issues: {', '.join(queue_health.issues)}")
                status = _worst(status, HealthLevel.CRITICAL)

            if issues:
                message = f"Found {len(issues)} issue(s): {', '.join(issues)}"
            else:
                message = "All systems operational"

            return HealthStatus(
                status=status,
                message=message,
                timestamp=now,
                details={
                    "issues": issues,
                    "schedule_status": schedule_status,
                    "metrics": metrics,
                    "stuck_jobs": stuck_jobs,
                    "queue_health": queue_health,
                },
            )
        except Exception as e:
            logger.exception("Health check failed")
            return HealthStatus(
                status=HealthLevel.CRITICAL,
                message=f"Health check failed: {e}",
                timestamp=now,
                details={"error": str(e)},
            )

    def send_health_check_alert(self, health: HealthStatus) -> bool:
        """上报 warning 或 critical 状态。

        状态会写入日志；配置了收件地址和发送器时，同时发送邮件到 ``settings.alert_email``。

        Returns:
            发送了告警邮件时返回 True。
        """
        if health.status == HealthLevel.HEALTHY:
            return False
        if health.status == HealthLevel.CRITICAL:
            logger.error(f"CRITICAL: Job system health check failed: {health.message}")
        else:
            logger.warning(f"WARNING: Job system health check warning: {health.message}")

        if not self.settings.alert_email or self.email is None:
            return False

        rendered = render_health_alert(
            health.status.value, health.message,
            health.details.get("issues", []), health.timestamp
        )
        try:
            result = call_with_timeout(
                self.email.send, self.settings.email_timeout_seconds,
                EmailMessage(to=self.settings.alert_email, subject=rendered.subject,
                             html=rendered.html, text=rendered.text,
                             tags={"job": JOB_HEALTH_CHECK}),
            )
        except Exception as e:
            logger.error(f"Failed to send health alert email: {e}")
            return False
        if not result.success:
            logger.error(f"Failed to send health alert email: {result.error}")
        return result.success

    def get_job_execution_history(self, job_name: Optional[str] = None,
                                  limit: int = 100) -> List[JobLogEntry]:
        return self.job_logger.query(JobLogFilter(job_name=job_name, limit=limit))

    def get_dashboard_data(self) -> Dict[str, Any]:
        """汇总健康状态、运行指标、近期运行和调度信息。"""
        now = self.clock()
        return {
            "health_status": self.perform_health_check(),
            "system_metrics": self.get_system_metrics(now),
            "recent_jobs": self.get_job_execution_history(limit=10),
            "schedule_status": self.schedules.status(now),
            "job_stats": self.job_logger.stats(now - METRICS_WINDOW, now),
        }


class HealthCheckJob(BaseJob):
    """执行健康检查，发现问题时告警，并清理过期日志。"""

    slug = JOB_HEALTH_CHECK
    description = "Job health check"

    def execute(self, ctx: JobContext, params: Dict[str, Any]) -> JobResult:
        job_logger = ctx.job_logger or JobLogger(ctx.db, clock=ctx.clock)
        monitor = JobMonitor(
            ctx.db, ctx.schedules, ctx.settings,
            clock=ctx.clock, job_logger=job_logger, email=ctx.email,
        )
        health = monitor.perform_health_check()
        alert_sent = monitor.send_health_check_alert(health)
        purged = job_logger.purge_expired(ctx.clock())

        return JobResult.ok(
            f"Health check completed: {health.status.value}",
            {
                "health_status": health.status,
                "message": health.message,
                "issues": health.details.get("issues", []),
                "alert_sent": alert_sent,
                "purged_logs": purged,
            },
        )
