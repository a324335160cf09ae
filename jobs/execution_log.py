"""任务执行日志

每次任务运行都记录在 ``job_execution_logs`` 表中：开始时创建一行，结束时更新一次。
日志记录尽力而为：数据库无法写入时任务照常运行，错误通过 loguru 报告，
日志条目改为保存在有上限的内存缓冲区中，查询时依然可见。
"""
import csv
import io
import json
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

from loguru import logger

from config.settings import settings
from database.models import (
    JobExecutionLog, JOB_RUNNING, JOB_COMPLETED, JOB_FAILED, JOB_CANCELLED
)
from .types import to_jsonable


@dataclass
class LogHandle:
    """已开始运行的引用，结束时传回。

    开始记录未能持久化时 ``log_id`` 为 None。
    """
    job_name: str
    job_id: str
    start_time: datetime
    input: Dict[str, Any] = field(default_factory=dict)
    queue: Optional[str] = None
    priority: int = 0
    retry_count: int = 0
    max_retries: int = 0
    log_id: Optional[int] = None

    @property
    def persisted(self) -> bool:
        return self.log_id is not None


@dataclass
class JobLogEntry:
    job_name: str
    job_id: str
    start_time: datetime
    status: str
    success: bool
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 0
    input: Dict[str, Any] = field(default_factory=dict)
    output: Dict[str, Any] = field(default_factory=dict)
    queue: Optional[str] = None
    priority: int = 0
    id: Optional[int] = None
    ephemeral: bool = False

    @classmethod
    def from_model(cls, row: JobExecutionLog) -> "JobLogEntry":
        return cls(
            id=row.id,
            job_name=row.job_name,
            job_id=row.job_id,
            start_time=row.start_time,
            end_time=row.end_time,
            duration_ms=row.duration_ms,
            status=row.status,
            success=bool(row.success),
            error_message=row.error_message,
            retry_count=row.retry_count or 0,
            max_retries=row.max_retries or 0,
            input=row.input or {},
            output=row.output or {},
            queue=row.queue,
            priority=row.priority or 0,
        )


@dataclass
class JobLogFilter:
    job_name: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    success: Optional[bool] = None
    queue: Optional[str] = None
    limit: int = 100
    offset: int = 0

    def matches(self, entry: JobLogEntry) -> bool:
        if self.job_name and entry.job_name != self.job_name:
            return False
        if self.status and entry.status != self.status:
            return False
        if self.queue and entry.queue != self.queue:
            return False
        if self.success is not None and entry.success != self.success:
            return False
        if self.start_date is not None and entry.start_time < self.start_date:
            return False
        if self.end_date is not None and entry.start_time > self.end_date:
            return False
        return True


@dataclass
class ErrorCount:
    error: str
    count: int
    percentage: float


@dataclass
class JobBreakdown:
    executions: int
    success_rate: float
    average_time_ms: float


@dataclass
class JobLogStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    average_duration_ms: float = 0.0
    most_common_errors: List[ErrorCount] = field(default_factory=list)
    job_breakdown: Dict[str, JobBreakdown] = field(default_factory=dict)


def _average_duration(entries: List[JobLogEntry]) -> float:
    durations = [e.duration_ms for e in entries if e.duration_ms is not None]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def summarize(entries: List[JobLogEntry]) -> JobLogStats:
    """一组日志条目的汇总统计。"""
    total = len(entries)
    if total == 0:
        return JobLogStats()

    successful = sum(1 for e in entries if e.success)
    failed = sum(1 for e in entries if e.status == JOB_FAILED)

    error_counts = Counter(e.error_message for e in entries if e.error_message)
    error_total = sum(error_counts.values())
    most_common = [
        ErrorCount(error=error, count=count,
                   percentage=round(count / error_total * 100, 2))
        for error, count in error_counts.most_common(10)
    ]

    groups: Dict[str, List[JobLogEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.job_name, []).append(entry)
    breakdown = {
        name: JobBreakdown(
            executions=len(group),
            success_rate=sum(1 for e in group if e.success) / len(group),
            average_time_ms=_average_duration(group),
        )
        for name, group in groups.items()
    }

    return JobLogStats(
        total=total,
        successful=successful,
        failed=failed,
        success_rate=successful / total,
        failure_rate=failed / total,
        average_duration_ms=_average_duration(entries),
        most_common_errors=most_common,
        job_breakdown=breakdown,
    )


class JobLogger:
    """记录任务运行并提供查询。

    Args:
        db: 数据库管理器。
        retention_days: 日志保留天数，超过后清理。
        clock: 返回当前时间的可调用对象。
    """

    MAX_EPHEMERAL_ENTRIES = 1000

    def __init__(self, db, retention_days: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.retention_days = (
            retention_days if retention_days is not None
            else settings.log_retention_days
        )
        self.clock = clock or settings.now
        self._ephemeral: Deque[JobLogEntry] = deque(maxlen=self.MAX_EPHEMERAL_ENTRIES)
        self._lock = threading.Lock()

    # ================================================================
    # 写入
    # ================================================================

    def log_start(self, job_name: str, job_id: str,
                  input: Optional[Dict[str, Any]] = None,
                  queue: Optional[str] = None, priority: int = 0,
                  max_retries: int = 0, retry_count: int = 0) -> LogHandle:
        """记录一次运行的开始。

        Returns:
            供 ``log_completion`` 使用的句柄，行写入失败时其 ``log_id`` 为 None。
        """
        handle = LogHandle(
            job_name=job_name,
            job_id=job_id,
            start_time=self.clock(),
            input=to_jsonable(input or {}),
            queue=queue,
            priority=priority or 0,
            retry_count=retry_count,
            max_retries=max_retries,
        )
        try:
            row = self.db.job_logs.add(
                job_name=job_name,
                job_id=job_id,
                start_time=handle.start_time,
                status=JOB_RUNNING,
                success=False,
                retry_count=retry_count,
                max_retries=max_retries,
                input=handle.input,
                queue=queue,
                priority=handle.priority,
            )
            handle.log_id = row.id
        except Exception as e:
            logger.error(f"Failed to persist start of job {job_name} ({job_id}): {e}")

        logger.info(
            f"[JOB START] {job_name} ({job_id})"
            + (f" retry {retry_count}/{max_retries}" if retry_count else "")
        )
        return handle

    def log_completion(self, handle: LogHandle, success: bool,
                       output: Optional[Dict[str, Any]] = None,
                       error_message: Optional[str] = None) -> JobLogEntry:
        """记录一次运行的结果。

        Args:
            handle: ``log_start`` 返回的句柄。
            success: 是否成功。
            output: 任务输出数据。
            error_message: 失败原因。

        Returns:
            结束后的日志条目，仅存在于内存时标记为 ``ephemeral``。
        """
        status = JOB_COMPLETED if success else JOB_FAILED
        entry = self._finish(handle, status, success, output, error_message)

        if success:
            logger.info(f"[JOB COMPLETE] {handle.job_name} ({handle.job_id}) in {entry.duration_ms}ms")
        else:
            logger.error(
                f"[JOB FAILED] {handle.job_name} ({handle.job_id}) in {entry.duration_ms}ms: "
                f"{error_message}"
            )
        return entry

    def log_cancelled(self, handle: LogHandle, reason: str) -> JobLogEntry:
        """记录一次在完成前被取消的运行。"""
        entry = self._finish(handle, JOB_CANCELLED, False, None, reason)
        logger.warning(f"[JOB CANCELLED] {handle.job_name} ({handle.job_id}): {reason}")
        return entry

    def _finish(self, handle: LogHandle, status: str, success: bool,
                output: Optional[Dict[str, Any]],
                error_message: Optional[str]) -> JobLogEntry:
        end_time = self.clock()
        duration_ms = max(0, int((end_time - handle.start_time).total_seconds() * 1000))
        output = to_jsonable(output or {})

        entry = JobLogEntry(
            id=handle.log_id,
            job_name=handle.job_name,
            job_id=handle.job_id,
            start_time=handle.start_time,
            end_time=end_time,
            duration_ms=duration_ms,
            status=status,
            success=success,
            error_message=error_message,
            retry_count=handle.retry_count,
            max_retries=handle.max_retries,
            input=handle.input,
            output=output,
            queue=handle.queue,
            priority=handle.priority,
        )

        if handle.persisted:
            try:
                row = self.db.job_logs.finish(
                    handle.log_id,
                    end_time=end_time,
                    duration_ms=duration_ms,
                    status=status,
                    success=success,
                    output=output,
                    error_message=error_message,
                )
                if row is not None:
                    return entry
                logger.error(f"Log row {handle.log_id} of job {handle.job_id} disappeared")
            except Exception as e:
                logger.error(f"Failed to persist completion of job {handle.job_id}: {e}")

        entry.ephemeral = True
        with self._lock:
            self._ephemeral.append(entry)
        return entry

    # ================================================================
    # 查询
    # ================================================================

    def ephemeral_entries(self) -> List[JobLogEntry]:
        with self._lock:
            return list(self._ephemeral)

    def query(self, log_filter: Optional[JobLogFilter] = None) -> List[JobLogEntry]:
        """按条件筛选日志条目，最新的在前。

        仅存在于内存的条目会合并进结果。结束记录只写入了内存的运行，
        会替换数据库中过期的 ``running`` 行。
        """
        log_filter = log_filter or JobLogFilter()
        window = log_filter.offset + log_filter.limit if log_filter.limit else None
        ephemeral = self.ephemeral_entries()
        superseded = {e.job_id for e in ephemeral}

        try:
            rows = self.db.job_logs.query(
                job_name=log_filter.job_name,
                status=log_filter.status,
                start_date=log_filter.start_date,
                end_date=log_filter.end_date,
                success=log_filter.success,
                queue=log_filter.queue,
                limit=window + len(superseded) if window is not None else None,
            )
            entries = [
                JobLogEntry.from_model(row) for row in rows
                if row.job_id not in superseded
            ]
        except Exception as e:
            logger.error(f"Failed to query job logs: {e}")
            entries = []

        entries.extend(e for e in ephemeral if log_filter.matches(e))
        entries.sort(key=lambda e: e.start_time, reverse=True)

        end = window if window is not None else len(entries)
        return entries[log_filter.offset:end]

    def entries_between(self, start: Optional[datetime] = None,
                        end: Optional[datetime] = None) -> List[JobLogEntry]:
        """开始时间落在窗口内的所有条目。"""
        return self.query(JobLogFilter(start_date=start, end_date=end, limit=0))

    def stats(self, start: Optional[datetime] = None,
              end: Optional[datetime] = None) -> JobLogStats:
        """开始时间落在窗口内的运行的汇总统计。"""
        return summarize(self.entries_between(start, end))

    # ================================================================
    # 维护
    # ================================================================

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """删除超出保留期的条目。

        Returns:
            删除的行数。
        """
        cutoff = (now or self.clock()) - timedelta(days=self.retention_days)
        with self._lock:
            kept = [e for e in self._ephemeral if e.start_time >= cutoff]
            self._ephemeral.clear()
            self._ephemeral.extend(kept)
        try:
            deleted = self.db.job_logs.delete_older_than(cutoff)
        except Exception as e:
            logger.error(f"Failed to purge job logs older than {cutoff}: {e}")
            return 0
        if deleted:
            logger.info(f"Purged {deleted} job log entries older than {cutoff:%Y-%m-%d}")
        return deleted

    @staticmethod
    def export_csv(entries: List[JobLogEntry]) -> str:
        """将日志条目导出为 CSV 文本。"""
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow([
            "ID", "Job Name", "Job ID", "Start Time", "End Time",
            "Duration (ms)", "Status", "Success", "Retry Count",
            "Error Message", "Input", "Output",
        ])
        for e in entries:
            writer.writerow([
                e.id if e.id is not None else "",
                e.job_name,
                e.job_id,
                e.start_time.isoformat(),
                e.end_time.isoformat() if e.end_time else "",
                e.duration_ms if e.duration_ms is not None else "",
                e.status,
                e.success,
                e.retry_count,
                e.error_message or "",
                json.dumps(e.input or {}),
                json.dumps(e.output or {}),
            ])
        return buffer.getvalue()


def format_duration(milliseconds: float) -> str:
    if milliseconds < 1000:
        return f"{int(milliseconds)}ms"
    if milliseconds < 60000:
        return f"{milliseconds / 1000:.1f}s"
    if milliseconds < 3600000:
        return f"{milliseconds / 60000:.1f}m"
    return f"{milliseconds / 3600000:.1f}h"
