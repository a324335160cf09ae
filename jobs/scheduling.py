"""调度注册表

每个任务标识对应一个 JobDefinition，进程启动时由 ``config/schedules.py``
中的静态调度表构建。运行期间定义只会被启用/禁用修改，不会被移除。
"""
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from config.schedules import ScheduleConfig, schedule_config as default_schedule_config
from config.settings import settings


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 0
    retry_delay_ms: int = 0

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000

    def should_retry(self, retry_count: int) -> bool:
        """已重试 ``retry_count`` 次的运行是否还能再次重试"""
        return retry_count < self.max_retries


@dataclass
class JobDefinition:
    """定时任务的静态描述

    Attributes:
        slug: 唯一的任务名称。
        cron_expression: 五段式 crontab 表达式。
        queue: 监控时用于分组的逻辑队列。
        enabled: 禁用的任务不会被触发，支付任务直接跳过。
        timezone: 计算 cron 表达式使用的 IANA 时区。
        retry_policy: 运行失败后由触发器安排的重试。
        default_input: 定时触发时使用的输入。
        max_execution_ms: 运行超过此时长视为卡住。
        priority: 多个任务同时触发时，数值大的先运行。
    """
    slug: str
    cron_expression: str
    queue: str
    enabled: bool = True
    timezone: str = "UTC"
    description: str = ""
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    default_input: Dict[str, Any] = field(default_factory=dict)
    max_execution_ms: int = 30 * 60 * 1000
    priority: int = 0

    def cron_trigger(self) -> CronTrigger:
        return CronTrigger.from_crontab(self.cron_expression, timezone=ZoneInfo(self.timezone))

    def next_run_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """``now`` 之后的下次触发时间，为任务时区下的无时区时间"""
        zone = ZoneInfo(self.timezone)
        now = now or datetime.now(zone)
        if now.tzinfo is None:
            now = now.replace(tzinfo=zone)
        fire_time = self.cron_trigger().get_next_fire_time(None, now)
        if fire_time is None:
            return None
        return fire_time.astimezone(zone).replace(tzinfo=None)


def validate_cron_expression(expression: str) -> Tuple[bool, Optional[str]]:
    """校验五段式 crontab 表达式

    Returns:
        有效时返回 ``(True, None)``，否则返回 ``(False, 原因)``。
    """
    if not isinstance(expression, str) or len(expression.split()) != 5:
        return False, "Cron expression must have exactly 5 parts"
    try:
        CronTrigger.from_crontab(expression)
    except ValueError as e:
        return False, str(e)
    return True, None


class ScheduleRegistry:
    """线程安全的任务定义注册表，以任务标识为键"""

    def __init__(self, definitions: Optional[List[JobDefinition]] = None):
        self._lock = threading.RLock()
        self._definitions: Dict[str, JobDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    @classmethod
    def from_config(cls, config: Optional[ScheduleConfig] = None,
                    max_execution_ms: Optional[int] = None) -> "ScheduleRegistry":
        """由调度表构建注册表

        Args:
            config: 调度表，默认使用 ``config.schedules.schedule_config``。
            max_execution_ms: 所有任务的卡住阈值，默认取
                ``settings.job_max_execution_minutes``。
        """
        config = config or default_schedule_config
        ceiling = max_execution_ms or settings.job_max_execution_minutes * 60 * 1000
        definitions = []
        for row in config.get_job_schedules():
            retry = row.get("retry") or {}
            definitions.append(JobDefinition(
                slug=row["slug"],
                cron_expression=row["cron"],
                queue=row["queue"],
                enabled=row.get("enabled", True),
                timezone=row.get("timezone") or config.get_timezone(),
                description=row.get("description", ""),
                retry_policy=RetryPolicy(
                    max_retries=retry.get("max_retries", 0),
                    retry_delay_ms=retry.get("retry_delay_ms", 0),
                ),
                default_input=dict(row.get("input") or {}),
                max_execution_ms=row.get("max_execution_ms", ceiling),
                priority=row.get("priority", 0),
            ))
        return cls(definitions)

    def register(self, definition: JobDefinition) -> None:
        valid, error = validate_cron_expression(definition.cron_expression)
        if not valid:
            raise ValueError(f"Invalid cron expression for {definition.slug}: {error}")
        with self._lock:
            if definition.slug in self._definitions:
                raise ValueError(f"Duplicate job schedule: {definition.slug}")
            self._definitions[definition.slug] = definition

    def __contains__(self, slug: str) -> bool:
        with self._lock:
            return slug in self._definitions

    def get(self, slug: str) -> Optional[JobDefinition]:
        """返回定义的副本，未知标识返回 None"""
        with self._lock:
            definition = self._definitions.get(slug)
            return replace(definition) if definition else None

    def all(self) -> List[JobDefinition]:
        with self._lock:
            return [replace(d) for d in self._definitions.values()]

    def is_enabled(self, slug: str) -> bool:
        with self._lock:
            definition = self._definitions.get(slug)
            return bool(definition and definition.enabled)

    def set_enabled(self, slug: str, enabled: bool) -> Optional[JobDefinition]:
        """启用或禁用任务

        Returns:
            更新后的定义，未知标识返回 None。
        """
        with self._lock:
            definition = self._definitions.get(slug)
            if definition is None:
                logger.warning(f"Cannot toggle unknown job schedule {slug}")
                return None
            definition.enabled = enabled
            logger.info(f"Job schedule {slug} {'enabled' if enabled else 'disabled'}")
            return replace(definition)

    def enable(self, slug: str) -> Optional[JobDefinition]:
        return self.set_enabled(slug, True)

    def disable(self, slug: str) -> Optional[JobDefinition]:
        return self.set_enabled(slug, False)

    def disabled(self) -> List[str]:
        return [d.slug for d in self.all() if not d.enabled]

    def next_run_time(self, slug: str,
                      now: Optional[datetime] = None) -> Optional[datetime]:
        definition = self.get(slug)
        if definition is None:
            return None
        return definition.next_run_time(now)

    def queues(self) -> Dict[str, List[str]]:
        """按逻辑队列分组的任务标识"""
        grouped: Dict[str, List[str]] = {}
        for definition in self.all():
            grouped.setdefault(definition.queue, []).append(definition.slug)
        return grouped

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """所有调度的摘要及下次运行时间"""
        definitions = self.all()
        enabled = sum(1 for d in definitions if d.enabled)
        return {
            "enabled": enabled,
            "disabled": len(definitions) - enabled,
            "total": len(definitions),
            "schedules": [
                {
                    "slug": d.slug,
                    "enabled": d.enabled,
                    "cron": d.cron_expression,
                    "queue": d.queue,
                    "next_run": d.next_run_time(now) if d.enabled else None,
                    "description": d.description,
                }
                for d in sorted(definitions, key=lambda d: -d.priority)
            ],
        }
