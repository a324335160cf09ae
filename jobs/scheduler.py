"""定时任务调度器 - 按 cron 表达式触发已注册的任务

任务在工作线程中运行，耗时的任务不会阻塞事件循环。
运行失败时按任务的重试延迟安排一次性重跑，直到重试策略用尽。
"""
import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from loguru import logger

from config.settings import settings
from .registry import JobRegistry
from .scheduling import ScheduleRegistry
from .types import JobContext, JobResult


class JobScheduler:
    """任务注册表的定时触发器

    Args:
        registry: 按标识索引的任务。
        schedules: 调度注册表，每个定义添加一个 cron 任务。
        context: 上下文模板，每次运行复制一份并设置自己的任务ID和重试次数。
    """

    def __init__(self, registry: JobRegistry, schedules: ScheduleRegistry,
                 context: JobContext):
        self.registry = registry
        self.schedules = schedules
        self.context = context if context.schedules is not None else replace(context, schedules=schedules)
        self.timezone = ZoneInfo(settings.timezone)

        # 获取或创建事件循环
        try:
            loop = asyncio.get_event_loop()
            if loop.is_closed():
                loop = asyncio.new_event_loop()
                asyncio.set_event_loop(loop)
        except RuntimeError:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
        self.scheduler = AsyncIOScheduler(
            event_loop=loop,
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": settings.misfire_grace_seconds,
            },
        )

    def register_all(self) -> List[str]:
        """为每个调度添加 cron 任务，已禁用的以暂停状态添加

        Returns:
            已调度的任务标识。
        """
        scheduled = []
        for definition in self.schedules.all():
            if definition.slug not in self.registry:
                logger.warning(f"No job registered for schedule {definition.slug}, skipping")
                continue
            options: Dict[str, Any] = {}
            if not definition.enabled:
                options["next_run_time"] = None
            self.scheduler.add_job(
                self.execute,
                trigger=definition.cron_trigger(),
                args=[definition.slug],
                id=definition.slug,
                name=definition.description or definition.slug,
                replace_existing=True,
                **options
            )
            scheduled.append(definition.slug)
            logger.info(
                f"Scheduled job '{definition.slug}' ({definition.cron_expression}, "
                f"{definition.timezone}){'' if definition.enabled else ' [paused]'}"
            )
        return scheduled

    def _context_for(self, retry_count: int) -> JobContext:
        return replace(self.context, job_id=None, now=None, retry_count=retry_count)

    async def execute(self, slug: str, retry_count: int = 0,
                      payload: Optional[Dict[str, Any]] = None) -> JobResult:
        """运行定时任务，失败时安排重试"""
        definition = self.schedules.get(slug)
        if payload is None:
            payload = dict(definition.default_input) if definition else {}

        result = await asyncio.to_thread(
            self.registry.run, slug, self._context_for(retry_count), payload
        )

        if not result.success and definition is not None:
            if definition.retry_policy.should_retry(retry_count):
                self.schedule_retry(slug, retry_count + 1, payload)
            elif definition.retry_policy.max_retries:
                logger.error(f"Job {slug} failed after {retry_count} retries: {result.error}")
        return result

    def schedule_retry(self, slug: str, retry_count: int,
                       payload: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """在任务的重试延迟后安排第 ``retry_count`` 次重试

        Returns:
            重试对应的 APScheduler 任务ID，未知标识返回 None。
        """
        definition = self.schedules.get(slug)
        if definition is None:
            return None
        run_date = datetime.now(self.timezone) + timedelta(
            seconds=definition.retry_policy.retry_delay_seconds
        )
        retry_id = f"{slug}-retry-{retry_count}"
        self.scheduler.add_job(
            self.execute,
            trigger=DateTrigger(run_date=run_date, timezone=self.timezone),
            args=[slug, retry_count, payload],
            id=retry_id,
            name=f"{definition.description or slug} (retry {retry_count})",
            replace_existing=True,
        )
        logger.warning(
            f"Job {slug} failed, retry {retry_count}/{definition.retry_policy.max_retries} "
            f"scheduled at {run_date:%Y-%m-%d %H:%M:%S}"
        )
        return retry_id

    async def run_now(self, slug: str,
                      payload: Optional[Dict[str, Any]] = None) -> JobResult:
        """立即运行任务，不受调度限制且不重试"""
        return await asyncio.to_thread(
            self.registry.run, slug, self._context_for(0), payload
        )

    def enable_job(self, slug: str) -> bool:
        if self.schedules.enable(slug) is None:
            return False
        try:
            self.scheduler.resume_job(slug)
        except Exception as e:
            logger.warning(f"Failed to resume job {slug}: {e}")
        return True

    def disable_job(self, slug: str) -> bool:
        if self.schedules.disable(slug) is None:
            return False
        try:
            self.scheduler.pause_job(slug)
        except Exception as e:
            logger.warning(f"Failed to pause job {slug}: {e}")
        return True

    def get_job_status(self) -> List[Dict[str, Any]]:
        """调度器中各任务定义的调度状态"""
        status = []
        for definition in self.schedules.all():
            job = self.scheduler.get_job(definition.slug)
            status.append({
                "slug": definition.slug,
                "enabled": definition.enabled,
                "scheduled": job is not None,
                "next_run_time": getattr(job, "next_run_time", None) if job else None,
                "queue": definition.queue,
                "cron": definition.cron_expression,
            })
        return status

    def start(self):
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
