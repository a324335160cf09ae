"""任务注册表 - 将任务标识映射到任务实例"""
from typing import Any, Dict, List, Optional

from loguru import logger

from .analytics import PaymentAnalyticsJob
from .auto_pay import AutoPayJob
from .base import BaseJob
from .monitoring import HealthCheckJob
from .overdue_notification import OverdueNotificationJob
from .reminder_email import ReminderEmailJob
from .rent_generation import RentGenerationJob
from .types import JobContext, JobResult


class JobRegistry:
    """按名称登记的任务，统一使用 ``run(ctx, payload)`` 调用约定"""

    def __init__(self, jobs: Optional[List[BaseJob]] = None):
        self._jobs: Dict[str, BaseJob] = {}
        for job in jobs or []:
            self.register(job)

    def register(self, job: BaseJob) -> None:
        if not job.slug:
            raise ValueError(f"{type(job).__name__} has no slug")
        if job.slug in self._jobs:
            raise ValueError(f"Job already registered: {job.slug}")
        self._jobs[job.slug] = job
        logger.debug(f"Registered job {job.slug}")

    def get(self, slug: str) -> Optional[BaseJob]:
        return self._jobs.get(slug)

    def __contains__(self, slug: str) -> bool:
        return slug in self._jobs

    def slugs(self) -> List[str]:
        return list(self._jobs)

    def run(self, slug: str, ctx: JobContext,
            payload: Optional[Dict[str, Any]] = None) -> JobResult:
        """按标识运行任务

        Raises:
            KeyError: 未知的任务标识。
        """
        job = self._jobs.get(slug)
        if job is None:
            raise KeyError(f"Unknown job: {slug}")
        return job.run(ctx, payload)


def create_default_registry() -> JobRegistry:
    """创建包含全部支付、健康检查与统计任务的注册表"""
    return JobRegistry([
        RentGenerationJob(),
        ReminderEmailJob(),
        OverdueNotificationJob(),
        AutoPayJob(),
        HealthCheckJob(),
        PaymentAnalyticsJob(),
    ])
