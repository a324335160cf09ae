"""任务基类

BaseJob.run 是所有任务的统一入口：分配任务ID、记录开始、调用子类的
``execute``、将逃逸的异常转换为任务级失败，最后记录耗时与结果。

PaymentJob 增加支付任务共用的前置检查。除缺少配置外，以下短路均视为成功的空操作：
1. 任务调度已禁用（``force_run`` 时忽略）
2. 不存在 PaymentConfig（任务级失败）
3. 支付系统未启用（``force_run`` 时忽略）
"""
import time
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from loguru import logger

from database.models import CustomerPaymentSettings, Payment, PaymentConfig
from notifications.base import EmailMessage, SendResult
from notifications.templates import RenderedEmail
from .execution_log import JobLogger
from .types import (
    ConfigurationError, DispatchTimeout, JobContext, JobError, JobResult
)
from .utils import is_payment_system_active


def call_with_timeout(func: Callable, timeout: float, *args, **kwargs) -> Any:
    """调用 ``func`` 并最多等待 ``timeout`` 秒

    超时后调用仍在工作线程中继续执行，其结果被丢弃。

    Raises:
        DispatchTimeout: 调用未能按时完成。
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="job-call")
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout:
        name = getattr(func, "__qualname__", repr(func))
        raise DispatchTimeout(f"{name} did not finish within {timeout:g}s")
    finally:
        executor.shutdown(wait=False)


class BaseJob(ABC):
    """所有任务的基类

    子类需设置 ``slug``、``description`` 和 ``input_type``（带 ``from_payload``
    构造方法的 dataclass），并实现 ``execute``。
    """

    slug: str = ""
    description: str = ""
    input_type: Any = None

    def parse_input(self, payload: Optional[Dict[str, Any]]) -> Any:
        if self.input_type is None:
            return dict(payload or {})
        return self.input_type.from_payload(payload)

    def build_job_id(self, payload: Dict[str, Any], now: datetime) -> str:
        return f"{self.slug}-{int(now.timestamp() * 1000)}"

    def run(self, ctx: JobContext, payload: Optional[Dict[str, Any]] = None) -> JobResult:
        """运行一次任务

        Args:
            ctx: 运行上下文。
            payload: 任务输入。

        Returns:
            任务结果，不会抛出异常。
        """
        payload = dict(payload or {})
        started = time.monotonic()
        # 同一毫秒内启动的运行依靠后缀区分
        job_id = ctx.job_id or f"{self.build_job_id(payload, ctx.clock())}-{uuid.uuid4().hex[:6]}"

        definition = ctx.schedules.get(self.slug) if ctx.schedules is not None else None
        job_logger = ctx.job_logger or JobLogger(ctx.db, clock=ctx.clock)
        handle = job_logger.log_start(
            self.slug, job_id, payload,
            queue=definition.queue if definition else None,
            priority=definition.priority if definition else 0,
            max_retries=definition.retry_policy.max_retries if definition else 0,
            retry_count=ctx.retry_count,
        )

        try:
            params = self.parse_input(payload)
            result = self.execute(ctx, params)
        except Exception as e:
            logger.exception(f"Job {self.slug} ({job_id}) failed")
            result = JobResult.fail(f"{self.description or self.slug} failed", e)

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        result.data.setdefault("job_id", job_id)

        job_logger.log_completion(
            handle, result.success,
            output=result.to_dict(),
            error_message=None if result.success else result.error,
        )
        return result

    @abstractmethod
    def execute(self, ctx: JobContext, params: Any) -> JobResult:
        """任务主体，可抛出异常，由 ``run`` 转换为失败结果"""
        pass


class PaymentJob(BaseJob):
    """读取或修改支付记录的任务基类"""

    def execute(self, ctx: JobContext, params: Any) -> JobResult:
        force_run = bool(getattr(params, "force_run", False))

        if (not force_run and ctx.schedules is not None
                and self.slug in ctx.schedules
                and not ctx.schedules.is_enabled(self.slug)):
            return JobResult.ok(
                f"Job {self.slug} is disabled, skipping",
                {"schedule_enabled": False},
            )

        config = ctx.payment_config or ctx.db.payment_configs.get_current()
        if config is None:
            return JobResult.fail(
                "No payment configuration found",
                ConfigurationError("Payment configuration not found"),
            )

        now = ctx.clock()
        if not force_run and not is_payment_system_active(config, now):
            if not config.is_enabled:
                return JobResult.ok(
                    f"Payment system is disabled, skipping {self.slug}",
                    {"system_enabled": False},
                )
            return JobResult.ok(
                f"Payment system start date not reached, skipping {self.slug}",
                {"after_start_date": False},
            )

        return self.process(ctx, params, config, now)

    @abstractmethod
    def process(self, ctx: JobContext, params: Any, config: PaymentConfig,
                now: datetime) -> JobResult:
        """通过公共检查后执行的任务逻辑"""
        pass

    @staticmethod
    def load_customer_settings(ctx: JobContext, customer_ids: Iterable[int]
                               ) -> Dict[int, CustomerPaymentSettings]:
        return ctx.db.payment_settings.get_map(customer_ids)

    @staticmethod
    def booking_details(payment: Payment) -> Optional[Dict[str, Any]]:
        """顾客邮件中展示的预订条款"""
        booking = payment.booking
        if booking is None:
            return None
        return {
            "property": booking.property_name,
            "room": booking.room,
            "start_date": booking.start_date,
            "end_date": booking.end_date,
        }

    @staticmethod
    def send_email(ctx: JobContext, to: Optional[str], rendered: RenderedEmail,
                   **tags) -> SendResult:
        """在配置的超时时间内发送邮件

        Raises:
            ConfigurationError: 未配置发送器或收件人。
            DispatchTimeout: 发送器未按时响应。
            JobError: 发送器报告失败。
        """
        if ctx.email is None:
            raise ConfigurationError("No email dispatcher configured")
        if not to:
            raise ConfigurationError("Customer has no email address")
        message = EmailMessage(
            to=to, subject=rendered.subject, html=rendered.html,
            text=rendered.text, tags=tags
        )
        result = call_with_timeout(
            ctx.email.send, ctx.settings.email_timeout_seconds, message
        )
        if not result.success:
            raise JobError(result.error or "Email sending failed")
        return result
