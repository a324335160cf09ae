"""
任务调度配置 - 可替换的静态调度表

部署方可以提供自己的 ScheduleConfig 来替换默认的支付任务调度，
无需修改任务代码。
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any

from config.settings import settings


# 任务标识
MONTHLY_RENT_PAYMENT = "monthly-rent-payment"
PAYMENT_REMINDER_EMAIL = "payment-reminder-email"
OVERDUE_PAYMENT_NOTIFICATION = "overdue-payment-notification"
AUTO_PAY_PROCESSING = "auto-pay-processing"
JOB_HEALTH_CHECK = "job-health-check"
PAYMENT_ANALYTICS = "payment-analytics"

# 逻辑队列
PAYMENT_JOBS_QUEUE = "payment-jobs"
SYSTEM_JOBS_QUEUE = "system-jobs"
ANALYTICS_JOBS_QUEUE = "analytics-jobs"

# Cron 表达式
MONTHLY_1ST_6AM = "0 6 1 * *"
DAILY_8AM = "0 8 * * *"
DAILY_9AM = "0 9 * * *"
DAILY_10AM = "0 10 * * *"
DAILY_11PM = "0 23 * * *"
EVERY_5_MINUTES = "*/5 * * * *"

MINUTE_MS = 60 * 1000


class ScheduleConfig(ABC):
    """调度配置基类"""

    @abstractmethod
    def get_timezone(self) -> str:
        """调度未指定时区时使用的默认时区"""
        pass

    @abstractmethod
    def get_job_schedules(self) -> List[Dict[str, Any]]:
        """调度表，每个任务一行"""
        pass


class PaymentScheduleConfig(ScheduleConfig):
    """租金支付任务的默认调度"""

    def __init__(self, timezone: str = None):
        self._timezone = timezone or settings.timezone

    def get_timezone(self) -> str:
        return self._timezone

    def get_job_schedules(self) -> List[Dict[str, Any]]:
        return [
            {
                "slug": MONTHLY_RENT_PAYMENT,
                "cron": MONTHLY_1ST_6AM,
                "queue": PAYMENT_JOBS_QUEUE,
                "enabled": True,
                "timezone": self._timezone,
                "description": "Generate monthly rent payments for all active bookings",
                "retry": {"max_retries": 3, "retry_delay_ms": 5 * MINUTE_MS},
                "priority": 10,
            },
            {
                "slug": PAYMENT_REMINDER_EMAIL,
                "cron": DAILY_9AM,
                "queue": PAYMENT_JOBS_QUEUE,
                "enabled": True,
                "timezone": self._timezone,
                "description": "Send payment reminder emails to customers",
                "retry": {"max_retries": 2, "retry_delay_ms": 2 * MINUTE_MS},
                "priority": 5,
            },
            {
                "slug": OVERDUE_PAYMENT_NOTIFICATION,
                "cron": DAILY_10AM,
                "queue": PAYMENT_JOBS_QUEUE,
                "enabled": True,
                "timezone": self._timezone,
                "description": "Send overdue payment notifications to customers",
                "retry": {"max_retries": 2, "retry_delay_ms": 2 * MINUTE_MS},
                "priority": 5,
            },
            {
                "slug": AUTO_PAY_PROCESSING,
                "cron": DAILY_8AM,
                "queue": PAYMENT_JOBS_QUEUE,
                "enabled": True,
                "timezone": self._timezone,
                "description": "Process automatic payments for customers with auto-pay enabled",
                "retry": {"max_retries": 3, "retry_delay_ms": 10 * MINUTE_MS},
                "priority": 8,
            },
            {
                "slug": JOB_HEALTH_CHECK,
                "cron": EVERY_5_MINUTES,
                "queue": SYSTEM_JOBS_QUEUE,
                "enabled": True,
                "timezone": self._timezone,
                "description": "Monitor job system health and performance",
                "retry": {"max_retries": 1, "retry_delay_ms": 1 * MINUTE_MS},
                "priority": 1,
            },
            {
                "slug": PAYMENT_ANALYTICS,
                "cron": DAILY_11PM,
                "queue": ANALYTICS_JOBS_QUEUE,
                "enabled": True,
                "timezone": self._timezone,
                "description": "Generate daily payment analytics and reports",
                "retry": {"max_retries": 2, "retry_delay_ms": 5 * MINUTE_MS},
                "priority": 1,
            },
        ]


# 全局调度配置（可在 app.py 中替换）
schedule_config: ScheduleConfig = PaymentScheduleConfig()
