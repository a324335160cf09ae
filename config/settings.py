"""全局配置管理

所有配置项均可通过 .env 文件或环境变量覆盖，运行时自动加载到下方的
``settings`` 实例。

使用方式：
    1. 运行 python scripts/setup_env.py 生成 .env 文件
    2. 或参照本文件中的字段手动创建 .env 文件
"""
from datetime import datetime
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置，所有字段都可以通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/payments.db"

    # ========== 调度 ==========
    timezone: str = "Asia/Kolkata"
    misfire_grace_seconds: int = 300

    # ========== 日志 ==========
    log_level: str = "INFO"
    log_file: str = ""
    log_retention_days: int = 90

    # ========== 邮件（SMTP） ==========
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "payments@localhost"
    email_timeout_seconds: float = 10.0
    alert_email: str = ""

    # ========== 支付处理 ==========
    charge_timeout_seconds: float = 30.0
    currency_symbol: str = "₹"
    reminder_dedup_days: int = 2
    reminder_lookahead_days: int = 30
    auto_pay_max_days_overdue: int = 7

    # ========== 健康监控 ==========
    job_max_execution_minutes: int = 30
    health_min_success_rate: float = 0.8
    health_max_running_jobs: int = 10
    queue_max_running: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    def now(self) -> datetime:
        """业务时区的当前时间（不带 tzinfo 的本地时间）"""
        return datetime.now(ZoneInfo(self.timezone)).replace(tzinfo=None)


# 全局配置实例
settings = Settings()


def local_now() -> datetime:
    return settings.now()
