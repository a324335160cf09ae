"""任务公共类型

包含各任务共用的运行结果、运行上下文、输入参数、枚举和异常。
"""
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from config.settings import Settings, settings as default_settings

if TYPE_CHECKING:
    from database import DatabaseManager
    from database.models import PaymentConfig
    from notifications.base import EmailDispatcher
    from jobs.execution_log import JobLogger
    from jobs.gateway import PaymentGateway
    from jobs.scheduling import ScheduleRegistry


class JobError(Exception):
    """任务异常基类"""


class ConfigurationError(JobError):
    """必需的配置缺失或无效"""


class ChargeError(JobError):
    """支付网关拒绝或未能完成扣款"""


class DispatchTimeout(JobError):
    """外部调用（邮件、扣款）超时"""


class HealthLevel(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _HEALTH_RANK[self]


_HEALTH_RANK = {
    HealthLevel.HEALTHY: 0,
    HealthLevel.WARNING: 1,
    HealthLevel.CRITICAL: 2,
}


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReportType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


def to_jsonable(value: Any) -> Any:
    """将值转换为 JSON 日志字段可存储的形式"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if hasattr(value, "__dataclass_fields__"):
        return to_jsonable(asdict(value))
    return value


@dataclass
class JobResult:
    """单次任务运行的结果

    Attributes:
        success: 仅在任务级失败时为 False。
        message: 可读的结果摘要。
        data: 任务自定义输出。
        records_processed: 成功处理的记录数。
        records_failed: 单条处理失败的记录数。
        execution_time_ms: 运行耗时。
        error: 任务级失败的错误信息。
    """
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    records_processed: int = 0
    records_failed: int = 0
    execution_time_ms: int = 0
    error: Optional[str] = None

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None,
           records_processed: int = 0, records_failed: int = 0) -> "JobResult":
        return cls(
            success=True, message=message, data=data or {},
            records_processed=records_processed,
            records_failed=records_failed
        )

    @classmethod
    def fail(cls, message: str, error: Any = None,
             data: Optional[Dict[str, Any]] = None,
             records_processed: int = 0, records_failed: int = 0) -> "JobResult":
        return cls(
            success=False, message=message, data=data or {},
            records_processed=records_processed,
            records_failed=records_failed,
            error=str(error) if error is not None else message
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "data": to_jsonable(self.data),
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "execution_time_ms": self.execution_time_ms,
            "error": self.error,
        }


@dataclass
class JobContext:
    """任务运行所需的全部外部依赖

    ``now`` 固定本次运行的时钟，不设置时使用业务时区的当前时间。
    ``payment_config`` 注入配置快照，代替从数据库读取当前配置。
    """
    db: "DatabaseManager"
    email: Optional["EmailDispatcher"] = None
    gateway: Optional["PaymentGateway"] = None
    job_logger: Optional["JobLogger"] = None
    schedules: Optional["ScheduleRegistry"] = None
    settings: Settings = field(default_factory=lambda: default_settings)
    now: Optional[datetime] = None
    job_id: Optional[str] = None
    retry_count: int = 0
    payment_config: Optional["PaymentConfig"] = None

    def clock(self) -> datetime:
        return self.now or self.settings.now()


def _pick(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """解析 datetime、date 或 ISO 字符串，None 原样返回"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", ""))
    raise ValueError(f"Unsupported datetime value: {value!r}")


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


@dataclass
class RentGenerationInput:
    month: Optional[int] = None
    year: Optional[int] = None
    force_run: bool = False

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "RentGenerationInput":
        payload = payload or {}
        return cls(
            month=_optional_int(_pick(payload, "month")),
            year=_optional_int(_pick(payload, "year")),
            force_run=bool(_pick(payload, "force_run", "forceRun")),
        )


@dataclass
class ReminderEmailInput:
    reminder_day: Optional[int] = None
    due_date: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "ReminderEmailInput":
        payload = payload or {}
        return cls(
            reminder_day=_optional_int(_pick(payload, "reminder_day", "reminderDay")),
            due_date=parse_datetime(_pick(payload, "due_date", "dueDate")),
        )


@dataclass
class OverdueNotificationInput:
    overdue_day: Optional[int] = None
    due_date: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "OverdueNotificationInput":
        payload = payload or {}
        return cls(
            overdue_day=_optional_int(_pick(payload, "overdue_day", "overdueDay")),
            due_date=parse_datetime(_pick(payload, "due_date", "dueDate")),
        )


@dataclass
class AutoPayInput:
    customer_id: Optional[int] = None
    force_run: bool = False

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "AutoPayInput":
        payload = payload or {}
        return cls(
            customer_id=_optional_int(_pick(payload, "customer_id", "customerId")),
            force_run=bool(_pick(payload, "force_run", "forceRun")),
        )


@dataclass
class AnalyticsInput:
    report_date: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "AnalyticsInput":
        payload = payload or {}
        return cls(
            report_date=parse_datetime(_pick(payload, "report_date", "reportDate")),
        )


@dataclass
class FailedRecord:
    """任务 ``failed_details`` 中的一条记录"""
    error: str
    payment_id: Optional[int] = None
    customer_id: Optional[int] = None
    booking_id: Optional[int] = None


def failed_details(records: List[FailedRecord]) -> List[Dict[str, Any]]:
    return [
        {k: v for k, v in asdict(r).items() if v is not None}
        for r in records
    ]
