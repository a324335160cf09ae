"""数据库管理器 —— 统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.customers``、``db.payments``、``db.job_logs`` 等属性直接访问子仓库，
   返回 ORM 对象，适合需要精细控制的场景。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``get_payment_config()``、``get_payment_summary()``），
   返回字典/基本类型，适合命令行和报表。
"""
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import (
    CustomerRepository, BookingRepository,
    PaymentSettingsRepository, PaymentConfigRepository
)
from .business_repos import PaymentRepository
from .system_repos import JobLogRepository
from .models import Payment, PaymentConfig


class DatabaseManager:
    """数据库管理器 —— 统一门面。

    Attributes:
        conn: 数据库连接管理器。
        customers: 顾客仓库。
        bookings: 预订仓库。
        payment_settings: 顾客级支付设置仓库。
        payment_configs: 全局支付配置仓库。
        payments: 支付记录仓库。
        job_logs: 任务执行日志仓库。

    Example::

        db = DatabaseManager("sqlite:///data/payments.db")
        db.create_tables()

        # 通过子仓库访问（返回 ORM 对象）
        config = db.payment_configs.get_current()

        # 通过便捷方法访问（返回字典）
        summary = db.get_payment_summary()
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.customers = CustomerRepository(self.conn)
        self.bookings = BookingRepository(self.conn)
        self.payment_settings = PaymentSettingsRepository(self.conn)
        self.payment_configs = PaymentConfigRepository(self.conn)

        # 业务记录仓库
        self.payments = PaymentRepository(self.conn)

        # 系统数据仓库
        self.job_logs = JobLogRepository(self.conn)

    # ================================================================
    # 基础设施
    # ================================================================

    def create_tables(self) -> None:
        """创建所有表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取新的数据库会话。"""
        return self.conn.get_session()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎。"""
        return self.conn.engine

    def close(self) -> None:
        """释放引擎及全部连接。"""
        self.conn.close()

    # ================================================================
    # 便捷方法（写入）
    # ================================================================

    def get_current_payment_config(self) -> Optional[PaymentConfig]:
        """当前全局支付配置（ORM 对象）。"""
        return self.payment_configs.get_current()

    def save_payment_config(self, **fields) -> Dict[str, Any]:
        """保存新的支付配置。

        Args:
            **fields: PaymentConfig 字段，未指定的沿用当前配置。

        Returns:
            保存后的配置字典。
        """
        return self._config_to_dict(self.payment_configs.save(**fields))

    # ================================================================
    # 便捷方法（查询）
    # ================================================================

    def get_payment_config(self) -> Optional[Dict[str, Any]]:
        """以字典形式返回当前支付配置，没有则返回 None。"""
        config = self.payment_configs.get_current()
        if config is None:
            return None
        return self._config_to_dict(config)

    def get_payment_summary(self) -> Dict[str, Any]:
        """按状态统计支付记录。

        Returns:
            ``{"total": int, "by_status": {status: count}}``。
        """
        by_status = self.payments.count_by_status()
        return {"total": sum(by_status.values()), "by_status": by_status}

    def get_pending_payments(self, customer_id: Optional[int] = None
                             ) -> List[Dict[str, Any]]:
        """以字典形式返回待支付租金记录，按到期日升序。"""
        return [
            self._payment_to_dict(p)
            for p in self.payments.find_pending_rent(customer_id=customer_id)
        ]

    @staticmethod
    def _config_to_dict(config: PaymentConfig) -> Dict[str, Any]:
        return {
            "id": config.id,
            "is_enabled": bool(config.is_enabled),
            "start_date": config.start_date.isoformat() if config.start_date else None,
            "monthly_payment_day": config.monthly_payment_day,
            "reminder_days": list(config.reminder_days or []),
            "overdue_check_days": list(config.overdue_check_days or []),
            "excluded_customers": list(config.excluded_customers or []),
            "auto_pay_enabled": bool(config.auto_pay_enabled),
            "last_job_run_at": (
                config.last_job_run_at.isoformat() if config.last_job_run_at else None
            ),
        }

    @staticmethod
    def _payment_to_dict(payment: Payment) -> Dict[str, Any]:
        return {
            "id": payment.id,
            "customer_id": payment.customer_id,
            "customer_name": payment.customer.name if payment.customer else None,
            "booking_id": payment.booking_id,
            "billing_period": payment.billing_period,
            "amount": float(payment.amount) if payment.amount is not None else 0,
            "due_date": payment.due_date.isoformat() if payment.due_date else None,
            "status": payment.status,
            "reminder_count": payment.reminder_count or 0,
            "overdue_notice_count": payment.overdue_notice_count or 0,
        }
