"""SQLAlchemy ORM 模型定义。

本模块定义支付任务引擎使用的所有数据表：
- 顾客、预订及顾客级支付设置
- 租金支付记录与全局支付配置
- 任务运行时写入的任务执行日志
"""
from typing import Dict, Any, List, Optional
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime,
    DECIMAL, ForeignKey, JSON, Index, text
)
from sqlalchemy.orm import declarative_base, relationship, validates
from datetime import datetime
from decimal import Decimal

from config.settings import local_now

# 所有模型共享的 SQLAlchemy 声明式基类
Base = declarative_base()

# 允许在 SQLAlchemy 2.0 下将旧式类型注解与 Column() 混用
Base.__allow_unmapped__ = True


# 支付状态
PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_OVERDUE = "overdue"
PAYMENT_CANCELLED = "cancelled"

PAYMENT_STATUSES = (
    PAYMENT_PENDING, PAYMENT_PROCESSING, PAYMENT_COMPLETED,
    PAYMENT_FAILED, PAYMENT_OVERDUE, PAYMENT_CANCELLED,
)

# 预订状态
BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_CANCELLED = "cancelled"
BOOKING_COMPLETED = "completed"

# 任务执行状态
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_CANCELLED = "cancelled"

JOB_STATUSES = (JOB_RUNNING, JOB_COMPLETED, JOB_FAILED, JOB_CANCELLED)


class Customer(Base):
    """顾客（租客）模型。

    Attributes:
        id: 主键。
        name: 邮件中使用的显示名称。
        email: 通知邮件的收件地址。
        phone: 联系电话（可选）。
        is_active: 停用的顾客仅保留历史记录。
        created_at: 创建时间。

    Relationships:
        bookings: 顾客的房间预订。
        payments: 向该顾客收取的支付记录。
        payment_settings: 顾客级支付设置（如有）。
    """
    __tablename__ = "customers"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    email: Optional[str] = Column(String(255))
    phone: Optional[str] = Column(String(20))
    is_active: bool = Column(Boolean, default=True)
    created_at: datetime = Column(DateTime, default=local_now)

    bookings: List["Booking"] = relationship("Booking", back_populates="customer")
    payments: List["Payment"] = relationship("Payment", back_populates="customer")
    payment_settings: Optional["CustomerPaymentSettings"] = relationship(
        "CustomerPaymentSettings", back_populates="customer", uselist=False
    )


class Booking(Base):
    """房间预订模型。

    预订在某月可计费的条件：已确认，且入住期覆盖当月的到期日。

    Attributes:
        id: 主键。
        customer_id: 预订人。
        property_name: 房间所属物业。
        room: 房间号。
        start_date: 入住首日。
        end_date: 入住末日。
        price: 月租金。
        status: pending / confirmed / cancelled / completed。
    """
    __tablename__ = "bookings"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    property_name: Optional[str] = Column(String(200))
    room: Optional[str] = Column(String(100))
    start_date: datetime = Column(DateTime, nullable=False)
    end_date: datetime = Column(DateTime, nullable=False)
    price: Decimal = Column(DECIMAL(10, 2), nullable=False, default=0)
    status: str = Column(String(20), default=BOOKING_PENDING, index=True)
    created_at: datetime = Column(DateTime, default=local_now)

    customer: "Customer" = relationship("Customer", back_populates="bookings")
    payments: List["Payment"] = relationship("Payment", back_populates="booking")


class PaymentConfig(Base):
    """全局支付系统配置。

    最新创建的一行即为当前配置。

    Attributes:
        is_enabled: 所有支付任务的总开关。
        start_date: 此时间之前任务保持空闲。
        monthly_payment_day: 每月租金到期日（1-31）。
        reminder_days: 到期前第几天发送提醒（0-30）。
        overdue_check_days: 逾期后第几天发送逾期通知（0-90）。
        excluded_customers: 所有任务都跳过的顾客ID。
        auto_pay_enabled: 自动扣款的全局开关。
        last_job_run_at: 租金生成任务最近一次完成的时间。
    """
    __tablename__ = "payment_configs"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    is_enabled: bool = Column(Boolean, default=False)
    start_date: Optional[datetime] = Column(DateTime)
    monthly_payment_day: int = Column(Integer, default=1, nullable=False)
    reminder_days: List[int] = Column(JSON, default=lambda: [7, 3, 1])
    overdue_check_days: List[int] = Column(JSON, default=lambda: [1, 3, 7, 15, 30])
    excluded_customers: List[int] = Column(JSON, default=list)
    auto_pay_enabled: bool = Column(Boolean, default=False)
    notes: Optional[str] = Column(Text)
    last_job_run_at: Optional[datetime] = Column(DateTime)
    created_at: datetime = Column(DateTime, default=local_now, index=True)
    updated_at: datetime = Column(DateTime, default=local_now, onupdate=local_now)

    @validates("monthly_payment_day")
    def _validate_payment_day(self, key, value):
        if value is not None and not 1 <= value <= 31:
            raise ValueError("Monthly payment day must be between 1 and 31")
        return value

    @validates("reminder_days", "overdue_check_days")
    def _validate_day_offsets(self, key, value):
        limit = 30 if key == "reminder_days" else 90
        for day in value or []:
            if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= limit:
                raise ValueError(f"{key} must contain integers between 0 and {limit}")
        return value


class CustomerPaymentSettings(Base):
    """顾客级支付设置，覆盖全局配置。

    Attributes:
        customer_id: 所属顾客（每位顾客一行）。
        notifications_enabled: 是否允许发送提醒及逾期邮件。
        excluded_from_system: 所有任务均跳过该顾客。
        custom_reminder_days: 非空时替代全局提醒天数。
        auto_pay_enabled: 顾客已开通自动扣款。
        auto_pay_payment_method: 已保存的支付方式标识。
        auto_pay_day: 每月自动扣款日（1-28）。
        auto_pay_max_amount: 超过该金额的账单不会自动扣款。
        auto_pay_notifications: 是否发送自动扣款成功/失败邮件。
    """
    __tablename__ = "customer_payment_settings"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False, unique=True)
    notifications_enabled: bool = Column(Boolean, default=True)
    excluded_from_system: bool = Column(Boolean, default=False)
    custom_reminder_days: List[int] = Column(JSON, default=list)
    auto_pay_enabled: bool = Column(Boolean, default=False, index=True)
    auto_pay_payment_method: Optional[str] = Column(String(100))
    auto_pay_day: Optional[int] = Column(Integer)
    auto_pay_max_amount: Optional[Decimal] = Column(DECIMAL(10, 2))
    auto_pay_notifications: bool = Column(Boolean, default=True)
    notes: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=local_now)
    updated_at: datetime = Column(DateTime, default=local_now, onupdate=local_now)

    customer: "Customer" = relationship("Customer", back_populates="payment_settings")

    @validates("auto_pay_day")
    def _validate_auto_pay_day(self, key, value):
        # 29-31 日并非每个月都有
        if value is not None and not 1 <= value <= 28:
            raise ValueError("Auto-pay day must be between 1 and 28")
        return value


class Payment(Base):
    """支付记录。

    同一（顾客, 预订, 账期）最多只能存在一条未取消的支付记录，
    由下方的部分唯一索引在数据库层面保证。

    Attributes:
        customer_id: 付款顾客。
        booking_id: 所属预订。
        billing_period: 账期月份，``YYYY-MM``。
        amount: 应付金额。
        due_date: 到期日（当天零点）。
        status: pending / processing / completed / failed / overdue / cancelled。
        payment_type: rent / food / deposit / other。
        booking_snapshot: 创建时记录的预订条款。
        last_reminder_sent_at: 最近一次提醒邮件时间，用于去重。
        last_overdue_notice_at: 最近一次逾期邮件时间，用于去重。
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index(
            "uq_payments_active_period",
            "customer_id", "booking_id", "billing_period",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    customer_id: int = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    booking_id: Optional[int] = Column(Integer, ForeignKey("bookings.id"))
    billing_period: Optional[str] = Column(String(7))
    amount: Decimal = Column(DECIMAL(10, 2), nullable=False)
    due_date: datetime = Column(DateTime, nullable=False, index=True)
    status: str = Column(String(20), default=PAYMENT_PENDING, nullable=False, index=True)
    payment_type: str = Column(String(20), default="rent", nullable=False)
    auto_pay_enabled: bool = Column(Boolean, default=False)
    payment_method: Optional[str] = Column(String(100))
    transaction_reference: Optional[str] = Column(String(100))
    notes: Optional[str] = Column(Text)
    booking_snapshot: Dict[str, Any] = Column(JSON, default=dict)
    last_reminder_sent_at: Optional[datetime] = Column(DateTime)
    reminder_count: int = Column(Integer, default=0)
    last_overdue_notice_at: Optional[datetime] = Column(DateTime)
    overdue_notice_count: int = Column(Integer, default=0)
    processing_started_at: Optional[datetime] = Column(DateTime)
    completed_at: Optional[datetime] = Column(DateTime)
    created_at: datetime = Column(DateTime, default=local_now, index=True)
    updated_at: datetime = Column(DateTime, default=local_now, onupdate=local_now)

    customer: "Customer" = relationship("Customer", back_populates="payments")
    booking: Optional["Booking"] = relationship("Booking", back_populates="payments")


class JobExecutionLog(Base):
    """任务执行日志，每次任务调用一行。

    任务开始时创建，结束时更新一次。
    """
    __tablename__ = "job_execution_logs"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    job_name: str = Column(String(100), nullable=False, index=True)
    job_id: str = Column(String(150), nullable=False, unique=True)
    start_time: datetime = Column(DateTime, nullable=False, index=True)
    end_time: Optional[datetime] = Column(DateTime)
    duration_ms: Optional[int] = Column(Integer)
    status: str = Column(String(20), default=JOB_RUNNING, nullable=False, index=True)
    success: bool = Column(Boolean, default=False)
    error_message: Optional[str] = Column(Text)
    retry_count: int = Column(Integer, default=0)
    max_retries: int = Column(Integer, default=0)
    input: Dict[str, Any] = Column(JSON, default=dict)
    output: Dict[str, Any] = Column(JSON, default=dict)
    queue: Optional[str] = Column(String(50), index=True)
    priority: int = Column(Integer, default=0)
    created_at: datetime = Column(DateTime, default=local_now)
    updated_at: datetime = Column(DateTime, default=local_now, onupdate=local_now)

    def __repr__(self):
        return (
            f"<JobExecutionLog(job_name='{self.job_name}', status='{self.status}', "
            f"duration={self.duration_ms}ms)>"
        )
