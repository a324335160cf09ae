"""实体仓库 —— 基础记录的数据访问。

管理顾客、预订、顾客级支付设置以及全局支付配置。
每个仓库继承 BaseCRUD 获得通用操作，并补充领域相关的查询。
"""
from typing import Optional, List, Dict, Iterable
from datetime import datetime
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import (
    Customer, Booking, CustomerPaymentSettings, PaymentConfig,
    BOOKING_CONFIRMED
)


class CustomerRepository(BaseCRUD):
    """顾客仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, name: str, email: Optional[str] = None,
            phone: Optional[str] = None,
            session: Optional[Session] = None) -> Customer:
        """创建顾客。

        Args:
            name: 显示名称。
            email: 通知邮箱。
            phone: 联系电话。
            session: 外部会话（可选）。

        Returns:
            新建的 Customer 对象。
        """
        return self.create(
            Customer, session=session, name=name, email=email, phone=phone
        )

    def get(self, customer_id: int,
            session: Optional[Session] = None) -> Optional[Customer]:
        return self.get_by_id(Customer, customer_id, session=session)

    def search(self, keyword: str,
               session: Optional[Session] = None) -> List[Customer]:
        """按名称或邮箱搜索顾客。

        Args:
            keyword: 搜索关键词。

        Returns:
            匹配的顾客列表。
        """
        def _query(sess):
            return sess.query(Customer).filter(
                or_(
                    Customer.name.contains(keyword),
                    Customer.email.contains(keyword)
                )
            ).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class BookingRepository(BaseCRUD):
    """房间预订仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def add(self, customer_id: int, start_date: datetime, end_date: datetime,
            price, status: str = BOOKING_CONFIRMED,
            property_name: Optional[str] = None, room: Optional[str] = None,
            session: Optional[Session] = None) -> Booking:
        """创建预订。

        Args:
            customer_id: 预订人。
            start_date: 入住首日。
            end_date: 入住末日。
            price: 月租金。
            status: 初始预订状态。
            property_name: 物业名称。
            room: 房间号。

        Returns:
            新建的 Booking 对象。
        """
        return self.create(
            Booking, session=session,
            customer_id=customer_id,
            start_date=self._parse_date(start_date, "Start date"),
            end_date=self._parse_date(end_date, "End date"),
            price=price, status=status,
            property_name=property_name, room=room
        )

    def find_active_on(self, moment: datetime,
                       session: Optional[Session] = None) -> List[Booking]:
        """入住期覆盖 ``moment`` 的已确认预订。

        预订的顾客会被预先加载。

        Args:
            moment: 入住期必须覆盖的时间点（含边界）。

        Returns:
            按 id 排序的预订列表。
        """
        def _query(sess):
            return sess.query(Booking).options(
                joinedload(Booking.customer)
            ).filter(
                Booking.status == BOOKING_CONFIRMED,
                Booking.start_date <= moment,
                Booking.end_date >= moment
            ).order_by(Booking.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class PaymentSettingsRepository(BaseCRUD):
    """顾客级支付设置仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_for_customer(self, customer_id: int,
                         session: Optional[Session] = None
                         ) -> Optional[CustomerPaymentSettings]:
        """获取单个顾客的设置，没有则返回 None。"""
        def _query(sess):
            return sess.query(CustomerPaymentSettings).filter(
                CustomerPaymentSettings.customer_id == customer_id
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def get_map(self, customer_ids: Iterable[int],
                session: Optional[Session] = None
                ) -> Dict[int, CustomerPaymentSettings]:
        """批量获取设置，以顾客ID为键。

        没有设置的顾客不会出现在结果中。
        """
        ids = list(set(customer_ids))
        if not ids:
            return {}

        def _query(sess):
            rows = sess.query(CustomerPaymentSettings).filter(
                CustomerPaymentSettings.customer_id.in_(ids)
            ).all()
            return {row.customer_id: row for row in rows}

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def upsert(self, customer_id: int,
               session: Optional[Session] = None,
               **fields) -> CustomerPaymentSettings:
        """创建或更新顾客的设置行。

        Args:
            customer_id: 所属顾客。
            **fields: 要写入的字段值。

        Returns:
            保存后的设置。
        """
        def _do(sess):
            row = sess.query(CustomerPaymentSettings).filter(
                CustomerPaymentSettings.customer_id == customer_id
            ).first()
            if row is None:
                row = CustomerPaymentSettings(customer_id=customer_id)
                sess.add(row)
            for field, value in fields.items():
                setattr(row, field, value)
            sess.flush()
            return row

        if session:
            return _do(session)

        with self._get_session() as sess:
            row = _do(sess)
            sess.commit()
            sess.refresh(row)
            return row

    def get_auto_pay_customers(self, customer_id: Optional[int] = None,
                               session: Optional[Session] = None
                               ) -> List[CustomerPaymentSettings]:
        """已开通自动扣款的设置行，顾客预先加载。

        Args:
            customer_id: 仅查询指定顾客（可选）。
        """
        def _query(sess):
            query = sess.query(CustomerPaymentSettings).options(
                joinedload(CustomerPaymentSettings.customer)
            ).filter(CustomerPaymentSettings.auto_pay_enabled.is_(True))
            if customer_id is not None:
                query = query.filter(
                    CustomerPaymentSettings.customer_id == customer_id
                )
            return query.order_by(CustomerPaymentSettings.customer_id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)


class PaymentConfigRepository(BaseCRUD):
    """全局支付配置仓库。

    配置只追加不修改：每次保存写入新行，最新创建的一行即为当前配置。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_current(self, session: Optional[Session] = None
                    ) -> Optional[PaymentConfig]:
        """获取最新配置行，从未保存过则返回 None。"""
        def _query(sess):
            return sess.query(PaymentConfig).order_by(
                PaymentConfig.created_at.desc(), PaymentConfig.id.desc()
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def save(self, session: Optional[Session] = None,
             **fields) -> PaymentConfig:
        """保存一行新配置并使其成为当前配置。

        未指定的字段沿用当前配置的值。
        """
        carried = (
            "is_enabled", "start_date", "monthly_payment_day",
            "reminder_days", "overdue_check_days", "excluded_customers",
            "auto_pay_enabled", "notes",
        )

        def _do(sess):
            current = self.get_current(session=sess)
            values = {}
            if current is not None:
                values = {name: getattr(current, name) for name in carried}
                values["last_job_run_at"] = current.last_job_run_at
            values.update(fields)
            config = PaymentConfig(**values)
            sess.add(config)
            sess.flush()
            return config

        if session:
            return _do(session)

        with self._get_session() as sess:
            config = _do(sess)
            sess.commit()
            sess.refresh(config)
            return config

    def mark_job_run(self, run_at: datetime,
                     session: Optional[Session] = None) -> Optional[PaymentConfig]:
        """在当前配置上记录 ``last_job_run_at``。"""
        def _do(sess):
            current = self.get_current(session=sess)
            if current is None:
                return None
            current.last_job_run_at = run_at
            sess.flush()
            return current

        if session:
            return _do(session)

        with self._get_session() as sess:
            config = _do(sess)
            sess.commit()
            return config
