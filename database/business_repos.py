"""业务记录仓库 —— 支付记录的数据访问。

支付记录是租金任务产生的交易数据。可能发生竞争的状态变更
（租金创建、自动扣款认领）在此处由数据库保证原子性。
"""
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from loguru import logger

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import (
    Payment, PAYMENT_PENDING, PAYMENT_PROCESSING, PAYMENT_COMPLETED,
    PAYMENT_CANCELLED
)


def _append_note(existing: Optional[str], note: Optional[str]) -> Optional[str]:
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}\n{note}"


class PaymentRepository(BaseCRUD):
    """支付记录仓库。

    返回支付记录的查询会预先加载顾客和预订，会话关闭后记录仍可使用。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, payment_id: int,
            session: Optional[Session] = None) -> Optional[Payment]:
        def _query(sess):
            return sess.query(Payment).options(
                joinedload(Payment.customer), joinedload(Payment.booking)
            ).filter(Payment.id == payment_id).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def find_active_for_period(self, customer_id: int, booking_id: int,
                               billing_period: str,
                               session: Optional[Session] = None
                               ) -> Optional[Payment]:
        """获取某账期未取消的支付记录（如有）。"""
        def _query(sess):
            return sess.query(Payment).filter(
                Payment.customer_id == customer_id,
                Payment.booking_id == booking_id,
                Payment.billing_period == billing_period,
                Payment.status != PAYMENT_CANCELLED
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def create_rent_payment(self, customer_id: int, booking_id: int,
                            billing_period: str, amount, due_date: datetime,
                            booking_snapshot: Optional[Dict[str, Any]] = None,
                            notes: Optional[str] = None
                            ) -> Tuple[Payment, bool]:
        """为账期创建待支付租金记录，且只创建一次。

        未取消记录上的（顾客, 预订, 账期）唯一索引保证重复运行和并发调用
        都是安全的：冲突的插入会回滚，并返回已存在的记录。

        Args:
            customer_id: 被收费的顾客。
            booking_id: 被收费的预订。
            billing_period: ``YYYY-MM``。
            amount: 租金金额。
            due_date: 该账期的到期日。
            booking_snapshot: 创建时记录的预订条款。
            notes: 备注。

        Returns:
            ``(payment, created)``，该账期已有记录时 ``created`` 为 False。
        """
        with self._get_session() as session:
            existing = self.find_active_for_period(
                customer_id, booking_id, billing_period, session=session
            )
            if existing is not None:
                return existing, False

            payment = Payment(
                customer_id=customer_id,
                booking_id=booking_id,
                billing_period=billing_period,
                amount=amount,
                due_date=due_date,
                status=PAYMENT_PENDING,
                payment_type="rent",
                booking_snapshot=booking_snapshot or {},
                notes=notes
            )
            session.add(payment)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(
                    f"Rent payment for customer {customer_id} booking {booking_id} "
                    f"period {billing_period} created concurrently, reusing it"
                )
                existing = self.find_active_for_period(
                    customer_id, booking_id, billing_period, session=session
                )
                if existing is None:
                    raise
                return existing, False

            session.refresh(payment)
            return payment, True

    def find_pending_rent(self, due_from: Optional[datetime] = None,
                          due_to: Optional[datetime] = None,
                          customer_id: Optional[int] = None,
                          session: Optional[Session] = None) -> List[Payment]:
        """待支付的租金记录，可按到期日筛选。

        Args:
            due_from: ``due_date`` 下限（含）。
            due_to: ``due_date`` 上限（含）。
            customer_id: 仅查询指定顾客。

        Returns:
            按到期日排序的支付记录。
        """
        def _query(sess):
            query = sess.query(Payment).options(
                joinedload(Payment.customer), joinedload(Payment.booking)
            ).filter(
                Payment.status == PAYMENT_PENDING,
                Payment.payment_type == "rent"
            )
            if due_from is not None:
                query = query.filter(Payment.due_date >= due_from)
            if due_to is not None:
                query = query.filter(Payment.due_date <= due_to)
            if customer_id is not None:
                query = query.filter(Payment.customer_id == customer_id)
            return query.order_by(Payment.due_date, Payment.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def find_overdue_pending(self, now: datetime,
                             session: Optional[Session] = None) -> List[Payment]:
        """已过到期日的待支付租金记录。"""
        def _query(sess):
            return sess.query(Payment).options(
                joinedload(Payment.customer), joinedload(Payment.booking)
            ).filter(
                Payment.status == PAYMENT_PENDING,
                Payment.payment_type == "rent",
                Payment.due_date < now
            ).order_by(Payment.due_date, Payment.id).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def claim_for_processing(self, payment_id: int, now: datetime) -> bool:
        """原子地将支付记录从 pending 改为 processing。

        Returns:
            认领成功返回 True；记录已不是 pending 时返回 False。
        """
        with self._get_session() as session:
            updated = session.query(Payment).filter(
                Payment.id == payment_id,
                Payment.status == PAYMENT_PENDING
            ).update(
                {
                    Payment.status: PAYMENT_PROCESSING,
                    Payment.processing_started_at: now,
                    Payment.updated_at: now,
                },
                synchronize_session=False
            )
            session.commit()
            return updated == 1

    def complete(self, payment_id: int, now: datetime,
                 payment_method: Optional[str] = None,
                 transaction_reference: Optional[str] = None,
                 note: Optional[str] = None) -> Optional[Payment]:
        """将处理中的支付记录标记为已完成。"""
        with self._get_session() as session:
            payment = session.get(Payment, payment_id)
            if payment is None:
                return None
            payment.status = PAYMENT_COMPLETED
            payment.completed_at = now
            payment.auto_pay_enabled = True
            payment.payment_method = payment_method
            payment.transaction_reference = transaction_reference
            payment.notes = _append_note(payment.notes, note)
            session.commit()
            session.refresh(payment)
            return payment

    def revert_to_pending(self, payment_id: int,
                          note: Optional[str] = None) -> bool:
        """扣款失败后将处理中的记录恢复为 pending。

        Returns:
            恢复成功返回 True。
        """
        with self._get_session() as session:
            payment = session.query(Payment).filter(
                Payment.id == payment_id,
                Payment.status == PAYMENT_PROCESSING
            ).first()
            if payment is None:
                return False
            payment.status = PAYMENT_PENDING
            payment.auto_pay_enabled = False
            payment.processing_started_at = None
            payment.notes = _append_note(payment.notes, note)
            session.commit()
            return True

    def mark_reminder_sent(self, payment_id: int, sent_at: datetime,
                           note: Optional[str] = None) -> Optional[Payment]:
        """在支付记录上登记一次提醒邮件。"""
        with self._get_session() as session:
            payment = session.get(Payment, payment_id)
            if payment is None:
                return None
            payment.last_reminder_sent_at = sent_at
            payment.reminder_count = (payment.reminder_count or 0) + 1
            payment.notes = _append_note(payment.notes, note)
            session.commit()
            session.refresh(payment)
            return payment

    def mark_overdue_notice_sent(self, payment_id: int, sent_at: datetime,
                                 note: Optional[str] = None) -> Optional[Payment]:
        """在支付记录上登记一次逾期通知邮件。"""
        with self._get_session() as session:
            payment = session.get(Payment, payment_id)
            if payment is None:
                return None
            payment.last_overdue_notice_at = sent_at
            payment.overdue_notice_count = (payment.overdue_notice_count or 0) + 1
            payment.notes = _append_note(payment.notes, note)
            session.commit()
            session.refresh(payment)
            return payment

    def cancel(self, payment_id: int, note: Optional[str] = None
               ) -> Optional[Payment]:
        """取消支付记录，释放其账期以便重新收费。"""
        with self._get_session() as session:
            payment = session.get(Payment, payment_id)
            if payment is None:
                return None
            payment.status = PAYMENT_CANCELLED
            payment.notes = _append_note(payment.notes, note)
            session.commit()
            session.refresh(payment)
            return payment

    def created_between(self, start: datetime, end: datetime,
                        session: Optional[Session] = None) -> List[Payment]:
        """创建时间在 ``[start, end]`` 内的支付记录。"""
        def _query(sess):
            return sess.query(Payment).filter(
                Payment.created_at >= start,
                Payment.created_at <= end
            ).order_by(Payment.created_at).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def count_by_status(self, session: Optional[Session] = None) -> Dict[str, int]:
        """按状态统计支付记录数量。"""
        def _query(sess):
            rows = sess.query(
                Payment.status, func.count(Payment.id)
            ).group_by(Payment.status).all()
            return {status: count for status, count in rows}

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
