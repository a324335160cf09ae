"""逾期付款通知任务

在配置的各逾期检查日向租金逾期的顾客发送通知，措辞随逾期天数逐级加重。
"""
from datetime import datetime
from typing import Dict, List

from loguru import logger

from config.schedules import OVERDUE_PAYMENT_NOTIFICATION
from database.models import PaymentConfig
from notifications.templates import render_overdue_notice
from .base import PaymentJob
from .types import (
    FailedRecord, JobContext, JobResult, OverdueNotificationInput, failed_details
)
from .utils import (
    days_overdue, is_customer_excluded, is_overdue_check_day,
    notifications_enabled, resolve_overdue_days, sent_within_window,
    urgency_for_days_overdue
)


class OverdueNotificationJob(PaymentJob):
    slug = OVERDUE_PAYMENT_NOTIFICATION
    description = "Overdue payment notification"
    input_type = OverdueNotificationInput

    def process(self, ctx: JobContext, params: OverdueNotificationInput,
                config: PaymentConfig, now: datetime) -> JobResult:
        payments = ctx.db.payments.find_overdue_pending(now)
        if not payments:
            return JobResult.ok(
                "No overdue payments found",
                {"overdue_day": params.overdue_day, "due_date": params.due_date,
                 "overdue_payments": 0},
            )

        overdue_days = resolve_overdue_days(config)
        customer_settings = self.load_customer_settings(ctx, [p.customer_id for p in payments])

        sent: List[Dict] = []
        skipped = 0
        failures: List[FailedRecord] = []

        for payment in payments:
            try:
                settings_row = customer_settings.get(payment.customer_id)
                if is_customer_excluded(config, payment.customer_id, settings_row):
                    skipped += 1
                    continue
                if not notifications_enabled(settings_row):
                    skipped += 1
                    continue

                if not is_overdue_check_day(payment.due_date, overdue_days, now):
                    skipped += 1
                    continue

                if sent_within_window(payment.last_overdue_notice_at, now,
                                      ctx.settings.reminder_dedup_days):
                    logger.debug(f"Overdue notification already sent recently for payment {payment.id}")
                    skipped += 1
                    continue

                customer = payment.customer
                if customer is None:
                    failures.append(FailedRecord(
                        error="Customer not found",
                        payment_id=payment.id, customer_id=payment.customer_id
                    ))
                    continue

                overdue = days_overdue(payment.due_date, now)
                urgency = urgency_for_days_overdue(overdue)
                rendered = render_overdue_notice(
                    customer_name=customer.name,
                    amount=payment.amount,
                    due_date=payment.due_date,
                    days_overdue=overdue,
                    urgency=urgency.value,
                    booking=self.booking_details(payment),
                    currency=ctx.settings.currency_symbol,
                )
                self.send_email(ctx, customer.email, rendered,
                                job=self.slug, payment_id=payment.id)

                ctx.db.payments.mark_overdue_notice_sent(
                    payment.id, now,
                    note=f"Overdue notification sent on {now.isoformat()}"
                )
                sent.append({
                    "payment_id": payment.id,
                    "customer_id": payment.customer_id,
                    "days_overdue": overdue,
                    "urgency_level": urgency.value,
                })
                logger.info(
                    f"Sent overdue notification for payment {payment.id} to {customer.email} "
                    f"({overdue} days overdue)"
                )
            except Exception as e:
                logger.error(f"Error processing overdue payment {payment.id}: {e}")
                failures.append(FailedRecord(
                    error=str(e), payment_id=payment.id, customer_id=payment.customer_id
                ))

        return JobResult.ok(
            f"Overdue payment notifications completed. Sent: {len(sent)}, Failed: {len(failures)}",
            {
                "overdue_day": params.overdue_day,
                "due_date": params.due_date,
                "overdue_payments": len(payments),
                "sent_notifications": len(sent),
                "sent_details": sent,
                "skipped": skipped,
                "failed_notifications": len(failures),
                "failed_details": failed_details(failures),
            },
            records_processed=len(sent),
            records_failed=len(failures),
        )
