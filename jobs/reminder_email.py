"""付款提醒邮件任务

在配置的各提醒日向顾客发送租金到期前的提醒，每个去重窗口内最多一次。
"""
from datetime import datetime, timedelta
from typing import List

from loguru import logger

from config.schedules import PAYMENT_REMINDER_EMAIL
from database.models import PaymentConfig
from notifications.templates import render_rent_reminder
from .base import PaymentJob
from .types import FailedRecord, JobContext, JobResult, ReminderEmailInput, failed_details
from .utils import (
    days_until_due, is_customer_excluded, is_reminder_day,
    notifications_enabled, resolve_reminder_days, sent_within_window
)


class ReminderEmailJob(PaymentJob):
    slug = PAYMENT_REMINDER_EMAIL
    description = "Payment reminder email"
    input_type = ReminderEmailInput

    def process(self, ctx: JobContext, params: ReminderEmailInput,
                config: PaymentConfig, now: datetime) -> JobResult:
        window_end = (params.due_date or now) + timedelta(days=ctx.settings.reminder_lookahead_days)
        payments = ctx.db.payments.find_pending_rent(due_from=now, due_to=window_end)
        if not payments:
            return JobResult.ok(
                "No pending payments found for reminder emails",
                {"reminder_day": params.reminder_day, "due_date": params.due_date,
                 "pending_payments": 0},
            )

        customer_settings = self.load_customer_settings(ctx, [p.customer_id for p in payments])

        sent: List[int] = []
        skipped = 0
        failures: List[FailedRecord] = []

        for payment in payments:
            try:
                settings_row = customer_settings.get(payment.customer_id)
                if is_customer_excluded(config, payment.customer_id, settings_row):
                    logger.debug(f"Customer {payment.customer_id} is excluded from payment processing")
                    skipped += 1
                    continue
                if not notifications_enabled(settings_row):
                    logger.debug(f"Notifications disabled for customer {payment.customer_id}")
                    skipped += 1
                    continue

                reminder_days = resolve_reminder_days(config, settings_row)
                if not is_reminder_day(payment.due_date, reminder_days, now):
                    skipped += 1
                    continue

                if sent_within_window(payment.last_reminder_sent_at, now,
                                      ctx.settings.reminder_dedup_days):
                    logger.debug(f"Reminder already sent recently for payment {payment.id}")
                    skipped += 1
                    continue

                customer = payment.customer
                if customer is None:
                    failures.append(FailedRecord(
                        error="Customer not found",
                        payment_id=payment.id, customer_id=payment.customer_id
                    ))
                    continue

                days_remaining = days_until_due(payment.due_date, now)
                rendered = render_rent_reminder(
                    customer_name=customer.name,
                    amount=payment.amount,
                    due_date=payment.due_date,
                    days_remaining=days_remaining,
                    booking=self.booking_details(payment),
                    currency=ctx.settings.currency_symbol,
                )
                self.send_email(ctx, customer.email, rendered,
                                job=self.slug, payment_id=payment.id)

                ctx.db.payments.mark_reminder_sent(
                    payment.id, now, note=f"Reminder sent on {now.isoformat()}"
                )
                sent.append(payment.id)
                logger.info(f"Sent reminder email for payment {payment.id} to {customer.email}")
            except Exception as e:
                logger.error(f"Error sending reminder for payment {payment.id}: {e}")
                failures.append(FailedRecord(
                    error=str(e), payment_id=payment.id, customer_id=payment.customer_id
                ))

        return JobResult.ok(
            f"Payment reminder emails completed. Sent: {len(sent)}, Failed: {len(failures)}",
            {
                "reminder_day": params.reminder_day,
                "due_date": params.due_date,
                "pending_payments": len(payments),
                "sent_emails": len(sent),
                "sent_payment_ids": sent,
                "skipped": skipped,
                "failed_emails": len(failures),
                "failed_details": failed_details(failures),
            },
            records_processed=len(sent),
            records_failed=len(failures),
        )
