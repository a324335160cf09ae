"""自动扣款任务

在顾客选定的每月扣款日，为已开通自动扣款的顾客扣收待支付租金。
扣款前通过条件更新认领记录（pending -> processing），
认领后出现任何错误都会将记录恢复为 pending。
"""
from datetime import datetime
from typing import Dict, List

from loguru import logger

from config.schedules import AUTO_PAY_PROCESSING
from database.models import CustomerPaymentSettings, Payment, PaymentConfig
from notifications.templates import render_auto_pay_status
from .base import PaymentJob, call_with_timeout
from .gateway import ChargeRequest
from .types import (
    AutoPayInput, ConfigurationError, FailedRecord, JobContext, JobResult,
    failed_details
)
from .utils import days_overdue, is_customer_excluded


class AutoPayJob(PaymentJob):
    slug = AUTO_PAY_PROCESSING
    description = "Auto-pay processing"
    input_type = AutoPayInput

    def process(self, ctx: JobContext, params: AutoPayInput,
                config: PaymentConfig, now: datetime) -> JobResult:
        if not config.auto_pay_enabled and not params.force_run:
            return JobResult.ok(
                "Auto-pay is disabled globally, skipping auto-pay processing",
                {"auto_pay_enabled": False},
            )

        customers = ctx.db.payment_settings.get_auto_pay_customers(params.customer_id)
        if not customers:
            if params.customer_id is not None:
                return JobResult.ok(
                    "Customer not found or auto-pay not enabled",
                    {"customer_id": params.customer_id, "auto_pay_enabled": False},
                )
            return JobResult.ok(
                "No customers with auto-pay enabled found",
                {"auto_pay_customers": 0},
            )

        if ctx.gateway is None:
            return JobResult.fail(
                "No payment gateway configured",
                ConfigurationError("Payment gateway not configured"),
            )

        processed: List[Dict] = []
        skipped: Dict[str, int] = {
            "excluded": 0, "incomplete_settings": 0, "not_auto_pay_day": 0,
            "over_limit": 0, "too_overdue": 0, "claim_lost": 0,
        }
        failures: List[FailedRecord] = []

        for settings_row in customers:
            customer_id = settings_row.customer_id
            try:
                if is_customer_excluded(config, customer_id, settings_row):
                    skipped["excluded"] += 1
                    continue
                if not settings_row.auto_pay_payment_method or not settings_row.auto_pay_day:
                    logger.debug(f"Customer {customer_id} has incomplete auto-pay settings")
                    skipped["incomplete_settings"] += 1
                    continue
                if now.day != settings_row.auto_pay_day and not params.force_run:
                    skipped["not_auto_pay_day"] += 1
                    continue

                payments = ctx.db.payments.find_pending_rent(customer_id=customer_id)
                for payment in payments:
                    outcome = self._process_payment(ctx, settings_row, payment, now, failures)
                    if outcome == "processed":
                        processed.append({
                            "payment_id": payment.id,
                            "customer_id": customer_id,
                            "amount": payment.amount,
                            "due_date": payment.due_date,
                        })
                    elif outcome in skipped:
                        skipped[outcome] += 1
            except Exception as e:
                logger.error(f"Error processing auto-pay customer {customer_id}: {e}")
                failures.append(FailedRecord(error=str(e), customer_id=customer_id))

        return JobResult.ok(
            f"Auto-pay processing completed. Processed: {len(processed)}, Failed: {len(failures)}",
            {
                "customer_id": params.customer_id,
                "force_run": params.force_run,
                "auto_pay_customers": len(customers),
                "processed_payments": len(processed),
                "processed_details": processed,
                "skipped": skipped,
                "failed_payments": len(failures),
                "failed_details": failed_details(failures),
            },
            records_processed=len(processed),
            records_failed=len(failures),
        )

    def _process_payment(self, ctx: JobContext, settings_row: CustomerPaymentSettings,
                         payment: Payment, now: datetime,
                         failures: List[FailedRecord]) -> str:
        """对单条支付记录扣款

        Returns:
            ``processed``、``failed`` 或跳过原因的名称。
        """
        max_amount = settings_row.auto_pay_max_amount
        if max_amount and payment.amount > max_amount:
            logger.info(
                f"Payment {payment.id} amount {payment.amount} exceeds auto-pay limit "
                f"{max_amount} for customer {payment.customer_id}"
            )
            return "over_limit"

        overdue = days_overdue(payment.due_date, now)
        if overdue > ctx.settings.auto_pay_max_days_overdue:
            logger.info(f"Payment {payment.id} is too overdue ({overdue} days) for auto-pay")
            return "too_overdue"

        if not ctx.db.payments.claim_for_processing(payment.id, now):
            logger.info(f"Payment {payment.id} was claimed by another run, skipping")
            return "claim_lost"

        try:
            charge = call_with_timeout(
                ctx.gateway.charge, ctx.settings.charge_timeout_seconds,
                ChargeRequest(
                    payment_id=payment.id,
                    customer_id=payment.customer_id,
                    amount=payment.amount,
                    payment_method=settings_row.auto_pay_payment_method,
                    description=f"Rent {payment.billing_period or ''}".strip(),
                ),
            )
            ctx.db.payments.complete(
                payment.id, now,
                payment_method=settings_row.auto_pay_payment_method,
                transaction_reference=charge.transaction_reference,
                note=f"Auto-pay processed on {now:%Y-%m-%d}",
            )
        except Exception as e:
            logger.error(f"Auto-pay failed for payment {payment.id}: {e}")
            self._revert(ctx, payment, e)
            failures.append(FailedRecord(
                error=str(e), payment_id=payment.id, customer_id=payment.customer_id
            ))
            self._notify(ctx, settings_row, payment, "failed", error=str(e))
            return "failed"

        logger.info(f"Successfully processed auto-pay for payment {payment.id}")
        self._notify(ctx, settings_row, payment, "success",
                     transaction_reference=charge.transaction_reference)
        return "processed"

    @staticmethod
    def _revert(ctx: JobContext, payment: Payment, error: Exception) -> None:
        try:
            ctx.db.payments.revert_to_pending(
                payment.id, note=f"Auto-pay failed: {error}"
            )
        except Exception as revert_error:
            logger.error(f"Error reverting payment {payment.id} to pending: {revert_error}")

    def _notify(self, ctx: JobContext, settings_row: CustomerPaymentSettings,
                payment: Payment, status: str, **details) -> None:
        if settings_row.auto_pay_notifications is False:
            return
        customer = settings_row.customer or payment.customer
        if customer is None:
            return
        rendered = render_auto_pay_status(
            customer_name=customer.name,
            amount=payment.amount,
            status=status,
            due_date=payment.due_date,
            currency=ctx.settings.currency_symbol,
            **details,
        )
        try:
            self.send_email(ctx, customer.email, rendered,
                            job=self.slug, payment_id=payment.id)
        except Exception as e:
            logger.error(f"Error sending auto-pay {status} email to {customer.email}: {e}")
