"""月度租金生成任务

为账期月份内每个已确认的预订创建一条待支付租金记录，
同一月份重复运行不会产生新记录。
"""
from datetime import datetime
from typing import Any, Dict, List

from loguru import logger

from config.schedules import MONTHLY_RENT_PAYMENT
from database.models import Booking, PaymentConfig
from .base import PaymentJob
from .types import FailedRecord, JobContext, JobResult, RentGenerationInput, failed_details
from .utils import billing_period, due_date_for_period, is_customer_excluded


def booking_snapshot(booking: Booking) -> Dict[str, Any]:
    """创建支付记录时保存的预订条款"""
    return {
        "property": booking.property_name,
        "room": booking.room,
        "start_date": booking.start_date.isoformat() if booking.start_date else None,
        "end_date": booking.end_date.isoformat() if booking.end_date else None,
        "price": float(booking.price) if booking.price is not None else 0,
    }


class RentGenerationJob(PaymentJob):
    slug = MONTHLY_RENT_PAYMENT
    description = "Monthly rent payment generation"
    input_type = RentGenerationInput

    def build_job_id(self, payload: Dict[str, Any], now: datetime) -> str:
        month = payload.get("month") or now.month
        year = payload.get("year") or now.year
        return f"monthly-rent-{year}-{month}-{int(now.timestamp() * 1000)}"

    def process(self, ctx: JobContext, params: RentGenerationInput,
                config: PaymentConfig, now: datetime) -> JobResult:
        month = params.month or now.month
        year = params.year or now.year
        if not 1 <= month <= 12:
            return JobResult.fail(f"Invalid month: {month}", ValueError(f"Invalid month: {month}"))

        period = billing_period(month, year)
        due_date = due_date_for_period(config.monthly_payment_day or 1, month, year)

        bookings = ctx.db.bookings.find_active_on(due_date)
        if not bookings:
            return JobResult.ok(
                "No active bookings found for monthly rent payment creation",
                {"month": month, "year": year, "payment_due_date": due_date,
                 "active_bookings": 0},
            )

        customer_settings = self.load_customer_settings(ctx, [b.customer_id for b in bookings])

        created: List[int] = []
        existing: List[int] = []
        excluded = 0
        failures: List[FailedRecord] = []

        for booking in bookings:
            try:
                if is_customer_excluded(config, booking.customer_id,
                                        customer_settings.get(booking.customer_id)):
                    logger.debug(f"Customer {booking.customer_id} is excluded from payment processing")
                    excluded += 1
                    continue

                payment, was_created = ctx.db.payments.create_rent_payment(
                    customer_id=booking.customer_id,
                    booking_id=booking.id,
                    billing_period=period,
                    amount=booking.price or 0,
                    due_date=due_date,
                    booking_snapshot=booking_snapshot(booking),
                    notes=f"Monthly rent payment for {period}",
                )
                if was_created:
                    created.append(payment.id)
                    logger.info(
                        f"Created rent payment {payment.id} for customer {booking.customer_id} ({period})"
                    )
                else:
                    existing.append(payment.id)
                    logger.debug(
                        f"Payment already exists for customer {booking.customer_id} booking {booking.id} ({period})"
                    )
            except Exception as e:
                logger.error(f"Error processing booking {booking.id}: {e}")
                failures.append(FailedRecord(
                    error=str(e), booking_id=booking.id, customer_id=booking.customer_id
                ))

        try:
            ctx.db.payment_configs.mark_job_run(now)
        except Exception as e:
            logger.warning(f"Failed to record last rent generation run: {e}")

        return JobResult.ok(
            f"Monthly rent payment creation completed. "
            f"Processed: {len(created)}, Failed: {len(failures)}",
            {
                "month": month,
                "year": year,
                "billing_period": period,
                "payment_due_date": due_date,
                "active_bookings": len(bookings),
                "created_payments": len(created),
                "created_payment_ids": created,
                "existing_payments": len(existing),
                "excluded_customers": excluded,
                "failed_payments": len(failures),
                "failed_details": failed_details(failures),
            },
            records_processed=len(created),
            records_failed=len(failures),
        )
