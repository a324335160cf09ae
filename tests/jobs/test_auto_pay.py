"""Auto-pay processing job tests.

Tests for:
- Successful charge completing the payment with a confirmation email
- Charge failure reverting the payment to pending
- Skip reasons (limit, day, overdue, lost claim, incomplete settings)
- Global switch and missing gateway
"""
from datetime import datetime
from decimal import Decimal

import pytest

from config.settings import Settings
from database.models import PAYMENT_COMPLETED, PAYMENT_PENDING
from jobs.auto_pay import AutoPayJob
from jobs.gateway import SimulatedPaymentGateway
from tests.conftest import add_pending_payment, add_tenant, seed_config

DUE = datetime(2024, 6, 5)
NOW = datetime(2024, 6, 5, 8, 0)


@pytest.fixture
def job():
    return AutoPayJob()


@pytest.fixture
def tenant(temp_db):
    seed_config(temp_db)
    customer, booking = add_tenant(temp_db)
    temp_db.payment_settings.upsert(
        customer.id,
        auto_pay_enabled=True,
        auto_pay_payment_method="card",
        auto_pay_day=5,
    )
    payment = add_pending_payment(temp_db, customer, booking, DUE)
    return customer, booking, payment


class TestAutoPayCharge:
    """Test charging pending payments."""

    def test_successful_charge(self, temp_db, make_ctx, outbox, gateway, job, tenant):
        customer, _, payment = tenant

        result = job.run(make_ctx(NOW))

        assert result.success is True
        assert result.data["processed_payments"] == 1
        assert result.records_processed == 1

        stored = temp_db.payments.get(payment.id)
        assert stored.status == PAYMENT_COMPLETED
        assert stored.payment_method == "card"
        assert stored.transaction_reference.startswith("sim-")
        assert stored.completed_at == NOW

        assert [c.payment_id for c in gateway.charges] == [payment.id]
        assert outbox.outbox[0].to == customer.email
        assert outbox.outbox[0].subject == "Auto-Pay Payment Confirmation - ₹12,000"

    def test_charge_failure_reverts(self, temp_db, make_ctx, outbox, job, tenant):
        _, _, payment = tenant
        declining = SimulatedPaymentGateway(fail_payment_ids={payment.id})

        result = job.run(make_ctx(NOW, gateway=declining))

        assert result.success is True
        assert result.records_failed == 1
        assert result.data["failed_details"][0]["payment_id"] == payment.id

        stored = temp_db.payments.get(payment.id)
        assert stored.status == PAYMENT_PENDING
        assert stored.processing_started_at is None
        assert "Auto-pay failed" in stored.notes
        assert outbox.outbox[0].subject.startswith("Auto-Pay Payment Failed")

    def test_charge_timeout_reverts(self, temp_db, make_ctx, outbox, job, tenant):
        _, _, payment = tenant
        slow = SimulatedPaymentGateway(delay_seconds=0.5)
        settings = Settings(smtp_host="", alert_email="", log_file="",
                            charge_timeout_seconds=0.05)

        result = job.run(make_ctx(NOW, gateway=slow, settings=settings))

        assert result.success is True
        assert result.records_failed == 1
        assert "did not finish within 0.05s" in result.data["failed_details"][0]["error"]

        stored = temp_db.payments.get(payment.id)
        assert stored.status == PAYMENT_PENDING
        assert stored.processing_started_at is None
        assert outbox.outbox[0].subject.startswith("Auto-Pay Payment Failed")

    def test_rerun_after_success_charges_nothing(self, make_ctx, gateway, job, tenant):
        job.run(make_ctx(NOW))
        second = job.run(make_ctx(NOW))

        assert second.data["processed_payments"] == 0
        assert len(gateway.charges) == 1

    def test_notifications_can_be_turned_off(self, temp_db, make_ctx, outbox, job, tenant):
        customer, _, _ = tenant
        temp_db.payment_settings.upsert(customer.id, auto_pay_notifications=False)

        result = job.run(make_ctx(NOW))

        assert result.data["processed_payments"] == 1
        assert outbox.outbox == []


class TestAutoPaySkips:
    """Test the skip reasons."""

    def test_over_limit_stays_pending(self, temp_db, make_ctx, gateway, job, tenant):
        customer, _, payment = tenant
        temp_db.payment_settings.upsert(customer.id, auto_pay_max_amount=Decimal("10000"))

        result = job.run(make_ctx(NOW))

        assert result.data["skipped"]["over_limit"] == 1
        assert temp_db.payments.get(payment.id).status == PAYMENT_PENDING
        assert gateway.charges == []

    def test_not_auto_pay_day(self, make_ctx, gateway, job, tenant):
        result = job.run(make_ctx(datetime(2024, 6, 4, 8, 0)))

        assert result.data["skipped"]["not_auto_pay_day"] == 1
        assert gateway.charges == []

    def test_force_run_ignores_day(self, make_ctx, job, tenant):
        result = job.run(make_ctx(datetime(2024, 6, 4, 8, 0)), {"forceRun": True})

        assert result.data["processed_payments"] == 1

    def test_too_overdue(self, temp_db, make_ctx, gateway, job, tenant):
        customer, booking, _ = tenant
        add_pending_payment(temp_db, customer, booking, datetime(2024, 5, 5))

        result = job.run(make_ctx(NOW))

        assert result.data["skipped"]["too_overdue"] == 1
        assert result.data["processed_payments"] == 1

    def test_lost_claim(self, temp_db, make_ctx, gateway, job, tenant, monkeypatch):
        monkeypatch.setattr(temp_db.payments, "claim_for_processing",
                            lambda payment_id, now: False)

        result = job.run(make_ctx(NOW))

        assert result.data["skipped"]["claim_lost"] == 1
        assert gateway.charges == []

    def test_incomplete_settings(self, temp_db, make_ctx, job, tenant):
        customer, _, _ = tenant
        temp_db.payment_settings.upsert(customer.id, auto_pay_payment_method=None)

        result = job.run(make_ctx(NOW))

        assert result.data["skipped"]["incomplete_settings"] == 1

    def test_single_customer_without_auto_pay(self, make_ctx, job, tenant):
        result = job.run(make_ctx(NOW), {"customerId": 999})

        assert result.success is True
        assert result.message == "Customer not found or auto-pay not enabled"


class TestAutoPaySwitches:
    """Test global switches and missing collaborators."""

    def test_globally_disabled(self, temp_db, make_ctx, gateway, job, tenant):
        seed_config(temp_db, auto_pay_enabled=False)

        result = job.run(make_ctx(NOW))

        assert result.success is True
        assert result.data["auto_pay_enabled"] is False
        assert gateway.charges == []

    def test_missing_gateway_is_job_failure(self, temp_db, make_ctx, job, tenant):
        _, _, payment = tenant

        result = job.run(make_ctx(NOW, gateway=None))

        assert result.success is False
        assert result.error == "Payment gateway not configured"
        assert temp_db.payments.get(payment.id).status == PAYMENT_PENDING
