"""Overdue payment notification job tests.

Tests for:
- Notices on overdue check days with escalating urgency
- Dedup of a rerun on the same day
- Non-check days and exclusions
"""
from datetime import datetime

import pytest

from jobs.overdue_notification import OverdueNotificationJob
from tests.conftest import add_pending_payment, add_tenant, seed_config

DUE = datetime(2024, 6, 5)


@pytest.fixture
def job():
    return OverdueNotificationJob()


@pytest.fixture
def tenant(temp_db):
    seed_config(temp_db)
    customer, booking = add_tenant(temp_db)
    payment = add_pending_payment(temp_db, customer, booking, DUE)
    return customer, booking, payment


class TestOverdueNotification:
    """Test notice sending on check days."""

    @pytest.mark.parametrize("now, subject, urgency", [
        (datetime(2024, 6, 7, 10, 0), "Payment Overdue - 3 days overdue", "low"),
        (datetime(2024, 6, 11, 10, 0), "Payment Overdue - 7 days overdue", "medium"),
        (datetime(2024, 6, 19, 10, 0), "Important: Payment Overdue - 15 days overdue", "high"),
        (datetime(2024, 7, 4, 10, 0), "URGENT: Payment Severely Overdue - 30 days overdue", "critical"),
    ])
    def test_urgency_escalates(self, make_ctx, outbox, job, tenant, now, subject, urgency):
        result = job.run(make_ctx(now))

        assert result.data["sent_notifications"] == 1
        assert result.data["sent_details"][0]["urgency_level"] == urgency
        assert outbox.outbox[0].subject == subject

    def test_notice_recorded_on_payment(self, temp_db, make_ctx, job, tenant):
        _, _, payment = tenant
        now = datetime(2024, 6, 7, 10, 0)

        job.run(make_ctx(now))

        stored = temp_db.payments.get(payment.id)
        assert stored.last_overdue_notice_at == now
        assert stored.overdue_notice_count == 1
        assert "Overdue notification sent on" in stored.notes

    def test_same_day_rerun_is_suppressed(self, make_ctx, outbox, job, tenant):
        now = datetime(2024, 6, 7, 10, 0)

        job.run(make_ctx(now))
        second = job.run(make_ctx(now))

        assert second.data["sent_notifications"] == 0
        assert len(outbox.outbox) == 1

    def test_not_a_check_day(self, make_ctx, outbox, job, tenant):
        result = job.run(make_ctx(datetime(2024, 6, 8, 10, 0)))

        assert result.data["sent_notifications"] == 0
        assert result.data["skipped"] == 1
        assert outbox.outbox == []

    def test_not_yet_overdue(self, make_ctx, job, tenant):
        result = job.run(make_ctx(datetime(2024, 6, 4, 10, 0)))

        assert result.message == "No overdue payments found"
        assert result.data["overdue_payments"] == 0

    def test_custom_check_days(self, temp_db, make_ctx, outbox, job, tenant):
        seed_config(temp_db, overdue_check_days=[2])

        result = job.run(make_ctx(datetime(2024, 6, 6, 10, 0)))

        assert result.data["sent_notifications"] == 1
        assert outbox.outbox[0].subject == "Payment Overdue - 2 days overdue"

    def test_excluded_customer(self, temp_db, make_ctx, outbox, job, tenant):
        customer, _, _ = tenant
        temp_db.payment_settings.upsert(customer.id, excluded_from_system=True)

        result = job.run(make_ctx(datetime(2024, 6, 7, 10, 0)))

        assert result.data["sent_notifications"] == 0
        assert outbox.outbox == []

    def test_completed_payment_not_notified(self, temp_db, make_ctx, outbox, job, tenant):
        _, _, payment = tenant
        now = datetime(2024, 6, 7, 10, 0)
        temp_db.payments.claim_for_processing(payment.id, now)
        temp_db.payments.complete(payment.id, now, payment_method="cash")

        result = job.run(make_ctx(now))

        assert result.data["overdue_payments"] == 0
        assert outbox.outbox == []
