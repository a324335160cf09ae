"""Payment reminder email job tests.

Tests for:
- Reminder sent on a reminder day and recorded on the payment
- Dedup window suppressing a second reminder
- Non-reminder days, exclusions, disabled notifications
- Customer reminder day overrides
- Per-record email failures
"""
import time
from datetime import datetime

import pytest

from config.settings import Settings
from jobs.reminder_email import ReminderEmailJob
from notifications.base import EmailDispatcher, SendResult
from tests.conftest import add_pending_payment, add_tenant, seed_config

DUE = datetime(2024, 6, 5)
NOW = datetime(2024, 6, 2, 9, 0)


class FailingDispatcher(EmailDispatcher):
    def __init__(self):
        super().__init__("failing")

    def send(self, message):
        return SendResult.failed("Mailbox unavailable")


class SlowDispatcher(EmailDispatcher):
    """Answers instantly except for one recipient, who takes half a second."""

    def __init__(self, slow_recipient):
        super().__init__("slow")
        self.slow_recipient = slow_recipient
        self.delivered = []

    def send(self, message):
        if message.to == self.slow_recipient:
            time.sleep(0.5)
        else:
            self.delivered.append(message.to)
        return SendResult(success=True, message_id="slow-1")


@pytest.fixture
def job():
    return ReminderEmailJob()


@pytest.fixture
def tenant(temp_db):
    seed_config(temp_db)
    customer, booking = add_tenant(temp_db)
    payment = add_pending_payment(temp_db, customer, booking, DUE)
    return customer, booking, payment


class TestReminderEmail:
    """Test reminder sending."""

    def test_sends_one_reminder(self, temp_db, make_ctx, outbox, job, tenant):
        customer, _, payment = tenant

        result = job.run(make_ctx(NOW), {"reminderDay": 3})

        assert result.success is True
        assert result.data["sent_emails"] == 1
        assert result.data["sent_payment_ids"] == [payment.id]
        assert len(outbox.outbox) == 1
        message = outbox.outbox[0]
        assert message.to == customer.email
        assert message.subject == "Rent Payment Reminder - Due 05 Jun 2024"
        assert "₹12,000" in message.text

        stored = temp_db.payments.get(payment.id)
        assert stored.last_reminder_sent_at == NOW
        assert stored.reminder_count == 1
        assert "Reminder sent on" in stored.notes

    def test_rerun_inside_dedup_window_sends_nothing(self, make_ctx, outbox, job, tenant):
        job.run(make_ctx(NOW))
        second = job.run(make_ctx(NOW))

        assert second.data["sent_emails"] == 0
        assert second.data["skipped"] == 1
        assert len(outbox.outbox) == 1

    def test_next_reminder_day_after_window(self, temp_db, make_ctx, outbox, job, tenant):
        _, _, payment = tenant
        job.run(make_ctx(NOW))

        # One day before the due date, two days after the first reminder
        result = job.run(make_ctx(datetime(2024, 6, 4, 9, 0)))

        assert result.data["sent_emails"] == 1
        assert temp_db.payments.get(payment.id).reminder_count == 2

    def test_not_a_reminder_day(self, make_ctx, outbox, job, tenant):
        result = job.run(make_ctx(datetime(2024, 6, 3, 9, 0)))

        assert result.data["sent_emails"] == 0
        assert outbox.outbox == []

    def test_customer_override_days(self, temp_db, make_ctx, outbox, job, tenant):
        customer, _, _ = tenant
        temp_db.payment_settings.upsert(customer.id, custom_reminder_days=[2])

        assert job.run(make_ctx(NOW)).data["sent_emails"] == 0
        assert job.run(make_ctx(datetime(2024, 6, 3, 9, 0))).data["sent_emails"] == 1

    def test_notifications_disabled(self, temp_db, make_ctx, outbox, job, tenant):
        customer, _, _ = tenant
        temp_db.payment_settings.upsert(customer.id, notifications_enabled=False)

        result = job.run(make_ctx(NOW))

        assert result.data["sent_emails"] == 0
        assert outbox.outbox == []

    def test_globally_excluded(self, temp_db, make_ctx, outbox, job, tenant):
        customer, _, _ = tenant
        seed_config(temp_db, excluded_customers=[customer.id])

        assert job.run(make_ctx(NOW)).data["sent_emails"] == 0

    def test_no_pending_payments(self, temp_db, make_ctx, job):
        seed_config(temp_db)

        result = job.run(make_ctx(NOW))

        assert result.success is True
        assert result.data["pending_payments"] == 0
        assert result.message == "No pending payments found for reminder emails"


class TestReminderFailures:
    """Email failures are per-record failures."""

    def test_dispatcher_failure_recorded(self, temp_db, make_ctx, job, tenant):
        _, _, payment = tenant

        result = job.run(make_ctx(NOW, email=FailingDispatcher()))

        assert result.success is True
        assert result.records_failed == 1
        assert result.data["failed_details"] == [{
            "error": "Mailbox unavailable",
            "payment_id": payment.id,
            "customer_id": payment.customer_id,
        }]
        assert temp_db.payments.get(payment.id).reminder_count == 0

    def test_email_timeout_fails_only_that_record(self, temp_db, make_ctx, job, tenant):
        _, _, slow_payment = tenant
        other, booking = add_tenant(temp_db, name="Ravi", email="ravi@example.com", room="102")
        other_payment = add_pending_payment(temp_db, other, booking, DUE)
        dispatcher = SlowDispatcher("asha@example.com")
        settings = Settings(smtp_host="", alert_email="", log_file="",
                            email_timeout_seconds=0.05)

        result = job.run(make_ctx(NOW, email=dispatcher, settings=settings))

        assert result.success is True
        assert result.data["sent_payment_ids"] == [other_payment.id]
        assert result.records_failed == 1
        failure = result.data["failed_details"][0]
        assert failure["payment_id"] == slow_payment.id
        assert "did not finish within 0.05s" in failure["error"]
        assert dispatcher.delivered == ["ravi@example.com"]
        assert temp_db.payments.get(slow_payment.id).reminder_count == 0
        assert temp_db.payments.get(other_payment.id).reminder_count == 1

    def test_customer_without_email(self, temp_db, make_ctx, job):
        seed_config(temp_db)
        customer, booking = add_tenant(temp_db, email=None)
        add_pending_payment(temp_db, customer, booking, DUE)

        result = job.run(make_ctx(NOW))

        assert result.records_failed == 1
