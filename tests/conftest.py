"""Shared fixtures.

Every test gets a fresh temp-file SQLite DatabaseManager. Job tests build
their JobContext through ``make_ctx`` with a pinned clock, a log-only
email dispatcher and the simulated payment gateway.
"""
import os
import shutil
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from config.settings import Settings
from database import DatabaseManager
from jobs.execution_log import JobLogger
from jobs.gateway import SimulatedPaymentGateway
from jobs.scheduling import ScheduleRegistry
from jobs.types import JobContext
from notifications.smtp import LogEmailDispatcher


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="payment-jobs-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def test_settings():
    """Settings with default thresholds and no SMTP or alert address."""
    return Settings(smtp_host="", alert_email="", log_file="")


@pytest.fixture
def outbox():
    return LogEmailDispatcher()


@pytest.fixture
def gateway():
    return SimulatedPaymentGateway()


@pytest.fixture
def make_ctx(temp_db, outbox, gateway, test_settings):
    """Factory for JobContext instances pinned to a given time."""
    def _make(now: datetime, **overrides) -> JobContext:
        values = dict(
            db=temp_db,
            email=outbox,
            gateway=gateway,
            job_logger=JobLogger(temp_db, clock=lambda: now),
            schedules=ScheduleRegistry.from_config(),
            settings=test_settings,
            now=now,
        )
        values.update(overrides)
        return JobContext(**values)
    return _make


def seed_config(db, **overrides):
    """Store an enabled payment configuration (due on the 5th)."""
    values = dict(
        is_enabled=True,
        start_date=datetime(2024, 1, 1),
        monthly_payment_day=5,
        reminder_days=[7, 3, 1],
        overdue_check_days=[1, 3, 7, 15, 30],
        excluded_customers=[],
        auto_pay_enabled=True,
    )
    values.update(overrides)
    return db.save_payment_config(**values)


def add_tenant(db, name="Asha", email="asha@example.com", price=Decimal("12000"),
               start=datetime(2024, 1, 1), end=datetime(2024, 12, 31),
               room="101"):
    """Customer with one confirmed booking. Returns ``(customer, booking)``."""
    customer = db.customers.add(name, email=email)
    booking = db.bookings.add(
        customer.id, start, end, price,
        property_name="Lakeview Residency", room=room,
    )
    return customer, booking


def add_pending_payment(db, customer, booking, due_date, amount=Decimal("12000")):
    payment, _ = db.payments.create_rent_payment(
        customer_id=customer.id,
        booking_id=booking.id,
        billing_period=f"{due_date.year:04d}-{due_date.month:02d}",
        amount=amount,
        due_date=due_date,
    )
    return payment


class Clock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def utc_instant(monkeypatch):
    """Pin the host clock to a UTC instant; returns a setter."""
    import config.settings as settings_module

    class FrozenDatetime(datetime):
        instant = datetime(2024, 1, 1, tzinfo=ZoneInfo("UTC"))

        @classmethod
        def now(cls, tz=None):
            if tz is None:
                return cls.instant.replace(tzinfo=None)
            return cls.instant.astimezone(tz)

    monkeypatch.setattr(settings_module, "datetime", FrozenDatetime)

    def _set(value: datetime):
        FrozenDatetime.instant = value.replace(tzinfo=ZoneInfo("UTC"))
    return _set
