"""Job registry tests."""
from datetime import datetime

import pytest

from config.schedules import (
    AUTO_PAY_PROCESSING, JOB_HEALTH_CHECK, MONTHLY_RENT_PAYMENT,
    OVERDUE_PAYMENT_NOTIFICATION, PAYMENT_ANALYTICS, PAYMENT_REMINDER_EMAIL,
)
from jobs.base import BaseJob
from jobs.registry import JobRegistry, create_default_registry
from jobs.rent_generation import RentGenerationJob
from jobs.types import JobResult


class EchoJob(BaseJob):
    slug = "echo"
    description = "Echo"

    def execute(self, ctx, params):
        return JobResult.ok("echoed", {"payload": params})


class TestJobRegistry:
    """Test JobRegistry."""

    def test_default_registry_has_every_job(self):
        registry = create_default_registry()
        assert set(registry.slugs()) == {
            MONTHLY_RENT_PAYMENT, PAYMENT_REMINDER_EMAIL,
            OVERDUE_PAYMENT_NOTIFICATION, AUTO_PAY_PROCESSING,
            JOB_HEALTH_CHECK, PAYMENT_ANALYTICS,
        }
        assert isinstance(registry.get(MONTHLY_RENT_PAYMENT), RentGenerationJob)

    def test_duplicate_rejected(self):
        registry = JobRegistry([EchoJob()])
        with pytest.raises(ValueError):
            registry.register(EchoJob())

    def test_job_without_slug_rejected(self):
        class Nameless(EchoJob):
            slug = ""

        with pytest.raises(ValueError):
            JobRegistry([Nameless()])

    def test_run_by_slug(self, make_ctx):
        registry = JobRegistry([EchoJob()])

        result = registry.run("echo", make_ctx(datetime(2024, 6, 1)), {"a": 1})

        assert result.success is True
        assert result.data["payload"] == {"a": 1}

    def test_unknown_slug(self, make_ctx):
        registry = JobRegistry()
        assert "echo" not in registry
        assert registry.get("echo") is None
        with pytest.raises(KeyError):
            registry.run("echo", make_ctx(datetime(2024, 6, 1)))
