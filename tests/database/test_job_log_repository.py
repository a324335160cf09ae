"""Job log repository tests."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from database.models import JOB_COMPLETED, JOB_FAILED, JOB_RUNNING

T0 = datetime(2024, 6, 1, 9, 0)


def add_row(db, job_id, start, job_name="auto-pay-processing", status=JOB_RUNNING,
            queue="payment-jobs"):
    return db.job_logs.add(
        job_name=job_name, job_id=job_id, start_time=start,
        status=status, success=status == JOB_COMPLETED, queue=queue,
    )


class TestJobLogRepository:
    """Tests for JobLogRepository."""

    def test_add_and_finish(self, temp_db):
        row = add_row(temp_db, "ap-1", T0)

        finished = temp_db.job_logs.finish(
            row.id, T0 + timedelta(seconds=3), 3000, JOB_FAILED, False,
            output={"records_failed": 1}, error_message="Gateway down",
        )

        assert finished.status == JOB_FAILED
        assert finished.duration_ms == 3000
        assert finished.output == {"records_failed": 1}
        assert finished.error_message == "Gateway down"

    def test_finish_missing_row(self, temp_db):
        assert temp_db.job_logs.finish(42, T0, 0, JOB_COMPLETED, True) is None

    def test_query_filters(self, temp_db):
        add_row(temp_db, "ap-1", T0, status=JOB_COMPLETED)
        add_row(temp_db, "hc-1", T0 + timedelta(minutes=5), job_name="job-health-check",
                status=JOB_COMPLETED, queue="system-jobs")
        add_row(temp_db, "ap-2", T0 + timedelta(minutes=10))

        assert [r.job_id for r in temp_db.job_logs.query()] == ["ap-2", "hc-1", "ap-1"]
        assert [r.job_id for r in temp_db.job_logs.query(queue="system-jobs")] == ["hc-1"]
        assert [r.job_id for r in temp_db.job_logs.query(success=True)] == ["hc-1", "ap-1"]
        assert [r.job_id for r in temp_db.job_logs.query(status=JOB_RUNNING)] == ["ap-2"]
        assert [r.job_id for r in temp_db.job_logs.query(limit=1, offset=1)] == ["hc-1"]

    def test_date_window_is_inclusive(self, temp_db):
        add_row(temp_db, "ap-1", T0)
        add_row(temp_db, "ap-2", T0 + timedelta(hours=1))
        add_row(temp_db, "ap-3", T0 + timedelta(hours=2))

        rows = temp_db.job_logs.query(start_date=T0, end_date=T0 + timedelta(hours=1))

        assert sorted(r.job_id for r in rows) == ["ap-1", "ap-2"]

    def test_delete_older_than(self, temp_db):
        add_row(temp_db, "old", T0 - timedelta(days=100))
        add_row(temp_db, "new", T0)

        assert temp_db.job_logs.delete_older_than(T0 - timedelta(days=90)) == 1
        assert [r.job_id for r in temp_db.job_logs.query()] == ["new"]

    def test_job_id_is_unique(self, temp_db):
        add_row(temp_db, "ap-1", T0)
        with pytest.raises(IntegrityError):
            add_row(temp_db, "ap-1", T0)
