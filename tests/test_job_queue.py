from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from uuid import uuid4

import pytest

from concierge.schemas.jobs import MEDIA_PRIORITY, TEXT_PRIORITY, InboundMessageJob, MediaType
from concierge.services.job_queue import (
    claim_pending_jobs,
    compute_backoff_seconds,
    enqueue_job,
    get_queue_stats,
    mark_job_done,
    mark_job_failed,
    release_stale_processing,
    schedule_retry,
)


def _job(**overrides) -> InboundMessageJob:
    data = {
        "message_id": "MM001",
        "chat_id": uuid4(),
        "salon_id": uuid4(),
        "sender_phone": "+5511988887777",
        "reply_destination": "whatsapp:+5511988887777",
        "salon_number": "+5511999990000",
        "body_text": "Oi, quero marcar um corte",
    }
    data.update(overrides)
    return InboundMessageJob(**data)


class TestBackoff:
    @pytest.mark.parametrize("attempts,expected", [(1, 5), (2, 10), (3, 20), (4, 40)])
    def test_exponential(self, attempts, expected):
        assert compute_backoff_seconds(attempts, 5) == expected

    def test_zero_attempts_uses_base(self):
        assert compute_backoff_seconds(0, 2) == 2


class TestJobPriority:
    def test_text_before_media(self):
        assert _job().priority == TEXT_PRIORITY
        assert _job(has_media=True, media_type=MediaType.IMAGE).priority == MEDIA_PRIORITY
        assert TEXT_PRIORITY < MEDIA_PRIORITY


class TestEnqueue:
    def test_returns_job_id_when_inserted(self, db_session):
        db_session.execute.return_value = Mock(rowcount=1)

        job_id = enqueue_job(db_session, _job())

        assert job_id is not None
        db_session.commit.assert_called_once()

    def test_returns_none_on_duplicate_message_id(self, db_session):
        db_session.execute.return_value = Mock(rowcount=0)

        assert enqueue_job(db_session, _job()) is None

    def test_propagates_database_errors(self, db_session):
        db_session.execute.side_effect = RuntimeError("connection refused")

        with pytest.raises(RuntimeError):
            enqueue_job(db_session, _job())


class TestClaim:
    def test_zero_limit_skips_query(self, db_session):
        assert claim_pending_jobs(db_session, limit=0) == []
        db_session.execute.assert_not_called()

    def test_returns_rows_as_dicts(self, db_session):
        row = {"id": uuid4(), "message_id": "MM001", "attempts": 1, "payload_json": {}}
        db_session.execute.return_value.mappings.return_value.all.return_value = [row]

        rows = claim_pending_jobs(db_session, limit=5)

        assert rows == [row]
        sql = str(db_session.execute.call_args[0][0])
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert "ORDER BY priority, created_at" in sql
        assert db_session.execute.call_args[0][1] == {"limit": 5}


class TestTransitions:
    def test_mark_done_stores_result(self, db_session):
        job_id = uuid4()

        mark_job_done(db_session, job_id=job_id, result_json={"status": "success"})

        params = db_session.execute.call_args[0][1]
        assert params == {"id": job_id, "result_json": {"status": "success"}}
        db_session.commit.assert_called_once()

    def test_schedule_retry_uses_backoff(self, db_session):
        before = datetime.now(timezone.utc)

        next_attempt_at = schedule_retry(
            db_session, job_id=uuid4(), attempts=3, retry_backoff_seconds=5, last_error="lock timeout"
        )

        assert next_attempt_at >= before + timedelta(seconds=20)
        params = db_session.execute.call_args[0][1]
        assert params["last_error"] == "lock timeout"
        assert "status = 'PENDING'" in str(db_session.execute.call_args[0][0])

    def test_mark_failed(self, db_session):
        mark_job_failed(db_session, job_id=uuid4(), last_error="boom")

        assert "status = 'FAILED'" in str(db_session.execute.call_args[0][0])
        db_session.commit.assert_called_once()

    def test_release_stale_counts(self, db_session):
        db_session.execute.side_effect = [Mock(rowcount=2), Mock(rowcount=1)]

        result = release_stale_processing(db_session, stale_seconds=300, max_attempts=5)

        assert result == {"released": 2, "failed": 1}


class TestStats:
    def test_aggregates_by_status(self, db_session):
        db_session.execute.return_value.mappings.return_value = [
            {"status": "PENDING", "total": 4, "delayed": 1},
            {"status": "DONE", "total": 10, "delayed": 0},
            {"status": "FAILED", "total": 2, "delayed": 0},
        ]

        stats = get_queue_stats(db_session)

        assert stats == {"pending": 4, "processing": 0, "done": 10, "failed": 2, "delayed": 1}
