from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB, insert
from sqlalchemy.orm import Session

from concierge.models import InboundJob
from concierge.schemas.jobs import InboundMessageJob

STATUS_PENDING = "PENDING"
STATUS_PROCESSING = "PROCESSING"
STATUS_DONE = "DONE"
STATUS_FAILED = "FAILED"


def compute_backoff_seconds(attempts: int, base_seconds: float) -> float:
    return base_seconds * (2 ** max(attempts - 1, 0))


def enqueue_job(db: Session, job: InboundMessageJob) -> uuid.UUID | None:
    """Insert a PENDING job. Returns None when the message_id is already queued."""
    now = datetime.now(timezone.utc)
    job_id = uuid.uuid4()
    stmt = (
        insert(InboundJob)
        .values(
            id=job_id,
            message_id=job.message_id,
            salon_id=job.salon_id,
            chat_id=job.chat_id,
            payload_json=job.model_dump(mode="json"),
            priority=job.priority,
            status=STATUS_PENDING,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["message_id"])
    )
    result = db.execute(stmt)
    db.commit()
    return job_id if result.rowcount > 0 else None


def claim_pending_jobs(db: Session, *, limit: int = 10) -> list[dict[str, Any]]:
    if limit <= 0:
        return []
    rows = (
        db.execute(
            text(
                """
                WITH cte AS (
                    SELECT id
                    FROM inbound_jobs
                    WHERE status = 'PENDING'
                      AND (next_attempt_at IS NULL OR next_attempt_at <= NOW())
                    ORDER BY priority, created_at
                    LIMIT :limit
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE inbound_jobs
                SET status = 'PROCESSING',
                    attempts = attempts + 1,
                    updated_at = NOW()
                FROM cte
                WHERE inbound_jobs.id = cte.id
                RETURNING inbound_jobs.id,
                          inbound_jobs.message_id,
                          inbound_jobs.salon_id,
                          inbound_jobs.chat_id,
                          inbound_jobs.payload_json,
                          inbound_jobs.attempts
                """
            ),
            {"limit": limit},
        )
        .mappings()
        .all()
    )
    db.commit()
    return [dict(row) for row in rows]


def mark_job_done(db: Session, *, job_id, result_json: dict[str, Any] | None = None) -> None:
    db.execute(
        text(
            """
            UPDATE inbound_jobs
            SET status = 'DONE',
                result_json = :result_json,
                last_error = NULL,
                updated_at = NOW()
            WHERE id = :id
            """
        ).bindparams(bindparam("result_json", type_=JSONB)),
        {"id": job_id, "result_json": result_json},
    )
    db.commit()


def schedule_retry(
    db: Session,
    *,
    job_id,
    attempts: int,
    retry_backoff_seconds: float,
    last_error: str | None = None,
) -> datetime:
    next_attempt_at = datetime.now(timezone.utc) + timedelta(
        seconds=compute_backoff_seconds(attempts, retry_backoff_seconds)
    )
    db.execute(
        text(
            """
            UPDATE inbound_jobs
            SET status = 'PENDING',
                next_attempt_at = :next_attempt_at,
                last_error = :last_error,
                updated_at = NOW()
            WHERE id = :id
            """
        ),
        {"id": job_id, "next_attempt_at": next_attempt_at, "last_error": last_error},
    )
    db.commit()
    return next_attempt_at


def mark_job_failed(db: Session, *, job_id, last_error: str | None = None) -> None:
    db.execute(
        text(
            """
            UPDATE inbound_jobs
            SET status = 'FAILED',
                last_error = :last_error,
                updated_at = NOW()
            WHERE id = :id
            """
        ),
        {"id": job_id, "last_error": last_error},
    )
    db.commit()


def release_stale_processing(
    db: Session,
    *,
    stale_seconds: int,
    max_attempts: int,
) -> dict[str, int]:
    """Return PROCESSING rows abandoned by a crashed worker to the queue."""
    released = db.execute(
        text(
            """
            UPDATE inbound_jobs
            SET status = 'PENDING',
                next_attempt_at = NOW(),
                last_error = 'stale_processing',
                updated_at = NOW()
            WHERE status = 'PROCESSING'
              AND updated_at < NOW() - make_interval(secs => :stale_seconds)
              AND attempts < :max_attempts
            """
        ),
        {"stale_seconds": stale_seconds, "max_attempts": max_attempts},
    ).rowcount
    failed = db.execute(
        text(
            """
            UPDATE inbound_jobs
            SET status = 'FAILED',
                last_error = 'stale_processing_max_attempts',
                updated_at = NOW()
            WHERE status = 'PROCESSING'
              AND updated_at < NOW() - make_interval(secs => :stale_seconds)
              AND attempts >= :max_attempts
            """
        ),
        {"stale_seconds": stale_seconds, "max_attempts": max_attempts},
    ).rowcount
    db.commit()
    return {"released": released or 0, "failed": failed or 0}


def get_queue_stats(db: Session) -> dict[str, int]:
    rows = db.execute(
        text(
            """
            SELECT status,
                   COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE next_attempt_at > NOW()) AS delayed
            FROM inbound_jobs
            GROUP BY status
            """
        )
    ).mappings()
    stats = {"pending": 0, "processing": 0, "done": 0, "failed": 0, "delayed": 0}
    for row in rows:
        status = (row["status"] or "").lower()
        if status in stats:
            stats[status] = int(row["total"])
        if row["status"] == STATUS_PENDING:
            stats["delayed"] = int(row["delayed"] or 0)
    return stats
