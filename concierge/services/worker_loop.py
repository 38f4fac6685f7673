"""Queue consumer: claims jobs, bounds concurrency and intake, applies retry/backoff."""

import asyncio
import time
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from concierge.config import Settings, settings as default_settings
from concierge.errors import is_retryable
from concierge.logging_config import get_logger
from concierge.schemas.jobs import InboundMessageJob
from concierge.services.alert_service import alert_error
from concierge.services.job_queue import (
    claim_pending_jobs,
    mark_job_done,
    mark_job_failed,
    release_stale_processing,
    schedule_retry,
)
from concierge.services.message_worker import MessageWorker
from concierge.services.rate_limiter import RateLimiter

logger = get_logger("worker_loop")

STALE_SWEEP_INTERVAL_SECONDS = 60.0
INTAKE_KEY = "intake:global"
INTAKE_WINDOW_SECONDS = 60


class WorkerLoop:
    def __init__(
        self,
        worker: MessageWorker,
        session_factory: Callable[[], Session],
        *,
        rate_limiter: Optional[RateLimiter] = None,
        config: Optional[Settings] = None,
    ):
        self.worker = worker
        self.session_factory = session_factory
        self.config = config or default_settings
        self.semaphore = asyncio.Semaphore(self.config.worker_concurrency)
        # Intake budget lives in Redis so the cap holds across every worker process.
        self.intake = rate_limiter or worker.rate_limiter
        self._in_flight: set[asyncio.Task] = set()
        self._last_stale_sweep = 0.0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def _claim(self, limit: int) -> list[dict]:
        db = self.session_factory()
        try:
            now = time.monotonic()
            if now - self._last_stale_sweep >= STALE_SWEEP_INTERVAL_SECONDS:
                self._last_stale_sweep = now
                swept = release_stale_processing(
                    db,
                    stale_seconds=self.config.queue_stale_processing_seconds,
                    max_attempts=self.config.queue_max_attempts,
                )
                if swept["released"] or swept["failed"]:
                    logger.warning("Released stale jobs", extra={"context": swept})
            return claim_pending_jobs(db, limit=limit)
        finally:
            db.close()

    async def handle_row(self, row: dict) -> str:
        """Process one claimed row and record its queue outcome. Returns the outcome label."""
        async with self.semaphore:
            db = self.session_factory()
            try:
                return await self._handle_row(db, row)
            finally:
                db.close()

    async def _handle_row(self, db: Session, row: dict) -> str:
        job_id = row["id"]
        attempts = int(row.get("attempts") or 1)
        context = {"job_id": str(job_id), "message_id": row.get("message_id"), "attempt": attempts}
        started = time.monotonic()

        try:
            job = InboundMessageJob.model_validate(row["payload_json"])
        except PydanticValidationError as exc:
            mark_job_failed(db, job_id=job_id, last_error=f"invalid_payload: {exc.errors()[:2]}")
            logger.error("Job payload invalid", extra={"context": context})
            return "failed"

        context.update({"chat_id": str(job.chat_id), "salon_id": str(job.salon_id)})
        try:
            result = await self.worker.process(db, job, attempt=attempts, job_id=job_id)
        except Exception as exc:
            db.rollback()
            context.update(
                {
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                }
            )
            if is_retryable(exc) and attempts < self.config.queue_max_attempts:
                next_attempt_at = schedule_retry(
                    db,
                    job_id=job_id,
                    attempts=attempts,
                    retry_backoff_seconds=self.config.queue_retry_backoff_seconds,
                    last_error=str(exc)[:500],
                )
                logger.warning(
                    "Job will be retried",
                    extra={"context": {**context, "next_attempt_at": next_attempt_at.isoformat()}},
                )
                return "retry"

            mark_job_failed(db, job_id=job_id, last_error=str(exc)[:500])
            logger.error("Job failed", exc_info=True, extra={"context": context})
            alert_error("Inbound job failed", {k: v for k, v in context.items() if k != "error_type"})
            return "failed"

        mark_job_done(db, job_id=job_id, result_json=result.model_dump(mode="json"))
        logger.info(
            "Job done",
            extra={"context": {**context, "status": result.status.value, "duration_ms": result.duration_ms}},
        )
        return result.status.value

    async def process_rows(self, rows: list[dict]) -> dict:
        """Process a batch and wait for it. Returns counts per outcome."""
        outcomes = await asyncio.gather(*(self.handle_row(row) for row in rows))
        results: dict = {"claimed": len(rows)}
        for outcome in outcomes:
            results[outcome] = results.get(outcome, 0) + 1
        return results

    async def run_once(self) -> int:
        """Claim as many rows as free slots and the shared intake budget allow; schedule them."""
        free_slots = self.config.worker_concurrency - self.in_flight
        if free_slots <= 0:
            return 0
        limit = await self.intake.reserve(
            INTAKE_KEY, free_slots, self.config.worker_intake_per_minute, INTAKE_WINDOW_SECONDS
        )
        if limit <= 0:
            return 0

        try:
            rows = await asyncio.to_thread(self._claim, limit)
        except Exception:
            await self.intake.refund(INTAKE_KEY, limit)
            raise
        if len(rows) < limit:
            await self.intake.refund(INTAKE_KEY, limit - len(rows))

        for row in rows:
            task = asyncio.create_task(self.handle_row(row))
            self._in_flight.add(task)
            task.add_done_callback(self._on_task_done)
        return len(rows)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Job task crashed, row left for the stale sweep",
                exc_info=exc,
                extra={"context": {"error": str(exc), "error_type": type(exc).__name__}},
            )

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop_event = stop_event or asyncio.Event()
        logger.info(
            "Worker loop started",
            extra={
                "context": {
                    "concurrency": self.config.worker_concurrency,
                    "intake_per_minute": self.config.worker_intake_per_minute,
                }
            },
        )
        try:
            while not stop_event.is_set():
                try:
                    claimed = await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error("Worker loop iteration failed", extra={"context": {"error": str(exc)}})
                    claimed = 0
                if claimed == 0:
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=self.config.worker_poll_interval_seconds)
                    except asyncio.TimeoutError:
                        pass
        finally:
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            logger.info("Worker loop stopped")


def build_worker_loop(redis_client, session_factory: Optional[Callable[[], Session]] = None) -> WorkerLoop:
    from concierge.database import SessionLocal

    worker = MessageWorker(redis_client)
    return WorkerLoop(worker, session_factory or SessionLocal, rate_limiter=RateLimiter(redis_client))
