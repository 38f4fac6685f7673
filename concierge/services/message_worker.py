"""Per-job processing: rate re-check, per-chat lock, manual mode, media, AI turn, dispatch."""

import time
from dataclasses import asdict
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from concierge.config import Settings, settings as default_settings
from concierge.errors import (
    LockTimeoutError,
    NotFoundError,
    WhatsAppError,
    get_user_friendly_message,
    is_retryable,
)
from concierge.logging_config import LoggerAdapter, get_logger, mask_phone
from concierge.schemas.jobs import InboundMessageJob, JobResult, JobStatus
from concierge.services import conversation_service, message_service
from concierge.services.ai_service import TurnResult, build_turn_prompt, run_turn
from concierge.services.idempotency import IdempotencyStore
from concierge.services.llm import LLMProvider
from concierge.services.locks import DistributedLock, chat_lock_key
from concierge.services.media_service import store_media
from concierge.services.rate_limiter import RateLimiter, phone_key
from concierge.services.tools import SchedulingClient, ToolContext, ToolRegistry
from concierge.services.whatsapp_service import send_whatsapp_message

logger = get_logger("message_worker")

MEDIA_REPLY = (
    "Olá! No momento, aceitamos apenas mensagens de texto. Recebi sua {label}, mas não consigo processá-la. "
    "Por favor, envie sua mensagem digitada. Obrigado!"
)
RATE_LIMIT_NOTICE = "Você está enviando muitas mensagens. Por favor, aguarde um momento antes de enviar outra."

SendMessage = Callable[..., Awaitable[str]]


class MessageWorker:
    def __init__(
        self,
        redis_client,
        *,
        llm_provider: Optional[LLMProvider] = None,
        scheduling_client: Optional[SchedulingClient] = None,
        send_message: SendMessage = send_whatsapp_message,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.idempotency = IdempotencyStore(redis_client, ttl_seconds=self.config.dedup_ttl_seconds)
        self.rate_limiter = RateLimiter(redis_client)
        self.lock = DistributedLock(redis_client, ttl_ms=self.config.lock_ttl_ms)
        self.llm_provider = llm_provider
        self.scheduling_client = scheduling_client or SchedulingClient()
        self.send_message = send_message

    async def process(self, db: Session, job: InboundMessageJob, *, attempt: int = 1, job_id=None) -> JobResult:
        """Run one job to a terminal JobResult, or raise a retryable error for the queue."""
        started = time.monotonic()
        log = LoggerAdapter(
            logger,
            {
                "job_id": str(job_id) if job_id else None,
                "message_id": job.message_id,
                "chat_id": str(job.chat_id),
                "salon_id": str(job.salon_id),
                "attempt": attempt,
            },
        )

        if await self.idempotency.has_replied(job.message_id):
            log.info("Reply already dispatched, skipping")
            return self._result(job, JobStatus.DUPLICATE, started)

        rate_key = phone_key(job.sender_phone)
        rate = await self.rate_limiter.peek(rate_key, self.config.rate_limit_phone_max)
        if not rate.allowed:
            message_service.save_inbound_message(
                db, job.chat_id, job.body_text, job.message_id, {"rate_limited": True}
            )
            if await self.rate_limiter.claim_notice(rate_key, rate.reset_in):
                await self._send(job, RATE_LIMIT_NOTICE)
            result = self._result(job, JobStatus.RATE_LIMITED, started)
            log.info("Job rate limited", context={"count": rate.count, "reset_in": rate.reset_in})
            return result

        lock_key = chat_lock_key(job.chat_id)
        token = await self.lock.acquire_with_wait(
            lock_key,
            wait_seconds=self.config.lock_wait_seconds,
            retry_interval_seconds=self.config.lock_retry_interval_seconds,
        )
        if not token:
            raise LockTimeoutError(
                "Chat is busy with another message",
                context={"chat_id": str(job.chat_id), "message_id": job.message_id},
            )

        result: Optional[JobResult] = None
        try:
            result = await self._process_locked(db, job, log, started, token)
            return result
        finally:
            try:
                await self.lock.release(lock_key, token)
            except Exception as exc:
                log.warning("Lock release failed, lease will expire", context={"error": str(exc)})
            if result is not None:
                log.info(
                    "Job processed",
                    context={"status": result.status.value, "duration_ms": result.duration_ms},
                )

    async def _process_locked(
        self, db: Session, job: InboundMessageJob, log: LoggerAdapter, started: float, token: str
    ) -> JobResult:
        inbound_metadata = {
            "has_media": job.has_media,
            "media_type": job.media_type.value,
            "media_urls": job.media_urls,
            "profile_name": job.profile_name,
        }
        inbound = message_service.save_inbound_message(
            db, job.chat_id, job.body_text, job.message_id, inbound_metadata
        )
        message_service.log_message_best_effort(
            db,
            salon_id=job.salon_id,
            chat_id=job.chat_id,
            direction="inbound",
            body=job.body_text,
            provider_message_id=job.message_id,
        )

        if conversation_service.is_manual(db, job.chat_id):
            log.info("Chat in manual mode, AI suppressed")
            return self._result(job, JobStatus.MANUAL_MODE, started)

        try:
            if job.has_media:
                await self._persist_media(db, job, inbound)
                reply = MEDIA_REPLY.format(label=job.media_type.label)
                await self._dispatch(db, job, reply, kind="media_notice")
                return self._result(job, JobStatus.MEDIA_HANDLED, started, reply=reply)

            turn = await self._get_turn(db, job, log)
            if not await self.lock.extend(chat_lock_key(job.chat_id), token):
                log.warning("Chat lock lease lost before dispatch")
            await self._dispatch(
                db,
                job,
                turn.text,
                usage=turn.usage,
                requires_response=message_service.requires_response(turn.text),
            )
            return self._result(
                job,
                JobStatus.SUCCESS,
                started,
                reply=turn.text,
                usage=turn.usage,
                tool_errors=turn.tool_errors,
            )
        except Exception as exc:
            if is_retryable(exc):
                raise
            return await self._handle_terminal_error(db, job, exc, log, started)

    async def _handle_terminal_error(
        self, db: Session, job: InboundMessageJob, exc: Exception, log: LoggerAdapter, started: float
    ) -> JobResult:
        db.rollback()
        apology = get_user_friendly_message(exc)
        log.warning(
            "Non-retryable failure, sending apology",
            context={"error": str(exc), "error_type": type(exc).__name__},
        )
        try:
            await self._dispatch(db, job, apology, kind="error_apology")
        except WhatsAppError as send_exc:
            log.error("Apology could not be delivered", context={"error": str(send_exc)})
            apology = None
        return self._result(job, JobStatus.ERROR, started, reply=apology, error=str(exc))

    async def _get_turn(self, db: Session, job: InboundMessageJob, log: LoggerAdapter) -> TurnResult:
        """Replay a stored turn on redelivery so booking tools never run twice for one message."""
        stored = await self.idempotency.load_turn(job.message_id)
        if stored is not None:
            log.info("Replaying stored AI turn", context={"steps": stored.get("steps")})
            return TurnResult(**stored)

        turn = await self._run_ai(db, job)
        try:
            await self.idempotency.save_turn(job.message_id, asdict(turn))
        except Exception as exc:
            log.warning("AI turn not stored, a retry would run it again", context={"error": str(exc)})
        return turn

    async def _run_ai(self, db: Session, job: InboundMessageJob) -> TurnResult:
        salon = conversation_service.get_salon(db, job.salon_id)
        if salon is None:
            raise NotFoundError("Salon not found", context={"salon_id": str(job.salon_id)})
        customer = conversation_service.get_customer(db, job.customer_id)
        history = message_service.get_history(
            db, job.chat_id, limit=self.config.history_window, exclude_message_id=job.message_id
        )
        system_prompt = await build_turn_prompt(
            salon,
            user_text=job.body_text,
            customer=customer,
            customer_name=job.customer_name,
            is_new_customer=job.is_new_customer,
        )
        registry = ToolRegistry(
            self.scheduling_client,
            ToolContext(
                salon_id=job.salon_id,
                customer_phone=job.sender_phone,
                customer_id=job.customer_id,
                customer_name=job.customer_name or job.profile_name,
            ),
        )
        return await run_turn(
            system_prompt=system_prompt,
            history=history,
            user_text=job.body_text,
            registry=registry,
            provider=self.llm_provider,
            timeout_seconds=self.config.ai_timeout_seconds,
            max_steps=self.config.ai_max_steps,
        )

    async def _persist_media(self, db: Session, job: InboundMessageJob, inbound) -> None:
        if not job.media_url:
            return
        stored = await store_media(
            media_url=job.media_url,
            salon_id=job.salon_id,
            chat_id=job.chat_id,
            message_id=job.message_id,
        )
        if stored.get("stored"):
            inbound.message_metadata = {**(inbound.message_metadata or {}), "media_storage": stored}
            db.commit()

    async def _send(self, job: InboundMessageJob, text: str) -> str:
        return await self.send_message(
            from_number=job.salon_number,
            to=job.reply_destination or job.sender_phone,
            body=text,
        )

    async def _dispatch(
        self,
        db: Session,
        job: InboundMessageJob,
        text: str,
        *,
        kind: str = "reply",
        usage: Optional[dict] = None,
        requires_response: bool = False,
    ) -> None:
        """Send, set the reply marker, then persist. A retry after the marker never re-sends."""
        sid = await self._send(job, text)
        try:
            await self.idempotency.mark_replied(job.message_id)
        except Exception as exc:
            logger.warning(
                "Reply marker not stored",
                extra={"context": {"message_id": job.message_id, "error": str(exc)}},
            )

        message_service.save_message(
            db,
            job.chat_id,
            "assistant",
            text,
            {
                "kind": kind,
                "in_reply_to": job.message_id,
                "provider_sid": sid,
                "usage": usage or {},
            },
            requires_response=requires_response,
        )
        message_service.log_message_best_effort(
            db,
            salon_id=job.salon_id,
            chat_id=job.chat_id,
            direction="outbound",
            body=text,
            provider_message_id=sid,
            status="sent",
        )
        logger.info(
            "Reply dispatched",
            extra={"context": {"message_id": job.message_id, "kind": kind, "to": mask_phone(job.sender_phone)}},
        )

    @staticmethod
    def _result(job: InboundMessageJob, status: JobStatus, started: float, **kwargs) -> JobResult:
        return JobResult(
            status=status,
            message_id=job.message_id,
            chat_id=job.chat_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            **kwargs,
        )
