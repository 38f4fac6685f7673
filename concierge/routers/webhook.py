from dataclasses import dataclass, field
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from concierge.config import settings
from concierge.database import get_db
from concierge.errors import ValidationError
from concierge.logging_config import get_logger, mask_phone
from concierge.schemas.jobs import InboundMessageJob, MediaType
from concierge.schemas.webhook import WebhookResponse
from concierge.services.alert_service import alert_critical, alert_warning
from concierge.services.conversation_service import (
    chat_has_messages,
    get_or_create_chat,
    get_or_create_customer,
    get_salon_by_whatsapp,
)
from concierge.services.idempotency import IdempotencyStore
from concierge.services.job_queue import enqueue_job
from concierge.services.media_service import normalize_media_type
from concierge.services.message_worker import RATE_LIMIT_NOTICE
from concierge.services.rate_limiter import RateLimiter, phone_key, salon_key
from concierge.services.redis_client import get_redis
from concierge.services.signature import reconstruct_public_url, validate_twilio_signature
from concierge.services.whatsapp_service import normalize_phone, send_whatsapp_message

logger = get_logger("webhook")

router = APIRouter()

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
MAX_MEDIA_ITEMS = 10


@dataclass
class InboundFields:
    message_id: str
    sender_raw: str
    sender_phone: str
    recipient_phone: str
    body: str
    profile_name: Optional[str] = None
    media_urls: list[str] = field(default_factory=list)
    media_content_types: list[str] = field(default_factory=list)

    @property
    def has_media(self) -> bool:
        return bool(self.media_urls or self.media_content_types)

    @property
    def media_type(self) -> MediaType:
        if not self.has_media:
            return MediaType.NONE
        media_type = normalize_media_type(self.media_content_types[0] if self.media_content_types else None)
        return MediaType.DOCUMENT if media_type == MediaType.NONE else media_type


def _coerce_int(value: Optional[str], default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def parse_inbound_fields(params: dict[str, str]) -> InboundFields:
    """Extract the provider fields; raises ValidationError when the message is unusable."""
    sender_raw = (params.get("From") or "").strip()
    recipient_raw = (params.get("To") or "").strip()
    body = (params.get("Body") or "").strip()
    message_id = (params.get("MessageSid") or params.get("SmsMessageSid") or "").strip()

    num_media = min(_coerce_int(params.get("NumMedia")), MAX_MEDIA_ITEMS)
    media_urls = []
    media_types = []
    for index in range(num_media):
        url = (params.get(f"MediaUrl{index}") or "").strip()
        if url:
            media_urls.append(url)
        content_type = (params.get(f"MediaContentType{index}") or "").strip()
        if content_type:
            media_types.append(content_type)

    missing = [name for name, value in (("From", sender_raw), ("To", recipient_raw), ("MessageSid", message_id)) if not value]
    if missing:
        raise ValidationError("Missing required fields", context={"missing": missing})
    if not body and num_media <= 0:
        raise ValidationError("Message has neither text nor media")

    sender_phone = normalize_phone(sender_raw)
    recipient_phone = normalize_phone(recipient_raw)
    if not sender_phone or not recipient_phone:
        raise ValidationError("Invalid phone number", context={"from": mask_phone(sender_raw)})

    return InboundFields(
        message_id=message_id,
        sender_raw=sender_raw,
        sender_phone=sender_phone,
        recipient_phone=recipient_phone,
        body=body,
        profile_name=(params.get("ProfileName") or "").strip() or None,
        media_urls=media_urls,
        media_content_types=media_types,
    )


def _response(status_code: int, success: bool, message: str, **kwargs) -> JSONResponse:
    payload = WebhookResponse(success=success, message=message, **kwargs)
    return JSONResponse(status_code=status_code, content=payload.model_dump(mode="json", exclude_none=True))


async def _send_rate_limit_notice(salon_number: str, destination: str) -> None:
    try:
        await send_whatsapp_message(from_number=salon_number, to=destination, body=RATE_LIMIT_NOTICE)
    except Exception as exc:
        logger.warning("Rate limit notice not delivered", extra={"context": {"error": str(exc)}})


@router.post("/webhooks/whatsapp")
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    redis_client=Depends(get_redis),
):
    """Twilio inbound message webhook. Acknowledges fast; processing happens in the worker."""
    content_type = (request.headers.get("content-type") or "").lower()
    if not content_type.startswith(FORM_CONTENT_TYPES):
        logger.info("Webhook rejected: unsupported content type", extra={"context": {"content_type": content_type}})
        return _response(400, False, "Unsupported content type")

    form = await request.form()
    params = {key: value for key, value in form.items() if isinstance(value, str)}

    if not settings.is_development and not settings.twilio_signature_bypass:
        signature = request.headers.get("x-twilio-signature")
        url = reconstruct_public_url(request)
        if not validate_twilio_signature(settings.twilio_auth_token, signature, url, params):
            logger.warning(
                "Webhook rejected: invalid signature",
                extra={"context": {"url": url, "has_signature": bool(signature)}},
            )
            return _response(401, False, "Invalid signature")

    try:
        fields = parse_inbound_fields(params)
    except ValidationError as exc:
        logger.info("Webhook rejected: invalid payload", extra={"context": {"error": exc.message, **exc.context}})
        return _response(400, False, exc.message)

    log_context = {
        "message_id": fields.message_id,
        "from": mask_phone(fields.sender_phone),
        "to": fields.recipient_phone,
        "has_media": fields.has_media,
    }

    try:
        salon = get_salon_by_whatsapp(db, fields.recipient_phone)
        if salon is None:
            logger.warning("Webhook for unknown salon number", extra={"context": {**log_context, "event": "tenant_not_found"}})
            alert_warning("WhatsApp message for unknown number", {"to": fields.recipient_phone})
            return _response(200, False, "Salon not found for recipient number", message_id=fields.message_id)

        idempotency = IdempotencyStore(redis_client, ttl_seconds=settings.dedup_ttl_seconds)
        claimed_in_redis = False
        try:
            if not await idempotency.claim(fields.message_id):
                logger.info("Duplicate webhook delivery", extra={"context": log_context})
                return _response(200, True, "Duplicate message", message_id=fields.message_id)
            claimed_in_redis = True
        except Exception as exc:
            # Queue's UNIQUE(message_id) still deduplicates.
            logger.warning("Idempotency store unavailable", extra={"context": {**log_context, "error": str(exc)}})

        limiter = RateLimiter(redis_client)
        for key, limit, window in (
            (phone_key(fields.sender_phone), settings.rate_limit_phone_max, settings.rate_limit_phone_window_seconds),
            (salon_key(salon.id), settings.rate_limit_salon_max, settings.rate_limit_salon_window_seconds),
        ):
            try:
                info = await limiter.hit(key, limit, window)
                notify = not info.allowed and await limiter.claim_notice(phone_key(fields.sender_phone), info.reset_in)
            except Exception as exc:
                logger.warning("Rate limiter unavailable", extra={"context": {**log_context, "error": str(exc)}})
                continue
            if not info.allowed:
                logger.info(
                    "Webhook rate limited",
                    extra={"context": {**log_context, "key": key.split(":")[0], "count": info.count, "limit": limit}},
                )
                if notify:
                    await _send_rate_limit_notice(salon.whatsapp_number, fields.sender_raw)
                return _response(200, True, "Rate limited", message_id=fields.message_id)

        customer, customer_created = get_or_create_customer(db, salon.id, fields.sender_phone, fields.profile_name)
        chat, _ = get_or_create_chat(db, salon.id, fields.sender_phone, customer.id)
        is_new_customer = customer_created or not chat_has_messages(db, chat.id)
        db.commit()

        job = InboundMessageJob(
            message_id=fields.message_id,
            chat_id=chat.id,
            salon_id=salon.id,
            customer_id=customer.id,
            sender_phone=fields.sender_phone,
            reply_destination=fields.sender_raw,
            salon_number=salon.whatsapp_number,
            body_text=fields.body,
            has_media=fields.has_media,
            media_type=fields.media_type,
            media_url=fields.media_urls[0] if fields.media_urls else None,
            media_urls=fields.media_urls,
            customer_name=customer.name or fields.profile_name,
            profile_name=fields.profile_name,
            is_new_customer=is_new_customer,
        )

        try:
            job_id = enqueue_job(db, job)
        except Exception as exc:
            db.rollback()
            logger.error("Enqueue failed", exc_info=True, extra={"context": {**log_context, "error": str(exc)}})
            if claimed_in_redis:
                try:
                    await idempotency.release(fields.message_id)
                except Exception as release_exc:
                    logger.warning("Idempotency release failed", extra={"context": {"error": str(release_exc)}})
            alert_critical("Inbound queue unavailable", {"message_id": fields.message_id, "error": str(exc)[:200]})
            return _response(500, False, "Queue unavailable", message_id=fields.message_id)

        if job_id is None:
            logger.info("Duplicate message already queued", extra={"context": log_context})
            return _response(200, True, "Duplicate message", message_id=fields.message_id)

        logger.info(
            "Message enqueued",
            extra={"context": {**log_context, "job_id": str(job_id), "chat_id": str(chat.id), "salon_id": str(salon.id)}},
        )
        return _response(200, True, "Queued", message_id=fields.message_id, chat_id=chat.id, job_id=job_id)
    except Exception as exc:
        db.rollback()
        logger.error("Webhook processing failed", exc_info=True, extra={"context": {**log_context, "error": str(exc)}})
        return _response(200, False, "Internal error", message_id=fields.message_id)
