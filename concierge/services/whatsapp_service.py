"""Reply dispatch through the Twilio WhatsApp Messages API."""

import re
from typing import Optional

import httpx

from concierge.config import settings
from concierge.errors import WhatsAppError
from concierge.logging_config import get_logger, mask_phone
from concierge.services.alert_service import alert_error

logger = get_logger("whatsapp_service")

WHATSAPP_PREFIX = "whatsapp:"
MAX_BODY_CHARS = 1600


def normalize_phone(raw: Optional[str]) -> str:
    """'whatsapp:+55 (11) 99999-0000' -> '+5511999990000'."""
    value = (raw or "").strip()
    if value.lower().startswith(WHATSAPP_PREFIX):
        value = value[len(WHATSAPP_PREFIX):]
    digits = re.sub(r"\D", "", value)
    return f"+{digits}" if digits else ""


def to_whatsapp_address(destination: str) -> str:
    """Opaque routing IDs pass through; plain numbers get the channel prefix."""
    value = (destination or "").strip()
    if value.lower().startswith(WHATSAPP_PREFIX):
        return value
    return f"{WHATSAPP_PREFIX}{normalize_phone(value)}"


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


async def send_whatsapp_message(
    *,
    from_number: str,
    to: str,
    body: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Send a text message and return the provider message SID.

    Raises WhatsAppError; 429, 5xx and transport failures are retryable.
    """
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise WhatsAppError("Twilio credentials are not configured", retryable=False)
    if not body or not body.strip():
        raise WhatsAppError("Refusing to send an empty message", retryable=False)

    url = f"{settings.twilio_api_base}/Accounts/{settings.twilio_account_sid}/Messages.json"
    data = {
        "From": to_whatsapp_address(from_number),
        "To": to_whatsapp_address(to),
        "Body": body[:MAX_BODY_CHARS],
    }
    log_context = {"to": mask_phone(to), "from": mask_phone(from_number), "chars": len(body)}

    auth = (settings.twilio_account_sid, settings.twilio_auth_token)

    try:
        if http_client is None:
            async with httpx.AsyncClient(timeout=settings.twilio_timeout_seconds) as client:
                response = await client.post(url, data=data, auth=auth)
        else:
            response = await http_client.post(url, data=data, auth=auth)
    except httpx.HTTPError as exc:
        logger.warning("WhatsApp send transport error", extra={"context": {**log_context, "error": str(exc)}})
        raise WhatsAppError(f"Twilio request failed: {exc}", retryable=True, context=log_context) from exc

    if response.status_code >= 300:
        retryable = _is_retryable_status(response.status_code)
        logger.error(
            "WhatsApp send rejected",
            extra={
                "context": {
                    **log_context,
                    "status": response.status_code,
                    "retryable": retryable,
                    "body": response.text[:200],
                }
            },
        )
        if not retryable:
            alert_error("WhatsApp send rejected", {"status": response.status_code, "to": mask_phone(to)})
        raise WhatsAppError(
            f"Twilio error {response.status_code}",
            retryable=retryable,
            provider_status=response.status_code,
            context=log_context,
        )

    sid = (response.json() or {}).get("sid") or ""
    logger.info("WhatsApp message sent", extra={"context": {**log_context, "sid": sid}})
    return sid
