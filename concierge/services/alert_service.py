"""Operational alerts delivered to a Telegram chat."""

from typing import Optional

import httpx

from concierge.config import settings
from concierge.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = settings.alert_bot_token or None
ALERT_CHAT_ID = settings.alert_chat_id or None

LEVEL_MARKERS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send an alert. Never raises; returns True when Telegram accepted it."""
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(
            "Alert not configured",
            extra={"context": {"level": level, "alert": message, **(context or {})}},
        )
        return False

    text = f"{LEVEL_MARKERS.get(level, '📢')} *{level}* concierge\n\n{message}"
    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n```\n{context_str}\n```"

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": text, "parse_mode": "Markdown"},
            )
            return response.status_code == 200
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)
