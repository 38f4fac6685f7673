"""Persist provider media URLs, which expire, into local storage."""

import hashlib
import mimetypes
import re
from pathlib import Path
from typing import Optional

import httpx

from concierge.config import settings
from concierge.logging_config import get_logger
from concierge.schemas.jobs import MediaType

logger = get_logger("media_service")

MIME_PREFIXES = (
    ("image/", MediaType.IMAGE),
    ("audio/", MediaType.AUDIO),
    ("video/", MediaType.VIDEO),
)


def normalize_media_type(mime: Optional[str]) -> MediaType:
    value = (mime or "").strip().lower()
    if not value:
        return MediaType.NONE
    for prefix, media_type in MIME_PREFIXES:
        if value.startswith(prefix):
            return media_type
    return MediaType.DOCUMENT


def _safe_name(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]", "_", value or "")[:64] or "media"


def _guess_extension(mime: Optional[str]) -> str:
    return mimetypes.guess_extension(mime or "") or ".bin"


async def store_media(
    *,
    media_url: str,
    salon_id,
    chat_id,
    message_id: str,
    mime: Optional[str] = None,
    storage_dir: Optional[str] = None,
    max_bytes: Optional[int] = None,
) -> dict:
    """Download `media_url` to disk. Best-effort: returns {"stored": False, "error": ...} instead of raising."""
    if not media_url:
        return {"stored": False, "error": "missing_url"}

    target_dir = Path(storage_dir or settings.media_storage_dir) / str(salon_id) / str(chat_id)
    max_bytes = max_bytes or settings.media_max_bytes
    target_path = target_dir / f"{_safe_name(message_id)}{_guess_extension(mime)}"

    auth = None
    if settings.twilio_account_sid and settings.twilio_auth_token:
        auth = (settings.twilio_account_sid, settings.twilio_auth_token)

    digest = hashlib.sha256()
    size_bytes = 0
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        async with httpx.AsyncClient(timeout=15.0, follow_redirects=True) as client:
            async with client.stream("GET", media_url, auth=auth) as response:
                response.raise_for_status()
                with target_path.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        if not chunk:
                            continue
                        size_bytes += len(chunk)
                        if size_bytes > max_bytes:
                            break
                        digest.update(chunk)
                        handle.write(chunk)
    except Exception as exc:
        if target_path.exists():
            target_path.unlink()
        logger.warning("Media download failed", extra={"context": {"message_id": message_id, "error": str(exc)}})
        return {"stored": False, "error": f"download_failed:{exc}"}

    if size_bytes > max_bytes:
        target_path.unlink(missing_ok=True)
        return {"stored": False, "error": "too_large"}

    return {
        "stored": True,
        "path": str(target_path),
        "size_bytes": size_bytes,
        "sha256": digest.hexdigest(),
    }
