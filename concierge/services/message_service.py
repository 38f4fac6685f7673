import re
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from concierge.logging_config import get_logger
from concierge.models import Chat, Message, MessageLog

logger = get_logger("message_service")

QUESTION_PHRASES = (
    "qual ",
    "quais ",
    "quando ",
    "onde ",
    "como ",
    "prefere",
    "gostaria",
    "posso ",
    "pode me",
    "me diga",
    "me informe",
    "confirma",
)


def requires_response(text: str) -> bool:
    """Heuristic: does this assistant message expect the customer to reply?"""
    stripped = (text or "").strip()
    if not stripped:
        return False
    if stripped.endswith("?"):
        return True
    lowered = stripped.lower()
    last_sentence = re.split(r"[.!\n]+", lowered.rstrip(".! \n"))[-1]
    return any(phrase in last_sentence for phrase in QUESTION_PHRASES)


def save_message(
    db: Session,
    chat_id: UUID,
    role: str,
    content: str,
    message_metadata: Optional[dict] = None,
    requires_response: bool = False,
) -> Message:
    """Save message to database."""
    now = datetime.now(timezone.utc)
    message = Message(
        chat_id=chat_id,
        role=role,
        content=content,
        message_metadata=message_metadata or {},
        requires_response=requires_response,
        created_at=now,
    )
    db.add(message)
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.last_message_at: now})
    db.commit()
    return message


def find_message_by_provider_id(db: Session, chat_id: UUID, message_id: str) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(
            Message.chat_id == chat_id,
            Message.role == "user",
            Message.message_metadata["message_id"].astext == message_id,
        )
        .first()
    )


def save_inbound_message(
    db: Session,
    chat_id: UUID,
    content: str,
    message_id: str,
    message_metadata: Optional[dict] = None,
) -> Message:
    """Idempotent on the provider message_id so job retries don't duplicate it."""
    existing = find_message_by_provider_id(db, chat_id, message_id)
    if existing:
        return existing

    now = datetime.now(timezone.utc)
    message = Message(
        chat_id=chat_id,
        role="user",
        content=content,
        message_metadata={**(message_metadata or {}), "message_id": message_id},
        created_at=now,
    )
    try:
        with db.begin_nested():
            db.add(message)
            db.flush()
    except IntegrityError:
        # A concurrent run of the same job stored it between our read and insert.
        return find_message_by_provider_id(db, chat_id, message_id)
    db.query(Chat).filter(Chat.id == chat_id).update({Chat.last_message_at: now})
    db.commit()
    return message


def get_history(
    db: Session,
    chat_id: UUID,
    limit: int = 10,
    exclude_message_id: Optional[str] = None,
) -> List[dict]:
    """Last `limit` messages in chronological order, as LLM chat messages."""
    rows = (
        db.query(Message)
        .filter(Message.chat_id == chat_id)
        .order_by(Message.created_at.desc())
        .limit(limit + 1)
        .all()
    )
    history = []
    for row in rows:
        if exclude_message_id and (row.message_metadata or {}).get("message_id") == exclude_message_id:
            continue
        if row.role not in ("user", "assistant") or not row.content:
            continue
        history.append({"role": row.role, "content": row.content})
    return list(reversed(history[:limit]))


def log_message_best_effort(
    db: Session,
    *,
    salon_id: UUID,
    chat_id: Optional[UUID],
    direction: str,
    body: str,
    provider_message_id: Optional[str] = None,
    status: str = "received",
) -> bool:
    """Write the secondary message_logs row. At-most-once: failures are logged and dropped."""
    try:
        db.add(
            MessageLog(
                salon_id=salon_id,
                chat_id=chat_id,
                direction=direction,
                body=body,
                provider_message_id=provider_message_id,
                status=status,
                created_at=datetime.now(timezone.utc),
            )
        )
        db.commit()
        return True
    except Exception as exc:
        db.rollback()
        logger.warning(
            "Message log write failed",
            extra={
                "context": {
                    "salon_id": str(salon_id),
                    "chat_id": str(chat_id) if chat_id else None,
                    "direction": direction,
                    "error": str(exc),
                }
            },
        )
        return False
