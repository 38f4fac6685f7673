from datetime import datetime, timezone
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from concierge.models import Chat, Customer, Message, Salon


def get_salon_by_whatsapp(db: Session, whatsapp_number: str) -> Optional[Salon]:
    """Resolve the tenant owning the provider number that received a message."""
    if not whatsapp_number:
        return None
    return db.query(Salon).filter(Salon.whatsapp_number == whatsapp_number).first()


def get_or_create_customer(
    db: Session,
    salon_id: UUID,
    phone: str,
    name: Optional[str] = None,
) -> Tuple[Customer, bool]:
    """Find customer by phone or create new one. Returns (customer, created)."""
    customer = db.query(Customer).filter(Customer.salon_id == salon_id, Customer.phone == phone).first()
    if customer:
        if name and not customer.name:
            customer.name = name
            db.flush()
        return customer, False

    customer = Customer(salon_id=salon_id, phone=phone, name=name, created_at=datetime.now(timezone.utc))
    try:
        with db.begin_nested():
            db.add(customer)
            db.flush()
    except IntegrityError:
        # Another request created it between our read and insert.
        customer = db.query(Customer).filter(Customer.salon_id == salon_id, Customer.phone == phone).first()
        return customer, False
    return customer, True


def get_or_create_chat(
    db: Session,
    salon_id: UUID,
    client_phone: str,
    customer_id: Optional[UUID] = None,
) -> Tuple[Chat, bool]:
    """One chat per (salon, phone): found or created, never duplicated."""
    chat = db.query(Chat).filter(Chat.salon_id == salon_id, Chat.client_phone == client_phone).first()
    if chat:
        if customer_id and not chat.customer_id:
            chat.customer_id = customer_id
            db.flush()
        return chat, False

    chat = Chat(
        salon_id=salon_id,
        client_phone=client_phone,
        customer_id=customer_id,
        is_manual=False,
        created_at=datetime.now(timezone.utc),
    )
    try:
        with db.begin_nested():
            db.add(chat)
            db.flush()
    except IntegrityError:
        chat = db.query(Chat).filter(Chat.salon_id == salon_id, Chat.client_phone == client_phone).first()
        return chat, False
    return chat, True


def chat_has_messages(db: Session, chat_id: UUID) -> bool:
    return db.query(Message.id).filter(Message.chat_id == chat_id).first() is not None


def is_manual(db: Session, chat_id: UUID) -> bool:
    """Fresh read of the human-takeover flag."""
    value = db.query(Chat.is_manual).filter(Chat.id == chat_id).scalar()
    return bool(value)


def set_manual(db: Session, chat_id: UUID, value: bool) -> Optional[Chat]:
    chat = db.query(Chat).filter(Chat.id == chat_id).first()
    if not chat:
        return None
    chat.is_manual = value
    db.commit()
    return chat


def get_customer(db: Session, customer_id: Optional[UUID]) -> Optional[Customer]:
    if not customer_id:
        return None
    return db.query(Customer).filter(Customer.id == customer_id).first()


def get_salon(db: Session, salon_id: UUID) -> Optional[Salon]:
    return db.query(Salon).filter(Salon.id == salon_id).first()
