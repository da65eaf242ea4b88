"""Emergency contact service."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from raksha.core.checkin_policies import MAX_CONTACTS_PER_USER
from raksha.core.errors import ContactLimitError, NotFoundError
from raksha.models.contact import Contact
from raksha.schemas.contact import ContactCreate

logger = logging.getLogger(__name__)


def list_contacts(db: Session, owner_id: int) -> list[Contact]:
    """Owner's contacts in the order they were added."""
    result = db.execute(
        select(Contact).where(Contact.owner_id == owner_id).order_by(Contact.id)
    )
    return list(result.scalars().all())


def count_contacts(db: Session, owner_id: int) -> int:
    return db.execute(
        select(func.count()).select_from(Contact).where(Contact.owner_id == owner_id)
    ).scalar_one()


def add_contact(db: Session, owner_id: int, data: ContactCreate) -> Contact:
    """Add a contact. The per-owner cap is checked before the insert."""
    if count_contacts(db, owner_id) >= MAX_CONTACTS_PER_USER:
        raise ContactLimitError(f"You can add at most {MAX_CONTACTS_PER_USER} emergency contacts")

    contact = Contact(
        owner_id=owner_id,
        name=data.name,
        phone=data.phone,
        relationship=data.relationship,
    )
    db.add(contact)
    db.commit()
    db.refresh(contact)
    logger.info("Contact added: owner=%s contact=%s", owner_id, contact.id)
    return contact


def delete_contact(db: Session, owner_id: int, contact_id: int) -> None:
    contact = db.get(Contact, contact_id)
    if not contact or contact.owner_id != owner_id:
        raise NotFoundError("Contact not found")
    db.delete(contact)
    db.commit()
    logger.info("Contact removed: owner=%s contact=%s", owner_id, contact_id)
