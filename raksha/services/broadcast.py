"""Location fetch and contact broadcast shared by the ticker and the monitor."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from raksha.core.errors import LocationUnavailable, PersistenceError
from raksha.models.user import User
from raksha.services.contact_service import list_contacts
from raksha.services.location_provider import LocationProvider, PositionFix
from raksha.services.notification_gateway import DeliveryReport, NotificationGateway, Recipient

logger = logging.getLogger(__name__)


async def fetch_position(provider: LocationProvider, owner_id: int, timeout_seconds: float) -> PositionFix:
    """Single-shot position with a bounded wait. Any failure is LocationUnavailable."""
    try:
        return await asyncio.wait_for(provider.get_current_position(owner_id), timeout=timeout_seconds)
    except LocationUnavailable:
        raise
    except asyncio.TimeoutError as exc:
        raise LocationUnavailable(f"Location fetch timed out after {timeout_seconds}s") from exc
    except Exception as exc:  # noqa: BLE001
        raise LocationUnavailable(f"Location fetch failed: {exc}") from exc


def load_recipients(db: Session, owner_id: int) -> tuple[str, list[Recipient]]:
    """Sender display name and the owner's full contact list."""
    try:
        owner = db.get(User, owner_id)
        contacts = list_contacts(db, owner_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"load contacts failed: {exc.__class__.__name__}") from exc
    sender_name = owner.full_name if owner else "A Raksha user"
    recipients = [Recipient(phone=c.phone, name=c.name) for c in contacts]
    return sender_name, recipients


async def broadcast_position(
    gateway: NotificationGateway,
    recipients: list[Recipient],
    fix: PositionFix,
    sender_name: str,
    critical: bool = False,
) -> DeliveryReport:
    """Send the fix to every contact. Partial failures are logged, not raised."""
    report = await gateway.send(fix.latitude, fix.longitude, recipients, sender_name, critical=critical)
    partial = report.partial_failure()
    if partial is not None:
        logger.warning("Partial delivery: %s", partial)
    return report
