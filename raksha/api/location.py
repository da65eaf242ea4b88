"""Device location reports."""

from datetime import timezone

from fastapi import APIRouter, Depends, status

from raksha.core.clock import utcnow
from raksha.core.deps import get_current_user, get_engine
from raksha.models.user import User
from raksha.schemas.location import LocationReport
from raksha.services.checkin_engine import CheckinEngine
from raksha.services.location_provider import PositionFix

router = APIRouter(tags=["location"])


def report_to_fix(report: LocationReport) -> PositionFix:
    """Device timestamps without an offset are taken as UTC."""
    captured_at = report.captured_at or utcnow()
    if captured_at.tzinfo is None:
        captured_at = captured_at.replace(tzinfo=timezone.utc)
    return PositionFix(
        latitude=report.latitude,
        longitude=report.longitude,
        accuracy_m=report.accuracy_m,
        captured_at=captured_at.astimezone(timezone.utc),
    )


@router.post("/location", status_code=status.HTTP_202_ACCEPTED)
async def report_location(
    data: LocationReport,
    current_user: User = Depends(get_current_user),
    engine: CheckinEngine = Depends(get_engine),
):
    """Push the device's current position. Used for the next broadcast."""
    engine.location_provider.report(current_user.id, report_to_fix(data))
    return {"accepted": True}
