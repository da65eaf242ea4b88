"""SOS alerts API."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from raksha.core.clock import utcnow
from raksha.core.deps import get_current_user, get_engine
from raksha.core.errors import LocationUnavailable, PersistenceError
from raksha.db.session import get_db
from raksha.models.user import User
from raksha.schemas.sos import SosAlertResponse, SosTrigger
from raksha.services.checkin_engine import CheckinEngine
from raksha.services.location_provider import PositionFix
from raksha.services.sos_service import list_my_sos

router = APIRouter(prefix="/sos", tags=["sos"])


@router.get("/me", response_model=list[SosAlertResponse])
def list_my_alerts(
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List current user's SOS alerts, newest first."""
    return list_my_sos(db, current_user.id, limit)


@router.post("", response_model=SosAlertResponse)
async def trigger_sos(
    data: SosTrigger | None = Body(default=None),
    current_user: User = Depends(get_current_user),
    engine: CheckinEngine = Depends(get_engine),
):
    """Send an emergency SMS with your location to every contact right now."""
    fix = None
    if data is not None and data.latitude is not None:
        fix = PositionFix(
            latitude=data.latitude,
            longitude=data.longitude,
            accuracy_m=data.accuracy_m,
            captured_at=utcnow(),
        )
    try:
        return await engine.trigger_sos(current_user.id, fix)
    except LocationUnavailable as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
