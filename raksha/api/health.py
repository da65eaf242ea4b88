"""Health check endpoint."""

from fastapi import APIRouter, Depends

from raksha.core.deps import get_engine
from raksha.services.checkin_engine import CheckinEngine

router = APIRouter(tags=["health"])


@router.get("/health")
def health(engine: CheckinEngine = Depends(get_engine)) -> dict:
    """API health plus the number of sessions with running timers."""
    return {"status": "ok", "active_timers": len(engine.scheduler.scheduled_sessions)}
