"""raksha FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from raksha.api import auth, checkins, contacts, health, location, recordings, sos, ws
from raksha.core.config import settings
from raksha.db.session import SessionLocal
from raksha.services.checkin_engine import build_engine

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_engine(SessionLocal, settings)
    app.state.checkin_engine = engine
    if settings.resume_sessions_on_startup:
        await engine.resume_open_sessions()
    try:
        yield
    finally:
        await engine.shutdown()
        logger.info("Check-in engine stopped")


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(contacts.router)
app.include_router(checkins.router)
app.include_router(recordings.router)
app.include_router(sos.router)
app.include_router(location.router)
app.include_router(ws.router)
