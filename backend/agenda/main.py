import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from redis import Redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from .config import settings
from .database import engine, get_db
from .errors import (
    AgendaError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    SlotUnavailableError,
    ValidationError,
)
from .models import Base
from .redis_client import get_redis
from .routers import availability, blocked_periods, bookings, exceptions, members, planning, slots

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
    SlotUnavailableError: 409,
    PersistenceError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    Base.metadata.create_all(bind=engine)
    logger.info("Agenda API started")
    yield


app = FastAPI(title="Agenda API", lifespan=lifespan)


@app.exception_handler(AgendaError)
async def agenda_error_handler(request: Request, exc: AgendaError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.kind, "retryable": exc.retryable},
    )


app.include_router(availability.router)
app.include_router(exceptions.router)
app.include_router(blocked_periods.router)
app.include_router(slots.router)
app.include_router(bookings.public_router)
app.include_router(bookings.router)
app.include_router(members.router)
app.include_router(planning.router)


@app.get("/health")
def health(db: Session = Depends(get_db), redis: Redis = Depends(get_redis)):
    db.execute(text("SELECT 1"))
    return {"redis": redis.ping(), "database": True}
