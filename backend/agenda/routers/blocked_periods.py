# backend/agenda/routers/blocked_periods.py
# API.md: PATCH = 405, DELETE = ALLOWED (hard, idempotent)

from fastapi import APIRouter, Depends, HTTPException, status
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..redis_client import get_redis
from ..schemas.availability import BlockedPeriodCreate, BlockedPeriodRead
from ..services.slots import invalidate_provider_cache
from ..services.slots.blocked import (
    block_period,
    get_blocked_period,
    get_blocked_slots,
    unblock_period,
)

router = APIRouter(prefix="/providers/{provider_id}/blocked_periods", tags=["blocked_periods"])


@router.get("/", response_model=list[BlockedPeriodRead])
def list_blocked_periods(provider_id: int, db: Session = Depends(get_db)):
    return get_blocked_slots(db, provider_id)


@router.get("/{id}", response_model=BlockedPeriodRead)
def read_blocked_period(provider_id: int, id: int, db: Session = Depends(get_db)):
    obj = get_blocked_period(db, provider_id, id)
    if not obj:
        raise HTTPException(status_code=404, detail="Not found")
    return obj


@router.post("/", response_model=BlockedPeriodRead, status_code=status.HTTP_201_CREATED)
def create_blocked_period(
    provider_id: int,
    data: BlockedPeriodCreate,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    blocked_id = block_period(db, provider_id, data)
    invalidate_provider_cache(redis, provider_id)
    return get_blocked_period(db, provider_id, blocked_id)


@router.patch("/{id}")
def patch_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_period(
    provider_id: int,
    id: int,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    unblock_period(db, provider_id, id)
    invalidate_provider_cache(redis, provider_id)
