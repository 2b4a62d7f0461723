# backend/agenda/routers/exceptions.py
# PUT = upsert by date, DELETE = idempotent (hard)

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..redis_client import get_redis
from ..schemas.availability import DayTemplateRead, ExceptionSet
from ..services.slots import invalidate_provider_cache
from ..services.slots.schedule import delete_exception, get_exceptions, set_exception
from .availability import to_read

router = APIRouter(prefix="/providers/{provider_id}/exceptions", tags=["exceptions"])


@router.get("/", response_model=list[DayTemplateRead])
def list_exceptions(
    provider_id: int,
    location_id: int,
    start_date: date,
    end_date: date,
    member_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    templates = get_exceptions(db, provider_id, location_id, member_id, start_date, end_date)
    return [to_read(t) for t in templates]


@router.put("/", response_model=DayTemplateRead)
def put_exception(
    provider_id: int,
    data: ExceptionSet,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    template = set_exception(db, provider_id, data)
    invalidate_provider_cache(redis, provider_id)
    return to_read(template)


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_exception(
    provider_id: int,
    id: int,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    delete_exception(db, provider_id, id)
    invalidate_provider_cache(redis, provider_id)
