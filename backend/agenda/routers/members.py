# backend/agenda/routers/members.py
# Member operations that must keep the agenda consistent

from datetime import datetime

from fastapi import APIRouter, Depends, status
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..redis_client import get_redis
from ..schemas.members import AccessCodeRead, ChangeLocationRequest, MemberRead
from ..services import catalog
from ..services.slots import invalidate_provider_cache
from ..services.slots.timeslot import get_now

router = APIRouter(prefix="/providers/{provider_id}/members", tags=["members"])


@router.post("/{id}/location", response_model=MemberRead)
def change_location(
    provider_id: int,
    id: int,
    data: ChangeLocationRequest,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    member = catalog.change_location(db, provider_id, id, data.location_id)
    invalidate_provider_cache(redis, provider_id)
    return member


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_member(
    provider_id: int,
    id: int,
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
    now: datetime = Depends(get_now),
):
    catalog.delete_member(db, provider_id, id, now=now)
    invalidate_provider_cache(redis, provider_id)


@router.post("/{id}/access_code", response_model=AccessCodeRead)
def regenerate_access_code(provider_id: int, id: int, db: Session = Depends(get_db)):
    code = catalog.regenerate_access_code(db, provider_id, id)
    return AccessCodeRead(member_id=id, access_code=code)
