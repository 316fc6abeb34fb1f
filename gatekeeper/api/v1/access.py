"""Access attempt and access log routes"""

import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from gatekeeper.api.deps import get_actor
from gatekeeper.config import settings
from gatekeeper.core.database import get_db
from gatekeeper.core.exceptions import RateLimitExceededError
from gatekeeper.core.scope import ActorContext, require_city_id
from gatekeeper.core.security import as_naive_utc
from gatekeeper.models.lock import Lock
from gatekeeper.schemas.access import (
    AccessLogPage,
    AccessLogResponse,
    AccessResult,
    Pagination,
    TapEvent,
)
from gatekeeper.services.access_service import access_service
from gatekeeper.services.rate_limiter import rate_limiter

router = APIRouter()


def _throttle_lock(lock: Lock) -> None:
    # Only existing locks get a bucket
    if not rate_limiter.allow(f"tap:{lock.id}", settings.TAP_RATE_LIMIT_PER_MINUTE, 60):
        raise RateLimitExceededError("Too many access attempts for this lock.")


@router.post("/attempt", status_code=status.HTTP_200_OK)
def record_access_attempt(
    tap: TapEvent,
    db: Session = Depends(get_db)
):
    """
    Evaluate a card tap reported by a lock's reader

    Denials are successful evaluations and come back with 200; only an
    unknown lock is an error.
    """
    record = access_service.decide(db, tap, admit=_throttle_lock)
    return {
        "success": True,
        "granted": record.result == AccessResult.GRANTED.value,
        "data": AccessLogResponse.from_record(record),
    }


@router.get("/logs", response_model=AccessLogPage)
def list_access_logs(
    city_id: Optional[str] = None,
    lock_id: Optional[str] = None,
    user_id: Optional[str] = None,
    result: Optional[AccessResult] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=1000),
    actor: ActorContext = Depends(get_actor),
    db: Session = Depends(get_db)
):
    """
    List access records within the caller's city scope

    city_id is only honoured for super admins; everyone else sees their own city.
    """
    scoped_city = require_city_id(actor, city_id)
    items, total = access_service.list_access_logs(
        db,
        city_id=scoped_city,
        lock_id=lock_id,
        user_id=user_id,
        result=result.value if result else None,
        start=as_naive_utc(start_date),
        end=as_naive_utc(end_date),
        page=page,
        limit=limit,
    )
    total_pages = math.ceil(total / limit) if total else 0
    return AccessLogPage(
        data=[AccessLogResponse.from_record(item) for item in items],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )
