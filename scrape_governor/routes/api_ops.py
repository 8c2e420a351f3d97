"""Operator feed: hub windows, heal history, rate-limit windows and recent trace spans."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from scrape_governor.database import get_db
from scrape_governor.models import HealEvent
from scrape_governor.schemas.ops import HubStatusResponse, RateLimitStatusResponse, TraceSpanResponse
from scrape_governor.schemas.source import HealEventResponse

router = APIRouter()


def _hub_status(gate, hub_id: str) -> HubStatusResponse:
    profile = gate.profile(hub_id)
    return HubStatusResponse(
        hub_id=hub_id,
        timezone=profile.timezone,
        business_start_hour=profile.business_start_hour,
        business_end_hour=profile.business_end_hour,
        local_hour=gate.local_hour(hub_id),
        is_open=gate.is_open(hub_id),
        proxy_region=profile.proxy_region,
        proxy_provider=profile.proxy_provider,
    )


@router.get("/hubs", response_model=list[HubStatusResponse])
def list_hubs(request: Request):
    gate = request.app.state.gate
    return [_hub_status(gate, hub_id) for hub_id in gate.hubs]


@router.get("/hubs/open", response_model=list[str])
def list_open_hubs(request: Request):
    return sorted(request.app.state.gate.currently_open_hubs())


@router.get("/heal-events", response_model=list[HealEventResponse])
def list_heal_events(
    success: Optional[bool] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    query = db.query(HealEvent)
    if success is not None:
        query = query.filter(HealEvent.success == success)
    return query.order_by(HealEvent.id.desc()).limit(limit).all()


@router.get("/rate-limits/{source_id}", response_model=RateLimitStatusResponse)
def rate_limit_status(source_id: str, request: Request):
    status = request.app.state.rate_limiter.status(source_id)
    return RateLimitStatusResponse(
        source_id=source_id,
        remaining=status.remaining,
        window_reset_ms=status.window_reset_ms,
        is_limited=status.is_limited,
    )


def _as_datetime(ts: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts is not None else None


@router.get("/traces/recent", response_model=list[TraceSpanResponse])
def recent_traces(request: Request, limit: int = Query(50, ge=1, le=500)):
    spans = request.app.state.trace.recent(limit)
    return [
        TraceSpanResponse(
            name=span.name,
            attributes=span.attributes,
            started_at=_as_datetime(span.start_time),
            ended_at=_as_datetime(span.end_time),
        )
        for span in reversed(spans)
    ]
