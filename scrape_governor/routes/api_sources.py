from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from scrape_governor.database import get_db
from scrape_governor.models import HealEvent, Selector, Source, SourceStatus
from scrape_governor.schemas.source import HealEventResponse, SelectorResponse, SourceResponse

router = APIRouter()


def _get_source_or_404(db: Session, source_id: str) -> Source:
    source = db.query(Source).filter(Source.id == source_id).first()
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.get("", response_model=list[SourceResponse])
def list_sources(status: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(Source)
    if status:
        try:
            status_enum = SourceStatus(status.lower().strip())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        query = query.filter(Source.status == status_enum.value)
    return query.order_by(Source.id).all()


@router.get("/{source_id}", response_model=SourceResponse)
def get_source(source_id: str, db: Session = Depends(get_db)):
    return _get_source_or_404(db, source_id)


@router.get("/{source_id}/selectors", response_model=list[SelectorResponse])
def list_selectors(source_id: str, db: Session = Depends(get_db)):
    _get_source_or_404(db, source_id)
    return (
        db.query(Selector)
        .filter(Selector.source_id == source_id)
        .order_by(Selector.field_name)
        .all()
    )


@router.get("/{source_id}/heal-events", response_model=list[HealEventResponse])
def list_source_heal_events(
    source_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    _get_source_or_404(db, source_id)
    return (
        db.query(HealEvent)
        .filter(HealEvent.source_id == source_id)
        .order_by(HealEvent.id.desc())
        .limit(limit)
        .all()
    )
