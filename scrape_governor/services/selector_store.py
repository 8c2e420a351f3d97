"""
Selectors per (source, field) and the per-source health state machine.

    ok --failure--> healing --verified heal--> healed --clean scrape--> ok
                    healing --failed heal----> healing
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from scrape_governor.errors import InvalidStatusTransition
from scrape_governor.models import HealEvent, Selector, Source, SourceStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    (SourceStatus.OK, SourceStatus.OK),
    (SourceStatus.OK, SourceStatus.HEALING),
    (SourceStatus.HEALING, SourceStatus.HEALING),
    (SourceStatus.HEALING, SourceStatus.HEALED),
    (SourceStatus.HEALED, SourceStatus.OK),
    (SourceStatus.HEALED, SourceStatus.HEALING),
    (SourceStatus.HEALED, SourceStatus.HEALED),
}


def default_selector(field_name: str) -> str:
    return f'[data-field="{field_name}"]'


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SelectorStore:
    def __init__(self, session_factory, clock: Callable[[], datetime] = _utc_now):
        self.session_factory = session_factory
        self.clock = clock
        self._locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, source_id: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks[source_id]

    @staticmethod
    def _get_or_create_source(db, source_id: str) -> Source:
        source = db.query(Source).filter(Source.id == source_id).first()
        if source is None:
            logger.warning(f"Source {source_id} was not provisioned; creating it")
            source = Source(id=source_id, display_name=source_id, status=SourceStatus.OK.value)
            db.add(source)
            db.flush()
        return source

    # Sources

    def ensure_source(self, source_id: str, display_name: str = None, region: str = None) -> Source:
        db = self.session_factory()
        try:
            source = db.query(Source).filter(Source.id == source_id).first()
            if source is None:
                source = Source(
                    id=source_id,
                    display_name=display_name or source_id,
                    region=region,
                    status=SourceStatus.OK.value,
                )
                db.add(source)
            else:
                if display_name:
                    source.display_name = display_name
                if region:
                    source.region = region
            db.commit()
            db.refresh(source)
            return source
        finally:
            db.close()

    def get_source(self, source_id: str) -> Optional[Source]:
        db = self.session_factory()
        try:
            return db.query(Source).filter(Source.id == source_id).first()
        finally:
            db.close()

    def list_sources(self) -> List[Source]:
        db = self.session_factory()
        try:
            return db.query(Source).order_by(Source.id).all()
        finally:
            db.close()

    def set_status(self, source_id: str, status: SourceStatus, last_heal_at: Optional[datetime] = None) -> Source:
        status = SourceStatus(status)
        with self._lock_for(source_id):
            db = self.session_factory()
            try:
                source = self._get_or_create_source(db, source_id)
                current = SourceStatus(source.status)
                if (current, status) not in ALLOWED_TRANSITIONS:
                    raise InvalidStatusTransition(source_id, current.value, status.value)
                source.status = status.value
                if last_heal_at is not None:
                    source.last_heal_at = last_heal_at
                db.commit()
                db.refresh(source)
                if current != status:
                    logger.info(f"Source {source_id}: {current.value} -> {status.value}")
                return source
            finally:
                db.close()

    def begin_heal(self, source_id: str) -> Source:
        return self.set_status(source_id, SourceStatus.HEALING)

    def mark_scrape_success(self, source_id: str) -> Source:
        """A clean ordinary scrape: healed sources return to ok and the scrape time is stamped."""
        with self._lock_for(source_id):
            db = self.session_factory()
            try:
                source = self._get_or_create_source(db, source_id)
                current = SourceStatus(source.status)
                if current == SourceStatus.HEALING:
                    raise InvalidStatusTransition(source_id, current.value, SourceStatus.OK.value)
                if current == SourceStatus.HEALED:
                    logger.info(f"Source {source_id}: healed -> ok after a clean scrape")
                source.status = SourceStatus.OK.value
                source.last_scraped_at = self.clock()
                db.commit()
                db.refresh(source)
                return source
            finally:
                db.close()

    # Selectors

    def get_selector_record(self, source_id: str, field_name: str) -> Optional[Selector]:
        db = self.session_factory()
        try:
            return (
                db.query(Selector)
                .filter(Selector.source_id == source_id, Selector.field_name == field_name)
                .first()
            )
        finally:
            db.close()

    def get_selector(self, source_id: str, field_name: str, fallback: str = None) -> str:
        record = self.get_selector_record(source_id, field_name)
        if record is not None:
            return record.selector_value
        return fallback or default_selector(field_name)

    def get_selectors(self, source_id: str) -> Dict[str, str]:
        db = self.session_factory()
        try:
            rows = db.query(Selector).filter(Selector.source_id == source_id).all()
            return {row.field_name: row.selector_value for row in rows}
        finally:
            db.close()

    def list_selectors(self, source_id: str) -> List[Selector]:
        db = self.session_factory()
        try:
            return (
                db.query(Selector)
                .filter(Selector.source_id == source_id)
                .order_by(Selector.field_name)
                .all()
            )
        finally:
            db.close()

    def upsert_selector(self, source_id: str, field_name: str, value: str, selector_type: str = "css") -> Selector:
        """Provision or overwrite a selector without touching its heal history."""
        with self._lock_for(source_id):
            db = self.session_factory()
            try:
                self._get_or_create_source(db, source_id)
                row = (
                    db.query(Selector)
                    .filter(Selector.source_id == source_id, Selector.field_name == field_name)
                    .first()
                )
                if row is None:
                    row = Selector(source_id=source_id, field_name=field_name)
                    db.add(row)
                row.selector_type = selector_type
                row.selector_value = value
                db.commit()
                db.refresh(row)
                return row
            finally:
                db.close()

    def commit_heal(
        self,
        source_id: str,
        field_name: str,
        new_value: str,
        selector_before: Optional[str] = None,
        selector_type: str = "css",
    ) -> Selector:
        """Install a verified selector; the value it replaces moves to selector_previous."""
        with self._lock_for(source_id):
            db = self.session_factory()
            try:
                self._get_or_create_source(db, source_id)
                row = (
                    db.query(Selector)
                    .filter(Selector.source_id == source_id, Selector.field_name == field_name)
                    .first()
                )
                if row is None:
                    row = Selector(source_id=source_id, field_name=field_name, selector_value=new_value)
                    db.add(row)
                    row.selector_previous = selector_before
                else:
                    row.selector_previous = row.selector_value
                row.selector_type = selector_type
                row.selector_value = new_value
                row.last_verified_at = self.clock()
                db.commit()
                db.refresh(row)
                return row
            finally:
                db.close()

    # Heal audit trail (append-only)

    def record_heal_event(
        self,
        source_id: str,
        field_name: str,
        trigger_reason: str,
        selector_before: Optional[str],
        selector_after: Optional[str],
        success: bool,
        trace_id: Optional[str] = None,
        raw_error: Optional[str] = None,
    ) -> HealEvent:
        db = self.session_factory()
        try:
            event = HealEvent(
                source_id=source_id,
                field_name=field_name,
                trigger_reason=trigger_reason,
                selector_before=selector_before,
                selector_after=selector_after,
                success=success,
                trace_id=trace_id,
                raw_error=raw_error,
                created_at=self.clock(),
            )
            db.add(event)
            db.commit()
            db.refresh(event)
            return event
        finally:
            db.close()

    def list_heal_events(self, source_id: str = None, limit: int = 100) -> List[HealEvent]:
        db = self.session_factory()
        try:
            query = db.query(HealEvent)
            if source_id:
                query = query.filter(HealEvent.source_id == source_id)
            return query.order_by(HealEvent.id.desc()).limit(limit).all()
        finally:
            db.close()


def get_selector_store(session_factory=None) -> SelectorStore:
    from scrape_governor.database import SessionLocal

    return SelectorStore(session_factory or SessionLocal)
