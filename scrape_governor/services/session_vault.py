"""
Session persistence: keep browser cookies per (hub, source) so scrapers do not
trigger "new login" / "suspicious login" alerts.

Cookies are encrypted before they reach the database. A missing, expired or
unreadable session degrades to a fresh login, never to an exception.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from scrape_governor.errors import CookieDecryptError
from scrape_governor.models import BrowserSession
from scrape_governor.services.cookie_cipher import CookieCipher

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)


@dataclass
class StoredSession:
    hub_id: str
    source_id: str
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    user_agent: Optional[str] = None
    expires_at: Optional[datetime] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_playwright_cookies(cookies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    converted = []
    for c in cookies:
        cookie = {
            "name": c["name"],
            "value": c["value"],
            "path": c.get("path") or "/",
            "expires": c.get("expires", -1),
            "httpOnly": bool(c.get("httpOnly", False)),
            "secure": bool(c.get("secure", True)),
            "sameSite": c.get("sameSite") or "Lax",
        }
        if c.get("domain"):
            cookie["domain"] = c["domain"]
        elif c.get("url"):
            cookie["url"] = c["url"]
        converted.append(cookie)
    return converted


class SessionVault:
    def __init__(
        self,
        session_factory,
        cipher: Optional[CookieCipher],
        clock: Callable[[], datetime] = _utc_now,
        default_ttl: timedelta = DEFAULT_TTL,
    ):
        self.session_factory = session_factory
        self.cipher = cipher
        self.clock = clock
        self.default_ttl = default_ttl

    @property
    def enabled(self) -> bool:
        return self.cipher is not None

    def encode_cookies(self, cookies: List[Dict[str, Any]]) -> str:
        return self.cipher.encrypt(json.dumps(cookies, ensure_ascii=False))

    def decode_cookies(self, encoded: str) -> List[Dict[str, Any]]:
        try:
            plain = self.cipher.decrypt(encoded)
            if plain:
                return json.loads(plain)
        except (CookieDecryptError, json.JSONDecodeError):
            pass
        # Legacy rows: plain base64 JSON, no encryption
        try:
            decoded = json.loads(base64.b64decode(encoded, validate=True).decode("utf-8"))
            if isinstance(decoded, list):
                return decoded
        except (ValueError, UnicodeDecodeError):
            pass
        logger.warning("Stored session cookies could not be decoded; treating as empty")
        return []

    def save(
        self,
        hub_id: str,
        source_id: str,
        cookies: List[Dict[str, Any]],
        user_agent: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> bool:
        """Upsert the session for hub+source. Returns False when the vault is disabled."""
        if not self.enabled:
            logger.warning("Session vault disabled (no encryption key); not persisting cookies")
            return False

        expires_at = self.clock() + (ttl or self.default_ttl)
        encrypted = self.encode_cookies(cookies)
        db = self.session_factory()
        try:
            row = (
                db.query(BrowserSession)
                .filter(BrowserSession.hub_id == hub_id, BrowserSession.source_id == source_id)
                .first()
            )
            if row is None:
                row = BrowserSession(hub_id=hub_id, source_id=source_id)
                db.add(row)
            row.cookies_encrypted = encrypted
            row.user_agent = user_agent
            row.expires_at = expires_at
            db.commit()
        finally:
            db.close()
        logger.info(f"Saved session for {hub_id}/{source_id} ({len(cookies)} cookies, expires {expires_at.isoformat()})")
        return True

    def load(self, hub_id: str, source_id: str) -> Optional[StoredSession]:
        """Session for hub+source, or None if missing, expired or the vault is disabled."""
        if not self.enabled:
            return None

        db = self.session_factory()
        try:
            row = (
                db.query(BrowserSession)
                .filter(BrowserSession.hub_id == hub_id, BrowserSession.source_id == source_id)
                .first()
            )
            if row is None or not row.cookies_encrypted:
                return None
            if row.expires_at is not None and row.expires_at < self.clock():
                logger.info(f"Session for {hub_id}/{source_id} expired at {row.expires_at.isoformat()}")
                return None
            return StoredSession(
                hub_id=hub_id,
                source_id=source_id,
                cookies=self.decode_cookies(row.cookies_encrypted),
                user_agent=row.user_agent,
                expires_at=row.expires_at,
            )
        finally:
            db.close()

    async def inject(self, session: Optional[StoredSession], driver) -> bool:
        """Push stored cookies into the browser context. False when there is nothing to inject."""
        if session is None or not session.cookies:
            return False
        await driver.add_cookies(to_playwright_cookies(session.cookies))
        logger.info(f"Injected {len(session.cookies)} cookies for {session.hub_id}/{session.source_id}")
        return True


def get_session_vault(session_factory=None) -> SessionVault:
    from scrape_governor.config import settings
    from scrape_governor.database import SessionLocal

    cipher = CookieCipher(settings.encryption_key) if settings.encryption_key else None
    if cipher is None:
        logger.warning("ENCRYPTION_KEY not set; session reuse is disabled")
    return SessionVault(
        session_factory or SessionLocal,
        cipher,
        default_ttl=timedelta(days=settings.session_ttl_days),
    )
