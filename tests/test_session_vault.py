import base64
import json
from datetime import datetime, timedelta

import pytest

from scrape_governor.models import BrowserSession
from scrape_governor.services.cookie_cipher import CookieCipher
from scrape_governor.services.session_vault import SessionVault

COOKIES = [
    {"name": "li_at", "value": "secret-token-123", "domain": ".linkedin.com", "path": "/", "secure": True},
    {"name": "lang", "value": "en", "domain": ".linkedin.com"},
]


class Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 10, 9, 0)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def vault(session_factory, clock):
    return SessionVault(session_factory, CookieCipher("ab" * 32), clock=clock)


def _rows(session_factory):
    db = session_factory()
    try:
        return db.query(BrowserSession).all()
    finally:
        db.close()


def test_save_and_load_round_trip(vault):
    assert vault.save("Riyadh", "bayt", COOKIES, user_agent="UA/1.0")
    session = vault.load("Riyadh", "bayt")
    assert session.cookies == COOKIES
    assert session.user_agent == "UA/1.0"
    assert session.expires_at == datetime(2026, 3, 17, 9, 0)


def test_cookie_values_never_stored_in_plaintext(vault, session_factory):
    vault.save("Riyadh", "bayt", COOKIES)
    (row,) = _rows(session_factory)
    assert "secret-token-123" not in row.cookies_encrypted
    assert "li_at" not in row.cookies_encrypted


def test_expired_session_is_absent(vault, clock):
    vault.save("Riyadh", "bayt", COOKIES)
    clock.now += timedelta(days=7, seconds=1)
    assert vault.load("Riyadh", "bayt") is None


def test_custom_ttl(vault, clock):
    vault.save("Dubai", "gulftalent", COOKIES, ttl=timedelta(hours=1))
    clock.now += timedelta(minutes=59)
    assert vault.load("Dubai", "gulftalent") is not None
    clock.now += timedelta(minutes=2)
    assert vault.load("Dubai", "gulftalent") is None


def test_save_overwrites_existing_row(vault, session_factory):
    vault.save("Riyadh", "bayt", COOKIES, user_agent="old")
    vault.save("Riyadh", "bayt", COOKIES[:1], user_agent="new")
    rows = _rows(session_factory)
    assert len(rows) == 1
    assert vault.load("Riyadh", "bayt").user_agent == "new"
    assert len(vault.load("Riyadh", "bayt").cookies) == 1


def test_missing_session_is_none(vault):
    assert vault.load("Riyadh", "nowhere") is None


def test_legacy_unencrypted_rows_still_load(vault, session_factory):
    db = session_factory()
    db.add(BrowserSession(
        hub_id="Singapore",
        source_id="jobsdb",
        cookies_encrypted=base64.b64encode(json.dumps(COOKIES).encode()).decode(),
        expires_at=datetime(2026, 3, 12),
    ))
    db.commit()
    db.close()
    assert vault.load("Singapore", "jobsdb").cookies == COOKIES


def test_unreadable_row_degrades_to_no_cookies(vault, session_factory):
    db = session_factory()
    db.add(BrowserSession(hub_id="Mumbai", source_id="naukri", cookies_encrypted="%%garbage%%"))
    db.commit()
    db.close()
    assert vault.load("Mumbai", "naukri").cookies == []


def test_disabled_vault_is_a_no_op(session_factory):
    vault = SessionVault(session_factory, cipher=None)
    assert not vault.save("Riyadh", "bayt", COOKIES)
    assert vault.load("Riyadh", "bayt") is None
    assert _rows(session_factory) == []


@pytest.mark.asyncio
async def test_inject_pushes_playwright_cookies(vault, driver_factory):
    vault.save("Riyadh", "bayt", COOKIES)
    driver = driver_factory()
    assert await vault.inject(vault.load("Riyadh", "bayt"), driver)
    assert [c["name"] for c in driver.added_cookies] == ["li_at", "lang"]
    assert driver.added_cookies[1]["path"] == "/"
    assert driver.added_cookies[1]["sameSite"] == "Lax"


@pytest.mark.asyncio
async def test_inject_without_session_does_nothing(vault, driver_factory):
    driver = driver_factory()
    assert not await vault.inject(None, driver)
    assert driver.added_cookies == []
