from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import scrape_governor.models  # noqa: F401
from scrape_governor.database import Base
from scrape_governor.utils.humanize import Rhythm


class FakeDriver:
    """In-memory BrowserDriver: records every interaction, serves canned pages and elements."""

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        elements: Optional[Dict[str, Optional[str]]] = None,
        scroll_height: int = 2000,
        viewport=(1280, 800),
        cookie_jar: Optional[List[Dict[str, Any]]] = None,
    ):
        self.pages = pages or {}
        self.elements = elements or {}
        self.scroll_height = scroll_height
        self.viewport = viewport
        self.cookie_jar = cookie_jar or []
        self.current_url = "about:blank"
        self.events: List[tuple] = []
        self.visited: List[str] = []
        self.scrolls: List[int] = []
        self.mouse_moves: List[tuple] = []
        self.added_cookies: List[Dict[str, Any]] = []
        self.queried: List[str] = []

    async def goto(self, url: str) -> None:
        self.current_url = url
        self.visited.append(url)
        self.events.append(("goto", url))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if "scrollHeight" in script:
            return self.scroll_height
        if "innerWidth" in script:
            return {"w": self.viewport[0], "h": self.viewport[1]}
        if "scrollTo" in script:
            self.scrolls.append(arg)
        return None

    async def mouse_move(self, x: float, y: float) -> None:
        self.mouse_moves.append((x, y))

    async def mouse_down(self) -> None:
        self.events.append(("mouse_down",))

    async def mouse_up(self) -> None:
        self.events.append(("mouse_up",))

    async def content(self) -> str:
        return self.pages.get(self.current_url, "<html><body><h1>Listing</h1></body></html>")

    def url(self) -> str:
        return self.current_url

    async def screenshot(self) -> bytes:
        return b"\x89PNG fake"

    async def query_text(self, selector: str) -> Optional[str]:
        self.queried.append(selector)
        return self.elements.get(selector)

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self.added_cookies.extend(cookies)

    async def cookies(self) -> List[Dict[str, Any]]:
        return list(self.cookie_jar)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def rhythm(sleeps):
    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return Rhythm(sleep=fake_sleep)


@pytest.fixture
def driver_factory():
    return FakeDriver
