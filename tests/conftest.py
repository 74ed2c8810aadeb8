from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Union

import pytest

from csctm.config import ScrapeConfig
from csctm.errors import NavigationTimeout
from csctm.extractor import collect_message_nodes, parse_snapshot

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


class FakeSession:
    """
    Stand-in for AutomationSession backed by static HTML snapshots.

    ``pages`` is the sequence of documents the page shows; every ``sleep``
    moves to the next one (the last one sticks), which is how challenge pages
    "clear" in tests.
    """

    def __init__(
        self,
        pages: Union[str, Sequence[str]],
        label: str = "fake",
        attached: bool = False,
        navigation_errors: Optional[List[Exception]] = None,
        title: Optional[str] = None,
    ) -> None:
        self.pages = [pages] if isinstance(pages, str) else list(pages)
        self.label = label
        self.attached = attached
        self.navigation_errors = list(navigation_errors or [])
        self._title = title
        self.index = 0
        self.closed = False
        self.navigations: List[str] = []
        self.sleeps: List[int] = []
        self.waited: List[str] = []

    @property
    def html(self) -> str:
        return self.pages[min(self.index, len(self.pages) - 1)]

    def _matches(self, selector: str) -> int:
        return len(collect_message_nodes(parse_snapshot(self.html), selector))

    async def navigate(self, url: str, timeout_ms: int) -> None:
        self.navigations.append(url)
        if self.navigation_errors:
            raise self.navigation_errors.pop(0)

    async def title(self) -> str:
        if self._title is not None:
            return self._title
        soup = parse_snapshot(self.html)
        return soup.title.string.strip() if soup.title and soup.title.string else ""

    async def body_text(self, limit: int) -> str:
        soup = parse_snapshot(self.html)
        body = soup.body or soup
        return body.get_text(" ", strip=True)[:limit]

    async def wait_for(self, selector: str, timeout_ms: int) -> bool:
        self.waited.append(selector)
        return self._matches(selector) > 0

    async def count(self, selector: str) -> int:
        return self._matches(selector)

    async def snapshot(self) -> str:
        return self.html

    async def sleep(self, ms: int) -> None:
        self.sleeps.append(ms)
        self.index += 1

    async def close(self) -> None:
        self.closed = True


class FakeBackend:
    """Hands out a prepared FakeSession, or raises a prepared error."""

    def __init__(self, label: str, session: Optional[FakeSession] = None, error: Optional[Exception] = None) -> None:
        self.label = label
        self.session = session
        self.error = error
        self.opened = 0

    async def open(self, config: ScrapeConfig) -> FakeSession:
        self.opened += 1
        if self.error is not None:
            raise self.error
        assert self.session is not None
        return self.session


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def chatgpt_html() -> str:
    return load_fixture("chatgpt_share.html")


@pytest.fixture
def claude_html() -> str:
    return load_fixture("claude_share.html")


@pytest.fixture
def gemini_html() -> str:
    return load_fixture("gemini_share.html")


@pytest.fixture
def grok_html() -> str:
    return load_fixture("grok_share.html")


@pytest.fixture
def challenge_html() -> str:
    return load_fixture("challenge.html")


@pytest.fixture
def fast_config() -> ScrapeConfig:
    return ScrapeConfig(
        timeout_ms=30_000,
        challenge_schedule_ms=(10, 20, 40),
        manual_challenge_schedule_ms=(10, 10, 10),
        navigation_backoff_ms=5,
    )


def timeout_error() -> NavigationTimeout:
    return NavigationTimeout("Navigation timed out")
