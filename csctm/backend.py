"""
Browser automation backends built on Playwright's async API.

Two kinds exist: a scripted Chromium launched under program control
(headless or headful) and an attached browser reached over the Chrome
DevTools Protocol. Both hand out an ``AutomationSession`` that owns exactly
one page and must be closed by the caller.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Awaitable, Callable, List, Mapping, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from .config import ScrapeConfig
from .errors import (
    BackendLaunchFailure,
    ChallengeBlocked,
    NavigationTimeout,
    ScrapeError,
    SelectorNotFound,
    UnsupportedEscalation,
)
from .stealth import SNAPSHOT_SCRIPT, STEALTH_INIT_SCRIPT

logger = logging.getLogger(__name__)

BODY_TEXT_SCRIPT = "(limit) => (document.body ? document.body.innerText || '' : '').slice(0, limit)"

_BLOCKING_ERROR = re.compile(
    r"access[ _-]?denied|forbidden|\b403\b|\b429\b|captcha|turnstile|ERR_BLOCKED|ERR_HTTP2_PROTOCOL_ERROR",
    re.IGNORECASE,
)
_TIMEOUT_ERROR = re.compile(r"timeout|timed out|ERR_TIMED_OUT", re.IGNORECASE)

Closer = Callable[[], Awaitable[None]]


def classify_navigation_error(message: str) -> str:
    """
    Sort a navigation error message into a signature class.

    Returns:
        "timeout", "blocking" or "other"
    """
    if _BLOCKING_ERROR.search(message):
        return "blocking"
    if _TIMEOUT_ERROR.search(message):
        return "timeout"
    return "other"


def attach_supported(platform: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    Whether the host can run the attach-mode flow.

    Attach mode needs an operator looking at a real browser window, so it is
    limited to desktop platforms; Linux qualifies only with a display server.
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ
    if platform == "darwin" or platform.startswith("win"):
        return True
    if platform.startswith("linux"):
        return bool(environ.get("DISPLAY") or environ.get("WAYLAND_DISPLAY"))
    return False


class AutomationSession:
    """
    One live page plus whatever must be torn down with it.

    Args:
        page: Playwright page the session drives
        label: Backend label used in logs
        closers: Awaited in order by ``close()``
        attached: True when the page lives in the operator's browser
    """

    def __init__(self, page: Page, label: str, closers: List[Closer], attached: bool = False) -> None:
        self.page = page
        self.label = label
        self.attached = attached
        self._closers = closers
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def navigate(self, url: str, timeout_ms: int) -> None:
        """
        Open the URL.

        Raises:
            NavigationTimeout: If the page did not commit in time
            ChallengeBlocked: If the error message carries a blocking signature
            ScrapeError: For any other navigation failure
        """
        try:
            response = await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightTimeout as exc:
            raise NavigationTimeout(f"Navigation to {url} timed out after {timeout_ms} ms") from exc
        except PlaywrightError as exc:
            kind = classify_navigation_error(str(exc))
            if kind == "blocking":
                raise ChallengeBlocked(f"Navigation to {url} was refused: {exc.message}") from exc
            if kind == "timeout":
                raise NavigationTimeout(f"Navigation to {url} timed out: {exc.message}") from exc
            raise ScrapeError(f"Navigation to {url} failed: {exc.message}") from exc
        if response is not None:
            logger.debug("%s: %s answered %s", self.label, url, response.status)

    async def title(self) -> str:
        return await self.page.title()

    async def body_text(self, limit: int) -> str:
        return await self.page.evaluate(BODY_TEXT_SCRIPT, limit)

    async def wait_for(self, selector: str, timeout_ms: int) -> bool:
        """Wait until at least one node matching the selector is attached."""
        try:
            await self.page.wait_for_selector(selector, state="attached", timeout=timeout_ms)
        except PlaywrightTimeout:
            return False
        except PlaywrightError as exc:
            raise SelectorNotFound(f"Selector {selector!r} could not be evaluated: {exc.message}") from exc
        return True

    async def count(self, selector: str) -> int:
        try:
            return await self.page.locator(selector).count()
        except PlaywrightError as exc:
            raise SelectorNotFound(f"Selector {selector!r} could not be evaluated: {exc.message}") from exc

    async def snapshot(self) -> str:
        """Serialized DOM with open shadow roots inlined."""
        return await self.page.evaluate(SNAPSHOT_SCRIPT)

    async def sleep(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for closer in self._closers:
            try:
                await closer()
            except PlaywrightError as exc:
                # Browser already gone; nothing left to release.
                logger.debug("%s: ignoring error during close: %s", self.label, exc)
        logger.debug("%s: session closed", self.label)

    async def __aenter__(self) -> "AutomationSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class ScriptedBackend:
    """Launches a fresh Chromium with stealth patches applied."""

    def __init__(self, headless: bool = True) -> None:
        self.headless = headless
        self.label = "scripted-headless" if headless else "scripted-headful"

    async def open(self, config: ScrapeConfig) -> AutomationSession:
        """
        Launch the browser and open one page.

        Raises:
            BackendLaunchFailure: If Chromium cannot be started
        """
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=self.headless,
                args=list(config.browser_args),
                ignore_default_args=["--enable-automation"],
            )
            width, height = config.viewport
            context = await browser.new_context(
                user_agent=config.user_agent,
                viewport={"width": width, "height": height},
                locale=config.locale,
                timezone_id=config.timezone_id,
                extra_http_headers=dict(config.extra_headers),
            )
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            page = await context.new_page()
        except PlaywrightError as exc:
            # Stopping the driver also kills a half-launched browser.
            await playwright.stop()
            raise BackendLaunchFailure(f"Could not launch Chromium ({self.label}): {exc.message}") from exc

        logger.info("Launched %s browser", self.label)
        return AutomationSession(page, self.label, closers=[context.close, browser.close, playwright.stop])


class AttachedBackend:
    """Attaches to an operator-launched browser through its debug endpoint."""

    label = "attached"

    def __init__(self, platform: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> None:
        self._platform = platform
        self._environ = environ

    async def open(self, config: ScrapeConfig) -> AutomationSession:
        """
        Connect over CDP and open a new tab in the operator's browser.

        Raises:
            UnsupportedEscalation: If the host cannot run attach mode
            BackendLaunchFailure: If nothing listens on the debug endpoint
        """
        if not attach_supported(self._platform, self._environ):
            raise UnsupportedEscalation(f"Attach mode is not supported on {self._platform or sys.platform}")

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.connect_over_cdp(config.cdp_endpoint)
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = await context.new_page()
        except PlaywrightError as exc:
            await playwright.stop()
            raise BackendLaunchFailure(
                f"Could not attach to a browser at {config.cdp_endpoint}: {exc.message}",
                hint="Start Chrome with --remote-debugging-port=9222 and keep it open, then retry.",
            ) from exc

        logger.info("Attached to browser at %s", config.cdp_endpoint)
        # Only our tab is closed; stopping the driver disconnects without killing the operator's browser.
        return AutomationSession(page, self.label, closers=[page.close, playwright.stop], attached=True)
