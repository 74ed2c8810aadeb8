"""
Bot-challenge detection for freshly navigated pages.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Protocol, Sequence

from .config import ChallengeHook

logger = logging.getLogger(__name__)

# Interstitials are small pages; anything longer is treated as real content.
SHORT_BODY_LIMIT = 1500
BODY_SAMPLE_CHARS = 4000

TITLE_SIGNATURES = re.compile(
    r"just a moment|attention required|verify you are human|are you a robot|"
    r"checking your browser|access denied|security check|one more step|captcha",
    re.IGNORECASE,
)

BODY_SIGNATURES = re.compile(
    r"verify (?:that )?you are (?:a )?human|checking (?:if the site connection is secure|your browser)|"
    r"enable javascript and cookies to continue|cf-challenge|challenge-platform|"
    r"needs to review the security of your connection|press (?:&|and) hold|"
    r"unusual traffic|recaptcha|hcaptcha|turnstile",
    re.IGNORECASE,
)


class ChallengePage(Protocol):
    async def title(self) -> str: ...

    async def body_text(self, limit: int) -> str: ...

    async def sleep(self, ms: int) -> None: ...


def looks_like_challenge(title: str, body: str) -> bool:
    """
    Heuristic check for an anti-bot interstitial.

    Args:
        title: Page title
        body: Visible body text (any length)

    Returns:
        True if the title matches a challenge signature, or the body is short
        and matches one
    """
    if title and TITLE_SIGNATURES.search(title):
        return True
    body = (body or "").strip()
    if len(body) > SHORT_BODY_LIMIT:
        return False
    return bool(BODY_SIGNATURES.search(body))


async def page_is_challenged(page: ChallengePage) -> bool:
    return looks_like_challenge(await page.title(), await page.body_text(BODY_SAMPLE_CHARS))


async def wait_until_clear(
    page: ChallengePage,
    schedule_ms: Sequence[int],
    budget_ms: Optional[int] = None,
    on_challenge: Optional[ChallengeHook] = None,
) -> bool:
    """
    Re-check the page on an increasing schedule until no challenge is seen.

    Args:
        page: Session to inspect
        schedule_ms: Waits between checks; its length bounds the number of re-checks
        budget_ms: Total time the waits may add up to
        on_challenge: Awaited once, with a message, when a challenge is first seen

    Returns:
        True once the page is clear, False if the schedule (or budget) runs out
    """
    if not await page_is_challenged(page):
        return True

    logger.info("Challenge page detected, waiting for it to clear")
    if on_challenge is not None:
        await on_challenge("A bot challenge is showing; solve it in the browser window to continue.")

    spent = 0
    for attempt, wait_ms in enumerate(schedule_ms, 1):
        if budget_ms is not None:
            wait_ms = min(wait_ms, budget_ms - spent)
            if wait_ms <= 0:
                break
        await page.sleep(wait_ms)
        spent += wait_ms
        if not await page_is_challenged(page):
            logger.info("Challenge cleared after %d re-check(s), %d ms", attempt, spent)
            return True

    logger.warning("Challenge still present after %d ms", spent)
    return False
