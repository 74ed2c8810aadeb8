"""
Find which selector group matches the rendered page.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from .errors import SelectorNotFound
from .models import SelectorCandidate

logger = logging.getLogger(__name__)

OVERRIDE_NAME = "override"


class SelectorPage(Protocol):
    async def wait_for(self, selector: str, timeout_ms: int) -> bool: ...

    async def count(self, selector: str) -> int: ...


def override_candidate(selector: str) -> SelectorCandidate:
    return SelectorCandidate(OVERRIDE_NAME, (selector,))


async def discover_selector(
    page: SelectorPage,
    candidates: Sequence[SelectorCandidate],
    budget_ms: int,
    override: Optional[str] = None,
) -> SelectorCandidate:
    """
    Pick the first selector group that matches the page.

    Each group gets an equal share of ``budget_ms`` to show one attached node.
    When every wait times out, a plain count over all groups catches nodes
    that exist but never settled.

    Args:
        page: Session to search
        candidates: Groups in priority order
        budget_ms: Time all waits may add up to
        override: Caller-supplied selector, used as-is without probing

    Returns:
        The matching group

    Raises:
        SelectorNotFound: If no group matches
    """
    if override:
        logger.info("Using override selector %r", override)
        return override_candidate(override)
    if not candidates:
        raise SelectorNotFound("No selector candidates configured")

    per_group_ms = max(1, budget_ms // len(candidates))
    for candidate in candidates:
        if await page.wait_for(candidate.css, per_group_ms):
            logger.info("Selector group %r matched", candidate.name)
            return candidate
        logger.debug("Selector group %r did not match within %d ms", candidate.name, per_group_ms)

    for candidate in candidates:
        found = await page.count(candidate.css)
        if found > 0:
            logger.info("Selector group %r found by count scan (%d nodes)", candidate.name, found)
            return candidate

    names = ", ".join(candidate.name for candidate in candidates)
    raise SelectorNotFound(f"None of the selector groups matched the page ({names})")
