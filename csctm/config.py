"""
Scrape configuration and the timeout budget shared by every stage.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .errors import BudgetExhausted

DEFAULT_TIMEOUT_MS = 60_000
DEFAULT_CDP_ENDPOINT = "http://127.0.0.1:9222"

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

BROWSER_ARGS: Tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
    "--password-store=basic",
    "--window-size=1440,960",
)

EXTRA_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Sec-Ch-Ua": '"Chromium";v="131", "Google Chrome";v="131", "Not_A Brand";v="24"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"macOS"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

ChallengeHook = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ScrapeConfig:
    """
    Knobs for one scrape, passed explicitly down the pipeline.

    Attributes:
        timeout_ms: Overall budget for the whole escalation ladder, shared out between the rungs
        navigation_fraction: Share of a rung's budget that all navigation attempts together may use
        discovery_fraction: Share of a rung's budget selector discovery may use
        challenge_fraction: Share of a rung's budget scripted challenge waits may use
        challenge_schedule_ms: Increasing waits between challenge re-checks
        manual_challenge_schedule_ms: Waits used while an operator solves a challenge in attach mode
        navigation_attempts: Attempts for transient navigation timeouts, within the navigation share
        allow_headful: Whether the ladder may open a visible browser
        allow_attach: Whether the ladder may attach to the operator's browser
        cdp_endpoint: Debug endpoint of the operator's browser
        on_challenge: Awaited with a message when the operator has to act
    """

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    navigation_fraction: float = 0.5
    discovery_fraction: float = 0.4
    challenge_fraction: float = 0.3
    challenge_schedule_ms: Tuple[int, ...] = (1_000, 2_000, 4_000, 8_000)
    manual_challenge_schedule_ms: Tuple[int, ...] = (2_000,) * 5 + (5_000,) * 20
    navigation_attempts: int = 2
    navigation_backoff_ms: int = 1_000
    allow_headful: bool = True
    allow_attach: bool = True
    cdp_endpoint: str = DEFAULT_CDP_ENDPOINT
    browser_args: Tuple[str, ...] = BROWSER_ARGS
    user_agent: str = CHROME_USER_AGENT
    extra_headers: Dict[str, str] = field(default_factory=lambda: dict(EXTRA_HEADERS))
    viewport: Tuple[int, int] = (1440, 900)
    locale: str = "en-US"
    timezone_id: str = "America/New_York"
    on_challenge: Optional[ChallengeHook] = None

    @classmethod
    def from_env(cls, **overrides) -> "ScrapeConfig":
        """Build a config, letting ``CSCTM_CDP_ENDPOINT`` pick the attach endpoint."""
        endpoint = os.environ.get("CSCTM_CDP_ENDPOINT")
        if endpoint and "cdp_endpoint" not in overrides:
            overrides["cdp_endpoint"] = endpoint
        return cls(**overrides)

    def with_timeout(self, timeout_ms: int) -> "ScrapeConfig":
        return replace(self, timeout_ms=timeout_ms)


class TimeoutBudget:
    """
    Wall-clock budget in milliseconds, sliced across stages.

    Args:
        total_ms: Total budget
        clock: Monotonic clock returning seconds (injectable for tests)
    """

    def __init__(self, total_ms: int, clock: Callable[[], float] = time.monotonic) -> None:
        if total_ms <= 0:
            raise ValueError("timeout budget must be positive")
        self.total_ms = total_ms
        self._clock = clock
        self._started = clock()

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started) * 1000)

    def remaining_ms(self) -> int:
        return max(0, self.total_ms - self.elapsed_ms())

    @property
    def exhausted(self) -> bool:
        return self.remaining_ms() <= 0

    def slice(self, fraction: float, stage: str = "stage") -> int:
        """
        Milliseconds one stage may spend.

        Args:
            fraction: Share of the total budget the stage may use
            stage: Name used in the error message

        Returns:
            The smaller of ``total * fraction`` and what is left, at least 1

        Raises:
            BudgetExhausted: If nothing is left
        """
        remaining = self.remaining_ms()
        if remaining <= 0:
            raise BudgetExhausted(f"Timeout budget of {self.total_ms} ms exhausted before {stage}")
        return max(1, min(remaining, int(self.total_ms * fraction)))

    def sub_budget(self, total_ms: int, stage: str = "stage") -> "TimeoutBudget":
        """
        Carve a nested budget out of what is left, on the same clock.

        Args:
            total_ms: Budget wanted for the nested stage
            stage: Name used in the error message

        Returns:
            A budget of ``total_ms`` milliseconds, capped by what is left

        Raises:
            BudgetExhausted: If nothing is left
        """
        remaining = self.remaining_ms()
        if remaining <= 0:
            raise BudgetExhausted(f"Timeout budget of {self.total_ms} ms exhausted before {stage}")
        return TimeoutBudget(max(1, min(remaining, total_ms)), clock=self._clock)
