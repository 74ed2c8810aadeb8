"""
Failure kinds raised by the scraper.

Every error carries an optional ``hint`` telling the operator what to try next.
"""

from __future__ import annotations

from typing import Optional


class ScrapeError(RuntimeError):
    """Base class for every failure that can leave the orchestrator."""

    default_hint: Optional[str] = None

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint if hint is not None else self.default_hint

    def __str__(self) -> str:
        message = super().__str__()
        if self.hint:
            return f"{message} (hint: {self.hint})"
        return message


class NavigationTimeout(ScrapeError):
    default_hint = "Check your network connection or raise --timeout."


class ChallengeBlocked(ScrapeError):
    default_hint = "This page requires manual challenge-solving; open it in your own browser started with --remote-debugging-port."


class SelectorNotFound(ScrapeError):
    default_hint = "The page layout may have changed; try an override selector with --selector."


class NoMessagesFound(ScrapeError):
    default_hint = "The share link may be private or deleted; try an override selector with --selector."


class BackendLaunchFailure(ScrapeError):
    default_hint = "Run `playwright install chromium` and make sure a display is available for headful mode."


class UnsupportedEscalation(ScrapeError):
    default_hint = "Attach mode needs a desktop session; run on a machine with a visible browser."


class BudgetExhausted(ScrapeError):
    default_hint = "Raise --timeout to give slow pages more time."
