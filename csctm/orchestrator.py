"""
Escalation state machine driving one scrape from URL to ExtractionResult.

The ladder is headless Chromium, then headful Chromium, then the operator's
own browser over CDP. Each rung gets a fresh session that is closed before
the next rung opens; only structural failures (challenge pages, blocking
navigation errors, selectors that never match on a defended provider) move
the scrape up a rung.

The overall budget is shared out as the ladder climbs: each rung gets an
equal part of what is left across the rungs still ahead, so a slow headless
attempt cannot starve the headful and attached ones.
"""

from __future__ import annotations

import enum
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from playwright.async_api import Error as PlaywrightError

from .backend import AttachedBackend, AutomationSession, ScriptedBackend, attach_supported
from .challenge import wait_until_clear
from .config import ScrapeConfig, TimeoutBudget
from .converter import build_conversation_markdown
from .discovery import discover_selector
from .errors import (
    BudgetExhausted,
    ChallengeBlocked,
    NavigationTimeout,
    NoMessagesFound,
    ScrapeError,
    SelectorNotFound,
    UnsupportedEscalation,
)
from .extractor import extract_messages, extract_page_title
from .models import ConversationExport, ConversationSource, ExtractionResult, RenderedDocument
from .providers import clean_title, profile_for, resolve_source, selector_candidates
from .renderer import render_html_document

logger = logging.getLogger(__name__)


class Stage(str, enum.Enum):
    IDLE = "idle"
    SCRIPTED_HEADLESS = "scripted_headless"
    SCRIPTED_HEADFUL = "scripted_headful"
    ATTACHED = "attached"
    SUCCESS = "success"
    FAILURE = "failure"


class Signal(str, enum.Enum):
    START = "start"
    EXTRACTED = "extracted"
    BLOCKED = "blocked"
    BLOCKING_ERROR = "blocking_error"
    SELECTORS_MISSING = "selectors_missing"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FATAL = "fatal"


TERMINAL_STAGES = frozenset({Stage.SUCCESS, Stage.FAILURE})


def next_stage(
    stage: Stage,
    signal: Signal,
    defended: bool = False,
    allow_headful: bool = True,
    allow_attach: bool = True,
) -> Stage:
    """
    Transition function of the escalation ladder.

    Args:
        stage: Current stage
        signal: What the current stage observed
        defended: Provider sits behind bot protection, so missing selectors
            count as a hidden block
        allow_headful: Headful Chromium may be used
        allow_attach: Attach mode is enabled and supported on this host

    Returns:
        The next stage
    """
    if stage in TERMINAL_STAGES:
        return stage
    if stage is Stage.IDLE:
        return Stage.SCRIPTED_HEADLESS if signal is Signal.START else Stage.FAILURE
    if signal is Signal.EXTRACTED:
        return Stage.SUCCESS
    if signal in (Signal.BUDGET_EXHAUSTED, Signal.FATAL, Signal.START):
        return Stage.FAILURE

    escalate = signal in (Signal.BLOCKED, Signal.BLOCKING_ERROR) or (
        signal is Signal.SELECTORS_MISSING and defended
    )
    if not escalate:
        return Stage.FAILURE

    if stage is Stage.SCRIPTED_HEADLESS and allow_headful:
        return Stage.SCRIPTED_HEADFUL
    if stage in (Stage.SCRIPTED_HEADLESS, Stage.SCRIPTED_HEADFUL) and allow_attach:
        return Stage.ATTACHED
    return Stage.FAILURE


def signal_for(error: ScrapeError) -> Signal:
    """Map a failure raised inside a stage to the signal the ladder reacts to."""
    if isinstance(error, ChallengeBlocked):
        return Signal.BLOCKED
    if isinstance(error, NavigationTimeout):
        return Signal.BLOCKING_ERROR
    if isinstance(error, (SelectorNotFound, NoMessagesFound)):
        return Signal.SELECTORS_MISSING
    if isinstance(error, BudgetExhausted):
        return Signal.BUDGET_EXHAUSTED
    return Signal.FATAL


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Backend(Protocol):
    label: str

    async def open(self, config: ScrapeConfig) -> AutomationSession: ...


def default_backend(stage: Stage) -> Backend:
    if stage is Stage.SCRIPTED_HEADLESS:
        return ScriptedBackend(headless=True)
    if stage is Stage.SCRIPTED_HEADFUL:
        return ScriptedBackend(headless=False)
    if stage is Stage.ATTACHED:
        return AttachedBackend()
    raise ValueError(f"No backend for stage {stage.value}")


class EscalationOrchestrator:
    """
    Runs the escalation ladder for one URL at a time.

    Args:
        config: Scrape configuration
        backend_factory: Builds the backend for a stage (injectable for tests)
        attach_available: Overrides the host platform check for attach mode
        clock: Monotonic clock in seconds for the timeout budget
        now: Returns the retrieval timestamp
    """

    def __init__(
        self,
        config: Optional[ScrapeConfig] = None,
        backend_factory: Callable[[Stage], Backend] = default_backend,
        attach_available: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], str] = utc_timestamp,
    ) -> None:
        self.config = config or ScrapeConfig()
        self._backend_factory = backend_factory
        self._attach_supported = attach_supported() if attach_available is None else attach_available
        self._clock = clock
        self._now = now
        self.history: Dict[Stage, Signal] = {}

    @property
    def attach_enabled(self) -> bool:
        return self.config.allow_attach and self._attach_supported

    async def run(self, url: str, selector: Optional[str] = None, title: Optional[str] = None) -> ExtractionResult:
        """
        Scrape one share URL, escalating backends on structural failures.

        Args:
            url: Share URL
            selector: Override selector that bypasses discovery
            title: Title override

        Returns:
            The extraction result

        Raises:
            ScrapeError: The last structural failure once the ladder is exhausted
        """
        source = resolve_source(url)
        defended = profile_for(source.provider).defended
        budget = TimeoutBudget(self.config.timeout_ms, clock=self._clock)
        self.history = {}
        logger.info("Resolved %s to provider %s", url, source.provider.value)

        stage = next_stage(Stage.IDLE, Signal.START)
        last_error: Optional[ScrapeError] = None
        while stage not in TERMINAL_STAGES:
            try:
                result = await self._attempt(stage, source, budget, selector, title)
            except ScrapeError as exc:
                last_error = exc
                signal = signal_for(exc)
                logger.warning("%s failed (%s): %s", stage.value, signal.value, exc)
            else:
                self.history[stage] = Signal.EXTRACTED
                logger.info("%s extracted %d message(s)", stage.value, len(result.messages))
                return result

            self.history[stage] = signal
            previous = stage
            stage = next_stage(
                stage,
                signal,
                defended=defended,
                allow_headful=self.config.allow_headful,
                allow_attach=self.attach_enabled,
            )
            logger.info("Escalation %s -> %s", previous.value, stage.value)

            if stage is Stage.FAILURE and self._wanted_attach(previous, signal, defended):
                raise UnsupportedEscalation(
                    f"{last_error}; attach mode is not available on this platform",
                ) from last_error

        assert last_error is not None
        raise last_error

    def _wanted_attach(self, stage: Stage, signal: Signal, defended: bool) -> bool:
        if not self.config.allow_attach or self._attach_supported:
            return False
        would_be = next_stage(
            stage, signal, defended=defended, allow_headful=self.config.allow_headful, allow_attach=True
        )
        return would_be is Stage.ATTACHED

    async def _attempt(
        self,
        stage: Stage,
        source: ConversationSource,
        budget: TimeoutBudget,
        selector: Optional[str],
        title: Optional[str],
    ) -> ExtractionResult:
        if budget.exhausted:
            raise BudgetExhausted(f"Timeout budget of {budget.total_ms} ms exhausted before {stage.value}")
        # Leave every rung still ahead an equal share of what is left
        rung_budget = budget.sub_budget(budget.remaining_ms() // self._rungs_left(stage), stage.value)
        logger.debug("%s gets %d ms of %d ms left", stage.value, rung_budget.total_ms, budget.remaining_ms())

        backend = self._backend_factory(stage)
        session = await backend.open(self.config)
        try:
            return await self._scrape(session, source, rung_budget, selector, title)
        except PlaywrightError as exc:
            raise ScrapeError(f"Browser error during {stage.value}: {exc.message}") from exc
        finally:
            await session.close()

    def _rungs_left(self, stage: Stage) -> int:
        ladder = [Stage.SCRIPTED_HEADLESS]
        if self.config.allow_headful:
            ladder.append(Stage.SCRIPTED_HEADFUL)
        if self.attach_enabled:
            ladder.append(Stage.ATTACHED)
        return len(ladder) - ladder.index(stage) if stage in ladder else 1

    async def _navigate(self, session: AutomationSession, url: str, budget: TimeoutBudget) -> None:
        # Retries share one navigation window so they cannot eat the rest of the rung
        window = budget.sub_budget(int(budget.total_ms * self.config.navigation_fraction), "navigation")
        attempts = max(1, self.config.navigation_attempts)
        for attempt in range(1, attempts + 1):
            try:
                await session.navigate(url, max(1, window.remaining_ms()))
                return
            except NavigationTimeout:
                if attempt == attempts or window.exhausted:
                    raise
                backoff_ms = min(self.config.navigation_backoff_ms * attempt, window.remaining_ms())
                logger.info("Navigation timed out, retrying in %d ms (%d/%d)", backoff_ms, attempt, attempts)
                await session.sleep(backoff_ms)

    async def _scrape(
        self,
        session: AutomationSession,
        source: ConversationSource,
        budget: TimeoutBudget,
        selector: Optional[str],
        title: Optional[str],
    ) -> ExtractionResult:
        config = self.config
        await self._navigate(session, source.url, budget)

        if session.attached:
            schedule, wait_ms, hook = config.manual_challenge_schedule_ms, budget.remaining_ms(), config.on_challenge
        else:
            schedule, hook = config.challenge_schedule_ms, None
            wait_ms = budget.slice(config.challenge_fraction, "challenge wait")
        if not await wait_until_clear(session, schedule, budget_ms=wait_ms, on_challenge=hook):
            raise ChallengeBlocked(f"Challenge page on {source.url} did not clear ({session.label})")

        discovery_ms = budget.slice(config.discovery_fraction, "selector discovery")
        candidate = await discover_selector(
            session, selector_candidates(source.provider), discovery_ms, override=selector
        )

        snapshot = await session.snapshot()
        messages = extract_messages(snapshot, candidate.css, source.provider)

        if title:
            final_title = title.strip()
        else:
            # A live title that is only branding says nothing; og:title often does
            final_title = (
                clean_title(await session.title(), source.provider)
                or clean_title(extract_page_title(snapshot), source.provider)
                or "Untitled"
            )

        return ExtractionResult(
            title=final_title,
            messages=tuple(messages),
            retrieved_at=self._now(),
            source=source,
        )


async def scrape(
    url: str,
    timeout_ms: Optional[int] = None,
    selector: Optional[str] = None,
    title: Optional[str] = None,
    config: Optional[ScrapeConfig] = None,
) -> ExtractionResult:
    """Scrape one share URL with the default backends."""
    config = config or ScrapeConfig.from_env()
    if timeout_ms is not None:
        config = config.with_timeout(timeout_ms)
    return await EscalationOrchestrator(config).run(url, selector=selector, title=title)


async def scrape_conversation(
    url: str,
    timeout_ms: Optional[int] = None,
    selector: Optional[str] = None,
    title: Optional[str] = None,
    config: Optional[ScrapeConfig] = None,
) -> ConversationExport:
    """
    Scrape a share URL and return the title, Markdown and retrieval time.

    Raises:
        ScrapeError: If every backend on the ladder failed
    """
    result = await scrape(url, timeout_ms=timeout_ms, selector=selector, title=title, config=config)
    return ConversationExport(
        title=result.title,
        markdown=build_conversation_markdown(result),
        retrieved_at=result.retrieved_at,
    )


def render_document(result: ExtractionResult) -> RenderedDocument:
    """Markdown and HTML twins for one extraction."""
    markdown_text = build_conversation_markdown(result)
    html_title = f"{result.source.provider.display_name} Conversation: {result.title}"
    return RenderedDocument(
        markdown=markdown_text,
        html=render_html_document(markdown_text, html_title, result.source.url, result.retrieved_at),
    )
