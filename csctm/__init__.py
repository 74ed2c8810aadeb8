"""
Convert shared ChatGPT, Gemini, Grok and Claude conversations into Markdown and static HTML.
"""

from .config import ScrapeConfig, TimeoutBudget
from .converter import build_conversation_markdown, html_to_markdown
from .errors import (
    BackendLaunchFailure,
    BudgetExhausted,
    ChallengeBlocked,
    NavigationTimeout,
    NoMessagesFound,
    ScrapeError,
    SelectorNotFound,
    UnsupportedEscalation,
)
from .extractor import extract_messages
from .models import (
    ConversationExport,
    ConversationSource,
    ExtractionResult,
    Provider,
    RenderedDocument,
    Role,
    ScrapedMessage,
    SelectorCandidate,
)
from .orchestrator import EscalationOrchestrator, render_document, scrape, scrape_conversation
from .providers import resolve_provider
from .renderer import render_html_document

__version__ = "0.1.0"

__all__ = [
    "BackendLaunchFailure",
    "BudgetExhausted",
    "ChallengeBlocked",
    "ConversationExport",
    "ConversationSource",
    "EscalationOrchestrator",
    "ExtractionResult",
    "NavigationTimeout",
    "NoMessagesFound",
    "Provider",
    "RenderedDocument",
    "Role",
    "ScrapeConfig",
    "ScrapeError",
    "ScrapedMessage",
    "SelectorCandidate",
    "SelectorNotFound",
    "TimeoutBudget",
    "UnsupportedEscalation",
    "build_conversation_markdown",
    "extract_messages",
    "html_to_markdown",
    "render_document",
    "render_html_document",
    "resolve_provider",
    "scrape",
    "scrape_conversation",
]
