"""
Data types shared by the extraction and rendering pipeline.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Tuple


class Provider(str, enum.Enum):
    """Chat providers whose share pages can be scraped."""

    CHATGPT = "chatgpt"
    GEMINI = "gemini"
    GROK = "grok"
    CLAUDE = "claude"

    @property
    def display_name(self) -> str:
        return {
            Provider.CHATGPT: "ChatGPT",
            Provider.GEMINI: "Gemini",
            Provider.GROK: "Grok",
            Provider.CLAUDE: "Claude",
        }[self]


class Role(str, enum.Enum):
    ASSISTANT = "assistant"
    USER = "user"
    SYSTEM = "system"
    TOOL = "tool"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class ConversationSource:
    """A share URL together with the provider it was resolved to."""

    url: str
    provider: Provider


@dataclass(frozen=True)
class SelectorCandidate:
    """
    One hypothesis about how conversation turns are laid out in the DOM.

    Attributes:
        name: Short label used in logs
        selectors: CSS selectors that together locate the turns, most specific first
    """

    name: str
    selectors: Tuple[str, ...]

    @property
    def css(self) -> str:
        """The group as a single CSS selector list."""
        return ", ".join(self.selectors)


@dataclass(frozen=True)
class ScrapedMessage:
    """
    A single conversation turn.

    Attributes:
        role: Who authored the turn
        html: Cleaned inner markup of the turn
    """

    role: Role
    html: str


@dataclass(frozen=True)
class ExtractionResult:
    """
    Everything captured from one successful scrape.

    Messages are kept in document order.
    """

    title: str
    messages: Tuple[ScrapedMessage, ...]
    retrieved_at: str
    source: ConversationSource

    def __post_init__(self) -> None:
        if any(msg.role is Role.UNKNOWN for msg in self.messages):
            raise ValueError("ExtractionResult messages must not carry the unknown role")


@dataclass(frozen=True)
class RenderedDocument:
    markdown: str
    html: str


@dataclass(frozen=True)
class ConversationExport:
    """The triple handed to file writers and publishers."""

    title: str
    markdown: str
    retrieved_at: str
