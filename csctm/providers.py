"""
Provider resolution and the per-provider selector catalog.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Tuple
from urllib.parse import urlparse

from .models import ConversationSource, Provider, SelectorCandidate


@dataclass(frozen=True)
class ProviderProfile:
    """
    Static facts about one provider.

    Attributes:
        provider: Provider identity
        hosts: Host names (and their subdomains) served by the provider
        selectors: Selector groups, most specific first, most generic last
        defended: Whether the share pages sit behind bot protection, so a
            missing selector is treated as a hidden block and escalated
        path_hosts: (host, path prefix) pairs for hosts shared with other
            products, which only match under that path
    """

    provider: Provider
    hosts: Tuple[str, ...]
    selectors: Tuple[SelectorCandidate, ...]
    defended: bool = False
    path_hosts: Tuple[Tuple[str, str], ...] = ()


PROFILES: Tuple[ProviderProfile, ...] = (
    ProviderProfile(
        provider=Provider.CHATGPT,
        hosts=("chatgpt.com", "chat.openai.com"),
        selectors=(
            SelectorCandidate("article-author-role", ("article [data-message-author-role]",)),
            SelectorCandidate("author-role", ("[data-message-author-role]",)),
            SelectorCandidate("conversation-turn", ('article[data-testid^="conversation-turn-"]',)),
            SelectorCandidate("markdown-prose", ("div.markdown.prose", "div.whitespace-pre-wrap")),
        ),
        defended=True,
    ),
    ProviderProfile(
        provider=Provider.GEMINI,
        hosts=("gemini.google.com", "g.co"),
        selectors=(
            SelectorCandidate("query-response", ("user-query", "model-response")),
            SelectorCandidate("query-text-content", (".query-text", "message-content")),
            SelectorCandidate(
                "class-substring",
                ('[class*="user-query"]', '[class*="model-response"]', '[class*="response-container"]'),
            ),
        ),
    ),
    ProviderProfile(
        provider=Provider.GROK,
        hosts=("grok.com", "x.ai"),
        path_hosts=(("x.com", "/i/grok"),),
        selectors=(
            SelectorCandidate("message-bubble", ("div.message-bubble",)),
            SelectorCandidate("message-bubble-substring", ('[class*="message-bubble"]',)),
            SelectorCandidate("response-testid", ('[data-testid*="message"]',)),
        ),
        defended=True,
    ),
    ProviderProfile(
        provider=Provider.CLAUDE,
        hosts=("claude.ai",),
        selectors=(
            SelectorCandidate("testid-response", ('[data-testid="user-message"]', "div.font-claude-response")),
            SelectorCandidate("font-classes", ("div.\\!font-user-message", "div.font-claude-message")),
            SelectorCandidate("font-substring", ('[class*="font-user-message"]', '[class*="font-claude"]')),
            SelectorCandidate("standard-markdown", ("div.standard-markdown",)),
        ),
        defended=True,
    ),
)

_BY_PROVIDER: Dict[Provider, ProviderProfile] = {profile.provider: profile for profile in PROFILES}


def _host_matches(host: str, pattern: str) -> bool:
    return host == pattern or host.endswith("." + pattern)


def resolve_provider(url: str) -> Provider:
    """
    Detect which provider serves the URL.

    Args:
        url: Share URL

    Returns:
        The first provider whose host list matches, ``Provider.CHATGPT`` otherwise
    """
    try:
        parsed = urlparse(url.strip())
        host, path = (parsed.hostname or "").lower(), parsed.path
    except ValueError:
        host, path = "", ""
    if not host and "://" not in url:
        # Schemeless input such as "claude.ai/share/..."
        authority, _, rest = url.strip().partition("/")
        host, path = authority.split(":", 1)[0].lower(), "/" + rest

    for profile in PROFILES:
        if any(_host_matches(host, pattern) for pattern in profile.hosts):
            return profile.provider
        if any(
            _host_matches(host, pattern) and path.lower().startswith(prefix)
            for pattern, prefix in profile.path_hosts
        ):
            return profile.provider
    return Provider.CHATGPT


def resolve_source(url: str) -> ConversationSource:
    return ConversationSource(url=url, provider=resolve_provider(url))


def profile_for(provider: Provider) -> ProviderProfile:
    return _BY_PROVIDER[provider]


def selector_candidates(provider: Provider) -> List[SelectorCandidate]:
    return list(profile_for(provider).selectors)


def is_share_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def clean_title(raw_title: str, provider: Provider) -> str:
    """
    Strip the provider branding that share pages put into ``<title>``.

    "ChatGPT - Trip planning" and "Trip planning | Claude" both become
    "Trip planning". A title that is only branding comes back empty.
    """
    name = re.escape(provider.display_name)
    title = re.sub(r"\s+", " ", raw_title or "").strip()
    title = re.sub(rf"^(?:Google\s+)?{name}\s*(?:[-–—|:]\s*|$)", "", title, flags=re.IGNORECASE)
    title = re.sub(rf"\s*[-–—|:]\s*(?:Google\s+)?{name}$", "", title, flags=re.IGNORECASE)
    return title.strip()
