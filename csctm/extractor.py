"""
Turn a serialized page snapshot into an ordered list of cleaned messages.

The snapshot carries open shadow roots as ``<template shadowrootmode>``
children of their hosts. They are renamed to ``<shadow-root>`` on parse so
they behave as ordinary elements for CSS matching, and walked explicitly by
``iter_composed`` so nodes inside web components are found in document order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterator, List, Optional, Sequence

import soupsieve
from bs4 import BeautifulSoup, Tag

from .converter import looks_like_code_block, code_language
from .errors import NoMessagesFound
from .models import Provider, Role, ScrapedMessage

logger = logging.getLogger(__name__)

SHADOW_ROOT_TAG = "shadow-root"

ROLE_ATTRIBUTES = (
    "data-message-author-role",
    "data-author-role",
    "data-message-role",
    "data-author",
    "data-role",
)

ROLE_ALIASES = {
    "user": Role.USER,
    "human": Role.USER,
    "assistant": Role.ASSISTANT,
    "model": Role.ASSISTANT,
    "bot": Role.ASSISTANT,
    "ai": Role.ASSISTANT,
    "system": Role.SYSTEM,
    "tool": Role.TOOL,
    "function": Role.TOOL,
}

# Matched against class-name fragments, so no word that is also a utility
# class prefix (Tailwind's "me-2", "ms-4") may appear here.
USER_TOKENS = frozenset({"user", "human", "query", "prompt"})
ASSISTANT_TOKENS = frozenset(
    {"assistant", "model", "response", "bot", "ai", "answer", "reply", "chatgpt", "claude", "gemini", "grok"}
)

USER_PREFIX = re.compile(r"^(?:you said|you wrote)\s*:?", re.IGNORECASE)
ASSISTANT_PREFIX = re.compile(r"^(?:chatgpt|gemini|claude|grok|assistant)\s+(?:said|wrote)\s*:?", re.IGNORECASE)

CHROME_SELECTORS = (
    "button",
    '[data-testid*="citation"]',
    '[data-testid*="copy"]',
    '[role="tooltip"]',
    '[class*="tooltip"]',
    ".sr-only",
)


def parse_snapshot(html_content: str) -> BeautifulSoup:
    """Parse a snapshot, exposing declarative shadow roots as ``<shadow-root>`` elements."""
    soup = BeautifulSoup(html_content, "html.parser")
    for template in soup.find_all("template"):
        if template.has_attr("shadowrootmode"):
            template.name = SHADOW_ROOT_TAG
    return soup


def shadow_root(node: Tag) -> Optional[Tag]:
    for child in node.children:
        if isinstance(child, Tag) and child.name == SHADOW_ROOT_TAG:
            return child
    return None


def iter_composed(node: Tag) -> Iterator[Tag]:
    """
    Yield every element below ``node`` in composed document order.

    A host's shadow tree is visited before its light children, matching how
    the browser renders it.
    """
    root = shadow_root(node)
    if root is not None:
        for child in root.children:
            if isinstance(child, Tag):
                yield child
                yield from iter_composed(child)
    for child in node.children:
        if isinstance(child, Tag) and child is not root:
            yield child
            yield from iter_composed(child)


def collect_message_nodes(soup: Tag, selector: str) -> List[Tag]:
    """
    Find the outermost nodes matching the selector, including inside shadow roots.

    A match nested inside an earlier match is the same message seen twice and
    is skipped.
    """
    pattern = soupsieve.compile(selector)
    matched: List[Tag] = []
    matched_ids = set()
    for node in iter_composed(soup):
        if not pattern.match(node):
            continue
        if any(id(parent) in matched_ids for parent in node.parents):
            continue
        matched.append(node)
        matched_ids.add(id(node))
    return matched


def _role_from_value(value: str) -> Role:
    return ROLE_ALIASES.get(value.strip().lower(), Role.UNKNOWN)


def _explicit_role(node: Tag) -> Role:
    for attr in ROLE_ATTRIBUTES:
        if node.has_attr(attr):
            role = _role_from_value(node.get(attr, ""))
            if role is not Role.UNKNOWN:
                return role
    # Turn wrappers keep the author attribute on an inner element
    inner = node.find(attrs={"data-message-author-role": True})
    if inner is not None:
        return _role_from_value(inner.get("data-message-author-role", ""))
    return Role.UNKNOWN


def _class_string(node: Tag) -> str:
    classes = node.get("class", [])
    if isinstance(classes, str):
        return classes
    return " ".join(classes)


def _structural_role(node: Tag, provider: Provider) -> Role:
    # A streaming flag only ever sits on replies still being generated
    if any("streaming" in attr for attr in node.attrs):
        return Role.ASSISTANT

    if provider is Provider.CHATGPT:
        if node.has_attr("data-message-model-slug") or node.find(attrs={"data-message-model-slug": True}):
            return Role.ASSISTANT
    elif provider is Provider.CLAUDE:
        classes = _class_string(node)
        if node.get("data-testid") == "user-message" or "font-user-message" in classes:
            return Role.USER
        if "font-claude" in classes or node.find_parent(attrs={"data-is-streaming": True}) is not None:
            return Role.ASSISTANT
    elif provider is Provider.GEMINI:
        names = {node.name} | {parent.name for parent in node.parents}
        if "user-query" in names:
            return Role.USER
        if names & {"model-response", "response-container", "message-content"}:
            return Role.ASSISTANT
    elif provider is Provider.GROK:
        # User bubbles are right-aligned, assistant bubbles left-aligned
        parent = node.parent
        parent_classes = parent.get("class", []) if isinstance(parent, Tag) else []
        if "items-end" in parent_classes:
            return Role.USER
        if "items-start" in parent_classes:
            return Role.ASSISTANT
    return Role.UNKNOWN


def _keyword_role(node: Tag) -> Role:
    haystack = " ".join([_class_string(node), node.get("data-testid", "") or ""]).lower()
    tokens = set(re.split(r"[^a-z0-9]+", haystack))
    is_user = bool(tokens & USER_TOKENS)
    is_assistant = bool(tokens & ASSISTANT_TOKENS)
    if is_user and not is_assistant:
        return Role.USER
    if is_assistant and not is_user:
        return Role.ASSISTANT
    return Role.UNKNOWN


def _prefix_role(node: Tag) -> Role:
    text = node.get_text(" ", strip=True)[:80]
    if USER_PREFIX.match(text):
        return Role.USER
    if ASSISTANT_PREFIX.match(text):
        return Role.ASSISTANT
    return Role.UNKNOWN


def infer_role(node: Tag, provider: Provider) -> Role:
    """
    Work out who authored a message node.

    Signals are tried strongest first: explicit author attribute, provider
    specific structure, class/test-id keywords, then "You said:" style
    prefixes. Nodes with no signal stay ``Role.UNKNOWN``.
    """
    for infer in (_explicit_role, lambda n: _structural_role(n, provider), _keyword_role, _prefix_role):
        role = infer(node)
        if role is not Role.UNKNOWN:
            return role
    return Role.UNKNOWN


def remove_chrome(root: Tag) -> None:
    """Drop buttons, citation pills, tooltips and other UI furniture in place."""
    for selector in CHROME_SELECTORS:
        for elem in root.select(selector):
            if not elem.decomposed:
                elem.decompose()
    # Copy buttons are not always <button>s
    for elem in root.find_all(class_=lambda cls: bool(cls) and "copy" in cls.lower()):
        if not elem.decomposed:
            elem.decompose()
    for elem in root.find_all(SHADOW_ROOT_TAG):
        elem.unwrap()
    for elem in [root] + root.find_all(True):
        for attr in ("data-start", "data-end"):
            if attr in elem.attrs:
                del elem.attrs[attr]


def normalize_code_blocks(soup: BeautifulSoup, root: Tag) -> None:
    """
    Give every code block the ``<pre><code class="language-x">`` shape.

    Header bars inside ``<pre>`` (language labels, copy buttons) are dropped
    and only the code text is kept. Bare ``<code>`` elements that look like
    blocks are wrapped in ``<pre>``.
    """
    for pre in root.find_all("pre"):
        code = pre.find("code")
        language = code_language(code) if code is not None else None
        language = language or code_language(pre)
        source = code if code is not None else pre
        for br in source.find_all("br"):
            br.replace_with("\n")
        text = source.get_text()
        new_code = soup.new_tag("code")
        if language:
            new_code["class"] = [f"language-{language}"]
        new_code.string = text
        pre.clear()
        pre.append(new_code)

    for code in root.find_all("code"):
        if code.find_parent("pre") is None and looks_like_code_block(code):
            code.wrap(soup.new_tag("pre"))


def _has_content(root: Tag) -> bool:
    return bool(root.get_text(strip=True)) or root.find("img") is not None


def clean_message_html(node: Tag) -> str:
    """
    Clean one message node and return its inner markup.

    The node is re-parsed from its markup first so the snapshot stays untouched.
    """
    clone = BeautifulSoup(str(node), "html.parser")
    root = clone.find(True)
    if root is None:
        return ""
    remove_chrome(root)
    normalize_code_blocks(clone, root)
    if not _has_content(root):
        return ""
    return root.decode_contents().strip()


def resolve_unknown_roles(messages: Sequence[ScrapedMessage]) -> List[ScrapedMessage]:
    """
    Assign user/assistant alternately to messages with no role signal.

    Alternation follows the order unknown messages are met in and ignores
    roles that were already resolved.
    """
    resolved = []
    next_role = Role.USER
    for msg in messages:
        if msg.role is Role.UNKNOWN:
            resolved.append(replace(msg, role=next_role))
            next_role = Role.ASSISTANT if next_role is Role.USER else Role.USER
        else:
            resolved.append(msg)
    return resolved


def extract_messages(html_content: str, selector: str, provider: Provider) -> List[ScrapedMessage]:
    """
    Extract the conversation turns from a page snapshot.

    Args:
        html_content: Serialized page (see ``SNAPSHOT_SCRIPT``)
        selector: Confirmed CSS selector list for message nodes
        provider: Provider the page belongs to

    Returns:
        Messages in document order, every role resolved

    Raises:
        NoMessagesFound: If no node yields any content
    """
    soup = parse_snapshot(html_content)
    nodes = collect_message_nodes(soup, selector)
    logger.debug("Selector %r matched %d node(s)", selector, len(nodes))

    messages = []
    for node in nodes:
        role = infer_role(node, provider)
        cleaned = clean_message_html(node)
        if cleaned:
            messages.append(ScrapedMessage(role=role, html=cleaned))

    if not messages:
        raise NoMessagesFound(f"Selector {selector!r} matched {len(nodes)} node(s) but no message content")

    unknown = sum(1 for msg in messages if msg.role is Role.UNKNOWN)
    if unknown:
        logger.info("Assigning alternating roles to %d message(s) without a role signal", unknown)
    return resolve_unknown_roles(messages)


def extract_page_title(html_content: str) -> str:
    """Title from ``og:title`` or ``<title>``, for pages whose live title is empty."""
    soup = BeautifulSoup(html_content, "html.parser")
    meta = soup.find("meta", attrs={"property": "og:title"})
    if meta is not None and meta.get("content"):
        return meta["content"].strip()
    if soup.title is not None and soup.title.string:
        return soup.title.string.strip()
    return ""
