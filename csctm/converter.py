"""
HTML to Markdown conversion for cleaned conversation messages.
"""

from __future__ import annotations

import re
from typing import List, Optional

from bs4 import Tag
from markdownify import ATX, MarkdownConverter

from .models import ExtractionResult

# Bare <code> longer than this is treated as a block even without newlines
BLOCK_CODE_MIN_CHARS = 120

BLOCK_PARENTS = frozenset({"div", "section", "article", "main", "header", "footer", "figure", "body"})

_LANGUAGE_CLASS = re.compile(r"^(?:language|lang)-([\w+#.-]+)$")
_BACKTICK_RUN = re.compile(r"`+")
_LINE_SEPARATORS = re.compile("[\u2028\u2029]")
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")


def code_language(tag: Optional[Tag]) -> Optional[str]:
    """Language hint from a ``language-x``/``lang-x`` class or ``data-language``."""
    if tag is None:
        return None
    classes = tag.get("class", [])
    if isinstance(classes, str):
        classes = classes.split()
    for cls in classes:
        match = _LANGUAGE_CLASS.match(cls)
        if match:
            return match.group(1)
    language = tag.get("data-language")
    if language and re.fullmatch(r"[\w+#.-]+", language):
        return language
    return None


def looks_like_code_block(code: Tag) -> bool:
    """
    Decide whether a ``<code>`` outside ``<pre>`` is really a code block.

    True when the code spans lines, is long, or is the only content of a
    block-level parent.
    """
    text = code.get_text()
    if "\n" in text.strip():
        return True
    if len(text) > BLOCK_CODE_MIN_CHARS:
        return True
    parent = code.parent
    if isinstance(parent, Tag) and parent.name in BLOCK_PARENTS:
        siblings = [child for child in parent.children if child is not code]
        return all(isinstance(child, str) and not child.strip() for child in siblings)
    return False


def fence_length(code_text: str) -> int:
    """Backticks needed so the fence cannot occur inside the code."""
    longest = max((len(run) for run in _BACKTICK_RUN.findall(code_text)), default=0)
    return max(3, longest + 1)


def fence_block(code_text: str, language: Optional[str] = None) -> str:
    """
    Wrap code in a fenced block.

    Non-breaking spaces become spaces, leading blank lines and trailing
    whitespace are trimmed.
    """
    code = code_text.replace("\u00a0", " ")
    code = re.sub(r"^(?:[ \t]*\n)+", "", code).rstrip()
    fence = "`" * fence_length(code)
    return f"\n\n{fence}{language or ''}\n{code}\n{fence}\n\n"


def _cell_text(cell: Tag) -> str:
    return re.sub(r"\s+", " ", cell.get_text(" ")).strip().replace("|", "\\|")


def _table_row(cells: List[str]) -> str:
    return "| " + " | ".join(cells) + " |"


class ConversationConverter(MarkdownConverter):
    """
    markdownify converter with the rules conversation turns need.

    Code blocks get collision-proof fences with their language, tables become
    pipe tables, ``<br>`` is a plain newline and block containers keep blank
    lines around them.
    """

    def __init__(self, **options):
        options.setdefault("heading_style", ATX)
        options.setdefault("bullets", "-")
        options.setdefault("escape_asterisks", False)
        options.setdefault("escape_underscores", False)
        options.setdefault("escape_misc", False)
        super().__init__(**options)

    def _fence_element(self, el: Tag) -> str:
        code = el.find("code") if el.name == "pre" else el
        source = code if code is not None else el
        language = code_language(source) or code_language(el)
        return fence_block(source.get_text(), language)

    def convert_pre(self, el, text, parent_tags):
        return self._fence_element(el)

    def convert_code(self, el, text, parent_tags):
        if "pre" in parent_tags:
            return text
        if "_inline" not in parent_tags and looks_like_code_block(el):
            return self._fence_element(el)
        return super().convert_code(el, text, parent_tags)

    def convert_br(self, el, text, parent_tags):
        if "_inline" in parent_tags:
            return " "
        return "\n"

    def _convert_block(self, el, text, parent_tags):
        if "_inline" in parent_tags:
            return " " + text.strip() + " "
        text = text.strip()
        if not text:
            return ""
        return f"\n\n{text}\n\n"

    convert_div = _convert_block
    convert_section = _convert_block
    convert_article = _convert_block
    convert_main = _convert_block
    convert_header = _convert_block
    convert_footer = _convert_block

    def convert_table(self, el, text, parent_tags):
        rows = []
        for tr in el.find_all("tr"):
            if tr.find_parent("table") is not el:
                continue
            cells = [_cell_text(cell) for cell in tr.find_all(["th", "td"], recursive=False)]
            if cells:
                rows.append(cells)
        if not rows:
            return ""

        width = max(len(row) for row in rows)
        rows = [row + [""] * (width - len(row)) for row in rows]
        lines = [_table_row(rows[0]), _table_row(["---"] * width)]
        lines.extend(_table_row(row) for row in rows[1:])
        return "\n\n" + "\n".join(lines) + "\n\n"


def normalize_markdown(markdown_text: str) -> str:
    """Replace Unicode line separators, collapse blank-line runs and trim."""
    text = markdown_text.replace("\r\n", "\n").replace("\x00", "")
    text = _LINE_SEPARATORS.sub("\n", text)
    text = _EXTRA_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def html_to_markdown(html_content: str) -> str:
    """
    Convert the cleaned HTML of one message to Markdown.

    Args:
        html_content: Cleaned inner markup of a message

    Returns:
        Trimmed Markdown
    """
    return normalize_markdown(ConversationConverter().convert(html_content))


def build_conversation_markdown(result: ExtractionResult) -> str:
    """
    Assemble the Markdown document for a whole conversation.

    Args:
        result: Finished extraction

    Returns:
        Markdown with a title, source/retrieval lines and one section per message
    """
    provider = result.source.provider
    title = _LINE_SEPARATORS.sub(" ", result.title).strip() or "Untitled"
    lines = [
        f"# {provider.display_name} Conversation: {title}",
        "",
        f"Source: {result.source.url}",
        f"Retrieved: {result.retrieved_at}",
        "",
    ]
    for msg in result.messages:
        lines.append(f"## {msg.role.label}")
        lines.append("")
        lines.append(html_to_markdown(msg.html))
        lines.append("")
    return "\n".join(lines)
