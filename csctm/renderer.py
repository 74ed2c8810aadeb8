"""
Render conversation Markdown into a standalone, script-free HTML page.
"""

from __future__ import annotations

import html
import re
from typing import Dict, List, Optional, Set, Tuple

import markdown
from bs4 import BeautifulSoup, NavigableString
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import TextLexer, get_lexer_by_name, guess_lexer
from pygments.util import ClassNotFound

TOC_LEVELS = ("h2", "h3", "h4")
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")

# Tags whose literal occurrence in content is shown as text, never executed or loaded
ESCAPED_TAGS = (
    "script", "style", "iframe", "object", "embed", "link", "meta", "base",
    "form", "frame", "frameset", "audio", "video", "source", "track", "svg",
)

_FENCE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_INLINE_CODE = re.compile(r"(`+)(.+?)\1")
_RAW_TAG = re.compile(r"<(/?)(script|style)\b", re.IGNORECASE)
_URL_ATTRS = ("href", "src", "action", "formaction", "xlink:href")
_UNSAFE_SCHEMES = ("javascript:", "vbscript:", "data:text/html")
# Attributes that make the browser fetch something on its own
_FETCHING_ATTRS = ("srcset", "background", "poster", "ping")
# Browsers ignore control characters and spaces anywhere in a URL scheme
_URL_NOISE = re.compile(r"[\x00-\x20]+")


def _escape_tags(text: str) -> str:
    return _RAW_TAG.sub(r"&lt;\1\2", text)


def _escape_outside_code_spans(line: str) -> str:
    parts = []
    pos = 0
    for match in _INLINE_CODE.finditer(line):
        parts.append(_escape_tags(line[pos : match.start()]))
        parts.append(match.group(0))
        pos = match.end()
    parts.append(_escape_tags(line[pos:]))
    return "".join(parts)


def escape_raw_tags(markdown_text: str) -> str:
    """
    Escape literal ``<script>``/``<style>`` tags in Markdown source.

    Fenced blocks and inline code spans are left alone because the Markdown
    renderer escapes their content itself.
    """
    out = []
    fence: Optional[str] = None
    for line in markdown_text.split("\n"):
        if fence is None:
            match = _FENCE.match(line)
            if match:
                fence = match.group(1)
                out.append(line)
            else:
                out.append(_escape_outside_code_spans(line))
        else:
            if line.strip() == fence:
                fence = None
            out.append(line)
    return "\n".join(out)


def slugify_heading(text: str) -> str:
    """Lowercase, strip non-word characters, turn spaces into hyphens."""
    slug = re.sub(r"[^\w\s-]", "", text.lower()).strip()
    slug = re.sub(r"\s+", "-", slug)
    return slug or "section"


class SlugRegistry:
    """Hands out unique heading ids; repeats get ``-1``, ``-2``, ..."""

    def __init__(self) -> None:
        self._used: Set[str] = set()

    def claim(self, text: str) -> str:
        base = slugify_heading(text)
        slug = base
        n = 0
        while slug in self._used:
            n += 1
            slug = f"{base}-{n}"
        self._used.add(slug)
        return slug


def highlight_code(code_text: str, language: Optional[str]) -> Tuple[str, str]:
    """
    Highlight one code block with Pygments.

    Args:
        code_text: Raw code
        language: Declared language, if any

    Returns:
        Highlighted HTML and the label to show above it
    """
    lexer = None
    if language:
        try:
            lexer = get_lexer_by_name(language, stripall=False)
        except ClassNotFound:
            lexer = None
    if lexer is None:
        try:
            lexer = guess_lexer(code_text) if code_text.strip() else TextLexer(stripall=False)
        except ClassNotFound:
            lexer = TextLexer(stripall=False)

    label = language or (lexer.aliases[0] if lexer.aliases else "text")
    formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
    return highlight(code_text, lexer, formatter), label


def _highlight_blocks(soup: BeautifulSoup) -> None:
    for code_block in soup.find_all("code"):
        # Inline code has no <pre> parent
        if not code_block.parent or code_block.parent.name != "pre":
            continue

        language = None
        for cls in code_block.get("class", []):
            if cls.startswith("language-"):
                language = cls[len("language-") :]
                break

        highlighted, label = highlight_code(code_block.get_text(), language)
        figure = soup.new_tag("figure", attrs={"class": "code-block"})
        caption = soup.new_tag("figcaption", attrs={"class": "code-lang"})
        caption.string = label
        figure.append(caption)
        figure.append(BeautifulSoup(highlighted, "html.parser"))
        code_block.parent.replace_with(figure)


def _assign_heading_ids(soup: BeautifulSoup) -> List[Tuple[int, str, str]]:
    slugs = SlugRegistry()
    entries = []
    for heading in soup.find_all(list(HEADING_TAGS)):
        text = heading.get_text(" ", strip=True)
        slug = slugs.claim(text)
        heading["id"] = slug
        if heading.name in TOC_LEVELS:
            entries.append((int(heading.name[1]), slug, text))
    return entries


def _compact_url(value) -> str:
    return _URL_NOISE.sub("", str(value)).lower()


def _is_inline_image(value) -> bool:
    return _compact_url(value).startswith("data:image/")


def _unload_image(soup: BeautifulSoup, img) -> None:
    """Keep inline images; turn remote ones into a link so the page fetches nothing."""
    src = str(img.get("src", "")).strip()
    if _is_inline_image(src):
        return
    alt = img.get("alt", "") or ""
    if re.match(r"^https?://", src, re.IGNORECASE):
        link = soup.new_tag("a", href=src)
        link.string = alt or src
        img.replace_with(link)
    else:
        img.replace_with(NavigableString(alt))


def _neutralize(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(list(ESCAPED_TAGS)):
        tag.replace_with(NavigableString(str(tag)))
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            name = attr.lower()
            value = tag.attrs[attr]
            if name.startswith("on") or name in _FETCHING_ATTRS:
                del tag.attrs[attr]
            elif name in _URL_ATTRS and _compact_url(value).startswith(_UNSAFE_SCHEMES):
                del tag.attrs[attr]
            elif name == "style" and "url(" in _compact_url(value):
                del tag.attrs[attr]
    for img in soup.find_all("img"):
        _unload_image(soup, img)
    for tag in soup.find_all(src=True):
        if not _is_inline_image(tag["src"]):
            del tag["src"]


def render_markdown_body(markdown_text: str) -> Tuple[str, List[Tuple[int, str, str]]]:
    """
    Render Markdown to an HTML fragment.

    Returns:
        The fragment and the table of contents entries as (level, id, text)
    """
    html_content = markdown.markdown(
        escape_raw_tags(markdown_text),
        extensions=["fenced_code", "tables", "nl2br", "sane_lists"],
    )
    soup = BeautifulSoup(html_content, "html.parser")
    _neutralize(soup)
    _highlight_blocks(soup)
    toc = _assign_heading_ids(soup)
    return _escape_tags(str(soup)), toc


def _toc_html(entries: List[Tuple[int, str, str]]) -> str:
    if not entries:
        return ""
    items = "\n".join(
        f'      <li class="toc-level-{level}"><a href="#{html.escape(slug)}">{html.escape(text)}</a></li>'
        for level, slug, text in entries
    )
    return f"""  <nav class="toc" aria-label="Contents">
    <h2 class="toc-title">Contents</h2>
    <ul>
{items}
    </ul>
  </nav>
"""


def _pygments_css() -> str:
    light = HtmlFormatter(style="default").get_style_defs(".highlight")
    dark = HtmlFormatter(style="monokai").get_style_defs(".highlight")
    dark = "\n".join("    " + line for line in dark.splitlines())
    return f"""{light}
  @media (prefers-color-scheme: dark) {{
{dark}
  }}"""


def _safe_href(url: str) -> str:
    return url if re.match(r"^https?://", url, re.IGNORECASE) else "#"


def render_html_document(markdown_text: str, title: str, source_url: str, retrieved_at: str) -> str:
    """
    Build the complete HTML page for a conversation.

    The output references no external resources, contains no scripts and is
    byte-identical for identical inputs.

    Args:
        markdown_text: Conversation Markdown
        title: Page title
        source_url: Share URL the conversation came from
        retrieved_at: ISO-8601 retrieval timestamp

    Returns:
        Complete HTML string ready to be written to file
    """
    body_html, toc = render_markdown_body(markdown_text)
    meta: Dict[str, str] = {
        "title": html.escape(title),
        "url": html.escape(source_url),
        "href": html.escape(_safe_href(source_url)),
        "retrieved": html.escape(retrieved_at),
    }

    return f"""<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8" />
<meta name="viewport" content="width=device-width, initial-scale=1" />
<meta name="generator" content="csctm" />
<title>{meta["title"]}</title>
<style>
  :root {{
    --bg: #f8f9fa; --fg: #24292e; --muted: #586069; --card: #ffffff;
    --border: #e1e4e8; --link: #0366d6; --code-bg: #f6f8fa;
  }}
  @media (prefers-color-scheme: dark) {{
    :root {{
      --bg: #0d1117; --fg: #e6edf3; --muted: #8b949e; --card: #161b22;
      --border: #30363d; --link: #58a6ff; --code-bg: #1f2428;
    }}
  }}
  body {{
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
    margin: 0; padding: 0; line-height: 1.6;
    background: var(--bg); color: var(--fg);
  }}
  .page {{ max-width: 960px; margin: 0 auto; padding: 1.5rem 2rem 3rem; }}
  a {{ color: var(--link); text-decoration: none; }}
  a:hover {{ text-decoration: underline; }}
  .doc-header {{
    background: var(--card); border: 1px solid var(--border); border-radius: 8px;
    padding: 1.25rem 1.5rem; margin-bottom: 1.5rem;
  }}
  .doc-header h1 {{ margin: 0 0 0.5rem 0; font-size: 1.5rem; }}
  .meta {{ color: var(--muted); font-size: 0.9rem; }}
  .toc {{
    background: var(--card); border: 1px solid var(--border); border-radius: 8px;
    padding: 1rem 1.5rem; margin-bottom: 1.5rem;
  }}
  .toc-title {{ margin: 0 0 0.5rem 0; font-size: 1rem; }}
  .toc ul {{ list-style: none; margin: 0; padding: 0; }}
  .toc li {{ margin: 0.2rem 0; }}
  .toc .toc-level-3 {{ padding-left: 1rem; }}
  .toc .toc-level-4 {{ padding-left: 2rem; }}
  .article {{
    background: var(--card); border: 1px solid var(--border); border-radius: 8px;
    padding: 1.5rem; overflow-wrap: anywhere;
  }}
  .article h2 {{ border-bottom: 1px solid var(--border); padding-bottom: 0.3rem; margin-top: 2rem; }}
  .article h2:first-child {{ margin-top: 0; }}
  .article pre {{ padding: 1rem; border-radius: 6px; overflow-x: auto; margin: 0; }}
  .article code {{
    font-family: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, 'Courier New', monospace;
    font-size: 0.9em;
  }}
  .article :not(pre) > code {{ background: var(--code-bg); padding: 0.2em 0.4em; border-radius: 3px; }}
  .article table {{ border-collapse: collapse; width: 100%; margin: 1em 0; }}
  .article th, .article td {{ border: 1px solid var(--border); padding: 0.5rem; text-align: left; }}
  .article th {{ background: var(--code-bg); }}
  .article blockquote {{ margin: 1em 0; padding-left: 1em; border-left: 4px solid var(--border); color: var(--muted); }}
  .code-block {{ margin: 1em 0; border: 1px solid var(--border); border-radius: 6px; overflow: hidden; }}
  .code-lang {{
    font-size: 0.75rem; text-transform: lowercase; color: var(--muted);
    padding: 0.25rem 0.75rem; border-bottom: 1px solid var(--border); background: var(--code-bg);
  }}
  :target {{ scroll-margin-top: 1rem; }}
  @media print {{
    body {{ background: #ffffff; color: #000000; }}
    .page {{ max-width: none; padding: 0; }}
    .toc {{ display: none; }}
    .doc-header, .article {{ border: none; padding: 0; }}
    .article pre {{ white-space: pre-wrap; }}
    a {{ color: inherit; text-decoration: underline; }}
  }}

  /* Pygments syntax highlighting */
  {_pygments_css()}
</style>
</head>
<body>
<div class="page">
  <header class="doc-header">
    <h1>{meta["title"]}</h1>
    <div class="meta">
      <strong>Source:</strong> <a href="{meta["href"]}" rel="noopener noreferrer">{meta["url"]}</a>
      · <strong>Retrieved:</strong> <time datetime="{meta["retrieved"]}">{meta["retrieved"]}</time>
    </div>
  </header>
{_toc_html(toc)}  <article class="article">
{body_html}
  </article>
</div>
</body>
</html>
"""
