"""
Command-line entry point: scrape a share link and write Markdown and HTML files.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
import re
import sys
from typing import List, Optional

from .config import DEFAULT_TIMEOUT_MS, ScrapeConfig
from .errors import ScrapeError
from .orchestrator import scrape_conversation
from .providers import is_share_url, resolve_source
from .renderer import render_html_document

RESERVED_NAMES = {
    "con", "prn", "aux", "nul",
    "com1", "com2", "com3", "com4", "com5", "com6", "com7", "com8", "com9",
    "lpt1", "lpt2", "lpt3", "lpt4", "lpt5", "lpt6", "lpt7", "lpt8", "lpt9",
}
MAX_SLUG_LENGTH = 120


def slugify(title: str) -> str:
    """
    File-name-safe version of a conversation title.

    Args:
        title: Conversation title

    Returns:
        Lowercase ``[a-z0-9_]`` slug, never empty and at most 120 characters
    """
    base = re.sub(r"[^a-z0-9]+", "_", title.lower()).strip("_")
    if not base:
        return "chatgpt_conversation"
    if base in RESERVED_NAMES:
        base = f"{base}_chatgpt"
    return base[:MAX_SLUG_LENGTH].rstrip("_") or "chatgpt_conversation"


def unique_path(path: pathlib.Path) -> pathlib.Path:
    """Append ``_2``, ``_3``, ... to the stem until the path is unused."""
    if not path.exists():
        return path
    idx = 2
    while True:
        candidate = path.with_name(f"{path.stem}_{idx}{path.suffix}")
        if not candidate.exists():
            return candidate
        idx += 1


def _status(message: str) -> None:
    print(message, file=sys.stderr)


async def _announce_challenge(message: str) -> None:
    _status(f"⚠️  {message}")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="csctm",
        description="Convert a shared ChatGPT, Gemini, Grok or Claude conversation to Markdown and HTML",
    )
    ap.add_argument("url", help="Share URL, e.g. https://chatgpt.com/share/...")
    ap.add_argument("--selector", help="CSS selector for message nodes (skips selector discovery)")
    ap.add_argument("--title", help="Title to use instead of the page title")
    ap.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_MS / 1000,
        metavar="SECONDS",
        help="Overall time budget (default: %(default)s)",
    )
    ap.add_argument("-o", "--out-dir", default=".", help="Directory for the output files (default: current directory)")
    ap.add_argument("--no-html", action="store_true", help="Only write the Markdown file")
    ap.add_argument("--no-headful", action="store_true", help="Never open a visible browser window")
    ap.add_argument("--no-attach", action="store_true", help="Never attach to your own browser over CDP")
    ap.add_argument("--cdp-endpoint", help="Debug endpoint of your browser (default: $CSCTM_CDP_ENDPOINT or http://127.0.0.1:9222)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log every escalation step")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the csctm CLI.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if not is_share_url(args.url):
        _status("❌ Error: Please pass a valid http(s) URL.")
        return 1
    if args.timeout <= 0:
        _status("❌ Error: --timeout must be positive")
        return 1

    overrides = {
        "timeout_ms": int(args.timeout * 1000),
        "allow_headful": not args.no_headful,
        "allow_attach": not args.no_attach,
        "on_challenge": _announce_challenge,
    }
    if args.cdp_endpoint:
        overrides["cdp_endpoint"] = args.cdp_endpoint
    config = ScrapeConfig.from_env(**overrides)

    source = resolve_source(args.url)
    out_dir = pathlib.Path(args.out_dir)

    try:
        _status(f"🌐 Fetching {source.provider.display_name} conversation from {args.url}...")
        export = asyncio.run(scrape_conversation(args.url, selector=args.selector, title=args.title, config=config))
    except ScrapeError as e:
        _status(f"❌ Error: {e}")
        return 1
    except KeyboardInterrupt:
        _status("❌ Interrupted")
        return 130

    out_dir.mkdir(parents=True, exist_ok=True)
    md_path = unique_path(out_dir / f"{slugify(export.title)}.md")
    _status(f"💾 Writing Markdown file: {md_path.resolve()}")
    md_path.write_text(export.markdown, encoding="utf-8")

    if not args.no_html:
        html_title = f"{source.provider.display_name} Conversation: {export.title}"
        html_out = render_html_document(export.markdown, html_title, args.url, export.retrieved_at)
        html_path = unique_path(md_path.with_suffix(".html"))
        _status(f"💾 Writing HTML file: {html_path.resolve()}")
        html_path.write_text(html_out, encoding="utf-8")

    _status(f"✓ Saved {md_path.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
