import pytest

from csctm.renderer import (
    SlugRegistry,
    escape_raw_tags,
    highlight_code,
    render_html_document,
    render_markdown_body,
    slugify_heading,
)

MARKDOWN = """# ChatGPT Conversation: Sorting

Source: https://chatgpt.com/share/abc
Retrieved: 2024-01-01T00:00:00.000Z

## User

How do I sort?

## Assistant

Use `sorted`:

```python
rows.sort(key=lambda r: r["n"])
```

| Function | Returns |
| --- | --- |
| sorted | a new list |
"""


def _render(markdown_text=MARKDOWN):
    return render_html_document(
        markdown_text,
        "ChatGPT Conversation: Sorting",
        "https://chatgpt.com/share/abc",
        "2024-01-01T00:00:00.000Z",
    )


def test_document_shape():
    out = _render()
    assert out.startswith("<!doctype html>")
    assert "<style>" in out
    assert "prefers-color-scheme: dark" in out
    assert "@media print" in out
    assert '<article class="article">' in out
    assert "<title>ChatGPT Conversation: Sorting</title>" in out
    assert 'href="https://chatgpt.com/share/abc"' in out


def test_document_has_no_script_or_external_resources():
    out = _render(MARKDOWN + "\n<script>alert(1)</script>\n")
    assert "<script" not in out.lower()
    assert "<link" not in out
    assert "src=" not in out


def test_rendering_is_idempotent():
    assert _render() == _render()


def test_toc_lists_message_headings():
    out = _render()
    assert "Contents" in out
    assert '<a href="#user">User</a>' in out
    assert '<a href="#assistant">Assistant</a>' in out
    assert '<h2 id="user">User</h2>' in out


def test_repeated_headings_get_unique_ids():
    body, toc = render_markdown_body("## User\n\nhi\n\n## Assistant\n\nyo\n\n## User\n\nagain\n")
    assert [slug for _, slug, _ in toc] == ["user", "assistant", "user-1"]
    assert 'id="user-1"' in body


def test_code_blocks_are_highlighted_with_label():
    out = _render()
    assert '<figure class="code-block">' in out
    assert '<figcaption class="code-lang">python</figcaption>' in out
    assert 'class="highlight"' in out


def test_table_is_rendered():
    body, _ = render_markdown_body(MARKDOWN)
    assert "<table>" in body
    assert "<td>a new list</td>" in body


def test_literal_script_is_visible_text():
    body, _ = render_markdown_body("Watch out for <script>alert(1)</script> tags")
    assert "<script" not in body
    assert "&lt;script" in body


def test_script_inside_code_is_kept_as_code():
    md = "```html\n<script>alert(1)</script>\n```\n"
    assert escape_raw_tags(md) == md
    body, _ = render_markdown_body(md)
    assert "<script" not in body
    assert "script" in body


def test_escape_raw_tags_skips_inline_code():
    assert escape_raw_tags("use `<style>` or <style>") == "use `<style>` or &lt;style>"


def test_event_handlers_and_javascript_urls_are_removed():
    body, _ = render_markdown_body(
        '<p onclick="evil()">x</p>\n\n[link](javascript:evil)\n\n<img src="data:text/html,boom" onerror="x()">'
    )
    assert "onclick" not in body
    assert "onerror" not in body
    assert "javascript:" not in body
    assert "data:text/html" not in body


def test_iframe_is_neutralized():
    body, _ = render_markdown_body('<iframe src="https://example.com"></iframe>')
    assert "<iframe" not in body


def test_slugify_heading():
    assert slugify_heading("Hello, World!") == "hello-world"
    assert slugify_heading("???") == "section"


def test_slug_registry_dedupes():
    slugs = SlugRegistry()
    assert [slugs.claim("Intro"), slugs.claim("Intro"), slugs.claim("Intro")] == ["intro", "intro-1", "intro-2"]


def test_highlight_code_falls_back_to_plain_text():
    html_out, label = highlight_code("just words", "no-such-language")
    assert label == "no-such-language"
    assert "just words" in html_out

    _, label = highlight_code("", None)
    assert label == "text"


@pytest.mark.parametrize(
    "href",
    [
        "java&#9;script:alert(1)",
        "java&#10;script:alert(1)",
        "&#1;javascript:alert(1)",
        " JaVaScRiPt:alert(1)",
        "vb&#13;script:msgbox(1)",
    ],
)
def test_obfuscated_script_urls_are_removed(href):
    body, _ = render_markdown_body(f'<a href="{href}">click</a>')
    assert "href" not in body
    assert "click" in body


def test_plain_links_are_kept():
    body, _ = render_markdown_body('<a href="https://example.com/docs">docs</a> and [mail](mailto:a@b.c)')
    assert 'href="https://example.com/docs"' in body
    assert 'href="mailto:a@b.c"' in body


@pytest.mark.parametrize(
    "markup,tag",
    [
        ('<link rel="stylesheet" href="https://evil.example/x.css">', "link"),
        ('<meta http-equiv="refresh" content="0;url=https://evil.example">', "meta"),
        ('<base href="https://evil.example/">', "base"),
        ('<form action="https://evil.example"><input name="q"></form>', "form"),
        ('<frameset><frame src="https://evil.example"></frameset>', "frameset"),
        ('<frame src="https://evil.example">', "frame"),
        ('<video src="https://evil.example/v.mp4"></video>', "video"),
        ('<svg><image href="https://evil.example/i.png"/></svg>', "svg"),
    ],
)
def test_resource_loading_tags_are_neutralized(markup, tag):
    body, _ = render_markdown_body(f"before\n\n{markup}\n\nafter")
    assert f"<{tag}" not in body
    assert f"&lt;{tag}" in body


def test_remote_images_become_links():
    body, _ = render_markdown_body("![diagram](https://example.com/d.png)")
    assert "<img" not in body
    assert '<a href="https://example.com/d.png">diagram</a>' in body


def test_inline_images_are_kept():
    body, _ = render_markdown_body('<img alt="dot" src="data:image/png;base64,iVBORw0KGgo=" srcset="https://x/y.png 2x">')
    assert 'src="data:image/png;base64,iVBORw0KGgo="' in body
    assert "srcset" not in body


def test_relative_images_keep_only_alt_text():
    body, _ = render_markdown_body("![chart](chart.png)")
    assert "<img" not in body
    assert "chart.png" not in body
    assert "chart" in body


def test_style_urls_are_removed():
    body, _ = render_markdown_body('<p style="background: URL( https://evil.example/t.gif )">x</p><p style="color: red">y</p>')
    assert "evil.example" not in body
    assert 'style="color: red"' in body


def test_full_document_loads_nothing_external():
    out = render_html_document(
        '<link rel="stylesheet" href="https://evil.example/x.css">\n\n![pic](https://example.com/p.png)\n',
        "t",
        "https://chatgpt.com/share/abc",
        "2024-01-01T00:00:00.000Z",
    )
    assert "<link" not in out
    assert "<img" not in out
    assert "src=" not in out
