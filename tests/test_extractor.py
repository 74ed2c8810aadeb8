import pytest
from bs4 import BeautifulSoup

from csctm.errors import NoMessagesFound
from csctm.extractor import (
    clean_message_html,
    collect_message_nodes,
    extract_messages,
    extract_page_title,
    infer_role,
    iter_composed,
    parse_snapshot,
    resolve_unknown_roles,
)
from csctm.models import Provider, Role, ScrapedMessage


def _node(markup):
    return BeautifulSoup(markup, "html.parser").find(True)


def test_chatgpt_fixture(chatgpt_html):
    messages = extract_messages(chatgpt_html, "article [data-message-author-role]", Provider.CHATGPT)
    assert [msg.role for msg in messages] == [Role.USER, Role.ASSISTANT]
    assert "How do I sort a list of dicts by key?" in messages[0].html

    reply = messages[1].html
    assert "<button" not in reply
    assert "Copy code" not in reply
    assert "citation" not in reply
    assert "docs.python.org" not in reply
    assert "data-start" not in reply and "data-end" not in reply
    assert '<pre><code class="language-python">' in reply
    assert "rows.sort(key=lambda r: r[&quot;n&quot;])" in reply or 'rows.sort(key=lambda r: r["n"])' in reply
    assert ">python</div>" not in reply


def test_claude_fixture(claude_html):
    selector = '[data-testid="user-message"], div.font-claude-response'
    messages = extract_messages(claude_html, selector, Provider.CLAUDE)
    assert [msg.role for msg in messages] == [Role.USER, Role.ASSISTANT]
    assert "Match a date like 2024-01-31" in messages[0].html
    assert "copy-button-row" not in messages[1].html
    assert '<code class="language-regex">\\d{4}-\\d{2}-\\d{2}</code>' in messages[1].html


def test_gemini_fixture_reads_shadow_roots(gemini_html):
    messages = extract_messages(gemini_html, "user-query, model-response", Provider.GEMINI)
    assert [msg.role for msg in messages] == [Role.USER, Role.ASSISTANT]
    assert "Write a haiku about rain" in messages[0].html
    assert "shadow-root" not in messages[0].html
    assert "template" not in messages[1].html
    assert "Soft rain on tin roofs" in messages[1].html


def test_grok_fixture_uses_bubble_alignment(grok_html):
    messages = extract_messages(grok_html, "div.message-bubble", Provider.GROK)
    assert [msg.role for msg in messages] == [Role.USER, Role.ASSISTANT]
    assert "What is 2 + 2?" in messages[0].html
    assert "<strong>4</strong>" in messages[1].html
    assert "Regenerate" not in messages[1].html


def test_explicit_attribute_beats_keywords():
    node = _node('<div data-message-author-role="user" class="assistant-bubble">hi</div>')
    assert infer_role(node, Provider.CHATGPT) is Role.USER


def test_inner_author_attribute_is_found():
    node = _node('<article><div data-message-author-role="assistant">hi</div></article>')
    assert infer_role(node, Provider.CHATGPT) is Role.ASSISTANT


def test_streaming_attribute_means_assistant():
    node = _node('<div data-is-streaming="false">hi</div>')
    assert infer_role(node, Provider.GROK) is Role.ASSISTANT


def test_keyword_roles():
    assert infer_role(_node('<div class="user-query-bubble">hi</div>'), Provider.GROK) is Role.USER
    assert infer_role(_node('<div data-testid="bot-answer">hi</div>'), Provider.GROK) is Role.ASSISTANT
    # Both kinds of tokens cancel out
    assert infer_role(_node('<div class="user response">hi</div>'), Provider.GROK) is Role.UNKNOWN


def test_prefix_roles():
    assert infer_role(_node("<div>You said: hello</div>"), Provider.CHATGPT) is Role.USER
    assert infer_role(_node("<div>ChatGPT said: hi</div>"), Provider.CHATGPT) is Role.ASSISTANT
    assert infer_role(_node("<div>plain text</div>"), Provider.CHATGPT) is Role.UNKNOWN


def test_alternating_fallback_only_touches_unknown_roles():
    html = (
        '<div class="turn">first question</div>'
        '<div class="turn" data-message-author-role="assistant">answer</div>'
        '<div class="turn">follow-up</div>'
    )
    messages = extract_messages(html, "div.turn", Provider.CHATGPT)
    # Unknown turns alternate among themselves; the flagged turn keeps its role
    assert [msg.role for msg in messages] == [Role.USER, Role.ASSISTANT, Role.ASSISTANT]
    assert all(msg.role is not Role.UNKNOWN for msg in messages)


def test_resolve_unknown_roles_ignores_resolved_ones():
    messages = [
        ScrapedMessage(Role.ASSISTANT, "a"),
        ScrapedMessage(Role.UNKNOWN, "b"),
        ScrapedMessage(Role.UNKNOWN, "c"),
        ScrapedMessage(Role.UNKNOWN, "d"),
    ]
    roles = [msg.role for msg in resolve_unknown_roles(messages)]
    assert roles == [Role.ASSISTANT, Role.USER, Role.ASSISTANT, Role.USER]


def test_composed_order_visits_shadow_tree_first():
    soup = parse_snapshot(
        '<host-el><template shadowrootmode="open"><p id="shadow">s</p></template><p id="light">l</p></host-el>'
    )
    ids = [node.get("id") for node in iter_composed(soup) if node.name == "p"]
    assert ids == ["shadow", "light"]


def test_nested_matches_are_skipped():
    soup = parse_snapshot('<div class="msg" id="outer"><div class="msg" id="inner">x</div></div><div class="msg" id="next">y</div>')
    assert [node["id"] for node in collect_message_nodes(soup, "div.msg")] == ["outer", "next"]


def test_document_order_is_preserved():
    html = "".join(f'<div class="turn">message {i}</div>' for i in range(6))
    messages = extract_messages(html, "div.turn", Provider.GEMINI)
    assert [msg.html for msg in messages] == [f"message {i}" for i in range(6)]


def test_code_blocks_are_normalized():
    node = _node(
        '<div><pre><div class="bar">bash<button>Copy</button></div>'
        '<code data-language="bash">echo one<br>echo two</code></pre></div>'
    )
    cleaned = clean_message_html(node)
    assert cleaned == '<pre><code class="language-bash">echo one\necho two</code></pre>'


def test_block_looking_code_is_wrapped_in_pre():
    node = _node("<div><p>Run:</p><div><code>make build\nmake test</code></div><p>then <code>ls</code></p></div>")
    cleaned = clean_message_html(node)
    assert "<pre><code>make build\nmake test</code></pre>" in cleaned
    assert "<p>then <code>ls</code></p>" in cleaned


def test_clean_leaves_snapshot_untouched():
    soup = parse_snapshot('<div class="msg"><button>Copy</button>text</div>')
    node = soup.find("div")
    clean_message_html(node)
    assert node.find("button") is not None


def test_sr_only_labels_are_removed():
    node = _node('<div><span class="sr-only">You said:</span><p>hello</p></div>')
    assert clean_message_html(node) == "<p>hello</p>"


def test_empty_nodes_raise_no_messages_found():
    with pytest.raises(NoMessagesFound):
        extract_messages('<div class="turn"><button>Copy</button></div>', "div.turn", Provider.CHATGPT)
    with pytest.raises(NoMessagesFound):
        extract_messages("<p>nothing</p>", "div.turn", Provider.CHATGPT)


def test_page_title_prefers_og_title(chatgpt_html):
    assert extract_page_title(chatgpt_html) == "ChatGPT - Sorting in Python"
    assert extract_page_title("<title> Plain </title>") == "Plain"
    assert extract_page_title("<p>none</p>") == ""


def test_tailwind_margin_classes_are_not_a_user_signal():
    node = _node('<div class="message-bubble me-2 rounded-3xl">answer text</div>')
    assert infer_role(node, Provider.GROK) is Role.UNKNOWN

    html = (
        '<div><div class="message-bubble me-2">first</div></div>'
        '<div><div class="message-bubble ms-4 me-2">second</div></div>'
    )
    messages = extract_messages(html, "div.message-bubble", Provider.GROK)
    assert [msg.role for msg in messages] == [Role.USER, Role.ASSISTANT]
