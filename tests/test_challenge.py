import asyncio

from csctm.challenge import SHORT_BODY_LIMIT, looks_like_challenge, page_is_challenged, wait_until_clear

from .conftest import FakeSession, load_fixture

CONVERSATION = "<html><head><title>ChatGPT - Notes</title></head><body><p>Hello there</p></body></html>"


def test_title_signature_matches():
    assert looks_like_challenge("Just a moment...", "")
    assert looks_like_challenge("Attention Required! | Cloudflare", "lots of text " * 500)


def test_short_body_signature_matches():
    assert looks_like_challenge("", "Checking your browser before accessing the site")
    assert looks_like_challenge("chatgpt.com", "Verify you are human by completing the action below.")


def test_long_conversation_mentioning_verify_is_not_a_challenge():
    body = ("Please verify you are human before running the migration. " * 60)[:3000]
    assert len(body) > SHORT_BODY_LIMIT
    assert not looks_like_challenge("ChatGPT - Migration notes", body)


def test_plain_page_is_not_a_challenge():
    assert not looks_like_challenge("ChatGPT - Notes", "Hello there")
    assert not looks_like_challenge("", "")


def test_page_is_challenged_reads_title_and_body():
    assert asyncio.run(page_is_challenged(FakeSession(load_fixture("challenge.html"))))
    assert not asyncio.run(page_is_challenged(FakeSession(CONVERSATION)))


def test_clear_page_needs_no_wait():
    session = FakeSession(CONVERSATION)
    assert asyncio.run(wait_until_clear(session, (1000, 2000)))
    assert session.sleeps == []


def test_challenge_clears_after_schedule_steps(challenge_html):
    session = FakeSession([challenge_html, challenge_html, CONVERSATION])
    assert asyncio.run(wait_until_clear(session, (10, 20, 40, 80)))
    assert session.sleeps == [10, 20]


def test_challenge_blocks_when_schedule_runs_out(challenge_html):
    session = FakeSession(challenge_html)
    assert not asyncio.run(wait_until_clear(session, (10, 20, 40)))
    assert session.sleeps == [10, 20, 40]


def test_waits_are_capped_by_budget(challenge_html):
    session = FakeSession(challenge_html)
    assert not asyncio.run(wait_until_clear(session, (10, 20, 40), budget_ms=25))
    assert session.sleeps == [10, 15]


def test_hook_is_called_once_when_challenge_seen(challenge_html):
    messages = []

    async def hook(message):
        messages.append(message)

    session = FakeSession([challenge_html, challenge_html, CONVERSATION])
    assert asyncio.run(wait_until_clear(session, (10, 10, 10), on_challenge=hook))
    assert len(messages) == 1
    assert "challenge" in messages[0]


def test_hook_not_called_for_clear_page():
    messages = []

    async def hook(message):
        messages.append(message)

    assert asyncio.run(wait_until_clear(FakeSession(CONVERSATION), (10,), on_challenge=hook))
    assert messages == []
