import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from scrape_governor.services.selector_store import SelectorStore
from scrape_governor.services.self_healing import (
    HealRequest,
    SelectorHealer,
    SelfHealingEngine,
    TriggerReason,
    build_text_prompt,
    build_vision_prompt,
    extract_selector_from_response,
)
from scrape_governor.services.trace import TraceBuffer


def llm_returning(text):
    llm = MagicMock()
    llm.complete = AsyncMock(return_value=text)
    llm.complete_with_image = AsyncMock(return_value=text)
    return llm


@pytest.fixture
def store(session_factory):
    store = SelectorStore(session_factory, clock=lambda: datetime(2026, 3, 10, 12, 0))
    store.ensure_source("bayt", display_name="Bayt")
    store.upsert_selector("bayt", "title", "h1.job-title")
    return store


@pytest.fixture
def trace():
    return TraceBuffer()


def make_engine(store, trace, llm):
    return SelfHealingEngine(store, SelectorHealer(llm, timeout_seconds=1), trace)


def make_request(**overrides):
    fields = dict(
        source_id="bayt",
        field_name="title",
        trigger_reason=TriggerReason.SELECTOR_NOT_FOUND,
        selector_before="h1.job-title",
        page_html="<html><h2 class='job-title-v2'>Engineer</h2></html>",
    )
    fields.update(overrides)
    return HealRequest(**fields)


# Response parsing

def test_parses_fenced_selector():
    parsed = extract_selector_from_response("```css\n.job-title-v2\n```")
    assert parsed.ok
    assert parsed.selector == ".job-title-v2"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("  h1.title  \nThis selector targets the heading.", "h1.title"),
        ("`div.price`", "div.price"),
        ("\n\n[data-testid=\"job-title\"]", '[data-testid="job-title"]'),
        ("ul > li:nth-child(2) span", "ul > li:nth-child(2) span"),
    ],
)
def test_takes_first_non_empty_line(text, expected):
    assert extract_selector_from_response(text).selector == expected


@pytest.mark.parametrize(
    "text",
    ["", "   ", None, "Sorry, I cannot find that element!", "```\n```", "." + "a" * 600],
)
def test_rejects_unusable_responses(text):
    parsed = extract_selector_from_response(text)
    assert not parsed.ok
    assert parsed.error


def test_text_prompt_truncates_html():
    prompt = build_text_prompt("title", "x" * 100_000, "h1.old")
    assert "x" * 80_000 in prompt
    assert "x" * 80_001 not in prompt
    assert 'field "title"' in prompt
    assert "Previous selector: h1.old" in prompt
    assert "Return ONLY a valid CSS selector" in prompt


def test_vision_prompt_names_field_and_previous_selector():
    prompt = build_vision_prompt("company", None)
    assert '"company"' in prompt
    assert "failed: none" in prompt


# Healer

@pytest.mark.asyncio
async def test_healer_without_llm_reports_not_configured():
    result = await SelectorHealer(None).heal_from_html(make_request())
    assert not result.success
    assert result.raw_error == "LLM provider not configured"


@pytest.mark.asyncio
async def test_healer_returns_parsed_selector_with_trace_id():
    llm = llm_returning("```css\n.job-title-v2\n```")
    result = await SelectorHealer(llm).heal_from_html(make_request())
    assert result.success
    assert result.selector_after == ".job-title-v2"
    assert result.trace_id
    assert llm.complete.await_args.kwargs["max_tokens"] == 200


@pytest.mark.asyncio
async def test_healer_reports_llm_errors():
    llm = MagicMock()
    llm.complete = AsyncMock(side_effect=RuntimeError("429 rate limited"))
    result = await SelectorHealer(llm).heal_from_html(make_request())
    assert not result.success
    assert "429" in result.raw_error


@pytest.mark.asyncio
async def test_healer_times_out():
    async def slow(*args, **kwargs):
        await asyncio.sleep(5)
        return ".never"

    llm = MagicMock()
    llm.complete = slow
    result = await SelectorHealer(llm, timeout_seconds=0.01).heal_from_html(make_request())
    assert not result.success
    assert "timed out" in result.raw_error


@pytest.mark.asyncio
async def test_vision_heal_needs_a_screenshot():
    llm = llm_returning(".x")
    result = await SelectorHealer(llm).heal_from_screenshot(make_request())
    assert not result.success
    assert "screenshot" in result.raw_error
    llm.complete_with_image.assert_not_called()


@pytest.mark.asyncio
async def test_vision_heal_sends_the_screenshot():
    llm = llm_returning(".company-v2")
    result = await SelectorHealer(llm).heal_from_screenshot(make_request(screenshot_base64="iVBORw0KGgo="))
    assert result.selector_after == ".company-v2"
    assert llm.complete_with_image.await_args.args[1] == "iVBORw0KGgo="


# Heal loop

@pytest.mark.asyncio
async def test_verified_heal_updates_selector_and_marks_source_healed(store, trace):
    engine = make_engine(store, trace, llm_returning("```css\n.job-title-v2\n```"))
    verifier = AsyncMock(return_value=True)

    result = await engine.run_heal_loop(make_request(), verifier=verifier)

    assert result.success
    verifier.assert_awaited_once_with(".job-title-v2")
    record = store.get_selector_record("bayt", "title")
    assert record.selector_value == ".job-title-v2"
    assert record.selector_previous == "h1.job-title"
    source = store.get_source("bayt")
    assert source.status == "healed"
    assert source.last_heal_at is not None

    (event,) = store.list_heal_events("bayt")
    assert event.success
    assert event.trigger_reason == "selector_not_found"
    assert event.selector_before == "h1.job-title"
    assert event.selector_after == ".job-title-v2"
    assert event.trace_id == result.trace_id
    assert len(trace) == 0  # flushed


@pytest.mark.asyncio
async def test_rejected_candidate_leaves_selector_untouched(store, trace):
    engine = make_engine(store, trace, llm_returning(".wrong"))

    result = await engine.run_heal_loop(make_request(), verifier=AsyncMock(return_value=False))

    assert not result.success
    assert result.raw_error.endswith("; verification failed")
    assert store.get_selector("bayt", "title") == "h1.job-title"
    assert store.get_source("bayt").status == "healing"
    (event,) = store.list_heal_events("bayt")
    assert not event.success
    assert event.selector_after == ".wrong"
    assert "heal_failure" in [s.name for s in trace.recent()]


@pytest.mark.asyncio
async def test_repeated_rejections_only_add_audit_rows(store, trace):
    engine = make_engine(store, trace, llm_returning(".wrong"))
    for _ in range(3):
        await engine.run_heal_loop(make_request(), verifier=AsyncMock(return_value=False))

    assert store.get_source("bayt").status == "healing"
    assert store.get_selector("bayt", "title") == "h1.job-title"
    assert len(store.list_heal_events("bayt")) == 3


@pytest.mark.asyncio
async def test_verifier_exception_counts_as_failed_verification(store, trace):
    engine = make_engine(store, trace, llm_returning(".job-title-v2"))
    verifier = AsyncMock(side_effect=RuntimeError("page closed"))

    result = await engine.run_heal_loop(make_request(), verifier=verifier)

    assert not result.success
    assert "verification failed" in result.raw_error
    assert store.get_source("bayt").status == "healing"


@pytest.mark.asyncio
async def test_missing_verifier_accepts_candidate(store, trace):
    engine = make_engine(store, trace, llm_returning(".job-title-v2"))
    result = await engine.run_heal_loop(make_request())
    assert result.success
    assert store.get_selector("bayt", "title") == ".job-title-v2"


@pytest.mark.asyncio
async def test_unconfigured_llm_is_audited_as_failure(store, trace):
    engine = make_engine(store, trace, None)
    result = await engine.run_heal_loop(make_request(trigger_reason=TriggerReason.NULL_FIELD))

    assert result.raw_error == "LLM provider not configured"
    (event,) = store.list_heal_events("bayt")
    assert event.trigger_reason == "null_field"
    assert event.raw_error == "LLM provider not configured"
    assert store.get_source("bayt").status == "healing"


@pytest.mark.asyncio
async def test_healed_source_can_heal_again(store, trace):
    engine = make_engine(store, trace, llm_returning(".job-title-v2"))
    await engine.run_heal_loop(make_request())
    engine.healer.llm = llm_returning(".job-title-v3")
    await engine.run_heal_loop(make_request(selector_before=".job-title-v2"))

    record = store.get_selector_record("bayt", "title")
    assert record.selector_value == ".job-title-v3"
    assert record.selector_previous == ".job-title-v2"


@pytest.mark.asyncio
async def test_concurrent_heals_for_same_field_share_one_attempt(store, trace):
    release = asyncio.Event()
    calls = []

    async def complete(prompt, **kwargs):
        calls.append(prompt)
        await release.wait()
        return ".job-title-v2"

    llm = MagicMock()
    llm.complete = complete
    engine = make_engine(store, trace, llm)

    first = asyncio.ensure_future(engine.run_heal_loop(make_request()))
    second = asyncio.ensure_future(engine.run_heal_loop(make_request()))
    await asyncio.sleep(0)
    release.set()
    r1, r2 = await asyncio.gather(first, second)

    assert r1 is r2
    assert len(calls) == 1
    assert len(store.list_heal_events("bayt")) == 1


@pytest.mark.asyncio
async def test_different_fields_heal_independently(store, trace):
    engine = make_engine(store, trace, llm_returning(".v2"))
    await asyncio.gather(
        engine.run_heal_loop(make_request(field_name="title")),
        engine.run_heal_loop(make_request(field_name="company", selector_before=".company")),
    )
    assert len(store.list_heal_events("bayt")) == 2
