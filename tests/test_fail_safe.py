import pytest

from scrape_governor.errors import BlockedError, HubHaltError
from scrape_governor.services.fail_safe import BLOCK_INDICATORS, FailSafeMonitor, detect_block
from scrape_governor.services.trace import TraceBuffer


def test_detects_access_denied_page():
    result = detect_block("<html><h1>Access Denied</h1></html>")
    assert result.blocked
    assert result.reason == "access denied"


def test_detection_is_case_insensitive():
    assert detect_block("Please VERIFY YOU ARE HUMAN to continue").reason == "verify you are human"
    assert detect_block("<div class='g-RECAPTCHA'></div>").reason == "captcha"


@pytest.mark.parametrize("phrase", BLOCK_INDICATORS)
def test_every_indicator_is_detected_in_mixed_case(phrase):
    mixed = "".join(c.upper() if i % 2 else c for i, c in enumerate(phrase))
    result = detect_block(f"<html><body><p>{mixed}</p></body></html>")
    assert result.blocked
    assert result.reason in phrase


def test_clean_page_is_not_blocked():
    result = detect_block("<html><body><h1>Senior Engineer</h1><p>Riyadh</p></body></html>")
    assert not result.blocked
    assert result.reason is None


def test_empty_content_is_not_blocked():
    assert not detect_block("").blocked
    assert not detect_block(None).blocked


@pytest.mark.asyncio
async def test_blocked_page_halts_hub_with_audit_span(driver_factory):
    trace = TraceBuffer()
    driver = driver_factory(pages={"https://portal.example/jobs": "Unusual traffic from your network"})
    await driver.goto("https://portal.example/jobs")

    with pytest.raises(BlockedError) as exc:
        await FailSafeMonitor(trace).assert_not_blocked(driver, "Riyadh")

    err = exc.value
    assert isinstance(err, HubHaltError)
    assert err.hub_id == "Riyadh"
    assert err.reason == "unusual traffic"
    assert err.url == "https://portal.example/jobs"
    assert "[FAIL-SAFE]" in str(err)

    spans = trace.recent()
    assert [s.name for s in spans] == ["fail_safe_halt"]
    assert spans[0].attributes["hub_id"] == "Riyadh"


@pytest.mark.asyncio
async def test_clean_page_passes_without_trace(driver_factory):
    trace = TraceBuffer()
    driver = driver_factory()
    await driver.goto("https://portal.example/")
    await FailSafeMonitor(trace).assert_not_blocked(driver, "Dubai")
    assert len(trace) == 0
