import pytest

from scrape_governor.services.trace import TraceBuffer, build_otlp_payload, traces_endpoint


def test_end_closes_the_given_span_only():
    trace = TraceBuffer()
    riyadh = trace.record("hub_session", hub_id="Riyadh")
    dubai = trace.record("hub_session", hub_id="Dubai")

    trace.end(riyadh, status="ok")

    assert riyadh.end_time is not None
    assert riyadh.attributes == {"hub_id": "Riyadh", "status": "ok"}
    assert dubai.end_time is None
    assert "status" not in dubai.attributes


def test_drain_keeps_open_spans_queued():
    trace = TraceBuffer()
    open_span = trace.record("hub_session", hub_id="Riyadh")
    heal = trace.record("heal_attempt", source_id="bayt")
    trace.end(heal, success=True)

    assert trace.drain() == [heal]
    assert len(trace) == 1

    trace.end(open_span, status="ok")
    assert trace.drain() == [open_span]
    assert len(trace) == 0


def test_events_and_failures_are_finished_on_record():
    trace = TraceBuffer()
    halt = trace.event("fail_safe_halt", hub_id="Dubai")
    failure = trace.record_failure("naukri", "null_field", field_name="company")

    assert halt.end_time == pytest.approx(halt.start_time, abs=1)
    assert failure.finished
    assert failure.attributes["reason"] == "null_field"
    assert trace.drain() == [halt, failure]


def test_ending_twice_keeps_first_end_time():
    trace = TraceBuffer()
    span = trace.record("heal_attempt")
    trace.end(span, success=False)
    first = span.end_time
    trace.end(span, note="late")
    assert span.end_time == first
    assert span.attributes["note"] == "late"


@pytest.mark.asyncio
async def test_flush_without_endpoint_drops_finished_spans():
    trace = TraceBuffer()
    pending = trace.record("hub_session")
    trace.event("fail_safe_halt")

    assert await trace.flush() == 0
    assert len(trace) == 1
    assert trace.recent()[0] is pending


def test_traces_endpoint_and_payload():
    assert traces_endpoint(None) == ""
    assert traces_endpoint("http://phoenix:6006/") == "http://phoenix:6006/v1/traces"
    assert traces_endpoint("http://phoenix:6006/v1/traces") == "http://phoenix:6006/v1/traces"

    trace = TraceBuffer()
    span = trace.event("heal_failure", source_id="bayt", attempts=2, ok=False)
    payload = build_otlp_payload([span], "scrape-governor", trace_id="ab" * 16)
    (otlp_span,) = payload["resourceSpans"][0]["scopeSpans"][0]["spans"]
    assert otlp_span["traceId"] == "ab" * 16
    assert {a["key"]: a["value"] for a in otlp_span["attributes"]} == {
        "source_id": {"stringValue": "bayt"},
        "attempts": {"intValue": "2"},
        "ok": {"boolValue": False},
    }
