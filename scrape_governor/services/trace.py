"""
Buffered trace sink for operator review (Arize Phoenix or any OTLP HTTP collector).

Spans are queued in memory and only leave the process on an explicit
``flush()``: the heal loop and the hub runner flush at their end. A flush
exports finished spans only; spans still open stay queued for their owner
to close.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

AttributeValue = Any


@dataclass
class TraceSpan:
    name: str
    attributes: Dict[str, AttributeValue] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    def finish(self, **attributes: AttributeValue) -> "TraceSpan":
        if self.end_time is None:
            self.end_time = time.time()
        self.attributes.update(attributes)
        return self


def _otlp_value(value: AttributeValue) -> Dict[str, Any]:
    if isinstance(value, bool):
        return {"boolValue": value}
    if isinstance(value, int):
        return {"intValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    return {"stringValue": "" if value is None else str(value)}


def traces_endpoint(base: Optional[str]) -> str:
    if not base:
        return ""
    url = base.rstrip("/")
    return url if url.endswith("/v1/traces") else f"{url}/v1/traces"


def build_otlp_payload(spans: List[TraceSpan], service_name: str, trace_id: str = None) -> Dict[str, Any]:
    trace_id = trace_id or secrets.token_hex(16)
    return {
        "resourceSpans": [
            {
                "resource": {
                    "attributes": [{"key": "service.name", "value": {"stringValue": service_name}}],
                },
                "scopeSpans": [
                    {
                        "scope": {"name": "scrape-governor"},
                        "spans": [
                            {
                                "traceId": trace_id,
                                "spanId": secrets.token_hex(8),
                                "name": s.name,
                                "kind": 1,  # SPAN_KIND_INTERNAL
                                "startTimeUnixNano": str(int(s.start_time * 1e9)),
                                "endTimeUnixNano": str(int((s.end_time or s.start_time) * 1e9)),
                                "attributes": [
                                    {"key": k, "value": _otlp_value(v)} for k, v in s.attributes.items()
                                ],
                            }
                            for s in spans
                        ],
                    }
                ],
            }
        ]
    }


class TraceBuffer:
    def __init__(
        self,
        endpoint: Optional[str] = None,
        max_size: int = 100,
        service_name: str = "scrape-governor",
        timeout: float = 10.0,
    ):
        self.endpoint = traces_endpoint(endpoint)
        self.service_name = service_name
        self.timeout = timeout
        self._spans: deque[TraceSpan] = deque(maxlen=max_size)
        self._history: deque[TraceSpan] = deque(maxlen=max_size)

    def __len__(self) -> int:
        return len(self._spans)

    def record(self, name: str, **attributes: AttributeValue) -> TraceSpan:
        span = TraceSpan(name=name, attributes=attributes)
        self._spans.append(span)
        self._history.append(span)
        return span

    def end(self, span: TraceSpan, **attributes: AttributeValue) -> TraceSpan:
        """Close the exact span record() returned."""
        return span.finish(**attributes)

    def event(self, name: str, **attributes: AttributeValue) -> TraceSpan:
        """A span that starts and ends at once."""
        return self.record(name, **attributes).finish()

    def record_failure(self, subject_id: str, reason: str, **details: AttributeValue) -> TraceSpan:
        logger.warning(f"Failure trace for {subject_id}: {reason} {details or ''}".rstrip())
        return self.event("heal_failure", source_id=subject_id, reason=reason, **details)

    def recent(self, limit: int = 50) -> List[TraceSpan]:
        """Most recent spans, flushed or not (dashboard feed)."""
        return list(self._history)[-limit:]

    def drain(self) -> List[TraceSpan]:
        """Take the finished spans out of the queue, leaving open ones in place."""
        done = [s for s in self._spans if s.finished]
        if done:
            pending = [s for s in self._spans if not s.finished]
            self._spans.clear()
            self._spans.extend(pending)
        return done

    async def flush(self) -> int:
        """Export finished spans. Export errors are logged, never raised."""
        spans = self.drain()
        if not spans:
            return 0
        if not self.endpoint:
            logger.debug(f"No OTLP endpoint configured; dropped {len(spans)} spans after logging")
            return 0

        payload = build_otlp_payload(spans, self.service_name)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.endpoint, json=payload)
            if resp.status_code >= 400:
                logger.warning(f"Trace export returned HTTP {resp.status_code}: {resp.text[:200]}")
                return 0
        except httpx.HTTPError as e:
            logger.warning(f"Trace export failed: {e}")
            return 0
        return len(spans)


_default_buffer: Optional[TraceBuffer] = None


def get_trace_buffer() -> TraceBuffer:
    """Process-wide buffer built from settings (used by the API and CLI entry points)."""
    global _default_buffer
    if _default_buffer is None:
        from scrape_governor.config import settings

        _default_buffer = TraceBuffer(
            endpoint=settings.otlp_endpoint,
            max_size=settings.trace_buffer_size,
            service_name=settings.trace_service_name,
        )
    return _default_buffer
