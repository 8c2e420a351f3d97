"""
Self-healing selectors.

When a field stops extracting, the page markup (or a screenshot) is sent to
the LLM together with the failed selector, and the single CSS selector it
returns is verified against the live page before it replaces the stored one.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, Union

from scrape_governor.models import SourceStatus
from scrape_governor.services.llm_client import LLMClient
from scrape_governor.services.selector_store import SelectorStore
from scrape_governor.services.trace import TraceBuffer

logger = logging.getLogger(__name__)

HEAL_MAX_TOKENS = 200
HTML_MAX_CHARS = 80_000
SELECTOR_MAX_LENGTH = 500

_FENCE_OPEN = re.compile(r"^```[\w-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")
_SELECTOR_CHARS = re.compile(r"""^[\w\s.#\[\]="'\-:>+~*(),^$|@/]+$""")

Verifier = Callable[[str], Union[bool, Awaitable[bool]]]


class TriggerReason(str, Enum):
    NULL_FIELD = "null_field"
    SELECTOR_NOT_FOUND = "selector_not_found"
    HTTP_403 = "http_403"
    HTTP_404 = "http_404"
    TIMEOUT = "timeout"


@dataclass
class HealRequest:
    source_id: str
    field_name: str
    trigger_reason: TriggerReason
    selector_before: Optional[str] = None
    page_html: Optional[str] = None
    screenshot_base64: Optional[str] = None
    raw_error: Optional[str] = None


@dataclass
class HealResult:
    success: bool
    selector_after: Optional[str] = None
    raw_error: Optional[str] = None
    trace_id: Optional[str] = None


@dataclass
class ParsedSelector:
    selector: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.selector is not None


def extract_selector_from_response(text: Optional[str], max_length: int = SELECTOR_MAX_LENGTH) -> ParsedSelector:
    """Pull one CSS selector out of a free-form model reply, or say why there isn't one."""
    content = (text or "").strip()
    if not content:
        return ParsedSelector(error="Empty LLM response")

    content = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", content))
    line = next((ln.strip() for ln in content.splitlines() if ln.strip()), "")
    line = line.strip("`").strip()

    if not line:
        return ParsedSelector(error=f"No valid selector in response: {text.strip()[:200]}")
    if len(line) > max_length:
        return ParsedSelector(error=f"Selector candidate longer than {max_length} characters")
    if not _SELECTOR_CHARS.match(line) or not re.search(r"[\w*]", line):
        return ParsedSelector(error=f"No valid selector in response: {line[:200]}")
    return ParsedSelector(selector=line)


def build_text_prompt(field_name: str, html: str, selector_before: Optional[str] = None, max_chars: int = HTML_MAX_CHARS) -> str:
    truncated = (html or "")[:max_chars]
    return (
        f'The previous CSS selector for the field "{field_name}" failed.\n'
        f"Previous selector: {selector_before or 'none'}\n\n"
        f'Below is the page HTML. Find the element that contains the value for "{field_name}" '
        "(e.g. job title, company name, apply button). Return ONLY a valid CSS selector, nothing else.\n\n"
        f"HTML:\n```\n{truncated}\n```\n\n"
        "CSS selector:"
    )


def build_vision_prompt(field_name: str, selector_before: Optional[str] = None) -> str:
    return (
        f'Look at this screenshot of a web page. The previous CSS selector for "{field_name}" failed: '
        f'{selector_before or "none"}. Find the new location of the "{field_name}" element '
        "(e.g. job title, company name, button). Return ONLY one valid CSS selector, no other text."
    )


class SelectorHealer:
    """Asks the LLM for a replacement selector. Never raises; failures come back as HealResult."""

    def __init__(
        self,
        llm_client: Optional[LLMClient],
        html_max_chars: int = HTML_MAX_CHARS,
        timeout_seconds: float = 60.0,
        max_selector_length: int = SELECTOR_MAX_LENGTH,
    ):
        self.llm = llm_client
        self.html_max_chars = html_max_chars
        self.timeout_seconds = timeout_seconds
        self.max_selector_length = max_selector_length

    async def _ask(self, call: Awaitable[str]) -> HealResult:
        trace_id = str(uuid.uuid4())
        try:
            text = await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return HealResult(False, raw_error=f"LLM heal timed out after {self.timeout_seconds}s", trace_id=trace_id)
        except Exception as e:
            logger.warning(f"LLM heal request failed: {e}")
            return HealResult(False, raw_error=str(e) or type(e).__name__, trace_id=trace_id)

        parsed = extract_selector_from_response(text, self.max_selector_length)
        if not parsed.ok:
            return HealResult(False, raw_error=parsed.error, trace_id=trace_id)
        return HealResult(True, selector_after=parsed.selector, trace_id=trace_id)

    async def heal_from_html(self, request: HealRequest) -> HealResult:
        if self.llm is None:
            return HealResult(False, raw_error="LLM provider not configured")
        prompt = build_text_prompt(
            request.field_name, request.page_html or "", request.selector_before, self.html_max_chars
        )
        return await self._ask(self.llm.complete(prompt, max_tokens=HEAL_MAX_TOKENS, temperature=0.0))

    async def heal_from_screenshot(self, request: HealRequest) -> HealResult:
        if self.llm is None:
            return HealResult(False, raw_error="LLM provider not configured")
        if not request.screenshot_base64:
            return HealResult(False, raw_error="screenshot_base64 required for vision heal")
        prompt = build_vision_prompt(request.field_name, request.selector_before)
        return await self._ask(
            self.llm.complete_with_image(prompt, request.screenshot_base64, max_tokens=HEAL_MAX_TOKENS)
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SelfHealingEngine:
    def __init__(self, store: SelectorStore, healer: SelectorHealer, trace: TraceBuffer):
        self.store = store
        self.healer = healer
        self.trace = trace
        self._in_flight: Dict[Tuple[str, str], asyncio.Task] = {}

    async def run_heal_loop(
        self,
        request: HealRequest,
        use_vision: bool = False,
        verifier: Optional[Verifier] = None,
    ) -> HealResult:
        """Heal one (source, field). Concurrent calls for the same pair share one attempt."""
        key = (request.source_id, request.field_name)
        task = self._in_flight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(self._heal(request, use_vision, verifier))
            self._in_flight[key] = task

            def _forget(done: asyncio.Task) -> None:
                if self._in_flight.get(key) is done:
                    del self._in_flight[key]

            task.add_done_callback(_forget)
        else:
            logger.info(f"Heal for {key[0]}.{key[1]} already in flight; waiting on it")
        return await asyncio.shield(task)

    async def _verify(self, verifier: Optional[Verifier], selector: str) -> Tuple[bool, Optional[str]]:
        if verifier is None:
            logger.warning(f"No verifier supplied; accepting selector {selector!r} unverified")
            return True, None
        try:
            verdict = verifier(selector)
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except Exception as e:
            logger.warning(f"Verifier raised for {selector!r}: {e}")
            return False, str(e)
        return bool(verdict), None

    async def _heal(self, request: HealRequest, use_vision: bool, verifier: Optional[Verifier]) -> HealResult:
        source_id, field_name = request.source_id, request.field_name
        reason = TriggerReason(request.trigger_reason)
        span = None
        try:
            self.store.begin_heal(source_id)
            span = self.trace.record("heal_attempt", source_id=source_id, field_name=field_name, reason=reason.value)

            if use_vision:
                result = await self.healer.heal_from_screenshot(request)
            else:
                result = await self.healer.heal_from_html(request)

            if result.success and result.selector_after:
                verified, verify_error = await self._verify(verifier, result.selector_after)
                if not verified:
                    result.success = False
                    detail = f" ({verify_error})" if verify_error else ""
                    result.raw_error = (result.raw_error or "") + "; verification failed" + detail

            self.store.record_heal_event(
                source_id=source_id,
                field_name=field_name,
                trigger_reason=reason.value,
                selector_before=request.selector_before,
                selector_after=result.selector_after,
                success=result.success,
                trace_id=result.trace_id,
                raw_error=result.raw_error,
            )

            if result.success:
                self.store.commit_heal(source_id, field_name, result.selector_after, request.selector_before)
                self.store.set_status(source_id, SourceStatus.HEALED, last_heal_at=_utc_now())
                logger.info(f"Healed {source_id}.{field_name}: {request.selector_before!r} -> {result.selector_after!r}")
            else:
                self.store.set_status(source_id, SourceStatus.HEALING)
                self.trace.record_failure(
                    source_id,
                    reason.value,
                    field_name=field_name,
                    raw_error=result.raw_error or "",
                )

            self.trace.end(span, success=result.success, trace_id=result.trace_id or "")
            return result
        finally:
            if span is not None and not span.finished:
                self.trace.end(span, success=False)
            await self.trace.flush()


def get_self_healing_engine(session_factory=None, trace: TraceBuffer = None) -> SelfHealingEngine:
    from scrape_governor.config import settings
    from scrape_governor.services.llm_client import get_llm_client
    from scrape_governor.services.selector_store import get_selector_store
    from scrape_governor.services.trace import get_trace_buffer

    healer = SelectorHealer(
        get_llm_client(),
        html_max_chars=settings.heal_html_max_chars,
        timeout_seconds=settings.llm_timeout_seconds,
        max_selector_length=settings.heal_selector_max_length,
    )
    return SelfHealingEngine(get_selector_store(session_factory), healer, trace or get_trace_buffer())
