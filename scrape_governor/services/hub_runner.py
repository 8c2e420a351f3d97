"""
One browsing session per hub, with every governor layer applied in order:

    business hours -> rate limit -> stored session -> launch -> human flow
    (fail-safe after each navigation) -> bot score / one rotation -> extract
    (heal on failure) -> save session -> close + flush traces
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from scrape_governor.errors import BlockedError, HubHaltError
from scrape_governor.models import SourceStatus
from scrape_governor.services.bot_score import DefenseRotationController
from scrape_governor.services.browser import BrowserDriver, BrowserIdentity, BrowserLauncher, LaunchedBrowser
from scrape_governor.services.business_hours import BusinessHoursGate
from scrape_governor.services.fail_safe import FailSafeMonitor
from scrape_governor.services.human_flow import BehaviorProtocol
from scrape_governor.services.rate_limiter import RateLimiter
from scrape_governor.services.selector_store import SelectorStore
from scrape_governor.services.self_healing import HealRequest, SelfHealingEngine, TriggerReason
from scrape_governor.services.session_vault import SessionVault, StoredSession
from scrape_governor.services.trace import TraceBuffer
from scrape_governor.utils.humanize import Rhythm

logger = logging.getLogger(__name__)


@dataclass
class HubScrapeJob:
    hub_id: str
    source_id: str
    home_url: str
    target_url: str
    fields: List[str] = field(default_factory=list)
    bot_request_id: Optional[str] = None
    use_vision: bool = False


@dataclass
class HubRunReport:
    hub_id: str
    source_id: str
    status: str = "pending"  # ok | partial | rate_limited | halted | skipped | error
    extracted: Dict[str, Optional[str]] = field(default_factory=dict)
    healed_fields: List[str] = field(default_factory=list)
    failed_fields: List[str] = field(default_factory=list)
    rotated: bool = False
    session_reused: bool = False
    halt_reason: Optional[str] = None
    error: Optional[str] = None


class HubSessionRunner:
    def __init__(
        self,
        launcher: BrowserLauncher,
        gate: BusinessHoursGate,
        rate_limiter: RateLimiter,
        vault: SessionVault,
        rotation: DefenseRotationController,
        store: SelectorStore,
        healing: SelfHealingEngine,
        trace: TraceBuffer,
        default_user_agent: str,
        rhythm: Rhythm = None,
    ):
        self.launcher = launcher
        self.gate = gate
        self.rate_limiter = rate_limiter
        self.vault = vault
        self.rotation = rotation
        self.store = store
        self.healing = healing
        self.trace = trace
        self.fail_safe = FailSafeMonitor(trace)
        self.default_user_agent = default_user_agent
        self.rhythm = rhythm or Rhythm()

    def _behavior(self, hub_id: str) -> BehaviorProtocol:
        async def check_page(driver) -> None:
            await self.fail_safe.assert_not_blocked(driver, hub_id)

        return BehaviorProtocol(self.rhythm, after_navigation=check_page)

    async def _browse(
        self,
        job: HubScrapeJob,
        identity: BrowserIdentity,
        session: Optional[StoredSession],
        report: HubRunReport,
    ) -> LaunchedBrowser:
        launched = await self.launcher.launch(identity)
        try:
            if await self.vault.inject(session, launched.driver):
                report.session_reused = True
            await self._behavior(job.hub_id).run_flow(launched.driver, job.home_url, job.target_url)
        except BaseException:
            await launched.close()
            raise
        return launched

    async def _extract_field(self, job: HubScrapeJob, driver: BrowserDriver, field_name: str) -> tuple[Optional[str], bool]:
        """Value for one field and whether a heal was needed to get it."""
        selector = self.store.get_selector(job.source_id, field_name)
        value = await driver.query_text(selector)
        if value:
            return value, False

        reason = TriggerReason.SELECTOR_NOT_FOUND if value is None else TriggerReason.NULL_FIELD
        logger.info(f"{job.source_id}.{field_name}: {reason.value} with {selector!r}; healing")
        screenshot = None
        if job.use_vision:
            screenshot = base64.b64encode(await driver.screenshot()).decode("ascii")

        async def verify(candidate: str) -> bool:
            return bool(await driver.query_text(candidate))

        result = await self.healing.run_heal_loop(
            HealRequest(
                source_id=job.source_id,
                field_name=field_name,
                trigger_reason=reason,
                selector_before=selector,
                page_html=await driver.content(),
                screenshot_base64=screenshot,
            ),
            use_vision=job.use_vision,
            verifier=verify,
        )
        if not result.success:
            return None, True
        return await driver.query_text(result.selector_after), True

    async def run_hub(self, job: HubScrapeJob) -> HubRunReport:
        """Run one hub session. BlockedError and OutOfWindow propagate to the caller."""
        report = HubRunReport(hub_id=job.hub_id, source_id=job.source_id)
        self.gate.assert_open(job.hub_id)

        decision = await self.rate_limiter.wait_for_slot(job.source_id)
        if not decision.allowed:
            logger.warning(f"{job.source_id} still rate limited after waiting; skipping this cycle")
            report.status = "rate_limited"
            return report

        session = self.vault.load(job.hub_id, job.source_id)
        user_agent = session.user_agent if session and session.user_agent else self.default_user_agent
        identity = self.rotation.initial_identity(job.hub_id, user_agent)
        span = self.trace.record("hub_session", hub_id=job.hub_id, source_id=job.source_id)

        launched: Optional[LaunchedBrowser] = None
        try:
            launched = await self._browse(job, identity, session, report)

            bot = await self.rotation.evaluate(job.bot_request_id)
            if bot.should_rotate:
                await launched.close()
                launched = None
                identity = self.rotation.rotation_config(job.hub_id, identity)
                launched = await self._browse(job, identity, session, report)
                report.rotated = True

            driver = launched.driver
            for field_name in job.fields:
                value, healed = await self._extract_field(job, driver, field_name)
                report.extracted[field_name] = value
                if healed and value:
                    report.healed_fields.append(field_name)
                elif not value:
                    report.failed_fields.append(field_name)

            if report.failed_fields:
                report.status = "partial"
            else:
                report.status = "ok"
                self._record_clean_scrape(job.source_id, report)

            self.vault.save(job.hub_id, job.source_id, await driver.cookies(), identity.user_agent)
            self.trace.end(span, status=report.status, rotated=report.rotated)
            return report
        except BaseException as e:
            self.trace.end(span, status="aborted", error=type(e).__name__)
            raise
        finally:
            if launched is not None:
                await launched.close()
            await self.trace.flush()

    def _record_clean_scrape(self, source_id: str, report: HubRunReport) -> None:
        if report.healed_fields:
            # healed sources wait for the next ordinary scrape to return to ok
            return
        source = self.store.get_source(source_id)
        if source is not None and source.status == SourceStatus.HEALING.value:
            logger.info(f"{source_id} extracted cleanly but stays healing until a heal verifies")
            return
        self.store.mark_scrape_success(source_id)

    async def _run_reported(self, job: HubScrapeJob) -> HubRunReport:
        try:
            return await self.run_hub(job)
        except HubHaltError as e:
            logger.error(f"Hub {job.hub_id} halted: {e}")
            reason = e.reason if isinstance(e, BlockedError) else str(e)
            return HubRunReport(hub_id=job.hub_id, source_id=job.source_id, status="halted", halt_reason=reason)
        except Exception as e:
            logger.exception(f"Hub {job.hub_id} session failed: {e}")
            return HubRunReport(hub_id=job.hub_id, source_id=job.source_id, status="error", error=str(e))

    async def run_cycle(self, jobs: Iterable[HubScrapeJob]) -> List[HubRunReport]:
        """Run every job whose hub is open, concurrently. Closed hubs are reported as skipped."""
        open_hubs = self.gate.currently_open_hubs()
        runnable, reports = [], []
        for job in jobs:
            if job.hub_id in open_hubs:
                runnable.append(job)
            else:
                reports.append(HubRunReport(hub_id=job.hub_id, source_id=job.source_id, status="skipped"))

        logger.info(f"Scrape cycle: {len(runnable)} hub jobs open, {len(reports)} outside business hours")
        reports.extend(await asyncio.gather(*(self._run_reported(job) for job in runnable)))
        return reports


def get_hub_runner(launcher: BrowserLauncher, session_factory=None) -> HubSessionRunner:
    from scrape_governor.config import settings
    from scrape_governor.database import SessionLocal
    from scrape_governor.services.bot_score import get_rotation_controller
    from scrape_governor.services.rate_limiter import get_rate_limiter
    from scrape_governor.services.selector_store import get_selector_store
    from scrape_governor.services.self_healing import get_self_healing_engine
    from scrape_governor.services.session_vault import get_session_vault
    from scrape_governor.services.trace import get_trace_buffer
    from scrape_governor.utils.humanize import get_rhythm

    session_factory = session_factory or SessionLocal
    gate = BusinessHoursGate()
    db = session_factory()
    try:
        gate.refresh(db)
    finally:
        db.close()

    trace = get_trace_buffer()
    return HubSessionRunner(
        launcher=launcher,
        gate=gate,
        rate_limiter=get_rate_limiter(),
        vault=get_session_vault(session_factory),
        rotation=get_rotation_controller(),
        store=get_selector_store(session_factory),
        healing=get_self_healing_engine(session_factory, trace),
        trace=trace,
        default_user_agent=settings.default_user_agent,
        rhythm=get_rhythm(),
    )
