"""
Contact discovery with ordered fallback providers, circuit breakers and caching.

Chain: cache -> PhantomBuster -> Proxycurl -> none. A provider whose circuit
is open is skipped without being called.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from scrape_governor.models import EnrichmentCacheEntry
from scrape_governor.services.circuit_breaker import CircuitBreakerRegistry

logger = logging.getLogger(__name__)

PHANTOMBUSTER_API_BASE = "https://api.phantombuster.com/api/v2"
PROXYCURL_API_BASE = "https://nubela.co/proxycurl/api"


@dataclass
class ProfileMatch:
    linkedin_url: str
    profile: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscoveryResult:
    value: Optional[str]
    provider: str
    cached: bool = False


class EnrichmentProvider(Protocol):
    name: str

    async def lookup(self, name: str, company: str) -> Optional[ProfileMatch]: ...


class PhantomBusterProvider:
    """Launches a LinkedIn search agent and polls its container until it finishes."""

    name = "phantombuster"

    def __init__(
        self,
        api_key: Optional[str],
        agent_id: Optional[str],
        max_wait_seconds: float = 120.0,
        poll_seconds: float = 5.0,
        sleep=asyncio.sleep,
    ):
        self.api_key = api_key
        self.agent_id = agent_id
        self.max_wait_seconds = max_wait_seconds
        self.poll_seconds = poll_seconds
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=PHANTOMBUSTER_API_BASE,
            headers={"X-Phantombuster-Key": self.api_key or ""},
            timeout=30.0,
        )

    async def run_agent(self, arguments: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._client() as client:
            launch = await client.post("/agents/launch", params={"id": self.agent_id}, json=arguments)
            launch.raise_for_status()
            container_id = launch.json().get("containerId")
            if not container_id:
                raise RuntimeError("PhantomBuster launch returned no containerId")

            waited = 0.0
            while waited < self.max_wait_seconds:
                await self._sleep(self.poll_seconds)
                waited += self.poll_seconds
                resp = await client.get("/containers/fetch", params={"id": container_id})
                resp.raise_for_status()
                data = resp.json()
                status = data.get("status", "unknown")
                if status == "finished":
                    output = data.get("output")
                    if not output:
                        return []
                    try:
                        parsed = json.loads(output)
                    except json.JSONDecodeError:
                        return []
                    return parsed if isinstance(parsed, list) else [parsed]
                if status != "running":
                    raise RuntimeError(f"PhantomBuster container ended with status {status}")
        raise asyncio.TimeoutError(f"PhantomBuster agent did not finish within {self.max_wait_seconds}s")

    async def lookup(self, name: str, company: str) -> Optional[ProfileMatch]:
        if not self.api_key or not self.agent_id:
            return None
        output = await self.run_agent({"partnerName": name, "company": company})
        if not output:
            return None
        first = output[0]
        url = first.get("linkedinUrl") or first.get("url")
        return ProfileMatch(linkedin_url=url, profile=first) if url else None


class ProxycurlProvider:
    name = "proxycurl"

    def __init__(self, api_key: Optional[str], timeout: float = 30.0):
        self.api_key = api_key
        self.timeout = timeout

    async def lookup(self, name: str, company: str) -> Optional[ProfileMatch]:
        if not self.api_key:
            return None
        first, _, last = name.strip().partition(" ")
        params = {"first_name": first, "company_domain": company}
        if last:
            params["last_name"] = last
        async with httpx.AsyncClient(base_url=PROXYCURL_API_BASE, timeout=self.timeout) as client:
            resp = await client.get(
                "/linkedin/profile/resolve",
                params=params,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data = resp.json()
        url = data.get("url") or data.get("linkedin_url") or data.get("linkedin_profile_url")
        return ProfileMatch(linkedin_url=url, profile=data.get("profile") or {}) if url else None


class EnrichmentCache:
    """Cache of resolved contacts keyed by (name, company)."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, name: str, company: str) -> Optional[str]:
        db = self.session_factory()
        try:
            row = (
                db.query(EnrichmentCacheEntry)
                .filter(EnrichmentCacheEntry.name == name, EnrichmentCacheEntry.company == company)
                .first()
            )
            return row.value if row else None
        finally:
            db.close()

    def put(self, name: str, company: str, value: str, provider: str) -> None:
        db = self.session_factory()
        try:
            row = (
                db.query(EnrichmentCacheEntry)
                .filter(EnrichmentCacheEntry.name == name, EnrichmentCacheEntry.company == company)
                .first()
            )
            if row is None:
                row = EnrichmentCacheEntry(name=name, company=company)
                db.add(row)
            row.value = value
            row.provider = provider
            db.commit()
        finally:
            db.close()


class FallbackChain:
    def __init__(
        self,
        providers: List[EnrichmentProvider],
        breakers: CircuitBreakerRegistry,
        cache: Optional[EnrichmentCache] = None,
        timeout_seconds: float = 150.0,
    ):
        self.providers = providers
        self.breakers = breakers
        self.cache = cache
        self.timeout_seconds = timeout_seconds

    def _cache_get(self, name: str, company: str) -> Optional[str]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(name, company)
        except Exception as e:
            logger.warning(f"Enrichment cache read failed: {e}")
            return None

    def _cache_put(self, name: str, company: str, value: str, provider: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.put(name, company, value, provider)
        except Exception as e:
            logger.warning(f"Enrichment cache write failed: {e}")

    async def _attempt(self, provider: EnrichmentProvider, name: str, company: str) -> Optional[ProfileMatch]:
        try:
            match = await asyncio.wait_for(provider.lookup(name, company), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"{provider.name} timed out after {self.timeout_seconds}s for {name} @ {company}")
            self.breakers.record_failure(provider.name)
            return None
        except Exception as e:
            logger.warning(f"{provider.name} lookup failed for {name} @ {company}: {e}")
            self.breakers.record_failure(provider.name)
            return None

        if match is None or not match.linkedin_url:
            self.breakers.record_failure(provider.name)
            return None
        self.breakers.record_success(provider.name)
        return match

    async def discover_with_fallback(self, name: str, company: str) -> DiscoveryResult:
        cached = self._cache_get(name, company)
        if cached:
            return DiscoveryResult(value=cached, provider="cache", cached=True)

        for provider in self.providers:
            if self.breakers.is_open(provider.name):
                logger.info(f"Skipping {provider.name}: circuit open")
                continue
            match = await self._attempt(provider, name, company)
            if match is not None:
                self._cache_put(name, company, match.linkedin_url, provider.name)
                return DiscoveryResult(value=match.linkedin_url, provider=provider.name, cached=False)

        return DiscoveryResult(value=None, provider="none", cached=False)


def get_fallback_chain(session_factory=None, breakers: CircuitBreakerRegistry = None) -> FallbackChain:
    from scrape_governor.config import settings
    from scrape_governor.database import SessionLocal

    return FallbackChain(
        providers=[
            PhantomBusterProvider(
                settings.phantombuster_api_key,
                settings.phantombuster_search_agent_id,
                max_wait_seconds=settings.phantombuster_max_wait_seconds,
                poll_seconds=settings.phantombuster_poll_seconds,
            ),
            ProxycurlProvider(settings.proxycurl_api_key),
        ],
        breakers=breakers or CircuitBreakerRegistry(
            threshold=settings.circuit_breaker_threshold,
            reset_seconds=settings.circuit_breaker_reset_seconds,
        ),
        cache=EnrichmentCache(session_factory or SessionLocal),
        timeout_seconds=settings.enrichment_timeout_seconds,
    )
