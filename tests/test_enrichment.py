import asyncio
import json

import httpx
import pytest

from scrape_governor.services.circuit_breaker import CircuitBreakerRegistry
from scrape_governor.services.enrichment import (
    EnrichmentCache,
    FallbackChain,
    PhantomBusterProvider,
    ProfileMatch,
    ProxycurlProvider,
)


class FakeProvider:
    def __init__(self, name, result=None, error=None, delay=0.0):
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def lookup(self, name, company):
        self.calls.append((name, company))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        if self.result is None:
            return None
        return ProfileMatch(linkedin_url=f"{self.result}/{name.lower().replace(' ', '-')}")


@pytest.fixture
def cache(session_factory):
    return EnrichmentCache(session_factory)


@pytest.mark.asyncio
async def test_primary_circuit_opens_and_secondary_takes_over(cache):
    primary = FakeProvider("phantombuster", error=RuntimeError("agent crashed"))
    secondary = FakeProvider("proxycurl", result="https://linkedin.com/in")
    breakers = CircuitBreakerRegistry()
    chain = FallbackChain([primary, secondary], breakers, cache=cache)

    for i in range(5):
        result = await chain.discover_with_fallback(f"Partner {i}", "Acme")
        assert result.provider == "proxycurl"
    assert len(primary.calls) == 5
    assert breakers.is_open("phantombuster")

    result = await chain.discover_with_fallback("Dana Lee", "Acme")
    assert len(primary.calls) == 5
    assert result.provider == "proxycurl"
    assert result.value == "https://linkedin.com/in/dana-lee"
    assert not result.cached
    assert cache.get("Dana Lee", "Acme") == "https://linkedin.com/in/dana-lee"


@pytest.mark.asyncio
async def test_cache_hit_skips_providers(cache):
    cache.put("Dana Lee", "Acme", "https://linkedin.com/in/dana", "proxycurl")
    primary = FakeProvider("phantombuster", result="https://x")
    chain = FallbackChain([primary], CircuitBreakerRegistry(), cache=cache)

    result = await chain.discover_with_fallback("Dana Lee", "Acme")
    assert result.cached
    assert result.provider == "cache"
    assert result.value == "https://linkedin.com/in/dana"
    assert primary.calls == []


@pytest.mark.asyncio
async def test_primary_success_is_cached_and_resets_failures(cache):
    breakers = CircuitBreakerRegistry()
    breakers.record_failure("phantombuster")
    primary = FakeProvider("phantombuster", result="https://linkedin.com/in")
    secondary = FakeProvider("proxycurl", result="https://other")
    chain = FallbackChain([primary, secondary], breakers, cache=cache)

    result = await chain.discover_with_fallback("Sam Wu", "Globex")
    assert result.provider == "phantombuster"
    assert secondary.calls == []
    assert breakers.state("phantombuster").failures == 0
    assert cache.get("Sam Wu", "Globex") == "https://linkedin.com/in/sam-wu"


@pytest.mark.asyncio
async def test_no_match_anywhere_reports_none(cache):
    breakers = CircuitBreakerRegistry()
    chain = FallbackChain([FakeProvider("phantombuster"), FakeProvider("proxycurl")], breakers, cache=cache)

    result = await chain.discover_with_fallback("Nobody", "Initech")
    assert result.value is None
    assert result.provider == "none"
    assert breakers.state("phantombuster").failures == 1
    assert breakers.state("proxycurl").failures == 1
    assert cache.get("Nobody", "Initech") is None


@pytest.mark.asyncio
async def test_slow_provider_times_out_as_failure():
    breakers = CircuitBreakerRegistry()
    slow = FakeProvider("phantombuster", result="https://x", delay=5)
    chain = FallbackChain([slow], breakers, timeout_seconds=0.01)

    result = await chain.discover_with_fallback("Dana Lee", "Acme")
    assert result.provider == "none"
    assert breakers.state("phantombuster").failures == 1


@pytest.mark.asyncio
async def test_providers_without_credentials_return_nothing():
    assert await PhantomBusterProvider(None, None).lookup("Dana Lee", "Acme") is None
    assert await ProxycurlProvider(None).lookup("Dana Lee", "Acme") is None


@pytest.mark.asyncio
async def test_phantombuster_polls_container_until_finished():
    statuses = iter(["running", "finished"])
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path))
        if request.url.path.endswith("/agents/launch"):
            return httpx.Response(200, json={"containerId": "c-1"})
        status = next(statuses)
        body = {"status": status}
        if status == "finished":
            body["output"] = json.dumps([{"linkedinUrl": "https://linkedin.com/in/dana"}])
        return httpx.Response(200, json=body)

    async def no_sleep(seconds):
        pass

    provider = PhantomBusterProvider("pb-key", "agent-1", max_wait_seconds=30, poll_seconds=5, sleep=no_sleep)
    transport = httpx.MockTransport(handler)
    provider._client = lambda: httpx.AsyncClient(base_url="https://api.phantombuster.com/api/v2", transport=transport)

    match = await provider.lookup("Dana Lee", "Acme")
    assert match.linkedin_url == "https://linkedin.com/in/dana"
    assert requests == [
        ("POST", "/api/v2/agents/launch"),
        ("GET", "/api/v2/containers/fetch"),
        ("GET", "/api/v2/containers/fetch"),
    ]


@pytest.mark.asyncio
async def test_phantombuster_gives_up_after_max_wait():
    def handler(request):
        if request.url.path.endswith("/agents/launch"):
            return httpx.Response(200, json={"containerId": "c-1"})
        return httpx.Response(200, json={"status": "running"})

    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    provider = PhantomBusterProvider("pb-key", "agent-1", max_wait_seconds=20, poll_seconds=5, sleep=fake_sleep)
    transport = httpx.MockTransport(handler)
    provider._client = lambda: httpx.AsyncClient(base_url="https://api.phantombuster.com/api/v2", transport=transport)

    with pytest.raises(asyncio.TimeoutError):
        await provider.lookup("Dana Lee", "Acme")
    assert slept == [5, 5, 5, 5]
