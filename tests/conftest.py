"""
Shared pytest fixtures for the revocation gateway tests.
"""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from hibe_revocation.delegation import DelegationRegistry
from hibe_revocation.fingerprint import fingerprint_hex
from hibe_revocation.gate import KeyGate
from hibe_revocation.provider import LocalCryptoProvider
from hibe_revocation.revocation import RevocationRegistry
from hibe_revocation.server import create_app

HIERARCHY = "testHierarchy"
URI = "facility/bin123/record"
START = 1565119330
END = 1565219330


class FakeClock:
    """Controllable wall clock returning Unix seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingProvider(LocalCryptoProvider):
    """Local provider that counts calls and can be made to fail or stall."""

    def __init__(self):
        super().__init__(master_secret=b"\x01" * 32)
        self.delegate_calls = 0
        self.decrypt_calls = 0
        self.fail_with = None
        self.delay = 0.0
        self.on_call = None

    async def _before(self):
        if self.on_call is not None:
            self.on_call()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def delegate(self, ctx, hierarchy, uri, start, end, permissions):
        self.delegate_calls += 1
        await self._before()
        return await super().delegate(ctx, hierarchy, uri, start, end, permissions)

    async def decrypt(self, ctx, hierarchy, uri, now, ciphertext):
        self.decrypt_calls += 1
        await self._before()
        return await super().decrypt(ctx, hierarchy, uri, now, ciphertext)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def revocations(clock) -> RevocationRegistry:
    return RevocationRegistry(clock=clock)


@pytest.fixture
def delegations(revocations, clock) -> DelegationRegistry:
    return DelegationRegistry(revocations, clock=clock)


@pytest.fixture
def provider() -> CountingProvider:
    return CountingProvider()


@pytest.fixture
def gate(provider, revocations, delegations) -> KeyGate:
    return KeyGate(provider, revocations, delegations)


@pytest.fixture
def app(provider, revocations, delegations):
    return create_app(
        revocations=revocations,
        delegations=delegations,
        provider=provider,
        crypto_timeout=5.0,
        sweep_interval=0,
    )


@pytest.fixture
def sample_fp() -> str:
    return fingerprint_hex(HIERARCHY, URI, START, END)


def http_client(app) -> AsyncClient:
    """AsyncClient bound to an in-process gateway."""
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
