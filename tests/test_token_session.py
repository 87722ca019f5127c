"""Tests for the cached access token lifecycle."""

import asyncio

import pytest

from bkash_sdk.connectors import TokenSessionManager
from bkash_sdk.connectors.token_session import MAX_AUTH_RETRIES, RETRY_DELAY, TOKEN_TTL
from bkash_sdk.errors import (
    AuthenticationExhausted,
    InvalidCredentials,
    MalformedResponse,
    TransportError,
)


class CountingGrant:
    """Grant callable that returns numbered tokens or raises queued errors."""

    def __init__(self, errors=None, delay_ticks: int = 0):
        self.calls = 0
        self.errors = list(errors or [])
        self.delay_ticks = delay_ticks

    async def __call__(self) -> str:
        self.calls += 1
        for _ in range(self.delay_ticks):
            await asyncio.sleep(0)
        if self.errors:
            raise self.errors.pop(0)
        return f"token-{self.calls}"


class TestTokenReuse:
    """Tests for token caching against the TTL."""

    async def test_first_call_grants(self, clock, fake_sleep):
        grant = CountingGrant()
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        token = await session.get_valid_token()

        assert token.value == "token-1"
        assert token.issued_at == clock.now
        assert grant.calls == 1

    async def test_token_reused_within_ttl(self, clock, fake_sleep):
        grant = CountingGrant()
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        first = await session.get_valid_token()
        clock.advance(3000)
        second = await session.get_valid_token()

        assert second is first
        assert grant.calls == 1

    async def test_token_regranted_after_ttl(self, clock, fake_sleep):
        grant = CountingGrant()
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        await session.get_valid_token()
        clock.advance(3600)
        token = await session.get_valid_token()

        assert token.value == "token-2"
        assert grant.calls == 2

    async def test_expiry_boundary(self, clock, fake_sleep):
        grant = CountingGrant()
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        await session.get_valid_token()
        clock.advance(TOKEN_TTL - 1)
        await session.get_valid_token()
        assert grant.calls == 1

        clock.advance(1)
        await session.get_valid_token()
        assert grant.calls == 2

    async def test_invalidate_forces_regrant(self, clock, fake_sleep):
        grant = CountingGrant()
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        token = await session.get_valid_token()
        session.invalidate(token)

        assert session.cached_token is None
        await session.get_valid_token()
        assert grant.calls == 2

    async def test_invalidate_keeps_newer_token(self, clock, fake_sleep):
        grant = CountingGrant()
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        stale = await session.get_valid_token()
        session.invalidate()
        fresh = await session.get_valid_token()

        session.invalidate(stale)

        assert session.cached_token is fresh


class TestGrantRetries:
    """Tests for the bounded grant retry loop."""

    async def test_retries_then_exhausts(self, clock, fake_sleep, sleeps):
        grant = CountingGrant(errors=[TransportError("boom", http_code=503)] * 5)
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        with pytest.raises(AuthenticationExhausted) as exc_info:
            await session.get_valid_token()

        assert grant.calls == MAX_AUTH_RETRIES
        assert sleeps == [RETRY_DELAY] * (MAX_AUTH_RETRIES - 1)
        assert session.failure_count == MAX_AUTH_RETRIES
        assert isinstance(exc_info.value.__cause__, TransportError)

    async def test_recovers_on_later_attempt(self, clock, fake_sleep, sleeps):
        grant = CountingGrant(errors=[MalformedResponse("no token")])
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        token = await session.get_valid_token()

        assert token.value == "token-2"
        assert sleeps == [RETRY_DELAY]
        assert session.failure_count == 0

    async def test_invalid_credentials_not_retried(self, clock, fake_sleep, sleeps):
        grant = CountingGrant(errors=[InvalidCredentials("rejected")])
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        with pytest.raises(InvalidCredentials):
            await session.get_valid_token()

        assert grant.calls == 1
        assert sleeps == []
        assert session.cached_token is None


class TestSingleFlight:
    """Tests for concurrent refresh behaviour."""

    async def test_concurrent_callers_share_one_grant(self, clock, fake_sleep):
        grant = CountingGrant(delay_ticks=5)
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        tokens = await asyncio.gather(*(session.get_valid_token() for _ in range(10)))

        assert grant.calls == 1
        assert {token.value for token in tokens} == {"token-1"}

    async def test_concurrent_refresh_after_expiry(self, clock, fake_sleep):
        grant = CountingGrant(delay_ticks=3)
        session = TokenSessionManager(grant, clock=clock, sleep=fake_sleep)

        await session.get_valid_token()
        clock.advance(TOKEN_TTL)
        tokens = await asyncio.gather(*(session.get_valid_token() for _ in range(5)))

        assert grant.calls == 2
        assert {token.value for token in tokens} == {"token-2"}
