"""Tests for the HCM credential providers."""

import asyncio
import base64
from urllib.parse import parse_qs

import httpx
import pytest

from hcm_gateway.infra.error_handler import AuthError, ErrorKind
from hcm_gateway.services.credential_provider import (
    BasicCredentialProvider,
    OAuthCredentialProvider,
    build_credential_provider,
)

TOKEN_URL = "https://idcs.example.com/oauth2/v1/token"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class IdentityEndpoint:
    """Scripted identity endpoint served through httpx.MockTransport."""

    def __init__(self, *responses, delay: float = 0.0):
        self.responses = list(responses)
        self.requests = []
        self.delay = delay
        self.issued = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if response == "token":
            self.issued += 1
            return httpx.Response(
                200,
                json={"access_token": f"access-{self.issued}", "token_type": "Bearer", "expires_in": 3600},
            )
        return response


def make_provider(endpoint, clock=None, sleep=None, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return OAuthCredentialProvider(
        http_client=client,
        token_url=TOKEN_URL,
        client_id="test-client",
        client_secret="test-client-secret",
        clock=clock or FakeClock(),
        sleep=sleep or (lambda delay: asyncio.sleep(0)),
        **kwargs,
    )


class TestOAuthCredentialProvider:
    """Client-credentials exchange, caching and single-flight refresh."""

    @pytest.mark.asyncio
    async def test_exchange_request_shape(self):
        endpoint = IdentityEndpoint("token")
        provider = make_provider(endpoint, scope="urn:opc:resource:consumer::all")

        credential = await provider.get_token()

        assert credential.authorization_header() == "Bearer access-1"
        request = endpoint.requests[0]
        assert str(request.url) == TOKEN_URL
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["client_credentials"]
        assert form["scope"] == ["urn:opc:resource:consumer::all"]
        expected = base64.b64encode(b"test-client:test-client-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_cached_until_safety_margin(self):
        clock = FakeClock()
        endpoint = IdentityEndpoint("token")
        provider = make_provider(endpoint, clock=clock, safety_margin=60)

        first = await provider.get_token()
        clock.now += 3000
        second = await provider.get_token()

        assert first == second
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_expired_credential_refreshed_before_use(self):
        clock = FakeClock()
        endpoint = IdentityEndpoint("token")
        provider = make_provider(endpoint, clock=clock, safety_margin=60)

        first = await provider.get_token()
        clock.now += 3600 - 30
        second = await provider.get_token()

        assert len(endpoint.requests) == 2
        assert second.authorization_header() == "Bearer access-2"
        assert second.is_valid(clock.now, 60)
        assert not first.is_valid(clock.now, 60)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self):
        endpoint = IdentityEndpoint("token", delay=0.05)
        provider = make_provider(endpoint)

        credentials = await asyncio.gather(*(provider.get_token() for _ in range(20)))

        assert len(endpoint.requests) == 1
        assert {c.authorization_header() for c in credentials} == {"Bearer access-1"}

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_refresh(self):
        endpoint = IdentityEndpoint("token", delay=0.05)
        provider = make_provider(endpoint)

        first = asyncio.create_task(provider.get_token())
        second = asyncio.create_task(provider.get_token())
        await asyncio.sleep(0.01)
        first.cancel()

        credential = await second
        assert first.cancelled()
        assert credential.authorization_header() == "Bearer access-1"
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_invalid_credentials_fatal_and_not_retried(self, sleep_recorder):
        endpoint = IdentityEndpoint(httpx.Response(401, json={"error": "invalid_client"}))
        provider = make_provider(endpoint, sleep=sleep_recorder, max_attempts=3)

        with pytest.raises(AuthError) as exc_info:
            await provider.get_token()

        assert exc_info.value.kind == ErrorKind.AUTH
        assert not exc_info.value.retryable
        assert "invalid_client" in exc_info.value.message
        assert "test-client-secret" not in exc_info.value.message
        assert len(endpoint.requests) == 1
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, sleep_recorder):
        endpoint = IdentityEndpoint(
            httpx.Response(503),
            httpx.ConnectError("connection refused"),
            "token",
        )
        provider = make_provider(endpoint, sleep=sleep_recorder, max_attempts=3)

        credential = await provider.get_token()

        assert credential.authorization_header() == "Bearer access-1"
        assert len(endpoint.requests) == 3
        assert len(sleep_recorder.delays) == 2

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_attempts(self, sleep_recorder):
        endpoint = IdentityEndpoint(httpx.ReadTimeout("timed out"))
        provider = make_provider(endpoint, sleep=sleep_recorder, max_attempts=2)

        with pytest.raises(AuthError) as exc_info:
            await provider.get_token()

        assert exc_info.value.retryable
        assert len(endpoint.requests) == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_is_not_cached(self, sleep_recorder):
        endpoint = IdentityEndpoint(httpx.Response(400, json={"error": "invalid_grant"}), "token")
        provider = make_provider(endpoint, sleep=sleep_recorder)

        with pytest.raises(AuthError):
            await provider.get_token()
        credential = await provider.get_token()

        assert credential.authorization_header() == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        endpoint = IdentityEndpoint(httpx.Response(200, json={"token_type": "Bearer"}))
        provider = make_provider(endpoint)

        with pytest.raises(AuthError, match="did not contain an access token"):
            await provider.get_token()

    @pytest.mark.asyncio
    async def test_unsupported_token_type(self):
        endpoint = IdentityEndpoint(httpx.Response(200, json={"access_token": "x", "token_type": "mac"}))
        provider = make_provider(endpoint)

        with pytest.raises(AuthError, match="Unsupported token type"):
            await provider.get_token()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("expires_in", [0, -30, "nan"])
    async def test_unusable_lifetime_rejected(self, expires_in, sleep_recorder):
        endpoint = IdentityEndpoint(
            httpx.Response(200, json={"access_token": "x", "token_type": "Bearer", "expires_in": expires_in})
        )
        provider = make_provider(endpoint, sleep=sleep_recorder)

        with pytest.raises(AuthError, match="unusable token lifetime") as exc_info:
            await provider.get_token()

        assert not exc_info.value.retryable
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_short_lived_token_reused_within_half_its_lifetime(self):
        clock = FakeClock()
        endpoint = IdentityEndpoint(
            httpx.Response(200, json={"access_token": "short", "token_type": "Bearer", "expires_in": 30})
        )
        provider = make_provider(endpoint, clock=clock, safety_margin=60)

        first = await provider.get_token()
        clock.now += 10
        second = await provider.get_token()
        clock.now += 10
        third = await provider.get_token()

        assert first.is_valid(clock.now - 10)
        assert second == first
        assert len(endpoint.requests) == 2
        assert third.is_valid(clock.now)

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_exchange(self):
        endpoint = IdentityEndpoint("token")
        provider = make_provider(endpoint)

        first = await provider.get_token()
        provider.invalidate(first)
        second = await provider.get_token()

        assert second.authorization_header() == "Bearer access-2"

    @pytest.mark.asyncio
    async def test_invalidate_ignores_stale_credential(self):
        endpoint = IdentityEndpoint("token")
        provider = make_provider(endpoint)

        first = await provider.get_token()
        provider.invalidate(first)
        second = await provider.get_token()
        provider.invalidate(first)

        assert await provider.get_token() == second
        assert len(endpoint.requests) == 2


class TestBasicCredentialProvider:
    @pytest.mark.asyncio
    async def test_basic_header(self):
        provider = BasicCredentialProvider("integration.user", "pw")
        credential = await provider.get_token()

        expected = base64.b64encode(b"integration.user:pw").decode()
        assert credential.authorization_header() == f"Basic {expected}"
        assert credential.expires_at is None
        assert not provider.refreshable

    def test_secret_not_in_repr(self):
        provider = BasicCredentialProvider("integration.user", "pw")
        credential = provider._credential
        assert credential.access_token.get_secret_value() not in repr(credential)


class TestBuildCredentialProvider:
    def test_oauth_mode(self, config):
        provider = build_credential_provider(config, httpx.AsyncClient())
        assert isinstance(provider, OAuthCredentialProvider)
        assert provider.token_url == config.HCM_TOKEN_URL

    def test_basic_mode(self, config):
        config.HCM_AUTH_MODE = "basic"
        config.HCM_USERNAME = "integration.user"
        config.HCM_PASSWORD = "pw"
        provider = build_credential_provider(config, httpx.AsyncClient())
        assert isinstance(provider, BasicCredentialProvider)
