"""Credential providers for Oracle HCM authentication."""

import asyncio
import base64
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import httpx

from hcm_gateway.infra.config import Config
from hcm_gateway.infra.error_handler import AuthError, retry_with_backoff
from hcm_gateway.infra.metrics import token_exchanges_total
from hcm_gateway.models.http import Credential

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = 3600.0
TOKEN_EXCHANGE_TIMEOUT = 30.0


class CredentialProvider(ABC):
    """Owns the HCM credential and hands out valid copies of it."""

    # Whether invalidate() followed by get_token() can yield a different credential
    refreshable = False

    @abstractmethod
    async def get_token(self) -> Credential:
        """
        Return a credential that is valid right now.

        Raises:
            AuthError: If no credential can be obtained
        """

    def invalidate(self, credential: Credential) -> None:
        """Forget ``credential`` after HCM rejected it."""


class BasicCredentialProvider(CredentialProvider):
    """Static HTTP Basic credential built from a username and password."""

    def __init__(self, username: str, password: str):
        encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        self._credential = Credential(access_token=encoded, token_type="Basic")

    async def get_token(self) -> Credential:
        return self._credential


class OAuthCredentialProvider(CredentialProvider):
    """
    Client-credentials grant against the identity endpoint.

    The token is cached until ``safety_margin`` seconds before it expires.
    Refreshes are single-flight: concurrent callers share one in-flight
    exchange, and a caller being cancelled never cancels that exchange.
    """

    refreshable = True

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: Optional[str] = None,
        safety_margin: float = 60.0,
        max_attempts: int = 3,
        backoff_initial: float = 0.5,
        backoff_max: float = 8.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._http_client = http_client
        self.token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self.safety_margin = safety_margin
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._clock = clock
        self._sleep = sleep

        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None

    def _is_fresh(self, credential: Optional[Credential]) -> bool:
        if credential is None:
            return False
        return credential.is_valid(self._clock(), credential.refresh_margin(self.safety_margin))

    async def get_token(self) -> Credential:
        credential = self._credential
        if self._is_fresh(credential):
            return credential

        async with self._lock:
            credential = self._credential
            if self._is_fresh(credential):
                return credential

            if self._refresh_task is None:
                self._refresh_task = asyncio.create_task(self._refresh(), name="hcm-token-refresh")
                self._refresh_task.add_done_callback(self._on_refresh_done)
            task = self._refresh_task

        return await asyncio.shield(task)

    def invalidate(self, credential: Credential) -> None:
        if self._credential is not None and self._credential == credential:
            logger.info("Cached HCM credential invalidated")
            self._credential = None

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Retrieve the exception so an exchange nobody awaits any more is not reported as unhandled
        if not task.cancelled():
            task.exception()

    async def _refresh(self) -> Credential:
        def log_retry(error: Exception, attempt: int, delay: float) -> None:
            logger.warning(
                "Token exchange failed, retrying",
                extra={"attempt": attempt, "delay_s": round(delay, 3), "error": str(error)},
            )

        try:
            credential = await retry_with_backoff(
                self._exchange,
                max_attempts=self.max_attempts,
                initial_delay=self.backoff_initial,
                max_delay=self.backoff_max,
                on_retry=log_retry,
                sleep=self._sleep,
            )
        except AuthError as e:
            token_exchanges_total.labels(outcome="error" if e.retryable else "rejected").inc()
            logger.error("Token exchange failed", extra={"error": e.message, "retryable": e.retryable})
            raise

        token_exchanges_total.labels(outcome="success").inc()
        self._credential = credential
        return credential

    async def _exchange(self) -> Credential:
        """Perform one client-credentials exchange."""
        form = {"grant_type": "client_credentials"}
        if self.scope:
            form["scope"] = self.scope

        started = self._clock()
        try:
            response = await self._http_client.post(
                self.token_url,
                data=form,
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
                timeout=TOKEN_EXCHANGE_TIMEOUT,
            )
        except httpx.TimeoutException:
            raise AuthError("Identity endpoint timed out", retryable=True)
        except httpx.TransportError as e:
            raise AuthError(f"Identity endpoint unreachable: {type(e).__name__}", retryable=True)

        if response.status_code >= 500 or response.status_code == 429:
            raise AuthError(f"Identity endpoint unavailable (HTTP {response.status_code})", retryable=True)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400:
            reason = body.get("error") or "rejected"
            raise AuthError(
                f"Identity endpoint rejected client credentials (HTTP {response.status_code}: {reason})"
            )

        access_token = body.get("access_token")
        if not access_token:
            raise AuthError("Identity endpoint response did not contain an access token")

        token_type = str(body.get("token_type") or "Bearer")
        if token_type.lower() != "bearer":
            raise AuthError(f"Unsupported token type from identity endpoint: {token_type}")

        try:
            expires_in = float(body.get("expires_in", DEFAULT_TOKEN_LIFETIME))
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME
        if not expires_in > 0:
            raise AuthError(f"Identity endpoint returned an unusable token lifetime: {expires_in}")

        logger.info("Token exchange succeeded", extra={"expires_in": expires_in})
        return Credential(
            access_token=access_token,
            token_type="Bearer",
            issued_at=started,
            expires_at=started + expires_in,
        )


def build_credential_provider(config: Config, http_client: httpx.AsyncClient) -> CredentialProvider:
    """Create the provider selected by ``HCM_AUTH_MODE``."""
    if config.HCM_AUTH_MODE == "basic":
        return BasicCredentialProvider(config.HCM_USERNAME, config.HCM_PASSWORD)

    return OAuthCredentialProvider(
        http_client=http_client,
        token_url=config.HCM_TOKEN_URL,
        client_id=config.HCM_CLIENT_ID,
        client_secret=config.HCM_CLIENT_SECRET,
        scope=config.HCM_TOKEN_SCOPE,
        safety_margin=config.HCM_TOKEN_SAFETY_MARGIN,
        max_attempts=config.HCM_TOKEN_MAX_ATTEMPTS,
        backoff_initial=config.HCM_BACKOFF_INITIAL,
        backoff_max=config.HCM_BACKOFF_MAX,
    )
