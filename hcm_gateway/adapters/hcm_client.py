"""Oracle HCM REST execution layer: pooled client plus middleware chain."""

import functools
import json
import logging
import ssl
import time
from typing import List, Optional, Sequence

import httpx

from hcm_gateway.adapters.http_middleware import (
    AuthMiddleware,
    CallNext,
    HttpMiddleware,
    RetryMiddleware,
    TracingMiddleware,
)
from hcm_gateway.infra.config import Config
from hcm_gateway.infra.error_handler import HttpStatusError, TransportError, describe_status
from hcm_gateway.models.http import HttpRequestSpec, HttpResponse
from hcm_gateway.services.credential_provider import CredentialProvider

logger = logging.getLogger(__name__)

# Oracle ADF action payloads
ADF_CONTENT_TYPE = "application/vnd.oracle.adf.action+json"

# Connection-level failures raised before any request bytes were written
_BEFORE_SEND_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


def build_http_pool(config: Config, ssl_context: ssl.SSLContext) -> httpx.AsyncClient:
    """Create the shared connection pool used for HCM and the identity endpoint."""
    limits = httpx.Limits(
        max_connections=config.HCM_MAX_CONNECTIONS,
        max_keepalive_connections=config.HCM_MAX_CONNECTIONS,
    )
    return httpx.AsyncClient(
        verify=ssl_context,
        limits=limits,
        timeout=httpx.Timeout(config.HCM_REQUEST_TIMEOUT),
        follow_redirects=False,
    )


class HcmHttpClient:
    """
    Executes ``HttpRequestSpec``s against the HCM REST resources root.

    Every request runs through the configured middleware stages before
    reaching the connection pool. Non-2xx responses that survive the chain
    are raised as ``HttpStatusError``.
    """

    def __init__(
        self,
        resources_url: str,
        client: httpx.AsyncClient,
        middlewares: Sequence[HttpMiddleware] = (),
        request_timeout: float = 30.0,
    ):
        self.resources_url = resources_url.rstrip("/")
        self._client = client
        self.middlewares: List[HttpMiddleware] = list(middlewares)
        self.request_timeout = request_timeout

    async def execute(self, request: HttpRequestSpec) -> HttpResponse:
        """
        Execute one HCM request.

        Raises:
            TransportError: Network failure or timeout after retries
            HttpStatusError: HCM returned a non-success status
            AuthError: No credential could be obtained
        """
        handler: CallNext = self._send
        for middleware in reversed(self.middlewares):
            handler = functools.partial(middleware, call_next=handler)

        response = await handler(request)
        if not response.is_success:
            raise HttpStatusError(response.status_code, describe_status(response.status_code, response.body))
        return response

    async def _send(self, request: HttpRequestSpec) -> HttpResponse:
        """Terminal stage: one attempt on the wire."""
        headers = {"Accept": "application/json"}
        headers.update(request.headers)

        content = None
        if request.json_body is not None:
            content = json.dumps(request.json_body).encode("utf-8")
            headers.setdefault("Content-Type", ADF_CONTENT_TYPE)

        http_request = self._client.build_request(
            request.method,
            f"{self.resources_url}{request.path}",
            params=request.params or None,
            headers=headers,
            content=content,
            timeout=request.timeout or self.request_timeout,
        )

        started = time.monotonic()
        try:
            response = await self._client.send(http_request)
        except _BEFORE_SEND_ERRORS as e:
            raise TransportError(
                f"Could not connect to HCM: {type(e).__name__}",
                timeout=isinstance(e, httpx.TimeoutException),
                before_send=True,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"HCM request timed out: {type(e).__name__}", timeout=True)
        except httpx.TransportError as e:
            raise TransportError(f"HCM request failed: {type(e).__name__}")

        elapsed_ms = int((time.monotonic() - started) * 1000)

        body = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = response.text

        return HttpResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
            elapsed_ms=elapsed_ms,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def build_hcm_client(
    config: Config,
    http_pool: httpx.AsyncClient,
    credential_provider: CredentialProvider,
    middlewares: Optional[Sequence[HttpMiddleware]] = None,
) -> HcmHttpClient:
    """
    Assemble the execution layer.

    The default chain is retry (outermost), then auth, then tracing, so that
    every attempt gets a current credential and its own span.
    """
    if middlewares is None:
        middlewares = [
            RetryMiddleware(
                max_attempts=config.HCM_MAX_ATTEMPTS,
                request_timeout=config.HCM_REQUEST_TIMEOUT,
                total_deadline=config.HCM_TOTAL_DEADLINE,
                backoff_initial=config.HCM_BACKOFF_INITIAL,
                backoff_max=config.HCM_BACKOFF_MAX,
                retry_unsafe_on_5xx=config.HCM_RETRY_UNSAFE_ON_5XX,
            ),
            AuthMiddleware(credential_provider),
            TracingMiddleware(),
        ]

    return HcmHttpClient(
        resources_url=config.hcm_resources_url,
        client=http_pool,
        middlewares=middlewares,
        request_timeout=config.HCM_REQUEST_TIMEOUT,
    )
