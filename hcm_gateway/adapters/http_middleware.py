"""Request-processing stages applied to every outbound HCM request.

Each stage is called as ``await stage(request, call_next)`` and either
returns the response produced by ``call_next`` or raises. The execution
layer composes the stages in list order, outermost first.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from opentelemetry.trace import SpanKind, Status, StatusCode

from hcm_gateway.infra.error_handler import GatewayError, TransportError, compute_backoff
from hcm_gateway.infra.metrics import hcm_request_duration, hcm_requests_total, hcm_retries_total
from hcm_gateway.infra.telemetry import get_tracer
from hcm_gateway.models.http import HttpRequestSpec, HttpResponse
from hcm_gateway.services.credential_provider import CredentialProvider

logger = logging.getLogger(__name__)

CallNext = Callable[[HttpRequestSpec], Awaitable[HttpResponse]]

IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"


class HttpMiddleware(ABC):
    """One stage of the outbound request pipeline."""

    @abstractmethod
    async def __call__(self, request: HttpRequestSpec, call_next: CallNext) -> HttpResponse:
        ...


class RetryMiddleware(HttpMiddleware):
    """
    Retry with exponential backoff, bounded by attempts and a total deadline.

    - Connection failures before any bytes were sent: retried for every method.
    - Other transport failures and 5xx: retried for idempotent methods only.
    - 5xx on non-idempotent methods: retried only when ``retry_unsafe_on_5xx``
      is set or the request carries an Idempotency-Key header.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        request_timeout: float = 30.0,
        total_deadline: float = 90.0,
        backoff_initial: float = 0.5,
        backoff_max: float = 8.0,
        retry_unsafe_on_5xx: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts
        self.request_timeout = request_timeout
        self.total_deadline = total_deadline
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.retry_unsafe_on_5xx = retry_unsafe_on_5xx
        self._clock = clock
        self._sleep = sleep

    def retry_reason(
        self,
        request: HttpRequestSpec,
        error: Optional[TransportError] = None,
        response: Optional[HttpResponse] = None,
    ) -> Optional[str]:
        """Why this outcome may be retried, or None when it must not be."""
        if error is not None:
            if error.before_send:
                return "connect"
            if request.idempotent:
                return "timeout" if error.timeout else "network"
            return None

        if response is not None and response.status_code >= 500:
            if request.idempotent or self.retry_unsafe_on_5xx or IDEMPOTENCY_KEY_HEADER in request.headers:
                return "5xx"
        return None

    async def __call__(self, request: HttpRequestSpec, call_next: CallNext) -> HttpResponse:
        started = self._clock()
        attempt = 1

        while True:
            remaining = self.total_deadline - (self._clock() - started)
            if remaining <= 0:
                raise TransportError(f"Total deadline of {self.total_deadline}s exceeded", timeout=True)

            attempt_timeout = min(request.timeout or self.request_timeout, remaining)
            attempt_request = request.model_copy(update={"timeout": attempt_timeout})

            error: Optional[TransportError] = None
            response: Optional[HttpResponse] = None
            try:
                response = await asyncio.wait_for(call_next(attempt_request), timeout=remaining)
            except asyncio.TimeoutError:
                raise TransportError(f"Total deadline of {self.total_deadline}s exceeded", timeout=True)
            except TransportError as e:
                error = e

            reason = self.retry_reason(request, error=error, response=response)
            if reason is None or attempt >= self.max_attempts:
                if error is not None:
                    raise error
                return response

            delay = compute_backoff(attempt, self.backoff_initial, self.backoff_max)
            if (self._clock() - started) + delay >= self.total_deadline:
                logger.warning(
                    "HCM retry abandoned, total deadline reached",
                    extra={"method": request.method, "path": request.path, "attempt": attempt},
                )
                if error is not None:
                    raise TransportError(
                        f"Total deadline of {self.total_deadline}s exceeded after {attempt} attempts",
                        timeout=True,
                    )
                return response

            hcm_retries_total.labels(method=request.method, reason=reason).inc()
            logger.warning(
                "Retrying HCM request",
                extra={
                    "method": request.method,
                    "path": request.path,
                    "attempt": attempt,
                    "reason": reason,
                    "delay_s": round(delay, 3),
                },
            )
            await self._sleep(delay)
            attempt += 1


class AuthMiddleware(HttpMiddleware):
    """
    Attach the HCM credential to every attempt.

    A token is requested per attempt so a credential that expired during a
    backoff is never reused. A 401 from HCM invalidates a refreshable
    credential and the attempt is repeated once with a fresh one.
    """

    def __init__(self, credential_provider: CredentialProvider):
        self._provider = credential_provider

    async def __call__(self, request: HttpRequestSpec, call_next: CallNext) -> HttpResponse:
        credential = await self._provider.get_token()
        response = await call_next(request.with_headers(Authorization=credential.authorization_header()))

        if response.status_code == 401 and self._provider.refreshable:
            logger.info(
                "HCM rejected credential, re-authenticating",
                extra={"method": request.method, "path": request.path},
            )
            self._provider.invalidate(credential)
            credential = await self._provider.get_token()
            response = await call_next(request.with_headers(Authorization=credential.authorization_header()))

        return response


class TracingMiddleware(HttpMiddleware):
    """One span, one log line and one metric observation per attempt.

    Only metadata is recorded: method, path, status and latency.
    """

    SPAN_NAME = "hcm.request"

    async def __call__(self, request: HttpRequestSpec, call_next: CallNext) -> HttpResponse:
        tracer = get_tracer()
        attributes = {"http.request.method": request.method, "url.path": request.path}

        with tracer.start_as_current_span(
            self.SPAN_NAME,
            kind=SpanKind.CLIENT,
            attributes=attributes,
            record_exception=False,
        ) as span:
            started = time.monotonic()
            try:
                response = await call_next(request)
            except GatewayError as e:
                latency = time.monotonic() - started
                span.set_attribute("error.type", e.kind.value)
                span.set_status(Status(StatusCode.ERROR, e.kind.value))
                hcm_requests_total.labels(method=request.method, status=e.kind.value).inc()
                hcm_request_duration.labels(method=request.method).observe(latency)
                logger.warning(
                    "HCM request failed",
                    extra={
                        "method": request.method,
                        "path": request.path,
                        "error_kind": e.kind.value,
                        "latency_ms": int(latency * 1000),
                    },
                )
                raise

            latency = time.monotonic() - started
            span.set_attribute("http.response.status_code", response.status_code)
            if response.status_code >= 500:
                span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
            hcm_requests_total.labels(method=request.method, status=str(response.status_code)).inc()
            hcm_request_duration.labels(method=request.method).observe(latency)
            logger.info(
                "HCM request completed",
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status_code": response.status_code,
                    "latency_ms": int(latency * 1000),
                },
            )
            return response
