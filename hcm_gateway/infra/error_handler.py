"""Gateway error taxonomy, classification and secret redaction."""

import asyncio
import random
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Optional


class ErrorKind(str, Enum):
    """Error kinds surfaced to MCP callers."""
    UNKNOWN_TOOL = "unknown_tool"  # Tool name not registered
    VALIDATION = "validation"  # Malformed tool call
    AUTH = "auth"  # Credential exchange failed
    REMOTE_4XX = "remote_4xx"  # HCM rejected the request
    REMOTE_5XX = "remote_5xx"  # HCM failed to serve the request
    TRANSPORT = "transport"  # Connection-level failure
    TIMEOUT = "timeout"  # Attempt or total deadline exceeded
    NOT_FOUND = "not_found"  # HCM answered but the entity does not exist
    INTERNAL = "internal"  # Unexpected response shape


MAX_MESSAGE_LENGTH = 500

_REDACTION_PATTERNS = [
    # Bearer tokens, Basic credentials that look encoded, or any scheme in an Authorization header
    re.compile(
        r"(?i)(\bauthorization\"?\s*[:=]\s*\"?(?:bearer|basic)|\bbearer|\bbasic(?=\s+[A-Za-z0-9+/]*[0-9+/=]))"
        r"\s+[A-Za-z0-9\-._~+/]{8,}=*"
    ),
    re.compile(r"(?i)(\"?(?:access_token|refresh_token|id_token|client_secret|password)\"?\s*[:=]\s*\"?)[^\"&,\s}]+"),
    re.compile(r"(?s)-----BEGIN [A-Z ]+-----.*?-----END [A-Z ]+-----"),
]


def redact(message: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Scrub credentials from a message and truncate it.

    Removes bearer/basic authorization values, token or secret key/value
    pairs and PEM blocks.

    Args:
        message: Raw message, possibly containing secrets
        max_length: Maximum length of the returned message

    Returns:
        Redacted message
    """
    if not message:
        return ""

    text = str(message)
    text = _REDACTION_PATTERNS[0].sub(lambda m: f"{m.group(1)} [REDACTED]", text)
    text = _REDACTION_PATTERNS[1].sub(lambda m: f"{m.group(1)}[REDACTED]", text)
    text = _REDACTION_PATTERNS[2].sub("[REDACTED CERTIFICATE]", text)

    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


class ConfigError(Exception):
    """Missing or invalid startup configuration. Aborts the process."""


class GatewayError(Exception):
    """Base exception for errors raised while serving a tool call."""
    def __init__(self, message: str, kind: ErrorKind, retryable: bool = False):
        self.message = redact(message)
        self.kind = kind
        self.retryable = retryable
        super().__init__(self.message)


class UnknownTool(GatewayError):
    """Tool name absent from the registry."""
    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}", ErrorKind.UNKNOWN_TOOL)


class ValidationError(GatewayError):
    """Tool arguments do not match the parameter schema."""
    def __init__(self, message: str):
        super().__init__(message, ErrorKind.VALIDATION)


class AuthError(GatewayError):
    """Credential exchange failed.

    Only transient network causes are retryable; rejected credentials are fatal.
    """
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message, ErrorKind.AUTH, retryable=retryable)


class TransportError(GatewayError):
    """Network failure or deadline exceeded.

    ``before_send`` is True when the connection failed before any request
    bytes reached the wire, which makes a retry safe for every method.
    """
    def __init__(self, message: str, timeout: bool = False, before_send: bool = False):
        self.timeout = timeout
        self.before_send = before_send
        kind = ErrorKind.TIMEOUT if timeout else ErrorKind.TRANSPORT
        super().__init__(message, kind, retryable=True)


class HttpStatusError(GatewayError):
    """HCM returned a non-success status."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        if status_code >= 500:
            super().__init__(message, ErrorKind.REMOTE_5XX, retryable=True)
        else:
            super().__init__(message, ErrorKind.REMOTE_4XX, retryable=False)


class NotFoundError(GatewayError):
    """HCM answered successfully but the requested entity does not exist."""
    def __init__(self, message: str):
        super().__init__(message, ErrorKind.NOT_FOUND)


class ResponseMappingError(GatewayError):
    """The HCM response could not be mapped into a tool result."""
    def __init__(self, message: str):
        super().__init__(message, ErrorKind.INTERNAL)


def classify_error(error: Exception) -> ErrorKind:
    """
    Classify an exception raised below the dispatcher.

    Args:
        error: The exception to classify

    Returns:
        The error kind reported to the caller
    """
    if isinstance(error, GatewayError):
        return error.kind

    # asyncio.TimeoutError is an alias of TimeoutError on current interpreters
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT

    if isinstance(error, (ConnectionError, OSError)):
        return ErrorKind.TRANSPORT

    return ErrorKind.INTERNAL


def compute_backoff(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
    jitter: float = 0.1,
) -> float:
    """
    Delay before retry number ``attempt`` (1-based).

    Jitter adds up to ``jitter * delay``; with a base of 2 uncapped delays
    stay strictly increasing. Once capped they no longer grow, which is why
    ``Config.validate()`` rejects attempt counts that would reach the cap.
    """
    delay = min(initial_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay += random.uniform(0, delay * jitter)
    return delay


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 8.0,
    exponential_base: float = 2.0,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """
    Retry a coroutine function with exponential backoff.

    Only ``GatewayError``s flagged ``retryable`` are retried; everything else
    propagates immediately.

    Args:
        func: Async function to retry
        max_attempts: Maximum number of attempts, including the first
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        on_retry: Optional callback (exception, attempt_number, delay)
        sleep: Sleep function, injectable for tests

    Returns:
        Result of the function call

    Raises:
        Last exception if all attempts fail
    """
    attempt = 1
    while True:
        try:
            return await func()
        except GatewayError as e:
            if not e.retryable or attempt >= max_attempts:
                raise

            delay = compute_backoff(attempt, initial_delay, max_delay, exponential_base)
            if on_retry:
                on_retry(e, attempt, delay)
            await sleep(delay)
            attempt += 1


def describe_status(status_code: int, body: Optional[object]) -> str:
    """Build a short, redacted description of an HCM error response."""
    detail = ""
    if isinstance(body, dict):
        detail = str(body.get("detail") or body.get("title") or body.get("message") or "")
    elif isinstance(body, str):
        detail = body.strip()

    if detail:
        return redact(f"HCM returned HTTP {status_code}: {detail}")
    return f"HCM returned HTTP {status_code}"
