"""Prometheus metrics export."""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Tool metrics
tool_calls_total = Counter(
    "hcm_tool_calls_total",
    "Total MCP tool calls",
    ["tool_name", "status"],  # status: success or an error kind
)

tool_call_duration = Histogram(
    "hcm_tool_call_duration_seconds",
    "MCP tool call duration in seconds",
    ["tool_name"],
)

# Outbound HCM requests, one observation per attempt
hcm_requests_total = Counter(
    "hcm_requests_total",
    "Total Oracle HCM REST attempts",
    ["method", "status"],
)

hcm_request_duration = Histogram(
    "hcm_request_duration_seconds",
    "Oracle HCM REST attempt duration in seconds",
    ["method"],
)

hcm_retries_total = Counter(
    "hcm_retries_total",
    "Total retried Oracle HCM REST attempts",
    ["method", "reason"],
)

# Credential lifecycle
token_exchanges_total = Counter(
    "hcm_token_exchanges_total",
    "Total identity endpoint token exchanges",
    ["outcome"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
