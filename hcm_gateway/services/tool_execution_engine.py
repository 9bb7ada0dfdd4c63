"""Tool dispatcher: validates a tool call, executes it against HCM and maps the result."""

import logging
import re
import time
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from hcm_gateway.adapters.hcm_client import HcmHttpClient
from hcm_gateway.infra.error_handler import (
    ErrorKind,
    GatewayError,
    NotFoundError,
    ResponseMappingError,
    ValidationError,
    classify_error,
    redact,
)
from hcm_gateway.infra.metrics import tool_call_duration, tool_calls_total
from hcm_gateway.models.http import HttpRequestSpec
from hcm_gateway.models.tool import (
    PLACEHOLDER_RE,
    ParameterSpec,
    ResponseMapping,
    ToolCall,
    ToolDescriptor,
    ToolFailure,
    ToolResult,
    ToolSuccess,
)
from hcm_gateway.services.credential_provider import CredentialProvider
from hcm_gateway.services.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

FRAMEWORK_VERSION_HEADER = "REST-Framework-Version"
DEFAULT_DATE_FORMAT = "%Y-%m-%d"

_TRUE_STRINGS = ("true", "1", "yes")
_FALSE_STRINGS = ("false", "0", "no")


def _human_date_format(fmt: str) -> str:
    """Render a strptime format the way callers read it, e.g. '%d-%m-%Y' -> 'DD-MM-YYYY'."""
    return fmt.replace("%d", "DD").replace("%m", "MM").replace("%Y", "YYYY")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coerce(name: str, spec: ParameterSpec, value: Any) -> Any:
    """Coerce one supplied argument to its declared type."""
    if spec.type == "string":
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValidationError(f"Parameter '{name}' must be a string")
        text = str(value).strip()
        if spec.transform == "upper":
            text = text.upper()
        elif spec.transform == "lower":
            text = text.lower()
        if spec.pattern and not re.fullmatch(spec.pattern, text):
            raise ValidationError(f"Parameter '{name}' has an invalid format")
        return text

    if spec.type == "integer":
        if isinstance(value, bool):
            raise ValidationError(f"Parameter '{name}' must be an integer")
        if isinstance(value, float) and value.is_integer():
            return int(value)
        try:
            return value if isinstance(value, int) else int(str(value).strip())
        except ValueError:
            raise ValidationError(f"Parameter '{name}' must be an integer")

    if spec.type == "number":
        if isinstance(value, bool):
            raise ValidationError(f"Parameter '{name}' must be a number")
        if isinstance(value, (int, float)):
            return value
        try:
            return float(str(value))
        except ValueError:
            raise ValidationError(f"Parameter '{name}' must be a number")

    if spec.type == "boolean":
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValidationError(f"Parameter '{name}' must be a boolean")

    # date
    input_format = spec.input_format or DEFAULT_DATE_FORMAT
    output_format = spec.output_format or input_format
    if isinstance(value, date):
        return value.strftime(output_format)
    try:
        parsed = datetime.strptime(str(value).strip(), input_format).date()
    except ValueError:
        raise ValidationError(
            f"Parameter '{name}' must be a date in {_human_date_format(input_format)} format"
        )
    return parsed.strftime(output_format)


def validate_arguments(
    descriptor: ToolDescriptor,
    arguments: Dict[str, Any],
    today: Callable[[], date] = date.today,
) -> Dict[str, Any]:
    """
    Check tool arguments against the descriptor's parameter schema.

    Required parameters must be present and non-empty, values must be
    coercible to their declared type and undeclared arguments are rejected.
    Omitted optional parameters are left out of the result, except dates
    flagged ``default_today``.

    Args:
        descriptor: Tool being called
        arguments: Raw arguments from the MCP caller
        today: Source of today's date

    Returns:
        Validated arguments, coerced and formatted for HCM

    Raises:
        ValidationError: On the first problem found
    """
    unexpected = sorted(set(arguments) - set(descriptor.parameters))
    if unexpected:
        raise ValidationError(f"Unexpected argument(s): {', '.join(unexpected)}")

    validated: Dict[str, Any] = {}
    for name, spec in descriptor.parameters.items():
        value = arguments.get(name)
        if _is_blank(value):
            if spec.type == "date" and spec.default_today:
                value = today()
            elif spec.required:
                raise ValidationError(f"Missing required parameter: {name}")
            else:
                continue
        validated[name] = _coerce(name, spec, value)
    return validated


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _render(template: str, arguments: Dict[str, Any], escape: bool = False) -> Optional[str]:
    """Substitute placeholders in a string template; None if any placeholder has no value."""
    missing = [name for name in PLACEHOLDER_RE.findall(template) if arguments.get(name) is None]
    if missing:
        return None

    def substitute(match: re.Match) -> str:
        rendered = _render_value(arguments[match.group(1)])
        return quote(rendered, safe="") if escape else rendered

    return PLACEHOLDER_RE.sub(substitute, template)


def _render_body(template: Any, arguments: Dict[str, Any]) -> Any:
    if isinstance(template, dict):
        return {key: _render_body(value, arguments) for key, value in template.items()}
    if isinstance(template, list):
        return [_render_body(item, arguments) for item in template]
    if isinstance(template, str):
        whole = PLACEHOLDER_RE.fullmatch(template)
        if whole:
            return arguments.get(whole.group(1))
        return _render(template, arguments)
    return template


def build_request(
    descriptor: ToolDescriptor,
    arguments: Dict[str, Any],
    framework_version: Optional[str] = None,
) -> HttpRequestSpec:
    """
    Turn validated arguments into an outbound request.

    Path values are URL-escaped. A query parameter whose template refers to an
    omitted optional argument is dropped. In the body, a string that is
    exactly one placeholder takes the raw argument value.
    """
    path = _render(descriptor.path_template, arguments, escape=True)
    if path is None:
        # Path placeholders are required parameters, so validation guarantees values
        raise ValidationError(f"Tool {descriptor.name} is missing a path parameter")

    params: Dict[str, str] = {}
    for key, template in descriptor.query_template.items():
        rendered = _render(template, arguments)
        if rendered is not None:
            params[key] = rendered

    headers: Dict[str, str] = {}
    if descriptor.framework_version_header and framework_version:
        headers[FRAMEWORK_VERSION_HEADER] = framework_version

    json_body = None
    if descriptor.body_template is not None:
        json_body = _render_body(descriptor.body_template, arguments)

    return HttpRequestSpec(
        method=descriptor.http_method,
        path=path,
        params=params,
        headers=headers,
        json_body=json_body,
        timeout=descriptor.timeout,
    )


def _reformat_date(value: Any, mapping: ResponseMapping) -> Optional[str]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value, mapping.date_input_format).strftime(mapping.date_output_format)
    except ValueError:
        return None


def _project_item(item: Any, mapping: ResponseMapping) -> Optional[Dict[str, Any]]:
    """Project one collection element; None when a mapped field is missing."""
    if not isinstance(item, dict):
        return None
    projected: Dict[str, Any] = {}
    for output_name, source in mapping.field_map.items():
        value = item.get(source)
        if value is None:
            return None
        if output_name in mapping.date_fields:
            value = _reformat_date(value, mapping)
            if value is None:
                return None
        projected[output_name] = value
    return projected


def _extract(body: Any, path: str) -> Any:
    current = body
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return None
    return current


def map_response(descriptor: ToolDescriptor, body: Any, arguments: Dict[str, Any]) -> Any:
    """
    Map a successful HCM response body into the tool payload.

    Raises:
        NotFoundError: A ``first_only`` projection matched nothing
        ResponseMappingError: The body does not have the expected shape
    """
    mapping = descriptor.response_mapping

    if mapping.kind == "passthrough":
        result = body

    elif mapping.kind == "project":
        items = body.get(mapping.collection) if isinstance(body, dict) else None
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ResponseMappingError(f"HCM response field '{mapping.collection}' is not a list")
        projected = [p for p in (_project_item(item, mapping) for item in items) if p is not None]

        if mapping.first_only:
            if not projected:
                template = mapping.not_found_message or "No matching record found in HCM"
                raise NotFoundError(template.format_map({k: _render_value(v) for k, v in arguments.items()}))
            result = projected[0]
        else:
            result = projected

    else:
        result = _extract(body, mapping.path)
        if result is None:
            raise ResponseMappingError(f"HCM response did not contain '{mapping.path}'")

    if mapping.result_key:
        result = {mapping.result_key: result}

    if mapping.echo_arguments:
        if not isinstance(result, dict):
            result = {"result": result}
        for name in mapping.echo_arguments:
            result[name] = arguments.get(name)

    return result


class ToolDispatcher:
    """
    Runs one tool call through validate, authenticate, request and map.

    Every failure below this point is converted into a ``ToolFailure`` with a
    redacted message; only cancellation propagates.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        credential_provider: CredentialProvider,
        hcm_client: HcmHttpClient,
        framework_version: Optional[str] = "9",
        today: Callable[[], date] = date.today,
    ):
        self.registry = registry
        self.credential_provider = credential_provider
        self.hcm_client = hcm_client
        self.framework_version = framework_version
        self._today = today

    async def dispatch(self, call: ToolCall) -> ToolResult:
        started = time.monotonic()
        metric_name = call.tool_name if call.tool_name in self.registry else "unknown"

        try:
            payload = await self._execute(call)
            result: ToolResult = ToolSuccess(payload=payload)
        except GatewayError as e:
            result = ToolFailure(error_kind=e.kind, message=e.message)
        except Exception as e:
            kind = classify_error(e)
            logger.error(
                "Unexpected error while executing tool",
                extra={"tool_name": metric_name, "error_kind": kind.value, "error_type": type(e).__name__},
                exc_info=True,
            )
            message = redact(str(e)) or type(e).__name__
            if kind == ErrorKind.INTERNAL:
                message = "Internal error while executing tool"
            result = ToolFailure(error_kind=kind, message=message)

        latency = time.monotonic() - started
        outcome = "success" if isinstance(result, ToolSuccess) else result.error_kind.value
        tool_calls_total.labels(tool_name=metric_name, status=outcome).inc()
        tool_call_duration.labels(tool_name=metric_name).observe(latency)

        log = logger.info if isinstance(result, ToolSuccess) else logger.warning
        log(
            "Tool call finished",
            extra={"tool_name": metric_name, "outcome": outcome, "latency_ms": int(latency * 1000)},
        )
        return result

    async def _execute(self, call: ToolCall) -> Any:
        descriptor = self.registry.resolve(call.tool_name)
        arguments = validate_arguments(descriptor, call.arguments, today=self._today)

        # Fails fast with AuthError before any HCM request is built
        await self.credential_provider.get_token()

        request = build_request(descriptor, arguments, self.framework_version)
        response = await self.hcm_client.execute(request)
        return map_response(descriptor, response.body, arguments)
