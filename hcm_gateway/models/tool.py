"""Tool descriptors, tool calls and tool results."""

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hcm_gateway.infra.error_handler import ErrorKind

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

ParameterType = Literal["string", "integer", "number", "boolean", "date"]
HttpMethod = Literal["GET", "POST", "PATCH", "PUT", "DELETE"]

_JSON_SCHEMA_TYPES = {
    "string": "string",
    "integer": "integer",
    "number": "number",
    "boolean": "boolean",
    "date": "string",
}


class ParameterSpec(BaseModel):
    """Schema of a single tool parameter."""
    model_config = ConfigDict(frozen=True)

    type: ParameterType = Field(default="string", description="Parameter type")
    required: bool = Field(default=False, description="Whether the caller must supply the parameter")
    description: str = Field(default="", description="Parameter description shown to MCP clients")
    transform: Optional[Literal["upper", "lower"]] = Field(
        default=None,
        description="Case transform applied to string values before substitution",
    )
    input_format: Optional[str] = Field(
        default=None,
        description="strptime format of date values supplied by the caller, e.g. '%d-%m-%Y'",
    )
    output_format: Optional[str] = Field(
        default=None,
        description="strftime format of date values sent to HCM, e.g. '%Y-%m-%d'",
    )
    default_today: bool = Field(
        default=False,
        description="Substitute today's date when a date parameter is omitted",
    )
    pattern: Optional[str] = Field(
        default=None,
        description="Regular expression string values must fully match",
    )

    def json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": _JSON_SCHEMA_TYPES[self.type]}
        if self.description:
            schema["description"] = self.description
        if self.pattern:
            schema["pattern"] = self.pattern
        return schema


class ResponseMapping(BaseModel):
    """How a successful HCM response body becomes a tool payload.

    - passthrough: the JSON body is returned unchanged
    - project: ``field_map`` (output name -> source field) are projected out of
      every element of the ``collection`` array
    - extract: the value at the dotted ``path`` is returned
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["passthrough", "project", "extract"] = "passthrough"
    collection: str = "items"
    field_map: Dict[str, str] = Field(default_factory=dict)
    first_only: bool = False
    date_fields: List[str] = Field(default_factory=list)
    date_input_format: str = "%Y-%m-%d"
    date_output_format: str = "%d-%m-%Y"
    path: Optional[str] = None
    result_key: Optional[str] = None
    echo_arguments: List[str] = Field(default_factory=list)
    not_found_message: Optional[str] = None

    @model_validator(mode="after")
    def _check_kind(self) -> "ResponseMapping":
        if self.kind == "project" and not self.field_map:
            raise ValueError("project mapping requires field_map")
        if self.kind == "extract" and not self.path:
            raise ValueError("extract mapping requires a path")
        return self


class ToolDescriptor(BaseModel):
    """A named tool mapped onto one Oracle HCM REST endpoint."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique tool name")
    description: str = Field(..., description="Tool description shown to MCP clients")
    http_method: HttpMethod = Field(default="GET", description="HTTP method")
    path_template: str = Field(..., description="Resource path, may contain {placeholders}")
    query_template: Dict[str, str] = Field(
        default_factory=dict,
        description="Query parameters, values may contain {placeholders}",
    )
    body_template: Optional[Dict[str, Any]] = Field(
        default=None,
        description="JSON body template; a string equal to '{name}' is replaced by the raw value",
    )
    parameters: Dict[str, ParameterSpec] = Field(default_factory=dict)
    response_mapping: ResponseMapping = Field(default_factory=ResponseMapping)
    framework_version_header: bool = Field(
        default=True,
        description="Send the REST-Framework-Version header",
    )
    timeout: Optional[float] = Field(default=None, description="Per-attempt timeout override in seconds")

    @model_validator(mode="after")
    def _check_placeholders(self) -> "ToolDescriptor":
        templates = [self.path_template, *self.query_template.values()]
        for template in templates:
            for placeholder in PLACEHOLDER_RE.findall(template):
                if placeholder not in self.parameters:
                    raise ValueError(f"Tool {self.name}: placeholder {{{placeholder}}} is not a declared parameter")
        for placeholder in PLACEHOLDER_RE.findall(self.path_template):
            if not self.parameters[placeholder].required:
                raise ValueError(f"Tool {self.name}: path placeholder {{{placeholder}}} must be required")
        return self

    def input_schema(self) -> Dict[str, Any]:
        """JSON Schema of the tool arguments, as advertised by tools/list."""
        return {
            "type": "object",
            "properties": {name: spec.json_schema() for name, spec in self.parameters.items()},
            "required": [name for name, spec in self.parameters.items() if spec.required],
            "additionalProperties": False,
        }


class ToolCall(BaseModel):
    """An incoming tool invocation."""
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolSuccess(BaseModel):
    status: Literal["success"] = "success"
    payload: Any = None

    @property
    def is_error(self) -> bool:
        return False


class ToolFailure(BaseModel):
    status: Literal["failure"] = "failure"
    error_kind: ErrorKind
    message: str

    @property
    def is_error(self) -> bool:
        return True


ToolResult = Annotated[Union[ToolSuccess, ToolFailure], Field(discriminator="status")]
