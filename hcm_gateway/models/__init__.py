from .http import Credential, HttpRequestSpec, HttpResponse
from .tool import (
    ParameterSpec,
    ResponseMapping,
    ToolCall,
    ToolDescriptor,
    ToolFailure,
    ToolResult,
    ToolSuccess,
)

__all__ = [
    "Credential",
    "HttpRequestSpec",
    "HttpResponse",
    "ParameterSpec",
    "ResponseMapping",
    "ToolCall",
    "ToolDescriptor",
    "ToolFailure",
    "ToolResult",
    "ToolSuccess",
]
