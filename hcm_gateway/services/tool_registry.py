"""Tool registry: static lookup from tool name to HCM endpoint descriptor."""

from typing import Dict, Iterable, List, Optional

from hcm_gateway.infra.error_handler import UnknownTool
from hcm_gateway.models.tool import ToolDescriptor


class ToolRegistry:
    """Immutable, ordered catalog of tools.

    Tools are listed in registration order for MCP discovery.
    """

    def __init__(self, descriptors: Iterable[ToolDescriptor]):
        tools: Dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in tools:
                raise ValueError(f"Duplicate tool name: {descriptor.name}")
            tools[descriptor.name] = descriptor
        self._tools = tools

    def resolve(self, name: str) -> ToolDescriptor:
        """
        Look up a tool by name.

        Raises:
            UnknownTool: If no tool with that name is registered
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownTool(name)
        return descriptor

    def list(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


_default_registry: Optional[ToolRegistry] = None


def get_default_registry() -> ToolRegistry:
    """Registry holding the built-in Oracle HCM tool catalog."""
    global _default_registry
    if _default_registry is None:
        from hcm_gateway.services.tool_catalog import HCM_TOOLS
        _default_registry = ToolRegistry(HCM_TOOLS)
    return _default_registry
