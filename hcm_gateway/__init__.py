"""Oracle HCM MCP gateway: exposes Oracle HCM REST endpoints as MCP tools."""

__version__ = "0.1.0"
