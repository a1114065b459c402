"""Tools module - tool registry and built-in tools"""

from .builtin import builtin_tools, calculate_tool, create_default_registry, get_time_tool
from .registry import ToolCapabilityProvider, ToolFunction, ToolProvider, ToolRegistry

__all__ = [
    "ToolCapabilityProvider",
    "ToolFunction",
    "ToolProvider",
    "ToolRegistry",
    "builtin_tools",
    "calculate_tool",
    "create_default_registry",
    "get_time_tool",
]
