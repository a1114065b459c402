"""Tool registry and the capability provider handed to the tool loop"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Sequence, Union

from chatstream.errors import ToolExecutionError, ToolNotFoundError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass
class ToolFunction:
    """A callable tool plus the JSON schema advertised to the model"""

    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler

    @property
    def schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    async def __call__(self, args: dict[str, Any]) -> Any:
        result = self.handler(args)
        if inspect.isawaitable(result):
            result = await result
        return result


class ToolCapabilityProvider(Protocol):
    """Interface consumed by the tool loop"""

    def list(self) -> list[dict[str, Any]]: ...

    def has(self, name: str) -> bool: ...

    async def execute(self, name: str, args: dict[str, Any]) -> Any: ...


class ToolRegistry:
    """Local tools keyed by name"""

    def __init__(self, tools: Sequence[ToolFunction] = ()):
        self._tools: dict[str, ToolFunction] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolFunction) -> None:
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ToolFunction | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def list(self) -> list[dict[str, Any]]:
        return [tool.schema for tool in self._tools.values()]

    async def execute(self, name: str, args: dict[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        try:
            return await tool(args or {})
        except Exception as e:
            raise ToolExecutionError(name, str(e) or type(e).__name__) from e


class ToolProvider:
    """Local registry first, then each fallback provider in order.

    Fallbacks are external tool servers exposing the same ``list``/``has``/
    ``execute`` interface. A tool name shadowed locally is never forwarded.
    """

    def __init__(self, local: ToolRegistry, fallbacks: Sequence[ToolCapabilityProvider] = ()):
        self.local = local
        self.fallbacks = list(fallbacks)

    def add_fallback(self, provider: ToolCapabilityProvider) -> None:
        self.fallbacks.append(provider)

    def list(self) -> list[dict[str, Any]]:
        schemas = self.local.list()
        seen = {schema["name"] for schema in schemas}
        for provider in self.fallbacks:
            try:
                remote = provider.list()
            except Exception as e:
                logger.warning("Tool provider %r failed to list tools: %s", provider, e)
                continue
            for schema in remote:
                if schema.get("name") not in seen:
                    seen.add(schema.get("name"))
                    schemas.append(schema)
        return schemas

    def has(self, name: str) -> bool:
        return self.local.has(name) or any(p.has(name) for p in self.fallbacks)

    async def execute(self, name: str, args: dict[str, Any]) -> Any:
        if self.local.has(name):
            return await self.local.execute(name, args)
        for provider in self.fallbacks:
            if provider.has(name):
                try:
                    return await provider.execute(name, args)
                except ToolExecutionError:
                    raise
                except Exception as e:
                    raise ToolExecutionError(name, str(e) or type(e).__name__) from e
        raise ToolNotFoundError(name)
