"""Interfaces of the external collaborators the engine delegates to.

Every collaborator may be implemented synchronously or asynchronously; the
engine awaits whatever comes back when it is awaitable.
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from .exceptions import ToolRegistryError
from .logging import get_logger

logger = get_logger(__name__)


MaybeAwaitable = Union[Any, Awaitable[Any]]


@runtime_checkable
class AgentCapability(Protocol):
    """Runs an agent step and returns its opaque output."""

    def execute(self, agent_id: Optional[str], input: Any) -> MaybeAwaitable:
        ...


@runtime_checkable
class Tool(Protocol):
    """A named capability with a single entry point."""

    def execute(self, input: Any) -> MaybeAwaitable:
        ...


@runtime_checkable
class ToolCapability(Protocol):
    """Catalog mapping tool names to tools."""

    def get(self, name: str) -> Optional[Tool]:
        ...


@runtime_checkable
class RAGPipeline(Protocol):
    """Turns a text query into a structured retrieval result."""

    def query(self, text: str, limit: Optional[int] = None) -> MaybeAwaitable:
        ...


HumanCheckpointHandler = Callable[[str, Optional[List[str]]], Awaitable[str]]


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


class FunctionTool:
    """Adapts a plain (sync or async) function to the Tool interface."""

    def __init__(self, name: str, function: Callable[[Any], Any], description: str = ""):
        self.name = name
        self.function = function
        self.description = description

    def execute(self, input: Any) -> MaybeAwaitable:
        return self.function(input)

    def __repr__(self) -> str:
        return f"FunctionTool(name={self.name!r})"


class ToolRegistry:
    """In-memory tool catalog usable as the engine's tool capability."""

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register_tool(self, name: str, tool: Union[Tool, Callable[[Any], Any]], description: str = "") -> None:
        """Register a tool under a unique name.

        Args:
            name: Unique identifier for the tool
            tool: An object with ``execute(input)`` or a plain function taking the input
            description: Optional description of the tool's purpose

        Raises:
            ToolRegistryError: If the name is empty or taken, or the tool is not usable
        """
        if not name or not name.strip():
            raise ToolRegistryError("Tool name cannot be empty", operation="register")

        name = name.strip()

        if name in self._tools:
            raise ToolRegistryError(f"Tool '{name}' is already registered", tool_name=name, operation="register")

        if not isinstance(tool, Tool):
            if not callable(tool):
                raise ToolRegistryError(
                    f"Tool '{name}' must be callable or expose execute()",
                    tool_name=name,
                    operation="register"
                )
            tool = FunctionTool(name, tool, description)

        self._tools[name] = tool
        logger.info(f"Registered tool '{name}'")

    def get(self, name: str) -> Optional[Tool]:
        """Return the tool registered under ``name``, or None."""
        if not name:
            return None
        return self._tools.get(name.strip())

    def list_tools(self) -> Dict[str, str]:
        """List all registered tools with their descriptions."""
        return {name: getattr(tool, "description", "") for name, tool in self._tools.items()}

    def unregister_tool(self, name: str) -> bool:
        """Remove a tool; returns False when it was not registered."""
        removed = self._tools.pop(name.strip(), None) if name else None
        if removed is not None:
            logger.info(f"Unregistered tool '{name}'")
        return removed is not None

    def tool_exists(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self._tools)
