"""Tool registry.

Built once from a fixed list of tools and immutable afterwards; the
conversation agent receives it through its constructor.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from application.agents.llm_provider import LlmToolDefinition
from application.tools.base import Tool
from application.tools.file_tools import ListDirectoryTool, ReadFileTool, ReplaceTool, WriteFileTool
from application.tools.search_tools import GlobTool, SearchFileContentTool
from application.tools.shell_tools import RunShellCommandTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Immutable name-to-tool lookup.

    Raises:
        ValueError: At construction, if two tools share a name
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        by_name: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in by_name:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            by_name[tool.name] = tool
        self._tools: Mapping[str, Tool] = MappingProxyType(by_name)
        logger.debug(f"Tool registry created with {len(by_name)} tools: {', '.join(by_name)}")

    @property
    def tools(self) -> Mapping[str, Tool]:
        """Read-only view of the name-to-tool mapping."""
        return self._tools

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[LlmToolDefinition]:
        """Definitions advertised to the model, in registration order."""
        return [tool.definition() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())


def default_tools() -> list[Tool]:
    """The built-in tool set."""
    return [
        ListDirectoryTool(),
        ReadFileTool(),
        WriteFileTool(),
        SearchFileContentTool(),
        GlobTool(),
        ReplaceTool(),
        RunShellCommandTool(),
    ]


def create_default_registry() -> ToolRegistry:
    return ToolRegistry(default_tools())
