"""Local tools the model can invoke.

This package contains:
- Tool base class and ToolExecutionError
- File system, search and shell tools
- The immutable ToolRegistry
"""

from application.tools.base import Tool, ToolArguments, ToolExecutionError
from application.tools.file_tools import ListDirectoryTool, ReadFileTool, ReplaceTool, WriteFileTool
from application.tools.registry import ToolRegistry, create_default_registry, default_tools
from application.tools.search_tools import GlobTool, SearchFileContentTool
from application.tools.shell_tools import RunShellCommandTool

__all__ = [
    # Base
    "Tool",
    "ToolArguments",
    "ToolExecutionError",
    # File tools
    "ListDirectoryTool",
    "ReadFileTool",
    "ReplaceTool",
    "WriteFileTool",
    # Search tools
    "GlobTool",
    "SearchFileContentTool",
    # Shell tools
    "RunShellCommandTool",
    # Registry
    "ToolRegistry",
    "create_default_registry",
    "default_tools",
]
