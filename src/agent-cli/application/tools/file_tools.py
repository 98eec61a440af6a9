"""File system tools.

Provides:
- list_directory: Directory listing with mode, size and modification time
- read_file: Whole-file text read
- write_file: Create or overwrite a file (requires confirmation)
- replace: Replace the first occurrence of a string in a file (requires confirmation)

Paths are taken as given, relative to the working directory of the process.
"""

import logging
import os
import stat
from datetime import datetime

from pydantic import Field

from application.tools.base import Tool, ToolArguments, ToolExecutionError

logger = logging.getLogger(__name__)

MODIFIED_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


# =============================================================================
# Arguments
# =============================================================================


class ListDirectoryArguments(ToolArguments):
    path: str = Field(default=".", description="Directory to list. Defaults to the current directory.")


class ReadFileArguments(ToolArguments):
    path: str = Field(description="Path of the file to read.")


class WriteFileArguments(ToolArguments):
    path: str = Field(description="Path of the file to write.")
    content: str = Field(description="Full content to write to the file.")


class ReplaceArguments(ToolArguments):
    path: str = Field(description="Path of the file to edit.")
    old_string: str = Field(description="Exact text to find.")
    new_string: str = Field(description="Text to put in place of the first occurrence of old_string.")


def _require_path(tool_name: str, path: str) -> str:
    if not path.strip():
        raise ToolExecutionError(f"path argument is required for {tool_name}", tool_name=tool_name)
    return path


# =============================================================================
# Tools
# =============================================================================


class ListDirectoryTool(Tool):
    name = "list_directory"
    description = "Lists files and subdirectories within a specified directory path."
    arguments_model = ListDirectoryArguments

    async def run(self, args: ListDirectoryArguments) -> str:
        path = args.path or "."
        logger.info(f"Listing directory: {path}")

        try:
            entries = sorted(os.scandir(path), key=lambda e: e.name)
        except OSError as e:
            raise ToolExecutionError(f"error reading directory '{path}': {e}", tool_name=self.name)

        lines = [f"Contents of {path}:"]
        for entry in entries:
            try:
                info = entry.stat(follow_symlinks=False)
            except OSError:
                continue

            mode = stat.filemode(info.st_mode)
            modified = datetime.fromtimestamp(info.st_mtime).strftime(MODIFIED_TIME_FORMAT)
            name = entry.name + "/" if entry.is_dir(follow_symlinks=False) else entry.name
            lines.append(f"{mode:<12} {info.st_size:<10d} {modified} {name}")

        return "\n".join(lines) + "\n"


class ReadFileTool(Tool):
    name = "read_file"
    description = "Reads the entire content of a specified file."
    arguments_model = ReadFileArguments

    async def run(self, args: ReadFileArguments) -> str:
        path = _require_path(self.name, args.path)
        logger.info(f"Reading file: {path}")

        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            raise ToolExecutionError(f"error reading file '{path}': {e}", tool_name=self.name)


class WriteFileTool(Tool):
    name = "write_file"
    description = "Writes content to a specified file, creating the file if it doesn't exist or overwriting it if it does."
    requires_confirmation = True
    arguments_model = WriteFileArguments

    async def run(self, args: WriteFileArguments) -> str:
        path = _require_path(self.name, args.path)
        data = args.content.encode("utf-8")
        logger.info(f"Writing file: {path} ({len(data)} bytes)")

        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise ToolExecutionError(f"error writing to file '{path}': {e}", tool_name=self.name)

        return f"Successfully wrote {len(data)} bytes to {path}"


class ReplaceTool(Tool):
    name = "replace"
    description = "Replaces the first occurrence of a specified old string with a new string in a file."
    requires_confirmation = True
    arguments_model = ReplaceArguments

    async def run(self, args: ReplaceArguments) -> str:
        path = _require_path(self.name, args.path)
        if not args.old_string:
            raise ToolExecutionError("old_string argument is required for replace", tool_name=self.name)

        logger.info(f"Replacing text in file: {path}")

        try:
            with open(path, encoding="utf-8", newline="") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ToolExecutionError(f"error reading file '{path}': {e}", tool_name=self.name)

        if args.old_string not in content:
            raise ToolExecutionError(f"old_string not found in file '{path}'", tool_name=self.name)

        modified = content.replace(args.old_string, args.new_string, 1)

        try:
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(modified)
        except OSError as e:
            raise ToolExecutionError(f"error writing to file '{path}': {e}", tool_name=self.name)

        return f"Successfully replaced first occurrence of string in {path}"
