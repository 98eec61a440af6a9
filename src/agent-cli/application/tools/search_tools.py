"""Search tools.

Provides:
- search_file_content: Recursive regular-expression search over file lines
- glob: Recursive file name matching (supports ``**``)

Both walk the file system in a worker thread so the event loop stays free
while large trees are scanned.
"""

import asyncio
import glob as globlib
import logging
import os
import re
from collections.abc import Iterator

from pydantic import Field

from application.tools.base import Tool, ToolArguments, ToolExecutionError

logger = logging.getLogger(__name__)

NO_MATCHES_MESSAGE = "No matches found."
NO_FILES_MESSAGE = "No files matched the pattern."


class SearchFileContentArguments(ToolArguments):
    path: str = Field(description="Directory (or file) to search recursively.")
    pattern: str = Field(description="Regular expression to look for in each line.")


class GlobArguments(ToolArguments):
    pattern: str = Field(description="Glob pattern relative to path, e.g. '**/*.py'.")
    path: str = Field(default=".", description="Base directory. Defaults to the current directory.")


def _iter_files(root: str) -> Iterator[str]:
    if os.path.isfile(root):
        yield root
        return
    walk_errors: list[OSError] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=walk_errors.append):
        dirnames.sort()
        for filename in sorted(filenames):
            yield os.path.join(dirpath, filename)
    if walk_errors:
        raise walk_errors[0]


def _search(root: str, regex: re.Pattern[str]) -> list[str]:
    results: list[str] = []
    for file_path in _iter_files(root):
        try:
            with open(file_path, encoding="utf-8", errors="replace") as f:
                for line_number, line in enumerate(f, start=1):
                    text = line.rstrip("\r\n")
                    if regex.search(text):
                        results.append(f"{file_path}:{line_number}: {text}")
        except OSError as e:
            results.append(f"Could not open file {file_path}: {e}")
    return results


class SearchFileContentTool(Tool):
    name = "search_file_content"
    description = "Recursively searches for a regular expression pattern in files within a directory."
    arguments_model = SearchFileContentArguments

    async def run(self, args: SearchFileContentArguments) -> str:
        if not args.path or not args.pattern:
            raise ToolExecutionError("path and pattern arguments are required for search_file_content", tool_name=self.name)

        try:
            regex = re.compile(args.pattern)
        except re.error as e:
            raise ToolExecutionError(f"invalid regex pattern: {e}", tool_name=self.name)

        if not os.path.exists(args.path):
            raise ToolExecutionError(f"error walking directory '{args.path}': no such file or directory", tool_name=self.name)

        logger.info(f"Searching {args.path} for /{args.pattern}/")
        try:
            results = await asyncio.to_thread(_search, args.path, regex)
        except OSError as e:
            raise ToolExecutionError(f"error walking directory '{args.path}': {e}", tool_name=self.name)

        matches = [r for r in results if not r.startswith("Could not open file ")]
        if not matches:
            return NO_MATCHES_MESSAGE
        return "\n".join(results) + "\n"


def _glob(base_path: str, pattern: str) -> list[str]:
    matches = globlib.glob(pattern, root_dir=base_path, recursive=True, include_hidden=True)
    files = [os.path.normpath(os.path.join(base_path, m)) for m in matches]
    return sorted(f for f in files if os.path.isfile(f))


class GlobTool(Tool):
    name = "glob"
    description = "Finds files matching a specified glob pattern within a given path."
    arguments_model = GlobArguments

    async def run(self, args: GlobArguments) -> str:
        if not args.pattern:
            raise ToolExecutionError("pattern argument is required for glob", tool_name=self.name)

        base_path = args.path or "."
        if not os.path.isdir(base_path):
            raise ToolExecutionError(f"error walking directory '{base_path}': not a directory", tool_name=self.name)

        logger.info(f"Globbing {args.pattern} under {base_path}")
        matches = await asyncio.to_thread(_glob, base_path, args.pattern)

        if not matches:
            return NO_FILES_MESSAGE
        return "\n".join(matches)
