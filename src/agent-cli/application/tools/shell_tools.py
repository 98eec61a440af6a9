"""Shell execution tool.

run_shell_command runs a command through the platform shell (``sh -c`` on
POSIX, ``cmd /C`` on Windows) and returns stdout and stderr combined. A
non-zero exit status is reported as an execution error carrying the output.
Cancelling the calling task kills the shell together with everything it
started: the command runs in its own process group (POSIX) or process tree
(Windows).
"""

import asyncio
import logging
import os
import signal
import sys

from pydantic import Field

from application.tools.base import Tool, ToolArguments, ToolExecutionError

logger = logging.getLogger(__name__)

KILL_WAIT_SECONDS = 5.0


class RunShellCommandArguments(ToolArguments):
    command: str = Field(description="Command line to run.")
    directory: str | None = Field(default=None, description="Working directory. Defaults to the current directory.")


async def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    if sys.platform == "win32":
        killer = await asyncio.create_subprocess_exec(
            "taskkill", "/F", "/T", "/PID", str(process.pid),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await killer.wait()
    else:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_WAIT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} did not exit within {KILL_WAIT_SECONDS}s after being killed")


class RunShellCommandTool(Tool):
    name = "run_shell_command"
    description = "Executes a shell command and returns its combined standard output and standard error."
    requires_confirmation = True
    arguments_model = RunShellCommandArguments

    async def run(self, args: RunShellCommandArguments) -> str:
        command = args.command.strip()
        if not command:
            raise ToolExecutionError("command argument cannot be empty", tool_name=self.name)

        logger.info(f"Running shell command: {command!r} (cwd={args.directory or '.'})")

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=args.directory or None,
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            raise ToolExecutionError(f"failed to start command: {e}", tool_name=self.name)

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            logger.info(f"Killing shell command {command!r} (pid={process.pid})")
            if process.returncode is None:
                await _kill_process_tree(process)
            raise

        output = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise ToolExecutionError(
                f"command failed with exit code: {process.returncode}\nOutput:\n{output}",
                tool_name=self.name,
                details={"exit_code": process.returncode},
            )
        return output
