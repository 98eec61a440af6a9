"""Root logger setup for the chat client.

The console handler writes to stderr and is off by default: stdout belongs to
the conversation, so records go to a file unless asked otherwise.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable

LOG_RECORD_FORMAT = "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d %(message)s"
LOG_FILE = "logs/agent-cli.log"
NOISY_LIBRARIES = ("asyncio", "httpx", "httpcore", "markdown_it")


def configure_logging(
    log_level: str = "INFO",
    log_format: str = LOG_RECORD_FORMAT,
    console: bool = False,
    file: bool = True,
    filename: str = LOG_FILE,
    lib_list: Iterable[str] = NOISY_LIBRARIES,
    lib_level: str = "WARNING",
) -> None:
    """Replace the root logger's handlers with the requested outputs.

    Args:
        log_level: Level name for the root logger and its handlers (case-insensitive)
        log_format: `logging.Formatter` format string
        console: Attach a stderr handler
        file: Attach a UTF-8 file handler, creating its directory if needed
        filename: Log file path used when `file` is set
        lib_list: Logger names that get `lib_level` instead
        lib_level: Level for the loggers in `lib_list`

    With both outputs disabled a NullHandler is installed so records are dropped silently.
    """
    level = log_level.upper()
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    if file:
        log_path = Path(filename)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    formatter = logging.Formatter(log_format)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if not handlers:
        root_logger.addHandler(logging.NullHandler())

    for name in lib_list:
        logging.getLogger(name).setLevel(lib_level.upper())
