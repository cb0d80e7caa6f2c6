import atexit
import logging
import logging.handlers
import os
from pathlib import (
    Path,
)
import queue
import sys
from typing import (
    Any,
)

ROOT_LOGGER_NAME = "peerdrop"

# Records are handed to a listener thread so that logging never blocks
# the trio event loop on slow handlers.
log_queue: "queue.Queue[Any]" = queue.Queue()

_current_listener: logging.handlers.QueueListener | None = None

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_debug_modules(debug_str: str) -> dict[str, int]:
    """
    Parse the PEERDROP_DEBUG environment variable into module log levels.

    Format examples:
    - "DEBUG"  # All modules at DEBUG level
    - "peerdrop.rtc.handshake:DEBUG"  # Only the handshake at DEBUG
    - "rtc.handshake:DEBUG"  # Same as above, peerdrop prefix is optional
    - "signaling:DEBUG,transfer:INFO"  # Multiple modules
    """
    module_levels: dict[str, int] = {}

    if not debug_str or debug_str.isspace():
        return module_levels

    # A bare level applies to the whole tree
    if ":" not in debug_str and debug_str.upper() in logging._nameToLevel:
        return {"": getattr(logging, debug_str.upper())}

    for part in debug_str.split(","):
        if ":" not in part:
            continue

        module, level = part.split(":", 1)
        level = level.strip().upper()

        if level not in logging._nameToLevel:
            continue

        module = module.strip()
        if module.startswith(f"{ROOT_LOGGER_NAME}."):
            module = module[len(ROOT_LOGGER_NAME) + 1 :]
        module = module.replace("/", ".").strip(".")

        module_levels[module] = getattr(logging, level)

    return module_levels


def _silence_root() -> None:
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.setLevel(logging.WARNING)
    root_logger.propagate = False


def _build_handlers(log_file: str | None) -> list[logging.Handler]:
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="w"))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging() -> None:
    """
    Set up logging configuration based on environment variables.

    Environment Variables:
        PEERDROP_DEBUG
            Controls logging levels. Examples:
            - "DEBUG" (all modules at DEBUG level)
            - "rtc.handshake:DEBUG" (only the handshake at DEBUG)
            - "signaling:DEBUG,transfer:INFO" (multiple modules)

        PEERDROP_DEBUG_FILE
            If set, log records are also written to this file.

    Without PEERDROP_DEBUG the ``peerdrop`` logger stays at WARNING with no
    handlers attached, leaving output to the embedding application.
    """
    global _current_listener

    stop_logging()

    debug_str = os.environ.get("PEERDROP_DEBUG", "")
    module_levels = _parse_debug_modules(debug_str)

    if not module_levels:
        _silence_root()
        return

    handlers = _build_handlers(os.environ.get("PEERDROP_DEBUG_FILE"))
    queue_handler = logging.handlers.QueueHandler(log_queue)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.addHandler(queue_handler)
    root_logger.propagate = False
    root_logger.setLevel(module_levels.get("", logging.INFO))

    for module, level in module_levels.items():
        if not module:
            continue
        logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{module}")
        logger.handlers.clear()
        logger.addHandler(queue_handler)
        logger.setLevel(level)
        logger.propagate = False

    # Start the listener only after every logger points at the queue
    _current_listener = logging.handlers.QueueListener(
        log_queue, *handlers, respect_handler_level=True
    )
    _current_listener.start()


@atexit.register
def stop_logging() -> None:
    """Stop the listener thread, flushing queued records to the handlers."""
    global _current_listener
    if _current_listener is not None:
        _current_listener.stop()
        _current_listener = None
