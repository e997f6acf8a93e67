"""Centralized configuration constants for Claude Session Monitor."""

import logging
import math
import os

logger = logging.getLogger(__name__)

# Claude directory layout
CLAUDE_DIR_NAME = ".claude"
CLAUDE_DIR_ENV = "CLAUDE_CONFIG_DIR"
PROJECTS_DIR_NAME = "projects"
TODOS_DIR_NAME = "todos"
FILE_HISTORY_DIR_NAME = "file-history"
DEBUG_DIR_NAME = "debug"

# Session files
SESSION_FILE_SUFFIX = ".jsonl"
AGENT_FILE_PREFIX = "agent-"
DEBUG_LOG_SUFFIX = ".txt"

# Watcher defaults
POLL_INTERVAL_ENV = "CLAUDE_MONITOR_POLL_INTERVAL_MS"
NEW_FILE_TOLERANCE_ENV = "CLAUDE_MONITOR_NEW_FILE_TOLERANCE_SECONDS"
DEFAULT_POLL_INTERVAL_MS = 100
DEFAULT_NEW_FILE_TOLERANCE_SECONDS = 5.0

# Todo statuses written by Claude Code
TODO_STATUSES = ("pending", "in_progress", "completed")


def _env_float(name: str, default: float, allow_zero: bool = True) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(f"Invalid {name} value: {value}, using default")
        return default
    if not math.isfinite(parsed) or parsed < 0 or (parsed == 0 and not allow_zero):
        logger.warning(f"Out of range {name} value: {value}, using default")
        return default
    return parsed


def get_poll_interval() -> float:
    """Poll interval in seconds, honoring the environment override."""
    return _env_float(POLL_INTERVAL_ENV, DEFAULT_POLL_INTERVAL_MS, allow_zero=False) / 1000


def get_new_file_tolerance() -> float:
    """Grace period in seconds for files created just before a watch started."""
    return _env_float(NEW_FILE_TOLERANCE_ENV, DEFAULT_NEW_FILE_TOLERANCE_SECONDS)
