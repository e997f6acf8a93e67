"""Load sessions and their side files from the ~/.claude directory."""

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from .config import (
    CLAUDE_DIR_ENV,
    CLAUDE_DIR_NAME,
    DEBUG_DIR_NAME,
    DEBUG_LOG_SUFFIX,
    FILE_HISTORY_DIR_NAME,
    PROJECTS_DIR_NAME,
    SESSION_FILE_SUFFIX,
    TODOS_DIR_NAME,
)
from .models import FileHistoryEntry, Record, SessionInfo, TodoItem
from .parser import RecordParser
from .session import AgentSession, Session, assemble_session, build_agent_sessions, is_agent_file

logger = logging.getLogger(__name__)

_TODO_LIST_ADAPTER = TypeAdapter(list[TodoItem])
_BACKUP_VERSION_RE = re.compile(r"@v(\d+)$")


def get_claude_dir() -> Path:
    """Get the Claude configuration directory."""
    override = os.environ.get(CLAUDE_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / CLAUDE_DIR_NAME


def get_projects_dir(claude_dir: Path | None = None) -> Path:
    """Get the projects directory containing conversation history."""
    return (claude_dir or get_claude_dir()) / PROJECTS_DIR_NAME


def encode_project_path(project_path: str) -> str:
    """Convert a project path to its escaped directory name.

    Every slash becomes a dash and the result always starts with a dash.
    """
    encoded = str(project_path).replace("/", "-")
    if not encoded.startswith("-"):
        encoded = "-" + encoded
    return encoded


def decode_project_path(encoded: str) -> str:
    """Inverse of `encode_project_path`.

    Lossy: dashes that were part of the original path also become slashes.
    """
    return encoded.replace("-", "/")


def get_project_dir(project_path: str, claude_dir: Path | None = None) -> Path:
    """Get the directory for a specific project."""
    return get_projects_dir(claude_dir) / encode_project_path(project_path)


def list_all_projects(claude_dir: Path | None = None) -> list[str]:
    """List all projects with conversation history."""
    projects_dir = get_projects_dir(claude_dir)
    if not projects_dir.exists():
        return []

    projects = []
    for entry in projects_dir.iterdir():
        if entry.is_dir():
            projects.append(decode_project_path(entry.name))
    return sorted(projects)


def _file_times(stat: os.stat_result) -> tuple[datetime, datetime]:
    # st_birthtime only exists on macOS/BSD (and Windows on 3.12+)
    created = getattr(stat, "st_birthtime", stat.st_ctime)
    return (
        datetime.fromtimestamp(created, tz=timezone.utc),
        datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )


def file_created_at(path: Path) -> datetime:
    """Best-effort creation time of a file, in UTC."""
    return _file_times(path.stat())[0]


def list_sessions(
    project_path: str | None = None, claude_dir: Path | None = None
) -> list[SessionInfo]:
    """List main session files, newest first.

    Args:
        project_path: Restrict to one project (its real path, not the encoded name)
        claude_dir: Claude directory to read instead of the default

    Returns:
        SessionInfo for every main session file found
    """
    projects_dir = get_projects_dir(claude_dir)
    if not projects_dir.exists():
        return []

    if project_path is not None:
        project_dir = get_project_dir(project_path, claude_dir)
        directories = [project_dir] if project_dir.is_dir() else []
    else:
        directories = [d for d in projects_dir.iterdir() if d.is_dir()]

    sessions = []
    for directory in directories:
        for session_file in directory.glob(f"*{SESSION_FILE_SUFFIX}"):
            if is_agent_file(session_file):
                continue
            try:
                stat = session_file.stat()
            except OSError:
                continue
            created, modified = _file_times(stat)
            sessions.append(
                SessionInfo(
                    session_id=session_file.stem,
                    file_path=str(session_file),
                    project_path=str(directory),
                    created_at=created,
                    modified_at=modified,
                    size_bytes=stat.st_size,
                )
            )

    return sorted(sessions, key=lambda s: s.timestamp_fallback, reverse=True)


def find_session_file(session_id: str, claude_dir: Path | None = None) -> Path | None:
    """Find the main file of a session in any project directory."""
    projects_dir = get_projects_dir(claude_dir)
    if not projects_dir.exists():
        return None
    return next(projects_dir.rglob(f"{session_id}{SESSION_FILE_SUFFIX}"), None)


def load_todos(session_id: str, claude_dir: Path | None = None) -> list[TodoItem]:
    """Load the most recent todo list written for a session.

    Returns an empty list if there is none or it cannot be read.
    """
    todos_dir = (claude_dir or get_claude_dir()) / TODOS_DIR_NAME
    if not todos_dir.exists():
        return []

    todo_files = list(todos_dir.glob(f"{session_id}-*.json"))
    if not todo_files:
        return []

    try:
        latest = max(todo_files, key=lambda f: f.stat().st_mtime)
        with open(latest) as f:
            return _TODO_LIST_ADAPTER.validate_python(json.load(f))
    except (json.JSONDecodeError, OSError, ValidationError) as e:
        logger.debug(f"Ignoring unreadable todos for {session_id}: {e}")
        return []


def _parse_backup_version(file_name: str) -> int:
    """Version from a `<hash>@v<N>` backup name, defaulting to 1."""
    match = _BACKUP_VERSION_RE.search(file_name)
    return int(match.group(1)) if match else 1


def load_file_history(session_id: str, claude_dir: Path | None = None) -> list[FileHistoryEntry]:
    """List the file backups kept for a session."""
    history_dir = (claude_dir or get_claude_dir()) / FILE_HISTORY_DIR_NAME / session_id
    if not history_dir.is_dir():
        return []

    entries = []
    for backup in sorted(history_dir.iterdir()):
        try:
            if not backup.is_file():
                continue
            stat = backup.stat()
        except OSError:
            continue
        entries.append(
            FileHistoryEntry(
                # The original path is only known from snapshot records
                backup_path=str(backup),
                version=_parse_backup_version(backup.name),
                backup_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                size=stat.st_size,
            )
        )
    return entries


def get_debug_log_path(session_id: str, claude_dir: Path | None = None) -> Path | None:
    """Path of the session's debug log, if one was written."""
    path = (claude_dir or get_claude_dir()) / DEBUG_DIR_NAME / f"{session_id}{DEBUG_LOG_SUFFIX}"
    return path if path.is_file() else None


def read_debug_log(session_id: str, claude_dir: Path | None = None) -> str | None:
    """Raw text of the session's debug log, or None if absent."""
    path = get_debug_log_path(session_id, claude_dir)
    if path is None:
        return None
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def _read_agent_files(project_dir: Path, parser: RecordParser) -> list[tuple[Path, list[Record]]]:
    agent_files = sorted(
        f for f in project_dir.glob(f"*{SESSION_FILE_SUFFIX}") if is_agent_file(f)
    )
    return [(f, parser.parse_file(f)) for f in agent_files]


def load_agent_sessions(
    project_dir: Path, session_id: str, parser: RecordParser | None = None
) -> list[AgentSession]:
    """Load the sub-agent files in `project_dir` that belong to `session_id`."""
    parser = parser or RecordParser()
    return build_agent_sessions(session_id, _read_agent_files(project_dir, parser))


def load_session(
    session_id: str, claude_dir: Path | None = None, parser: RecordParser | None = None
) -> Session | None:
    """Load a complete session with all related data.

    Returns None if no main file exists for `session_id`.
    """
    session_file = find_session_file(session_id, claude_dir)
    if session_file is None:
        return None

    parser = parser or RecordParser()
    return assemble_session(
        session_id=session_id,
        records=parser.parse_file(session_file),
        agent_files=_read_agent_files(session_file.parent, parser),
        session_file_path=session_file,
        todos=load_todos(session_id, claude_dir),
        file_history=load_file_history(session_id, claude_dir),
        debug_log_path=get_debug_log_path(session_id, claude_dir),
    )
