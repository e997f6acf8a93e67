"""Claude Session Monitor - Tail and reconstruct Claude Code session logs."""

from .cursor import FileCursor
from .loader import (
    decode_project_path,
    encode_project_path,
    list_sessions,
    load_file_history,
    load_session,
    load_todos,
)
from .models import (
    AssistantRecord,
    ContentBlock,
    FileHistorySnapshotRecord,
    QueueOperationRecord,
    Record,
    SessionInfo,
    SummaryRecord,
    SystemRecord,
    TodoItem,
    TokenUsage,
    UserRecord,
)
from .parser import RecordParser, parse_record
from .session import AgentSession, Session, assemble_session
from .watcher import SessionWatcher, Subscription, WatcherClosedError, WatcherOptions

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AgentSession",
    "AssistantRecord",
    "ContentBlock",
    "FileCursor",
    "FileHistorySnapshotRecord",
    "QueueOperationRecord",
    "Record",
    "RecordParser",
    "Session",
    "SessionInfo",
    "SessionWatcher",
    "Subscription",
    "SummaryRecord",
    "SystemRecord",
    "TodoItem",
    "TokenUsage",
    "UserRecord",
    "WatcherClosedError",
    "WatcherOptions",
    "assemble_session",
    "decode_project_path",
    "encode_project_path",
    "list_sessions",
    "load_file_history",
    "load_session",
    "load_todos",
    "parse_record",
]
