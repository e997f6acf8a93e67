"""Session aggregate assembled from a main session file and its sub-agent files."""

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from .config import AGENT_FILE_PREFIX
from .models import (
    AssistantRecord,
    FileHistoryEntry,
    FileHistorySnapshotRecord,
    FrozenModel,
    Record,
    SummaryRecord,
    SystemRecord,
    TodoItem,
    ToolUseBlock,
    UserRecord,
)

logger = logging.getLogger(__name__)


class _RecordGraph(FrozenModel):
    """Navigation over the parentUuid links of a single file's records."""

    records: tuple[Record, ...] = ()

    def _index(self) -> dict[str, Record]:
        # Scoped to this file's records; uuids are only unique within one file
        return {r.uuid: r for r in self.records if r.uuid is not None}

    def get_thread(self, uuid: str) -> list[Record]:
        """Root-to-leaf chain ending at `uuid`.

        Stops at the first parent that is not in this file instead of failing.
        """
        index = self._index()
        thread: list[Record] = []
        seen: set[str] = set()
        current = index.get(uuid)
        while current is not None and current.uuid not in seen:
            seen.add(current.uuid)
            thread.append(current)
            current = index.get(current.parent_uuid) if current.parent_uuid else None
        thread.reverse()
        return thread

    def get_children(self, uuid: str) -> list[Record]:
        return [r for r in self.records if r.parent_uuid == uuid]

    @property
    def root_messages(self) -> list[Record]:
        return [r for r in self.records if r.parent_uuid is None and r.uuid is not None]


class AgentSession(_RecordGraph):
    """Records of one sub-agent file that belongs to a parent session."""

    agent_id: str
    file_path: str
    parent_session_id: str


class Session(_RecordGraph):
    """Complete, immutable view of one Claude Code session.

    Every statistic below is computed from `records` on access; to pick up new
    log lines, assemble a new Session.
    """

    id: str
    slug: str | None = None
    session_file_path: str | None = None
    project_path: str | None = None
    cwd: str | None = None
    git_branch: str | None = None
    version: str | None = None
    started_at: datetime | None = None
    last_activity_at: datetime | None = None
    agents: tuple[AgentSession, ...] = ()
    todos: tuple[TodoItem, ...] = ()
    file_history: tuple[FileHistoryEntry, ...] = ()
    debug_log_path: str | None = None

    # Record views

    @property
    def user_records(self) -> list[UserRecord]:
        return [r for r in self.records if isinstance(r, UserRecord)]

    @property
    def assistant_records(self) -> list[AssistantRecord]:
        return [r for r in self.records if isinstance(r, AssistantRecord)]

    @property
    def summaries(self) -> list[SummaryRecord]:
        return [r for r in self.records if isinstance(r, SummaryRecord)]

    @property
    def system_records(self) -> list[SystemRecord]:
        return [r for r in self.records if isinstance(r, SystemRecord)]

    @property
    def file_history_snapshots(self) -> list[FileHistorySnapshotRecord]:
        return [r for r in self.records if isinstance(r, FileHistorySnapshotRecord)]

    @property
    def message_count(self) -> int:
        """Number of user and assistant records."""
        return len(self.user_records) + len(self.assistant_records)

    # Token statistics

    @property
    def total_input_tokens(self) -> int:
        return sum(a.message.usage.input_tokens for a in self._usage_records())

    @property
    def total_output_tokens(self) -> int:
        return sum(a.message.usage.output_tokens for a in self._usage_records())

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    @property
    def total_cache_read_tokens(self) -> int:
        return sum(a.message.usage.cache_read_input_tokens for a in self._usage_records())

    @property
    def average_tokens_per_response(self) -> float:
        """Mean of input + output tokens over responses that report usage."""
        usages = [a.message.usage for a in self._usage_records()]
        if not usages:
            return 0.0
        return sum(u.total_tokens for u in usages) / len(usages)

    @property
    def average_cache_hit_rate(self) -> float:
        """Mean cache hit rate over responses with a non-zero input count."""
        rates = [
            a.message.usage.cache_hit_rate
            for a in self._usage_records()
            if a.message.usage.input_tokens > 0
        ]
        return sum(rates) / len(rates) if rates else 0.0

    def _usage_records(self) -> list[AssistantRecord]:
        return [a for a in self.assistant_records if a.message.usage is not None]

    # Tool and model statistics

    @property
    def all_tool_calls(self) -> list[ToolUseBlock]:
        return [block for a in self.assistant_records for block in a.message.tool_use_blocks]

    @property
    def tool_usage_counts(self) -> dict[str, int]:
        return dict(Counter(t.name for t in self.all_tool_calls))

    @property
    def model_usage(self) -> dict[str, int]:
        return dict(Counter(a.message.model for a in self.assistant_records))

    @property
    def total_web_search_requests(self) -> int:
        return sum(
            a.message.usage.server_tool_use.web_search_requests
            for a in self._usage_records()
            if a.message.usage.server_tool_use is not None
        )

    @property
    def total_web_fetch_requests(self) -> int:
        return sum(
            a.message.usage.server_tool_use.web_fetch_requests
            for a in self._usage_records()
            if a.message.usage.server_tool_use is not None
        )

    @property
    def modified_files(self) -> list[str]:
        """Distinct paths tracked by file-history snapshots, in first-seen order."""
        paths = (
            path
            for snapshot in self.file_history_snapshots
            for path in snapshot.snapshot.tracked_file_backups
        )
        return list(dict.fromkeys(paths))

    @property
    def errors(self) -> list[AssistantRecord]:
        return [a for a in self.assistant_records if a.is_api_error_message]

    @property
    def has_errors(self) -> bool:
        return any(a.is_api_error_message for a in self.assistant_records)


def is_agent_file(path: Path | str) -> bool:
    """Whether a file name follows the sub-agent naming pattern (agent-<id>.jsonl)."""
    return Path(path).name.startswith(AGENT_FILE_PREFIX)


def agent_id_from_path(path: Path | str) -> str:
    return Path(path).stem.removeprefix(AGENT_FILE_PREFIX)


def build_agent_sessions(
    session_id: str, agent_files: Iterable[tuple[Path, Sequence[Record]]]
) -> list[AgentSession]:
    """Keep the agent files whose first record belongs to `session_id`.

    A file that fails the check is dropped as a whole, never partially merged.
    """
    agents = []
    for path, records in agent_files:
        if not records or records[0].session_id != session_id:
            logger.debug(f"Excluding {Path(path).name}: not part of session {session_id}")
            continue
        agents.append(
            AgentSession(
                agent_id=agent_id_from_path(path),
                file_path=str(path),
                parent_session_id=session_id,
                records=tuple(records),
            )
        )
    return agents


def assemble_session(
    session_id: str,
    records: Sequence[Record],
    agent_files: Iterable[tuple[Path, Sequence[Record]]] = (),
    session_file_path: Path | str | None = None,
    todos: Iterable[TodoItem] = (),
    file_history: Iterable[FileHistoryEntry] = (),
    debug_log_path: Path | str | None = None,
) -> Session:
    """Build a Session from a main file's records and candidate agent files.

    Args:
        session_id: Id of the session (main file name without extension)
        records: Records of the main session file, in file order
        agent_files: (path, records) for every agent-*.jsonl file in the project directory
        session_file_path: Path of the main session file
        todos: Already-loaded todo list
        file_history: Already-loaded file-history entries
        debug_log_path: Debug log path, if one exists

    Returns:
        The assembled Session
    """
    first = records[0] if records else None
    timestamps = [r.timestamp for r in records if r.timestamp is not None]

    return Session(
        id=session_id,
        slug=first.slug if first else None,
        session_file_path=str(session_file_path) if session_file_path else None,
        project_path=str(Path(session_file_path).parent) if session_file_path else None,
        cwd=first.cwd if first else None,
        git_branch=first.git_branch if first else None,
        version=first.version if first else None,
        started_at=min(timestamps) if timestamps else None,
        last_activity_at=max(timestamps) if timestamps else None,
        records=tuple(records),
        agents=tuple(build_agent_sessions(session_id, agent_files)),
        todos=tuple(todos),
        file_history=tuple(file_history),
        debug_log_path=str(debug_log_path) if debug_log_path else None,
    )
