"""Pydantic data models for Claude Code session logs."""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class FrozenModel(BaseModel):
    """Immutable base for everything parsed out of a session log."""

    model_config = ConfigDict(frozen=True)


# ==============================================================================
# Content blocks
# ==============================================================================


class TextBlock(FrozenModel):
    type: Literal["text"] = "text"
    text: str = ""


class ThinkingBlock(FrozenModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""


class ToolUseBlock(FrozenModel):
    """A tool invocation. `id` is matched by `ToolResultBlock.tool_use_id`."""

    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: Any = None
    signature: str | None = None


class ToolResultBlock(FrozenModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: str | None = None
    is_error: bool = False


class ImageSource(FrozenModel):
    type: str = "base64"
    media_type: str = "image/png"
    data: str = ""


class ImageBlock(FrozenModel):
    type: Literal["image"] = "image"
    source: ImageSource = Field(default_factory=ImageSource)


ContentBlock = Annotated[
    Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, ImageBlock],
    Field(discriminator="type"),
]


# ==============================================================================
# Token usage
# ==============================================================================


class CacheCreation(FrozenModel):
    ephemeral_5m_input_tokens: int = 0
    ephemeral_1h_input_tokens: int = 0


class ServerToolUse(FrozenModel):
    web_search_requests: int = 0
    web_fetch_requests: int = 0


class TokenUsage(FrozenModel):
    """Token accounting reported on an assistant response."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    service_tier: str | None = None
    cache_creation: CacheCreation | None = None
    server_tool_use: ServerToolUse | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def effective_input_tokens(self) -> int:
        """Input tokens that were not served from the prompt cache."""
        return self.input_tokens - self.cache_read_input_tokens

    @property
    def cache_hit_rate(self) -> float:
        if self.input_tokens <= 0:
            return 0.0
        return self.cache_read_input_tokens / self.input_tokens


# ==============================================================================
# Record payloads
# ==============================================================================


class TodoItem(FrozenModel):
    content: str = ""
    status: Literal["pending", "in_progress", "completed"] = "pending"
    active_form: str = Field(default="", alias="activeForm")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ToolUseResultInfo(FrozenModel):
    stdout: str | None = None
    stderr: str | None = None
    interrupted: bool = False
    is_image: bool = False
    status: str | None = None
    prompt: str | None = None


class ThinkingMetadata(FrozenModel):
    enabled: bool = False
    budget_tokens: int | None = None


class UserMessage(FrozenModel):
    """User turn content: either free text or a list of blocks (tool results)."""

    role: str = "user"
    content_string: str | None = None
    content_blocks: tuple[ContentBlock, ...] | None = None

    @property
    def is_tool_results(self) -> bool:
        return self.content_blocks is not None


class ContextManagement(FrozenModel):
    truncated: bool = False
    reason: str | None = None


class AssistantMessage(FrozenModel):
    model: str = "unknown"
    id: str | None = None
    message_type: str = "message"
    role: str = "assistant"
    content: tuple[ContentBlock, ...] = ()
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: TokenUsage | None = None
    context_management: ContextManagement | None = None

    @property
    def text_blocks(self) -> list[TextBlock]:
        return [b for b in self.content if isinstance(b, TextBlock)]

    @property
    def thinking_blocks(self) -> list[ThinkingBlock]:
        return [b for b in self.content if isinstance(b, ThinkingBlock)]

    @property
    def tool_use_blocks(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def full_text(self) -> str:
        return "\n".join(b.text for b in self.text_blocks)

    @property
    def has_tool_calls(self) -> bool:
        return any(isinstance(b, ToolUseBlock) for b in self.content)


class CompactMetadata(FrozenModel):
    message_count: int | None = None
    total_tokens: int | None = None


class FileBackupInfo(FrozenModel):
    backup_file_name: str | None = None
    backup_time: datetime | None = None
    version: int = 0


class FileSnapshot(FrozenModel):
    message_id: str = ""
    timestamp: datetime | None = None
    tracked_file_backups: dict[str, FileBackupInfo] = Field(default_factory=dict)


# ==============================================================================
# Records
# ==============================================================================


class SessionRecord(FrozenModel):
    """Envelope fields shared by every line of a session log."""

    timestamp: datetime | None = None
    session_id: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    cwd: str | None = None
    git_branch: str | None = None
    version: str | None = None
    user_type: str | None = None
    is_sidechain: bool = False
    agent_id: str | None = None
    slug: str | None = None


class UserRecord(SessionRecord):
    type: Literal["user"] = "user"
    message: UserMessage = Field(default_factory=UserMessage)
    tool_use_result: ToolUseResultInfo | None = None
    thinking_metadata: ThinkingMetadata | None = None
    todos: tuple[TodoItem, ...] | None = None
    is_meta: bool = False
    is_visible_in_transcript_only: bool = False
    is_compact_summary: bool = False


class AssistantRecord(SessionRecord):
    type: Literal["assistant"] = "assistant"
    message: AssistantMessage = Field(default_factory=AssistantMessage)
    request_id: str | None = None
    is_api_error_message: bool = False
    error: str | None = None


class SummaryRecord(SessionRecord):
    type: Literal["summary"] = "summary"
    summary: str = ""
    leaf_uuid: str = ""


class SystemRecord(SessionRecord):
    type: Literal["system"] = "system"
    subtype: str = ""
    content: str = ""
    level: str | None = None
    logical_parent_uuid: str | None = None
    compact_metadata: CompactMetadata | None = None


class QueueOperationRecord(SessionRecord):
    type: Literal["queue-operation"] = "queue-operation"
    operation: str = ""
    content: str | None = None


class FileHistorySnapshotRecord(SessionRecord):
    type: Literal["file-history-snapshot"] = "file-history-snapshot"
    message_id: str = ""
    is_snapshot_update: bool = False
    snapshot: FileSnapshot = Field(default_factory=FileSnapshot)


Record = Annotated[
    Union[
        UserRecord,
        AssistantRecord,
        SummaryRecord,
        SystemRecord,
        QueueOperationRecord,
        FileHistorySnapshotRecord,
    ],
    Field(discriminator="type"),
]


# ==============================================================================
# Filesystem artifacts
# ==============================================================================


class FileHistoryEntry(FrozenModel):
    """A backed-up file version under ~/.claude/file-history/<session>/."""

    original_path: str = ""
    backup_path: str
    version: int = 1
    backup_time: datetime | None = None
    size: int = 0


class SessionInfo(FrozenModel):
    """Metadata about a session file, without loading its content."""

    session_id: str
    file_path: str
    project_path: str
    created_at: datetime | None = None
    modified_at: datetime | None = None
    size_bytes: int = 0

    @property
    def timestamp_fallback(self) -> datetime:
        """Get a timestamp for sorting, with fallback to epoch."""
        return self.modified_at or self.created_at or datetime.min.replace(tzinfo=timezone.utc)
