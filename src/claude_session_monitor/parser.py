"""Parse Claude Code session JSONL lines into typed records.

Parsing is tolerant: a line that is not a JSON object, or whose ``type`` is
unknown, yields ``None`` instead of raising, so a single corrupt line never
stops consumption of the rest of a file. Unknown fields are ignored and
unknown content block types are dropped.
"""

import json
import logging
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import TODO_STATUSES
from .models import (
    AssistantMessage,
    AssistantRecord,
    CacheCreation,
    CompactMetadata,
    ContentBlock,
    ContextManagement,
    FileBackupInfo,
    FileHistorySnapshotRecord,
    FileSnapshot,
    ImageBlock,
    ImageSource,
    QueueOperationRecord,
    Record,
    ServerToolUse,
    SummaryRecord,
    SystemRecord,
    TextBlock,
    ThinkingBlock,
    ThinkingMetadata,
    TodoItem,
    TokenUsage,
    ToolResultBlock,
    ToolUseBlock,
    ToolUseResultInfo,
    UserMessage,
    UserRecord,
)

logger = logging.getLogger(__name__)


# ==============================================================================
# Field helpers
# ==============================================================================


def _get_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _get_bool(data: dict, key: str) -> bool:
    # Only a literal JSON true counts; absent or wrongly-typed values are false
    return data.get(key) is True


def _get_int(data: dict, key: str, default: int = 0) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _get_optional_int(data: dict, key: str) -> int | None:
    if key not in data:
        return None
    return _get_int(data, key)


def _get_dict(data: dict, key: str) -> dict | None:
    value = data.get(key)
    return value if isinstance(value, dict) else None


def parse_timestamp(ts: Any) -> datetime | None:
    """Parse a timestamp from an ISO 8601 string or epoch milliseconds.

    Returned datetimes are always timezone-aware; naive values are taken as UTC.
    """
    if ts is None or isinstance(ts, bool):
        return None
    if isinstance(ts, (int, float)):
        try:
            return datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(ts, str):
        try:
            parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _envelope(data: dict) -> dict[str, Any]:
    """Extract the fields every record variant shares."""
    return {
        "timestamp": parse_timestamp(data.get("timestamp")),
        "session_id": _get_str(data, "sessionId"),
        "uuid": _get_str(data, "uuid"),
        "parent_uuid": _get_str(data, "parentUuid"),
        "cwd": _get_str(data, "cwd"),
        "git_branch": _get_str(data, "gitBranch"),
        "version": _get_str(data, "version"),
        "user_type": _get_str(data, "userType"),
        "is_sidechain": _get_bool(data, "isSidechain"),
        "agent_id": _get_str(data, "agentId"),
        "slug": _get_str(data, "slug"),
    }


# ==============================================================================
# Content blocks
# ==============================================================================


def _parse_text_block(data: dict) -> TextBlock:
    return TextBlock(text=_get_str(data, "text") or "")


def _parse_thinking_block(data: dict) -> ThinkingBlock:
    return ThinkingBlock(thinking=_get_str(data, "thinking") or "")


def _parse_tool_use_block(data: dict) -> ToolUseBlock:
    return ToolUseBlock(
        id=_get_str(data, "id") or "",
        name=_get_str(data, "name") or "",
        input=data.get("input"),
        signature=_get_str(data, "signature"),
    )


def _parse_tool_result_block(data: dict) -> ToolResultBlock:
    content = data.get("content")
    if content is not None and not isinstance(content, str):
        # Structured results (lists of text/image blocks) are kept as raw JSON text
        content = json.dumps(content, separators=(",", ":"))
    return ToolResultBlock(
        tool_use_id=_get_str(data, "tool_use_id") or "",
        content=content,
        is_error=_get_bool(data, "is_error"),
    )


def _parse_image_block(data: dict) -> ImageBlock:
    source = _get_dict(data, "source")
    if source is None:
        return ImageBlock()
    return ImageBlock(
        source=ImageSource(
            type=_get_str(source, "type") or "base64",
            media_type=_get_str(source, "media_type") or "image/png",
            data=_get_str(source, "data") or "",
        )
    )


_BLOCK_PARSERS: dict[str, Callable[[dict], ContentBlock]] = {
    "text": _parse_text_block,
    "thinking": _parse_thinking_block,
    "tool_use": _parse_tool_use_block,
    "tool_result": _parse_tool_result_block,
    "image": _parse_image_block,
}


def parse_content_block(data: Any) -> ContentBlock | None:
    """Parse one content block, or None if its type is not recognized."""
    if not isinstance(data, dict):
        return None
    block_type = data.get("type")
    block_parser = _BLOCK_PARSERS.get(block_type) if isinstance(block_type, str) else None
    if block_parser is None:
        return None
    return block_parser(data)


def _parse_content_blocks(items: list) -> tuple[ContentBlock, ...]:
    blocks = []
    for item in items:
        block = parse_content_block(item)
        if block is not None:
            blocks.append(block)
    return tuple(blocks)


# ==============================================================================
# Nested payloads
# ==============================================================================


def _parse_usage(message: dict) -> TokenUsage | None:
    usage = _get_dict(message, "usage")
    if usage is None:
        return None

    cache_creation = _get_dict(usage, "cache_creation")
    server_tool_use = _get_dict(usage, "server_tool_use")
    return TokenUsage(
        input_tokens=_get_int(usage, "input_tokens"),
        output_tokens=_get_int(usage, "output_tokens"),
        cache_creation_input_tokens=_get_int(usage, "cache_creation_input_tokens"),
        cache_read_input_tokens=_get_int(usage, "cache_read_input_tokens"),
        service_tier=_get_str(usage, "service_tier"),
        cache_creation=CacheCreation(
            ephemeral_5m_input_tokens=_get_int(cache_creation, "ephemeral_5m_input_tokens"),
            ephemeral_1h_input_tokens=_get_int(cache_creation, "ephemeral_1h_input_tokens"),
        )
        if cache_creation is not None
        else None,
        server_tool_use=ServerToolUse(
            web_search_requests=_get_int(server_tool_use, "web_search_requests"),
            web_fetch_requests=_get_int(server_tool_use, "web_fetch_requests"),
        )
        if server_tool_use is not None
        else None,
    )


def _parse_todos(data: dict) -> tuple[TodoItem, ...] | None:
    todos = data.get("todos")
    if not isinstance(todos, list):
        return None

    items = []
    for item in todos:
        if not isinstance(item, dict):
            continue
        status = _get_str(item, "status")
        items.append(
            TodoItem(
                content=_get_str(item, "content") or "",
                status=status if status in TODO_STATUSES else "pending",
                active_form=_get_str(item, "activeForm") or "",
            )
        )
    return tuple(items)


def _parse_user_message(data: dict) -> UserMessage:
    message = _get_dict(data, "message")
    if message is None:
        return UserMessage()

    content = message.get("content")
    if isinstance(content, str):
        return UserMessage(content_string=content)
    if isinstance(content, list):
        return UserMessage(content_blocks=_parse_content_blocks(content))
    return UserMessage()


def _parse_assistant_message(data: dict) -> AssistantMessage:
    message = _get_dict(data, "message")
    if message is None:
        return AssistantMessage()

    content = message.get("content")
    context_management = _get_dict(message, "context_management")
    return AssistantMessage(
        model=_get_str(message, "model") or "unknown",
        id=_get_str(message, "id"),
        message_type=_get_str(message, "type") or "message",
        role=_get_str(message, "role") or "assistant",
        content=_parse_content_blocks(content) if isinstance(content, list) else (),
        stop_reason=_get_str(message, "stop_reason"),
        stop_sequence=_get_str(message, "stop_sequence"),
        usage=_parse_usage(message),
        context_management=ContextManagement(
            truncated=_get_bool(context_management, "truncated"),
            reason=_get_str(context_management, "reason"),
        )
        if context_management is not None
        else None,
    )


def _parse_file_snapshot(data: dict) -> FileSnapshot:
    snapshot = _get_dict(data, "snapshot")
    if snapshot is None:
        return FileSnapshot()

    backups = {}
    for path, info in (_get_dict(snapshot, "trackedFileBackups") or {}).items():
        if not isinstance(info, dict):
            continue
        backups[path] = FileBackupInfo(
            backup_file_name=_get_str(info, "backupFileName"),
            backup_time=parse_timestamp(info.get("backupTime")),
            version=_get_int(info, "version"),
        )

    return FileSnapshot(
        message_id=_get_str(snapshot, "messageId") or "",
        timestamp=parse_timestamp(snapshot.get("timestamp")),
        tracked_file_backups=backups,
    )


# ==============================================================================
# Records
# ==============================================================================


def _parse_user_record(data: dict) -> UserRecord:
    tool_use_result = _get_dict(data, "toolUseResult")
    thinking_metadata = _get_dict(data, "thinkingMetadata")
    return UserRecord(
        **_envelope(data),
        message=_parse_user_message(data),
        tool_use_result=ToolUseResultInfo(
            stdout=_get_str(tool_use_result, "stdout"),
            stderr=_get_str(tool_use_result, "stderr"),
            interrupted=_get_bool(tool_use_result, "interrupted"),
            is_image=_get_bool(tool_use_result, "isImage"),
            status=_get_str(tool_use_result, "status"),
            prompt=_get_str(tool_use_result, "prompt"),
        )
        if tool_use_result is not None
        else None,
        thinking_metadata=ThinkingMetadata(
            enabled=_get_bool(thinking_metadata, "enabled"),
            budget_tokens=_get_optional_int(thinking_metadata, "budgetTokens"),
        )
        if thinking_metadata is not None
        else None,
        todos=_parse_todos(data),
        is_meta=_get_bool(data, "isMeta"),
        is_visible_in_transcript_only=_get_bool(data, "isVisibleInTranscriptOnly"),
        is_compact_summary=_get_bool(data, "isCompactSummary"),
    )


def _parse_assistant_record(data: dict) -> AssistantRecord:
    return AssistantRecord(
        **_envelope(data),
        message=_parse_assistant_message(data),
        request_id=_get_str(data, "requestId"),
        is_api_error_message=_get_bool(data, "isApiErrorMessage"),
        error=_get_str(data, "error"),
    )


def _parse_summary_record(data: dict) -> SummaryRecord:
    return SummaryRecord(
        **_envelope(data),
        summary=_get_str(data, "summary") or "",
        leaf_uuid=_get_str(data, "leafUuid") or "",
    )


def _parse_system_record(data: dict) -> SystemRecord:
    compact_metadata = _get_dict(data, "compactMetadata")
    return SystemRecord(
        **_envelope(data),
        subtype=_get_str(data, "subtype") or "",
        content=_get_str(data, "content") or "",
        level=_get_str(data, "level"),
        logical_parent_uuid=_get_str(data, "logicalParentUuid"),
        compact_metadata=CompactMetadata(
            message_count=_get_optional_int(compact_metadata, "messageCount"),
            total_tokens=_get_optional_int(compact_metadata, "totalTokens"),
        )
        if compact_metadata is not None
        else None,
    )


def _parse_queue_operation_record(data: dict) -> QueueOperationRecord:
    return QueueOperationRecord(
        **_envelope(data),
        operation=_get_str(data, "operation") or "",
        content=_get_str(data, "content"),
    )


def _parse_file_history_snapshot_record(data: dict) -> FileHistorySnapshotRecord:
    return FileHistorySnapshotRecord(
        **_envelope(data),
        message_id=_get_str(data, "messageId") or "",
        is_snapshot_update=_get_bool(data, "isSnapshotUpdate"),
        snapshot=_parse_file_snapshot(data),
    )


_RECORD_PARSERS: dict[str, Callable[[dict], Record]] = {
    "user": _parse_user_record,
    "assistant": _parse_assistant_record,
    "summary": _parse_summary_record,
    "system": _parse_system_record,
    "queue-operation": _parse_queue_operation_record,
    "file-history-snapshot": _parse_file_history_snapshot_record,
}

RECORD_TYPES = frozenset(_RECORD_PARSERS)


class RecordParser:
    """Turns JSONL lines into `Record` variants.

    The JSON decoder is supplied at construction, so callers that need a
    different decoding policy build their own parser instead of mutating shared
    state.
    """

    def __init__(self, decoder: json.JSONDecoder | None = None):
        self._decoder = decoder or json.JSONDecoder()

    def parse(self, line: str) -> Record | None:
        """Parse one line. Returns None for blank, malformed or unknown lines."""
        if not line or not line.strip():
            return None

        try:
            data = self._decoder.decode(line.strip())
        except (json.JSONDecodeError, RecursionError):
            logger.debug(f"Skipping malformed JSON line: {line[:80]!r}")
            return None

        if not isinstance(data, dict):
            return None

        record_type = data.get("type")
        record_parser = _RECORD_PARSERS.get(record_type) if isinstance(record_type, str) else None
        if record_parser is None:
            logger.debug(f"Skipping record with unknown type: {record_type!r}")
            return None

        try:
            return record_parser(data)
        except (OverflowError, ValueError) as e:
            # Out-of-range numbers (e.g. Infinity) in otherwise valid JSON
            logger.debug(f"Skipping unparsable {record_type} record: {e}")
            return None

    def parse_many(self, lines: Iterable[str]) -> Iterator[Record]:
        """Parse lines, yielding only the recognized records."""
        for line in lines:
            record = self.parse(line)
            if record is not None:
                yield record

    def parse_file(self, filepath: Path) -> list[Record]:
        """Parse a whole JSONL file. A missing or unreadable file yields no records."""
        try:
            with open(filepath, encoding="utf-8", errors="replace") as f:
                return list(self.parse_many(f))
        except OSError:
            return []


_default_parser = RecordParser()


def parse_record(line: str) -> Record | None:
    """Parse one line with a default-configured `RecordParser`."""
    return _default_parser.parse(line)
