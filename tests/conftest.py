"""Pytest fixtures for Claude Session Monitor tests."""

import json
from unittest.mock import patch

import pytest

SESSION_ID = "3f2a9c1e-5b7d-4e8f-9a0b-1c2d3e4f5a6b"
OTHER_SESSION_ID = "9d8c7b6a-5f4e-4d3c-8b2a-1f0e9d8c7b6a"
PROJECT_PATH = "/Users/test/myproject"
PROJECT_DIR_NAME = "-Users-test-myproject"


def write_jsonl(path, records):
    """Write records as JSON lines, one per line."""
    with open(path, "w") as f:
        for record in records:
            f.write(json.dumps(record) + "\n")


def append_line(path, text):
    """Append raw text to a file (no newline added)."""
    with open(path, "a") as f:
        f.write(text)


def user_line(uuid, parent=None, content="Hello", session_id=SESSION_ID, **extra):
    return {
        "type": "user",
        "uuid": uuid,
        "parentUuid": parent,
        "sessionId": session_id,
        "timestamp": "2025-01-15T10:00:00.000Z",
        "cwd": PROJECT_PATH,
        "gitBranch": "main",
        "version": "2.0.14",
        "userType": "external",
        "isSidechain": False,
        "message": {"role": "user", "content": content},
        **extra,
    }


def assistant_line(
    uuid,
    parent=None,
    session_id=SESSION_ID,
    model="claude-sonnet-4-5",
    content=None,
    usage=None,
    timestamp="2025-01-15T10:00:05.000Z",
    **extra,
):
    return {
        "type": "assistant",
        "uuid": uuid,
        "parentUuid": parent,
        "sessionId": session_id,
        "timestamp": timestamp,
        "requestId": f"req_{uuid}",
        "message": {
            "model": model,
            "id": f"msg_{uuid}",
            "type": "message",
            "role": "assistant",
            "content": content if content is not None else [{"type": "text", "text": "Done."}],
            "stop_reason": "end_turn",
            "usage": usage
            if usage is not None
            else {"input_tokens": 100, "output_tokens": 50, "cache_read_input_tokens": 25},
        },
        **extra,
    }


def snapshot_line(message_id, paths):
    return {
        "type": "file-history-snapshot",
        "messageId": message_id,
        "isSnapshotUpdate": False,
        "snapshot": {
            "messageId": message_id,
            "timestamp": "2025-01-15T10:00:06.000Z",
            "trackedFileBackups": {
                path: {
                    "backupFileName": f"abc123@v{i + 1}",
                    "version": i + 1,
                    "backupTime": "2025-01-15T10:00:06.000Z",
                }
                for i, path in enumerate(paths)
            },
        },
    }


@pytest.fixture
def temp_claude_dir(tmp_path):
    """Create a temporary ~/.claude directory structure."""
    claude_dir = tmp_path / ".claude"
    projects_dir = claude_dir / "projects"
    projects_dir.mkdir(parents=True)
    return claude_dir


@pytest.fixture
def project_dir(temp_claude_dir):
    """An empty project directory for PROJECT_PATH."""
    directory = temp_claude_dir / "projects" / PROJECT_DIR_NAME
    directory.mkdir(parents=True)
    return directory


@pytest.fixture
def sample_project(temp_claude_dir, project_dir):
    """A project with one session, two agent files and side files."""
    write_jsonl(
        project_dir / f"{SESSION_ID}.jsonl",
        [
            user_line("u1", slug="sunny-frolicking-penguin", content="Fix the login bug"),
            assistant_line(
                "a1",
                parent="u1",
                content=[
                    {"type": "thinking", "thinking": "Look at auth first"},
                    {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"file_path": "auth.py"}},
                ],
                usage={
                    "input_tokens": 200,
                    "output_tokens": 40,
                    "cache_read_input_tokens": 100,
                    "server_tool_use": {"web_search_requests": 1, "web_fetch_requests": 2},
                },
            ),
            user_line(
                "u2",
                parent="a1",
                content=[{"type": "tool_result", "tool_use_id": "toolu_1", "content": "def login(): ..."}],
            ),
            assistant_line(
                "a2",
                parent="u2",
                content=[
                    {"type": "tool_use", "id": "toolu_2", "name": "Edit", "input": {"file_path": "auth.py"}},
                    {"type": "tool_use", "id": "toolu_3", "name": "Read", "input": {"file_path": "views.py"}},
                ],
                timestamp="2025-01-15T10:05:00.000Z",
            ),
            snapshot_line("a2", ["/Users/test/myproject/auth.py", "/Users/test/myproject/views.py"]),
            {"type": "summary", "summary": "Fixed login bug", "leafUuid": "a2"},
        ],
    )
    write_jsonl(
        project_dir / "agent-a1b2c3d.jsonl",
        [
            user_line("s1", content="Search for auth patterns", isSidechain=True, agentId="a1b2c3d"),
            assistant_line("s2", parent="s1", isSidechain=True, agentId="a1b2c3d"),
        ],
    )
    write_jsonl(
        project_dir / "agent-ffff000.jsonl",
        [user_line("x1", session_id=OTHER_SESSION_ID, agentId="ffff000")],
    )

    todos_dir = temp_claude_dir / "todos"
    todos_dir.mkdir()
    with open(todos_dir / f"{SESSION_ID}-agent-{SESSION_ID}.json", "w") as f:
        json.dump(
            [
                {"content": "Fix login", "status": "completed", "activeForm": "Fixing login"},
                {"content": "Add tests", "status": "in_progress", "activeForm": "Adding tests"},
            ],
            f,
        )

    history_dir = temp_claude_dir / "file-history" / SESSION_ID
    history_dir.mkdir(parents=True)
    (history_dir / "abc123@v1").write_text("old")
    (history_dir / "abc123@v2").write_text("newer")

    debug_dir = temp_claude_dir / "debug"
    debug_dir.mkdir()
    (debug_dir / f"{SESSION_ID}.txt").write_text("[DEBUG] started\n")

    return project_dir


@pytest.fixture
def mock_claude_dir(temp_claude_dir):
    """Patch the claude directory to use temp directory."""
    with patch("claude_session_monitor.loader.get_claude_dir", return_value=temp_claude_dir):
        yield temp_claude_dir
