"""Tests for session assembly and derived statistics."""

import json
from pathlib import Path

from claude_session_monitor.models import AssistantRecord, UserRecord
from claude_session_monitor.parser import parse_record
from claude_session_monitor.session import (
    agent_id_from_path,
    assemble_session,
    build_agent_sessions,
    is_agent_file,
)
from conftest import OTHER_SESSION_ID, SESSION_ID, assistant_line, snapshot_line, user_line


def _records(*lines):
    return [parse_record(json.dumps(line)) for line in lines]


def _session(*lines, **kwargs):
    return assemble_session(SESSION_ID, _records(*lines), **kwargs)


class TestNavigation:
    """Tests for thread reconstruction."""

    def test_thread_children_roots(self):
        """Test a simple parent chain."""
        session = _session(
            user_line("1"),
            assistant_line("2", parent="1"),
            user_line("3", parent="2"),
        )
        a, b, c = session.records
        assert session.get_thread("3") == [a, b, c]
        assert session.get_children("1") == [b]
        assert session.root_messages == [a]

    def test_missing_parent_treated_as_root(self):
        """Test the walk stops at a parent that is not in the file."""
        session = _session(user_line("2", parent="gone"), assistant_line("3", parent="2"))
        thread = session.get_thread("3")
        assert [r.uuid for r in thread] == ["2", "3"]

    def test_unknown_uuid(self):
        """Test an unknown uuid gives an empty thread."""
        session = _session(user_line("1"))
        assert session.get_thread("nope") == []
        assert session.get_children("nope") == []

    def test_branching(self):
        """Test siblings are all returned as children, in file order."""
        session = _session(
            user_line("1"),
            assistant_line("2", parent="1"),
            assistant_line("3", parent="1"),
            user_line("4", parent="3"),
        )
        assert [r.uuid for r in session.get_children("1")] == ["2", "3"]
        assert [r.uuid for r in session.get_thread("4")] == ["1", "3", "4"]

    def test_cycle_does_not_loop(self):
        """Test corrupt cyclic links terminate."""
        session = _session(user_line("1", parent="2"), assistant_line("2", parent="1"))
        assert [r.uuid for r in session.get_thread("2")] == ["1", "2"]

    def test_roots_require_uuid(self):
        """Test records without a uuid are not roots."""
        session = _session(
            user_line("1"),
            {"type": "summary", "summary": "s", "leafUuid": "1"},
        )
        assert [r.uuid for r in session.root_messages] == ["1"]

    def test_index_not_merged_across_files(self):
        """Test agent records are not reachable from the main session thread."""
        session = _session(
            user_line("1"),
            agent_files=[(Path("agent-abc1234.jsonl"), _records(assistant_line("2", parent="1")))],
        )
        assert session.get_children("1") == []
        agent = session.agents[0]
        assert [r.uuid for r in agent.get_thread("2")] == ["2"]
        assert agent.root_messages == []


class TestAgents:
    """Tests for sub-agent attribution."""

    def test_agent_with_other_session_excluded(self):
        """Test a mismatched agent file contributes nothing."""
        agents = build_agent_sessions(
            SESSION_ID,
            [
                (Path("/p/agent-aaaaaaa.jsonl"), _records(user_line("x", session_id=OTHER_SESSION_ID))),
                (Path("/p/agent-bbbbbbb.jsonl"), _records(user_line("y"))),
            ],
        )
        assert [a.agent_id for a in agents] == ["bbbbbbb"]
        assert agents[0].parent_session_id == SESSION_ID
        assert agents[0].file_path == "/p/agent-bbbbbbb.jsonl"

    def test_only_first_record_decides(self):
        """Test an agent file is kept or dropped as a whole."""
        agents = build_agent_sessions(
            SESSION_ID,
            [
                (
                    Path("agent-ccccccc.jsonl"),
                    _records(user_line("1"), user_line("2", session_id=OTHER_SESSION_ID)),
                ),
                (
                    Path("agent-ddddddd.jsonl"),
                    _records(user_line("3", session_id=OTHER_SESSION_ID), user_line("4")),
                ),
            ],
        )
        assert len(agents) == 1
        assert len(agents[0].records) == 2

    def test_empty_agent_file_excluded(self):
        """Test an agent file with no records is excluded."""
        assert build_agent_sessions(SESSION_ID, [(Path("agent-eeeeeee.jsonl"), [])]) == []

    def test_agent_file_naming(self):
        """Test the agent- prefix classifies files."""
        assert is_agent_file("agent-a1b2c3d.jsonl")
        assert not is_agent_file(f"{SESSION_ID}.jsonl")
        assert agent_id_from_path("/x/agent-a1b2c3d.jsonl") == "a1b2c3d"


class TestAggregates:
    """Tests for derived statistics."""

    def test_metadata_from_first_record(self):
        """Test slug, cwd, branch and version come from the first record."""
        session = _session(user_line("1", slug="calm-river"), assistant_line("2", parent="1"))
        assert session.slug == "calm-river"
        assert session.cwd == "/Users/test/myproject"
        assert session.git_branch == "main"
        assert session.version == "2.0.14"

    def test_timestamps_are_min_max(self):
        """Test start and last activity ignore record order."""
        session = _session(
            assistant_line("2", timestamp="2025-01-15T12:00:00Z"),
            assistant_line("3", timestamp="2025-01-15T09:00:00Z"),
            {"type": "summary", "summary": "no timestamp"},
        )
        assert session.started_at.hour == 9
        assert session.last_activity_at.hour == 12

    def test_empty_session(self):
        """Test an empty record set gives zeroed statistics."""
        session = assemble_session(SESSION_ID, [])
        assert session.started_at is None
        assert session.total_tokens == 0
        assert session.average_cache_hit_rate == 0.0
        assert session.average_tokens_per_response == 0.0
        assert session.tool_usage_counts == {}
        assert session.modified_files == []
        assert session.has_errors is False
        assert session.message_count == 0

    def test_token_totals(self):
        """Test token sums and averages over assistant responses."""
        session = _session(
            user_line("1"),
            assistant_line("2", usage={"input_tokens": 100, "output_tokens": 50, "cache_read_input_tokens": 50}),
            assistant_line("3", usage={"input_tokens": 300, "output_tokens": 150, "cache_read_input_tokens": 0}),
            assistant_line("4", usage={"input_tokens": 0, "output_tokens": 10}),
        )
        assert session.total_input_tokens == 400
        assert session.total_output_tokens == 210
        assert session.total_tokens == 610
        assert session.total_cache_read_tokens == 50
        # Only responses with input count toward the hit rate: (0.5 + 0.0) / 2
        assert session.average_cache_hit_rate == 0.25
        assert session.average_tokens_per_response == 610 / 3
        assert session.message_count == 4

    def test_tool_and_model_counts(self):
        """Test tool invocations are counted by name and responses by model."""
        session = _session(
            assistant_line(
                "1",
                content=[
                    {"type": "tool_use", "id": "t1", "name": "Read", "input": {}},
                    {"type": "tool_use", "id": "t2", "name": "Grep", "input": {}},
                ],
            ),
            assistant_line(
                "2",
                model="claude-opus-4-1",
                content=[{"type": "tool_use", "id": "t3", "name": "Read", "input": {}}],
            ),
        )
        assert session.tool_usage_counts == {"Read": 2, "Grep": 1}
        assert session.model_usage == {"claude-sonnet-4-5": 1, "claude-opus-4-1": 1}
        assert [t.id for t in session.all_tool_calls] == ["t1", "t2", "t3"]

    def test_web_requests(self):
        """Test server tool use is summed."""
        session = _session(
            assistant_line("1", usage={"server_tool_use": {"web_search_requests": 2, "web_fetch_requests": 1}}),
            assistant_line("2", usage={"server_tool_use": {"web_search_requests": 3}}),
            assistant_line("3", usage={}),
        )
        assert session.total_web_search_requests == 5
        assert session.total_web_fetch_requests == 1

    def test_modified_files_distinct(self):
        """Test snapshot paths are de-duplicated in first-seen order."""
        session = _session(
            snapshot_line("m1", ["/b.py", "/a.py"]),
            snapshot_line("m2", ["/a.py", "/c.py"]),
        )
        assert session.modified_files == ["/b.py", "/a.py", "/c.py"]

    def test_errors(self):
        """Test the error flag follows API error records."""
        ok = _session(assistant_line("1"))
        assert ok.has_errors is False

        failed = _session(assistant_line("1"), assistant_line("2", isApiErrorMessage=True))
        assert failed.has_errors is True
        assert [e.uuid for e in failed.errors] == ["2"]

    def test_record_views(self):
        """Test typed views partition the records."""
        session = _session(
            user_line("1"),
            assistant_line("2"),
            {"type": "summary", "summary": "s"},
            {"type": "system", "subtype": "info"},
            snapshot_line("m", ["/x"]),
        )
        assert all(isinstance(r, UserRecord) for r in session.user_records)
        assert all(isinstance(r, AssistantRecord) for r in session.assistant_records)
        assert len(session.summaries) == 1
        assert len(session.system_records) == 1
        assert len(session.file_history_snapshots) == 1

    def test_paths(self):
        """Test file paths are recorded."""
        session = _session(
            user_line("1"),
            session_file_path=Path("/root/.claude/projects/-p") / f"{SESSION_ID}.jsonl",
            debug_log_path=Path("/root/.claude/debug/x.txt"),
        )
        assert session.session_file_path.endswith(f"{SESSION_ID}.jsonl")
        assert session.project_path == str(Path("/root/.claude/projects/-p"))
        assert session.debug_log_path == str(Path("/root/.claude/debug/x.txt"))
