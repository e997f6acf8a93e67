"""FastMCP server for Claude Session Monitor."""

import os

from mcp.server.fastmcp import FastMCP

from .loader import list_sessions, load_session
from .session import Session

# Create the MCP server
mcp = FastMCP("claude-session-monitor")


def _get_current_project() -> str | None:
    """
    Get the current project path from environment.

    Claude Code sets CLAUDE_PROJECT_DIR when running plugins.
    Falls back to PWD/CWD if not available.
    """
    project = os.environ.get("CLAUDE_PROJECT_DIR")
    if project:
        return project
    return os.environ.get("PWD") or os.getcwd()


def _session_overview(session: Session) -> dict:
    """Headline statistics of an assembled session."""
    return {
        "session_id": session.id,
        "slug": session.slug,
        "session_file_path": session.session_file_path,
        "cwd": session.cwd,
        "git_branch": session.git_branch,
        "version": session.version,
        "started_at": session.started_at.isoformat() if session.started_at else None,
        "last_activity_at": (
            session.last_activity_at.isoformat() if session.last_activity_at else None
        ),
        "record_count": len(session.records),
        "message_count": session.message_count,
        "total_input_tokens": session.total_input_tokens,
        "total_output_tokens": session.total_output_tokens,
        "total_cache_read_tokens": session.total_cache_read_tokens,
        "average_cache_hit_rate": session.average_cache_hit_rate,
        "tool_usage_counts": session.tool_usage_counts,
        "model_usage": session.model_usage,
        "web_search_requests": session.total_web_search_requests,
        "web_fetch_requests": session.total_web_fetch_requests,
        "modified_files": session.modified_files,
        "has_errors": session.has_errors,
        "agents": [
            {"agent_id": agent.agent_id, "record_count": len(agent.records)}
            for agent in session.agents
        ],
        "todos": [todo.model_dump(mode="json") for todo in session.todos],
        "debug_log_path": session.debug_log_path,
    }


@mcp.tool()
def list_project_sessions(all_projects: bool = False) -> dict:
    """
    List Claude Code sessions, newest first.

    Args:
        all_projects: List sessions of every project instead of the current one (default: false)

    Returns:
        Session ids with file path, creation/modification time and size
    """
    project = None if all_projects else _get_current_project()
    sessions = list_sessions(project)
    return {
        "project": project,
        "sessions": [s.model_dump(mode="json") for s in sessions],
    }


@mcp.tool()
def get_session_overview(session_id: str) -> dict:
    """
    Summarize a session: token totals, tool and model usage, modified files, sub-agents.

    Args:
        session_id: Session UUID (the session file name without .jsonl)

    Returns:
        Session statistics, or an error entry if the session does not exist
    """
    session = load_session(session_id)
    if session is None:
        return {"error": f"Session not found: {session_id}"}
    return _session_overview(session)


@mcp.tool()
def get_conversation_thread(session_id: str, uuid: str) -> dict:
    """
    Get the chain of records leading to a message, from the root of the conversation.

    Args:
        session_id: Session UUID
        uuid: Record uuid to end the thread at

    Returns:
        The records of the thread in root-to-leaf order
    """
    session = load_session(session_id)
    if session is None:
        return {"error": f"Session not found: {session_id}"}
    thread = session.get_thread(uuid)
    return {
        "session_id": session_id,
        "uuid": uuid,
        "records": [r.model_dump(mode="json") for r in thread],
    }


def main():
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
