"""Live monitoring of a Claude Code session's JSONL files.

The watcher tracks one session: its main file plus the sub-agent files that
belong to it. Every tracked file has its own `FileCursor`, and parsed records
are fanned out to any number of subscribers.

Reads are triggered two ways, both ending up in the same per-file read path:

- OS file notifications through `watchfiles`
- a sub-second poll that rescans the directory and retries every file, since
  notifications are not delivered reliably on every platform

Only one read per file runs at a time. A trigger that arrives while a read is
in flight is dropped; the running read (or the next tick) picks up the bytes.

Usage::

    async with SessionWatcher(WatcherOptions(working_directory=project)) as watcher:
        subscription = watcher.subscribe()
        async for record in subscription:
            print(record.type, record.uuid)
"""

import asyncio
import logging
import os
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ConfigDict, Field
from watchfiles import Change, awatch

from .config import SESSION_FILE_SUFFIX, get_new_file_tolerance, get_poll_interval
from .cursor import FileCursor
from .loader import (
    encode_project_path,
    file_created_at,
    find_session_file,
    get_claude_dir,
    get_projects_dir,
    load_session,
)
from .models import FrozenModel, Record
from .parser import RecordParser
from .session import Session, is_agent_file

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]

# Upper bound in milliseconds for grouping notification bursts
_NOTIFY_DEBOUNCE_MS = 200


class WatcherClosedError(RuntimeError):
    """Raised when starting a watcher that has been closed."""


class WatcherOptions(FrozenModel):
    """Settings for a `SessionWatcher`.

    With `session_id` set, the watcher follows that session's existing file.
    Otherwise it watches the project directory of `working_directory` (the
    current directory by default) and adopts the first session file created
    there after the watch started.
    """

    model_config = ConfigDict(frozen=True, validate_default=True)

    session_id: str | None = None
    working_directory: Path | None = None
    claude_dir: Path = Field(default_factory=get_claude_dir)
    poll_interval: float = Field(default_factory=get_poll_interval, gt=0)
    new_file_tolerance: float = Field(default_factory=get_new_file_tolerance, ge=0)
    # Read files found at the first scan from the start instead of from their end
    include_existing_content: bool = True


class Subscription:
    """One consumer's ordered feed of records.

    Backed by an unbounded queue, so records are never dropped; a slow consumer
    just accumulates a backlog. Iterate with ``async for`` or call `get`.
    """

    _END = object()

    def __init__(self, watcher: "SessionWatcher"):
        self._watcher = watcher
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Records delivered but not yet consumed."""
        return self._queue.qsize() - (1 if self._closed else 0)

    def _push(self, record: Record) -> None:
        if not self._closed:
            self._queue.put_nowait(record)

    def _finish(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._END)

    async def get(self, timeout: float | None = None) -> Record | None:
        """Next record, or None once the subscription is closed and drained.

        Raises:
            TimeoutError: If `timeout` seconds pass without a record
        """
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is self._END:
            # Leave the marker in place for later callers
            self._queue.put_nowait(item)
            return None
        return item

    def close(self) -> None:
        """Stop receiving records. Already-queued records can still be read."""
        self._watcher._unsubscribe(self)
        self._finish()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Record:
        record = await self.get()
        if record is None:
            raise StopAsyncIteration
        return record


class _TrackedFile:
    def __init__(self, cursor: FileCursor, is_agent: bool):
        self.cursor = cursor
        self.is_agent = is_agent
        self.gate = asyncio.Lock()
        # Agent files are attributed to the session on their first parsed record
        self.accepted: bool | None = None if is_agent else True


class SessionWatcher:
    """Tails one session's log files and publishes parsed records."""

    def __init__(self, options: WatcherOptions | None = None, parser: RecordParser | None = None):
        self._options = options or WatcherOptions()
        self._parser = parser or RecordParser()
        self._subscriptions: list[Subscription] = []
        self._error_handlers: list[ErrorHandler] = []

        self._files: dict[Path, _TrackedFile] = {}
        self._session_id: str | None = self._options.session_id
        self._session_file: Path | None = None
        self._directory: Path | None = None
        self._working_directory: Path | None = None
        self._watch_start: datetime | None = None

        self._running = False
        self._closed = False
        self._stop_event: asyncio.Event | None = None
        self._poll_task: asyncio.Task | None = None
        self._notify_task: asyncio.Task | None = None
        self._read_tasks: set[asyncio.Task] = set()

    @property
    def options(self) -> WatcherOptions:
        return self._options

    @property
    def session_id(self) -> str | None:
        """Id of the session being followed, once known."""
        return self._session_id

    @property
    def session_file_path(self) -> Path | None:
        return self._session_file

    @property
    def tracked_files(self) -> tuple[Path, ...]:
        """Main and agent files currently being tailed."""
        return tuple(self._files)

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Subscribers and error handlers
    # ------------------------------------------------------------------

    def subscribe(self) -> Subscription:
        """Register a new consumer. It sees every record published from now on."""
        subscription = Subscription(self)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def add_error_handler(self, handler: ErrorHandler) -> None:
        """Register a callback for unexpected errors raised while monitoring."""
        self._error_handlers.append(handler)

    def _publish(self, record: Record) -> None:
        for subscription in list(self._subscriptions):
            subscription._push(record)

    def _report_error(self, error: Exception) -> None:
        logger.error(f"Session watcher error: {error}", exc_info=error)
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("Error handler raised")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start monitoring. Call before the session starts writing.

        Raises:
            WatcherClosedError: If the watcher has been closed
        """
        if self._closed:
            raise WatcherClosedError("SessionWatcher has been closed")
        if self._running:
            return

        self._running = True
        self._watch_start = datetime.now(timezone.utc)
        self._stop_event = asyncio.Event()
        self._files = {}
        self._session_id = self._options.session_id
        self._session_file = None
        self._directory = None
        self._working_directory = self._options.working_directory or Path.cwd()

        logger.info(
            f"Watching session {self._session_id}"
            if self._session_id
            else f"Watching for new sessions in {self._working_directory}"
        )

        try:
            await self._poll_once()
        except Exception as e:
            self._report_error(e)
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop monitoring. No records are published after this returns.

        Safe to call repeatedly; the watcher can be started again afterwards.
        """
        if not self._running:
            return
        self._running = False
        self._stop_event.set()

        tasks = [t for t in (self._poll_task, self._notify_task, *self._read_tasks) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._poll_task = None
        self._notify_task = None
        self._read_tasks.clear()
        logger.info(f"Stopped watching session {self._session_id}")

    async def close(self) -> None:
        """Stop for good and end every subscription."""
        await self.stop()
        self._closed = True
        for subscription in list(self._subscriptions):
            subscription._finish()
        self._subscriptions.clear()

    async def __aenter__(self) -> "SessionWatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def read_new_records(self) -> None:
        """Read all tracked files now, publishing whatever is new."""
        await asyncio.gather(*(self._read_file(path, tracked) for path, tracked in list(self._files.items())))

    async def get_session(self) -> Session | None:
        """Assemble the full session from disk, once its id is known."""
        if self._session_id is None:
            return None
        return await asyncio.to_thread(
            load_session, self._session_id, self._options.claude_dir, self._parser
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _locate_directory(self) -> Path | None:
        """Directory holding the session's files, or None if it does not exist yet."""
        if self._directory is not None:
            return self._directory if self._directory.is_dir() else None

        if self._options.session_id:
            session_file = find_session_file(self._options.session_id, self._options.claude_dir)
            return session_file.parent if session_file else None

        project_dir = get_projects_dir(self._options.claude_dir) / encode_project_path(
            str(self._working_directory)
        )
        return project_dir if project_dir.is_dir() else None

    @staticmethod
    def _list_session_files(directory: Path) -> list[Path]:
        try:
            with os.scandir(directory) as entries:
                return sorted(
                    Path(entry.path)
                    for entry in entries
                    if entry.name.endswith(SESSION_FILE_SUFFIX) and entry.is_file()
                )
        except FileNotFoundError:
            return []

    def _wants(self, path: Path) -> bool:
        """Whether `path` could be one of this session's files, by name alone."""
        if path.suffix != SESSION_FILE_SUFFIX or path in self._files:
            return False
        if is_agent_file(path):
            return True
        if self._session_file is not None:
            return False
        if self._options.session_id:
            return path.stem == self._options.session_id
        return True

    def _is_recent(self, path: Path) -> bool:
        """Whether `path` was created after the watch started, minus the tolerance."""
        if self._options.session_id:
            return True
        tolerance = timedelta(seconds=self._options.new_file_tolerance)
        try:
            return file_created_at(path) >= self._watch_start - tolerance
        except OSError:
            return False

    async def _discover(self, path: Path, existing: bool = False) -> bool:
        """Start tracking `path` if it belongs to this session. Returns True if tracked."""
        if not self._wants(path):
            return path in self._files
        if not await asyncio.to_thread(self._is_recent, path):
            return False

        # Files present at the first scan start at their end unless existing content is wanted
        skip_existing = existing and not self._options.include_existing_content
        cursor = await asyncio.to_thread(FileCursor.at_end, path) if skip_existing else FileCursor(path)

        # Re-check: the discovery may have raced with another trigger
        if not self._wants(path):
            return path in self._files

        is_agent = is_agent_file(path)
        if not is_agent:
            self._session_file = path
            if self._session_id is None:
                self._session_id = path.stem
            logger.info(f"Tracking session file {path.name}")
        else:
            logger.info(f"Tracking agent file {path.name}")
        self._files[path] = _TrackedFile(cursor, is_agent)
        return True

    async def _poll_once(self) -> None:
        directory = await asyncio.to_thread(self._locate_directory)
        if directory is None:
            return

        existing = self._directory is None
        if existing:
            self._directory = directory
        if self._notify_task is None and self._running:
            self._notify_task = asyncio.create_task(self._notify_loop(directory))

        for path in await asyncio.to_thread(self._list_session_files, directory):
            if self._wants(path):
                await self._discover(path, existing=existing)

        for path in list(self._files):
            self._spawn_read(path)

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._options.poll_interval)
            try:
                await self._poll_once()
            except Exception as e:
                self._report_error(e)

    async def _notify_loop(self, directory: Path) -> None:
        def jsonl_only(change: Change, path: str) -> bool:
            return change != Change.deleted and path.endswith(SESSION_FILE_SUFFIX)

        try:
            async for changes in awatch(
                directory,
                watch_filter=jsonl_only,
                stop_event=self._stop_event,
                debounce=_NOTIFY_DEBOUNCE_MS,
                recursive=False,
            ):
                if not self._running:
                    break
                for _change, raw_path in changes:
                    path = Path(raw_path)
                    if await self._discover(path):
                        self._spawn_read(path)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The poll loop keeps every file up to date without notifications
            self._report_error(e)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _spawn_read(self, path: Path) -> None:
        tracked = self._files.get(path)
        if not self._running or tracked is None or tracked.gate.locked():
            return
        task = asyncio.create_task(self._read_file(path, tracked))
        self._read_tasks.add(task)
        task.add_done_callback(self._read_tasks.discard)

    async def _read_file(self, path: Path, tracked: _TrackedFile) -> None:
        # Drop the trigger if a read of this file is already in flight
        if not self._running or tracked.gate.locked():
            return

        async with tracked.gate:
            if tracked.accepted is False:
                return
            if tracked.accepted is None and self._session_id is None:
                # Agent records cannot be attributed until the session id is known
                return

            try:
                lines = await asyncio.to_thread(tracked.cursor.read_new_lines)
            except Exception as e:
                self._report_error(e)
                return

            if not self._running:
                return
            self._publish_lines(path, tracked, lines)

    def _publish_lines(self, path: Path, tracked: _TrackedFile, lines: list[str]) -> None:
        for line in lines:
            record = self._parser.parse(line)
            if record is None:
                continue
            if tracked.accepted is None:
                tracked.accepted = record.session_id == self._session_id
                if not tracked.accepted:
                    logger.info(
                        f"Ignoring {path.name}: belongs to session {record.session_id}, "
                        f"not {self._session_id}"
                    )
                    return
            self._publish(record)
