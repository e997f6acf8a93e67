"""Incremental reader for a single growing JSONL file."""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

_BACKSCAN_CHUNK = 64 * 1024


def _end_of_last_line(path: Path) -> int:
    """Offset just past the last newline in `path`, or 0 if there is none."""
    with open(path, "rb") as f:
        position = os.fstat(f.fileno()).st_size
        while position > 0:
            start = max(0, position - _BACKSCAN_CHUNK)
            f.seek(start)
            chunk = f.read(position - start)
            index = chunk.rfind(b"\n")
            if index != -1:
                return start + index + 1
            position = start
    return 0


class FileCursor:
    """Tracks how far a file has been read and returns only new complete lines.

    The committed offset only ever points just past a newline, so a line the
    writer has not finished yet is never returned and is picked up whole on a
    later call. If the file shrinks below the offset (truncation or rotation),
    the cursor starts over from the beginning.
    """

    def __init__(self, path: Path | str, offset: int = 0):
        self.path = Path(path)
        self._offset = max(0, offset)

    @classmethod
    def at_end(cls, path: Path | str) -> "FileCursor":
        """Create a cursor that skips the complete lines the file already contains.

        A trailing unfinished line is left unread, so it is returned whole once
        the writer terminates it.
        """
        try:
            offset = _end_of_last_line(Path(path))
        except OSError:
            offset = 0
        return cls(path, offset=offset)

    @property
    def offset(self) -> int:
        """Byte position just after the last complete line returned."""
        return self._offset

    def reset(self) -> None:
        self._offset = 0

    def read_new_lines(self) -> list[str]:
        """Return the complete lines appended since the previous call.

        A missing or unreadable file yields no lines; it will be retried on the
        next call.
        """
        try:
            with open(self.path, "rb") as f:
                size = os.fstat(f.fileno()).st_size
                if size < self._offset:
                    logger.info(
                        f"{self.path.name} shrank from {self._offset} to {size} bytes, "
                        "re-reading from start"
                    )
                    self._offset = 0
                if size == self._offset:
                    return []

                f.seek(self._offset)
                data = f.read()
        except (FileNotFoundError, PermissionError):
            return []

        end = data.rfind(b"\n")
        if end == -1:
            return []

        self._offset += end + 1
        lines = data[:end].split(b"\n")
        return [line.rstrip(b"\r").decode("utf-8", errors="replace") for line in lines]

    def __repr__(self) -> str:
        return f"FileCursor(path={str(self.path)!r}, offset={self._offset})"
