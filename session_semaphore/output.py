"""View stream output for the status monitor.

Every view change is written as one NDJSON line to stdout or a named pipe
(for a single streaming consumer such as an EWW deflisten), and as an
atomically replaced JSON file for any number of polling consumers.
"""

import asyncio
import json
import logging
import os
import stat
import sys
import tempfile
from pathlib import Path
from typing import Optional, TextIO

from .config import default_output_file
from .models import SessionList

logger = logging.getLogger(__name__)


class OutputWriter:
    """NDJSON writer for the session view."""

    def __init__(
        self,
        pipe_path: Optional[Path] = None,
        json_file_path: Optional[Path] = None,
        write_timeout: float = 1.0,
    ) -> None:
        """Initialize the output writer.

        Args:
            pipe_path: Named pipe (FIFO) to write to. If None, writes to stdout.
            json_file_path: Snapshot file for polling readers
                (defaults to $XDG_RUNTIME_DIR/session-semaphore.json)
            write_timeout: Seconds before a blocked stream write is dropped
        """
        self.pipe_path = pipe_path
        self.json_file_path = json_file_path or default_output_file()
        self.write_timeout = write_timeout
        self._output: Optional[TextIO] = None
        self._lock = asyncio.Lock()
        self._running = False

    async def start(self) -> None:
        if self.pipe_path:
            make_fifo(self.pipe_path)
        self._running = True
        logger.info(f"Streaming views to {self.pipe_path or 'stdout'}")

    async def stop(self) -> None:
        self._running = False
        self._close_stream()
        logger.info("Output writer stopped")

    def _stream(self) -> Optional[TextIO]:
        """The open stream, opening the FIFO on first use."""
        if self._output is None:
            if not self.pipe_path:
                self._output = sys.stdout
            else:
                try:
                    fd = os.open(str(self.pipe_path), os.O_RDWR | os.O_NONBLOCK)
                except OSError as e:
                    logger.warning(f"Cannot open {self.pipe_path}: {e}")
                    return None
                self._output = os.fdopen(fd, "w")
        return self._output

    def _close_stream(self) -> None:
        stream, self._output = self._output, None
        if stream is None or stream is sys.stdout:
            return
        try:
            stream.close()
        except OSError as e:
            logger.debug(f"Closing {self.pipe_path}: {e}")

    async def write_session_list(self, session_list: SessionList) -> None:
        """Write the view to the stream and to the snapshot file."""
        data = session_list.model_dump(mode="json")
        await self._write_line(data)
        await self._write_file(data)

    async def _write_line(self, data: dict) -> None:
        async with self._lock:
            stream = self._stream() if self._running else None
            if stream is None:
                return
            try:
                await asyncio.wait_for(
                    asyncio.to_thread(_write_and_flush, stream, json.dumps(data, separators=(",", ":"))),
                    timeout=self.write_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"View dropped: stream blocked for {self.write_timeout}s")
            except BrokenPipeError:
                logger.warning("View stream reader went away")
                self._close_stream()
            except OSError as e:
                logger.error(f"View stream write failed: {e}")

    async def _write_file(self, data: dict) -> None:
        if not self._running:
            return
        content = json.dumps(data, separators=(",", ":"))
        try:
            await asyncio.to_thread(self._sync_write_file, content)
        except OSError as e:
            logger.error(f"Error writing JSON file {self.json_file_path}: {e}")

    def _sync_write_file(self, content: str) -> None:
        self.json_file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=str(self.json_file_path.parent),
            prefix=f".{self.json_file_path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(temp_path, self.json_file_path)
        except OSError:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise


def _write_and_flush(stream: TextIO, line: str) -> None:
    stream.write(line + "\n")
    stream.flush()


def make_fifo(path: Path) -> None:
    """Create a FIFO at path; an existing FIFO is kept for attached readers."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        if stat.S_ISFIFO(path.stat().st_mode):
            return
        path.unlink()
    os.mkfifo(path)
