"""Temporary input/output files scoped to a single request."""

import asyncio
import os
import re
import secrets
import time
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Dict, Iterator, Optional, Set, Union

from .error_handling import translate_os_errors
from .exceptions import ArtifactError
from .logging_config import get_logger

PathLike = Union[str, Path]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def unique_token() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"


def safe_filename(name: str, max_length: int = 100) -> str:
    """Reduce an uploaded file name to something safe to embed in a path."""
    base = Path(name or "").name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")[:max_length]
    return cleaned or "upload"


class ArtifactStore:
    """
    Owns the ``uploads/`` and ``outputs/`` directories.

    Every path handed out is unique per call, so concurrent requests never
    share a file and no locking is needed beyond exclusive create.
    """

    def __init__(self, upload_dir: PathLike, output_dir: PathLike):
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)
        self._logger = get_logger("artifacts")

    @property
    def directories(self) -> tuple:
        return (self.upload_dir, self.output_dir)

    @translate_os_errors
    def ensure_directories(self) -> None:
        for directory in self.directories:
            directory.mkdir(parents=True, exist_ok=True)

    @translate_os_errors
    def write(self, path: Path, data: bytes) -> None:
        # "x" fails instead of clobbering another request's file
        created = False
        try:
            with open(path, "xb") as fh:
                created = True
                fh.write(data)
        except OSError:
            if created:
                self._discard_quietly(path)
            raise

    @translate_os_errors
    def read(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def discard(self, path: PathLike) -> bool:
        """
        Delete ``path`` if it exists.

        Returns:
            True if a file was deleted, False if it was already gone

        Raises:
            ArtifactError: If the file exists but cannot be deleted
        """
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            self._logger.error(f"Failed to delete artifact {path}: {e}")
            raise ArtifactError(f"Cannot delete artifact: {e}", path=str(path)) from e
        self._logger.debug(f"Deleted artifact {path}")
        return True

    @contextmanager
    def temp_input(self, data: bytes, original_filename: str = "upload") -> Iterator[Path]:
        """
        Persist input bytes under ``uploads/`` for the duration of the block.

        The file is deleted on exit whether the block succeeds or raises.
        """
        self.ensure_directories()
        path = self.upload_dir / f"{unique_token()}-{safe_filename(original_filename)}"
        self.write(path, data)
        try:
            yield path
        except BaseException:
            self._discard_quietly(path)
            raise
        self.discard(path)

    @contextmanager
    def temp_output(self, extension: str) -> Iterator[Path]:
        """
        Reserve a fresh output path under ``outputs/``.

        If the block raises, any partially written file is deleted. On
        success the file is kept for delivery; the caller releases it with
        ``discard`` or leaves it to the sweep.
        """
        self.ensure_directories()
        path = self.output_dir / f"processed-{unique_token()}.{extension.lstrip('.')}"
        try:
            yield path
        except BaseException:
            self._discard_quietly(path)
            raise

    def _discard_quietly(self, path: Path) -> None:
        # Already unwinding; the original error wins and the sweep retries
        try:
            self.discard(path)
        except ArtifactError as e:
            self._logger.warning(f"Leaving {path} to the sweep: {e}")

    def sweep_expired(self, max_age: float, now: Optional[float] = None) -> int:
        """
        Delete every file in the managed directories older than ``max_age`` seconds.

        Failures on single files or directories are logged and skipped so
        one bad entry never stops the sweep.

        Returns:
            Number of files deleted
        """
        now = time.time() if now is None else now
        deleted = 0

        for directory in self.directories:
            if not directory.is_dir():
                continue
            try:
                entries = list(os.scandir(directory))
            except OSError as e:
                self._logger.error(f"Error listing {directory} during sweep: {e}")
                continue

            for entry in entries:
                try:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    if now - entry.stat(follow_symlinks=False).st_mtime <= max_age:
                        continue
                    os.unlink(entry.path)
                    deleted += 1
                except FileNotFoundError:
                    # Removed by its own request in the meantime
                    continue
                except OSError as e:
                    self._logger.error(f"Error sweeping {entry.path}: {e}")

        if deleted:
            self._logger.info(f"Sweep removed {deleted} expired artifact(s)")
        return deleted


class ArtifactSweeper:
    """
    Background task that periodically sweeps expired artifacts.

    Also owns the delayed deletions of delivered outputs. ``start`` must be
    called from a running event loop; ``stop`` cancels the loop, waits for
    it and deletes any outputs still waiting for their grace window.
    Deletions started from the event loop run in a worker thread.
    """

    def __init__(self, store: ArtifactStore, interval: float, max_age: float):
        self._store = store
        self._interval = interval
        self._max_age = max_age
        self._task: Optional[asyncio.Task] = None
        self._pending: Dict[Path, asyncio.TimerHandle] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._logger = get_logger("sweeper")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_deletions(self) -> int:
        return len(self._pending) + len(self._inflight)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="artifact-sweeper"
        )
        self._logger.info(
            f"Artifact sweeper started (interval={self._interval}s, max_age={self._max_age}s)"
        )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        waiting = list(self._pending.items())
        self._pending.clear()
        for _, handle in waiting:
            handle.cancel()
        await asyncio.gather(
            *(asyncio.to_thread(self._expire, path) for path, _ in waiting),
            *self._inflight,
        )
        self._logger.info("Artifact sweeper stopped")

    async def sweep_once(self) -> int:
        return await asyncio.to_thread(self._store.sweep_expired, self._max_age)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                self._logger.error("Sweep pass failed, retrying next interval", exc_info=True)

    async def release(self, path: PathLike, delay: float) -> None:
        """Like ``schedule_deletion``, but an immediate deletion runs off the event loop."""
        path = Path(path)
        if delay <= 0:
            self._cancel_pending(path)
            await asyncio.to_thread(self._expire, path)
        else:
            self.schedule_deletion(path, delay)

    def schedule_deletion(self, path: PathLike, delay: float) -> None:
        """Delete ``path`` after ``delay`` seconds, or right away if delay <= 0."""
        path = Path(path)
        self._cancel_pending(path)
        if delay <= 0:
            self._expire(path)
            return
        loop = asyncio.get_running_loop()
        self._pending[path] = loop.call_later(delay, self._on_due, path)

    def _cancel_pending(self, path: Path) -> None:
        handle = self._pending.pop(path, None)
        if handle is not None:
            handle.cancel()

    def _on_due(self, path: Path) -> None:
        self._pending.pop(path, None)
        task = asyncio.get_running_loop().create_task(asyncio.to_thread(self._expire, path))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _expire(self, path: Path) -> None:
        try:
            self._store.discard(path)
        except ArtifactError as e:
            # The periodic sweep retries anything left behind
            self._logger.error(f"Delayed deletion of {path} failed: {e}")
