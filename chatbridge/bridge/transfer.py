"""Attachment transfer: download to scratch files and clean them up."""

from __future__ import annotations

import asyncio
import re
import time
import uuid
from pathlib import Path

import httpx
from loguru import logger

from .types import AttachmentRef


INLINE_TEXT_SUFFIXES = (".txt",)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def is_inline_text(name: str) -> bool:
    """Plain-text attachments are relayed as chat text, not as files."""
    return name.lower().endswith(INLINE_TEXT_SUFFIXES)


def _safe_name(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned or "media"


class AttachmentTransfer:
    """Scratch-file lifecycle for relayed attachments.

    Every file written here is transient: callers either delete it right after
    sending or hand it to ``release_later``.
    """

    def __init__(
        self,
        scratch_dir: str | Path,
        linger: float = 5.0,
        timeout: float = 30.0,
    ) -> None:
        self._dir = Path(scratch_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._linger = linger
        self._timeout = timeout
        self._pending: dict[asyncio.Task, Path] = {}

    @property
    def scratch_dir(self) -> Path:
        return self._dir

    async def fetch_bytes(self, url: str) -> bytes:
        """Download a remote attachment."""
        async with httpx.AsyncClient(follow_redirects=True) as client:
            response = await client.get(url, timeout=self._timeout)
            response.raise_for_status()
            return response.content

    def write_scratch(self, data: bytes, name: str) -> Path:
        """Persist bytes to a uniquely named scratch file."""
        path = self._dir / (
            f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}_{_safe_name(name)}"
        )
        path.write_bytes(data)
        logger.debug(f"Wrote scratch file {path.name} ({len(data)} bytes)")
        return path

    @staticmethod
    def read_text(path: str | Path) -> str:
        return Path(path).read_text(encoding="utf-8", errors="replace")

    def delete_scratch(self, path: str | Path) -> None:
        """Delete a scratch file. Failures are logged, never raised."""
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete scratch file {path}: {e}")

    def release_later(self, path: str | Path) -> asyncio.Task:
        """Delete a scratch file after the linger delay without blocking."""
        task = asyncio.create_task(self._release_after(Path(path)))
        self._pending[task] = Path(path)
        task.add_done_callback(lambda t: self._pending.pop(t, None))
        return task

    async def _release_after(self, path: Path) -> None:
        try:
            await asyncio.sleep(self._linger)
        finally:
            self.delete_scratch(path)

    async def download(
        self, url: str, name: str, content_type: str = ""
    ) -> AttachmentRef:
        """Fetch a remote attachment into a scratch file."""
        data = await self.fetch_bytes(url)
        path = self.write_scratch(data, name)
        return AttachmentRef(name=name, path=path, content_type=content_type)

    def purge_stale(self, max_age: float) -> int:
        """Remove scratch files older than max_age seconds (left over by a crash)."""
        cutoff = time.time() - max_age
        removed = 0
        for path in self._dir.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to purge scratch file {path}: {e}")
        if removed:
            logger.info(f"Purged {removed} stale scratch file(s)")
        return removed

    async def close(self) -> None:
        """Run pending delayed deletions now."""
        pending = dict(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        # a release cancelled before it started never reached its finally
        for path in pending.values():
            self.delete_scratch(path)
