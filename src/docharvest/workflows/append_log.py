"""Append-only shared files: the aggregated page dump and the link ledger."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Union

from .errors import LedgerError
from .harvest_utils import ledger_contains


class AppendLog:
    """Append-only writer onto one file, shared by concurrent tasks.

    Every task holds a reference to the same instance; ``append`` serializes
    writers with a single lock so page bodies never interleave mid-write. The
    file is opened per call and created on first use.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock: asyncio.Lock = asyncio.Lock()
        self.appends = 0
        self.bytes_written = 0

    async def append(self, data: Union[str, bytes]) -> int:
        payload = data.encode("utf-8", "replace") if isinstance(data, str) else data
        async with self._lock:
            with self.path.open("ab") as fh:
                fh.write(payload)
            self.appends += 1
            self.bytes_written += len(payload)
        return len(payload)


class Ledger:
    """Newline-delimited record of links already processed by earlier runs.

    ``load`` takes a snapshot of the file once; membership checks use that
    snapshot for the rest of the run, so links appended during the run are not
    seen by ``contains``.
    """

    def __init__(self, path: Path, *, match: str = "line") -> None:
        self.path = Path(path)
        self.match = match
        self._log = AppendLog(self.path)
        self._snapshot = ""

    @property
    def snapshot(self) -> str:
        return self._snapshot

    def load(self) -> str:
        if not self.path.exists():
            self._snapshot = ""
            return self._snapshot
        try:
            self._snapshot = self.path.read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            raise LedgerError(f"Unable to read ledger {self.path}: {exc}") from exc
        return self._snapshot

    def contains(self, link: str) -> bool:
        return ledger_contains(self._snapshot, link, mode=self.match)

    async def record(self, link: str) -> None:
        line = link + "\n"
        if self._log.appends == 0 and self._snapshot and not self._snapshot.endswith("\n"):
            line = "\n" + line
        try:
            await self._log.append(line)
        except OSError as exc:
            raise LedgerError(f"Unable to append to ledger {self.path}: {exc}", url=link) from exc


__all__ = ["AppendLog", "Ledger"]
