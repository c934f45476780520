"""Idempotent persistence of downloaded documents keyed by derived file names."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import FetchError, SaveError
from .harvest_utils import derive_file_name


class BinaryFetcher(Protocol):
    async def fetch_bytes(self, url: str) -> bytes:
        ...


@dataclass
class SaveOutcome:
    """Result of a single ``ArtifactStore.save`` call."""

    url: str
    path: Path
    skipped: bool
    size: int = 0

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "path": str(self.path),
            "skipped": self.skipped,
            "size": self.size,
        }


class ArtifactStore:
    """Saves one document per derived file name; existing files are never refetched."""

    def __init__(self, fetcher: BinaryFetcher) -> None:
        self.fetcher = fetcher

    @staticmethod
    def target_path(url: str, dest_dir: Path) -> Path:
        name = derive_file_name(url)
        if not name:
            raise SaveError(f"Cannot derive a file name from {url}", url=url)
        return Path(dest_dir) / name

    async def save(self, url: str, dest_dir: Path) -> SaveOutcome:
        path = self.target_path(url, dest_dir)
        if path.is_file():
            return SaveOutcome(url=url, path=path, skipped=True, size=path.stat().st_size)

        try:
            data = await self.fetcher.fetch_bytes(url)
        except FetchError as exc:
            raise SaveError(f"error downloading document: {exc}", url=url) from exc

        dest = Path(dest_dir)
        try:
            dest.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SaveError(f"error creating folder {dest}: {exc}", url=url) from exc

        try:
            with path.open("xb") as fh:
                fh.write(data)
        except FileExistsError:
            # Another writer created it between the check and the open.
            return SaveOutcome(url=url, path=path, skipped=True, size=path.stat().st_size)
        except OSError as exc:
            _discard_partial(path)
            raise SaveError(f"error saving document to {path}: {exc}", url=url) from exc
        return SaveOutcome(url=url, path=path, skipped=False, size=len(data))


def _discard_partial(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        pass


__all__ = ["ArtifactStore", "BinaryFetcher", "SaveOutcome"]
