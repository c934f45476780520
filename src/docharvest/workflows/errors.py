"""Exception hierarchy for the harvest pipeline.

Leaf operations raise these; the orchestrators decide whether a failure skips a
single unit of work (one page, one link) or aborts the run.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "HarvestError",
    "FetchError",
    "SaveError",
    "LedgerError",
]


class HarvestError(RuntimeError):
    """Base exception for harvest failures."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class FetchError(HarvestError):
    """Raised when a page or document cannot be retrieved with a 200 response."""

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message, url=url)
        self.status = status


class SaveError(HarvestError):
    """Raised when an artifact cannot be named, fetched, or written to disk."""


class LedgerError(HarvestError):
    """Raised when the link ledger cannot be read or appended to."""
