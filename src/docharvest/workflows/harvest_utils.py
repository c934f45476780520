"""Shared helper functions used by the harvest workflow."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Iterable, List, Set
from urllib.parse import unquote, urlparse

_ILLEGAL_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def is_absolute_url(url: str) -> bool:
    """Return True for ``http``/``https`` URLs that carry a host."""

    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.netloc)


def normalize_link(url: str) -> str:
    """Case-normalize a link before dedup and ledger comparison."""

    return (url or "").strip().lower()


def dedup_preserve_order(items: Iterable[str]) -> List[str]:
    """Drop repeated strings, keeping the first occurrence and the original order."""

    seen: Set[str] = set()
    unique: List[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        unique.append(item)
    return unique


def derive_file_name(url: str) -> str:
    """Return a filesystem-safe name from the last path segment of ``url``.

    Illegal characters (``<>:"/\\|?*`` and control characters) are removed,
    spaces become underscores and the result is lower-cased. Returns an empty
    string when no usable segment exists.
    """

    try:
        path = unquote(urlparse(url or "").path or "")
    except ValueError:
        return ""
    segment = path.rstrip("/").rsplit("/", 1)[-1]
    clean = _ILLEGAL_FILENAME_CHARS.sub("", segment).replace(" ", "_").lower()
    if clean in {".", ".."}:
        return ""
    return clean


def ledger_contains(ledger_text: str, link: str, *, mode: str = "line") -> bool:
    """Return True when ``link`` is already recorded in ``ledger_text``.

    ``line`` compares against the set of ledger lines. ``substring`` checks
    containment anywhere in the text, so a link that is a prefix of a longer
    recorded link also matches.
    """

    if not link:
        return False
    if mode == "substring":
        return link in ledger_text
    if mode != "line":
        raise ValueError(f"Unknown ledger match mode: {mode}")
    return link in {line.strip() for line in ledger_text.splitlines()}


def collect_environment_warnings(*, fetch_strategy: str = "http") -> List[Dict[str, str]]:
    """Return non-fatal environment problems for the configured run."""

    warnings: List[Dict[str, str]] = []
    if fetch_strategy == "browser":
        from . import page_fetch

        if getattr(page_fetch, "async_playwright", None) is None:
            warnings.append(
                {
                    "code": "playwright_missing",
                    "message": "Playwright is not installed; the browser fetch strategy is unavailable",
                    "remedy": "pip install playwright && playwright install chromium",
                }
            )
    return warnings


def check_writable(path: Path) -> bool:
    """Return True if ``path`` (or its nearest existing ancestor) is writable."""

    try:
        candidate = path
        while not candidate.exists():
            if candidate.parent == candidate:
                return False
            candidate = candidate.parent
        return os.access(candidate, os.W_OK)
    except OSError:
        return False


def sanity_check() -> None:
    assert dedup_preserve_order(["a", "b", "a", "c"]) == ["a", "b", "c"]
    assert derive_file_name("https://x.com/docs/My File (v2).pdf") == "my_file_(v2).pdf"
    assert ledger_contains("https://x/a.pdf\n", "https://x/a.pdf")
    assert is_absolute_url("https://x/y.pdf") and not is_absolute_url("/y.pdf")


sanity_check()

__all__ = [
    "check_writable",
    "collect_environment_warnings",
    "dedup_preserve_order",
    "derive_file_name",
    "is_absolute_url",
    "ledger_contains",
    "normalize_link",
    "sanity_check",
]
