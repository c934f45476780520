"""Best-effort extraction of document download links from result-page markup."""

from __future__ import annotations

import re
from typing import List, Optional

from bs4 import BeautifulSoup, SoupStrainer  # type: ignore

from .harvest_config import DOCUMENT_EXTENSION, MARKER_CLASS
from .harvest_utils import is_absolute_url


def _class_string(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value or "")


def extract_marked_links(
    content: str,
    *,
    marker_class: str = MARKER_CLASS,
    extension: str = DOCUMENT_EXTENSION,
) -> List[str]:
    """Return hrefs of ``<a>`` elements whose class contains ``marker_class``.

    Only anchors are parsed; the href must end with ``extension``
    (case-insensitive) and be absolute.
    """

    if not content:
        return []
    suffix = extension.lower()
    try:
        soup = BeautifulSoup(content, "lxml", parse_only=SoupStrainer("a"))
    except Exception:
        return []
    links: List[str] = []
    for anchor in soup.find_all("a"):
        if marker_class not in _class_string(anchor.get("class")):
            continue
        href = (anchor.get("href") or "").strip()
        if not href.lower().endswith(suffix):
            continue
        if not is_absolute_url(href):
            continue
        links.append(href)
    return links


def _href_pattern(extension: str) -> "re.Pattern[str]":
    ext = re.escape(extension.lstrip("."))
    return re.compile(r'href="(https?://[^"\s]+?\.' + ext + r')"', re.IGNORECASE)


def extract_pattern_links(content: str, *, extension: str = DOCUMENT_EXTENSION) -> List[str]:
    """Regex fallback matching ``href="<absolute-url>.<ext>"`` without a marker."""

    if not content:
        return []
    return [match.group(1) for match in _href_pattern(extension).finditer(content)]


def extract_links(
    content: Optional[str],
    *,
    strategy: str = "markup",
    marker_class: str = MARKER_CLASS,
    extension: str = DOCUMENT_EXTENSION,
) -> List[str]:
    """Return document links in document order; never raises on bad markup."""

    if not content:
        return []
    if strategy == "pattern":
        return extract_pattern_links(content, extension=extension)
    if strategy != "markup":
        raise ValueError(f"Unknown link strategy: {strategy}")
    return extract_marked_links(content, marker_class=marker_class, extension=extension)


__all__ = [
    "extract_links",
    "extract_marked_links",
    "extract_pattern_links",
]
