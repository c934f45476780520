"""Harvest defaults (endpoint template, markers, headers, artifact paths).

Centralizes static defaults so the orchestrators have no embedded magic strings.
Callers can build their own HarvestConfig to override any of them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

# Endpoint / markup
PAGE_URL_TEMPLATE = "https://www.ecolab.com/sds-search?countryCode=United States&first={offset}"
MARKER_CLASS = "sds-downloadBtn"
DOCUMENT_EXTENSION = ".pdf"

# Headers
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# Artifacts (cwd-relative)
OUTPUT_PATH = Path("ecolab-com.html")
DOWNLOAD_DIR = Path("PDFs")
LEDGER_PATH = Path("ecolab-com-links.txt")

# Run sizing
TOTAL_ITEMS = 100
PAGE_SIZE = 10
CONCURRENCY = 5
REQUEST_TIMEOUT = 30.0
RENDER_TIMEOUT = 300.0

FETCH_STRATEGIES = ("http", "browser")
LINK_STRATEGIES = ("markup", "pattern")
LEDGER_MATCH_MODES = ("line", "substring")


def _env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float = 0.0) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name, "")
    return raw.strip() or default


@dataclass
class HarvestConfig:
    """Configuration for a pagination + download run."""

    total_items: int = TOTAL_ITEMS
    page_size: int = PAGE_SIZE
    concurrency: int = CONCURRENCY
    output_path: Path = OUTPUT_PATH
    download_dir: Path = DOWNLOAD_DIR
    ledger_path: Path = LEDGER_PATH
    request_timeout: float = REQUEST_TIMEOUT
    render_timeout: float = RENDER_TIMEOUT
    page_url_template: str = PAGE_URL_TEMPLATE
    marker_class: str = MARKER_CLASS
    extension: str = DOCUMENT_EXTENSION
    user_agent: str = USER_AGENT
    fetch_strategy: str = "http"
    link_strategy: str = "markup"
    ledger_match: str = "line"
    headless: bool = True
    summary_path: Optional[Path] = None

    def validate(self) -> "HarvestConfig":
        if self.total_items < 0:
            raise ValueError(f"total_items must be >= 0 (got {self.total_items})")
        if self.page_size <= 0:
            raise ValueError(f"page_size must be > 0 (got {self.page_size})")
        if self.concurrency <= 0:
            raise ValueError(f"concurrency must be > 0 (got {self.concurrency})")
        if self.request_timeout <= 0 or self.render_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if "{offset}" not in self.page_url_template:
            raise ValueError("page_url_template must contain an {offset} placeholder")
        if self.fetch_strategy not in FETCH_STRATEGIES:
            raise ValueError(f"Unknown fetch strategy: {self.fetch_strategy}")
        if self.link_strategy not in LINK_STRATEGIES:
            raise ValueError(f"Unknown link strategy: {self.link_strategy}")
        if self.ledger_match not in LEDGER_MATCH_MODES:
            raise ValueError(f"Unknown ledger match mode: {self.ledger_match}")
        if not self.extension.startswith("."):
            self.extension = f".{self.extension}"
        return self

    def with_overrides(self, **overrides: Any) -> "HarvestConfig":
        """Return a copy with every non-None override applied."""

        known = {f.name for f in fields(self)}
        clean: Dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in known:
                raise TypeError(f"Unknown config field: {key}")
            clean[key] = value
        return replace(self, **clean)


def load_config_from_env() -> HarvestConfig:
    """Build a HarvestConfig from ``HARVEST_*`` environment variables."""

    summary_raw = os.getenv("HARVEST_SUMMARY_PATH", "").strip()
    return HarvestConfig(
        total_items=_env_int("HARVEST_TOTAL_ITEMS", TOTAL_ITEMS),
        page_size=_env_int("HARVEST_PAGE_SIZE", PAGE_SIZE),
        concurrency=_env_int("HARVEST_CONCURRENCY", CONCURRENCY),
        output_path=Path(_env_str("HARVEST_OUTPUT_PATH", str(OUTPUT_PATH))),
        download_dir=Path(_env_str("HARVEST_DOWNLOAD_DIR", str(DOWNLOAD_DIR))),
        ledger_path=Path(_env_str("HARVEST_LEDGER_PATH", str(LEDGER_PATH))),
        request_timeout=_env_float("HARVEST_REQUEST_TIMEOUT", REQUEST_TIMEOUT),
        render_timeout=_env_float("HARVEST_RENDER_TIMEOUT", RENDER_TIMEOUT),
        page_url_template=_env_str("HARVEST_PAGE_URL_TEMPLATE", PAGE_URL_TEMPLATE),
        marker_class=_env_str("HARVEST_MARKER_CLASS", MARKER_CLASS),
        extension=_env_str("HARVEST_EXTENSION", DOCUMENT_EXTENSION),
        user_agent=_env_str("HARVEST_USER_AGENT", USER_AGENT),
        fetch_strategy=_env_str("HARVEST_FETCH_STRATEGY", "http").lower(),
        link_strategy=_env_str("HARVEST_LINK_STRATEGY", "markup").lower(),
        ledger_match=_env_str("HARVEST_LEDGER_MATCH", "line").lower(),
        headless=_env_bool("HARVEST_HEADLESS", "1"),
        summary_path=Path(summary_raw) if summary_raw else None,
    )
