"""High-level exports for the harvest workflows."""

from .append_log import AppendLog, Ledger
from .artifact_store import ArtifactStore, SaveOutcome
from .download import DownloadOrchestrator, DownloadReport
from .errors import FetchError, HarvestError, LedgerError, SaveError
from .harvest_config import HarvestConfig, load_config_from_env
from .link_extract import extract_links
from .page_fetch import BrowserPageFetcher, FetchConfig, HttpPageFetcher, PageFetcher, build_page_fetcher
from .pagination import PaginationOrchestrator, PaginationReport, build_page_url, total_pages

__all__ = [
    "AppendLog",
    "ArtifactStore",
    "BrowserPageFetcher",
    "DownloadOrchestrator",
    "DownloadReport",
    "FetchConfig",
    "FetchError",
    "HarvestConfig",
    "HarvestError",
    "HttpPageFetcher",
    "Ledger",
    "LedgerError",
    "PageFetcher",
    "PaginationOrchestrator",
    "PaginationReport",
    "SaveError",
    "SaveOutcome",
    "build_page_fetcher",
    "build_page_url",
    "extract_links",
    "load_config_from_env",
    "total_pages",
]
