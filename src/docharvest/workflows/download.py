from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .append_log import Ledger
from .artifact_store import ArtifactStore, SaveOutcome
from .errors import HarvestError, LedgerError, SaveError
from .harvest_config import DOCUMENT_EXTENSION, MARKER_CLASS
from .harvest_utils import dedup_preserve_order, normalize_link
from .link_extract import extract_links

logger = logging.getLogger(__name__)


@dataclass
class DownloadReport:
    links_found: int = 0
    links_unique: int = 0
    saved: List[SaveOutcome] = field(default_factory=list)
    skipped_existing: List[SaveOutcome] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    ledger_appended: int = 0
    ledger_known: int = 0
    ledger_errors: Dict[str, str] = field(default_factory=dict)
    runtime_seconds: float = 0.0

    @property
    def attempted(self) -> int:
        return self.links_unique

    @property
    def completed(self) -> int:
        return len(self.saved) + len(self.skipped_existing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "links_found": self.links_found,
            "links_unique": self.links_unique,
            "downloaded": len(self.saved),
            "skipped_existing": len(self.skipped_existing),
            "failed": len(self.failed),
            "failed_links": dict(self.failed),
            "ledger_appended": self.ledger_appended,
            "ledger_known": self.ledger_known,
            "ledger_errors": dict(self.ledger_errors),
            "runtime_seconds": round(self.runtime_seconds, 3),
        }


class DownloadOrchestrator:
    """Harvests links from the aggregated dump and downloads each one once.

    The ledger is read once at the start; every link is saved, then recorded
    in the ledger unless the start-of-run snapshot already holds it. Links are
    processed sequentially and a failed link never stops the remaining ones.
    """

    def __init__(
        self,
        store: ArtifactStore,
        *,
        link_strategy: str = "markup",
        marker_class: str = MARKER_CLASS,
        extension: str = DOCUMENT_EXTENSION,
        ledger_match: str = "line",
    ) -> None:
        self.store = store
        self.link_strategy = link_strategy
        self.marker_class = marker_class
        self.extension = extension
        self.ledger_match = ledger_match

    async def run(self, aggregated_path: Path, download_dir: Path, ledger_path: Path) -> DownloadReport:
        start_time = time.perf_counter()
        try:
            content = Path(aggregated_path).read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            raise HarvestError(f"Unable to read aggregated content {aggregated_path}: {exc}") from exc

        report = DownloadReport()
        raw_links = extract_links(
            content,
            strategy=self.link_strategy,
            marker_class=self.marker_class,
            extension=self.extension,
        )
        report.links_found = len(raw_links)
        first_seen: Dict[str, str] = {}
        for link in raw_links:
            first_seen.setdefault(normalize_link(link), link)
        links = dedup_preserve_order(normalize_link(link) for link in raw_links)
        report.links_unique = len(links)
        logger.info("Found %d links (%d unique) in %s", report.links_found, report.links_unique, aggregated_path)

        ledger = Ledger(ledger_path, match=self.ledger_match)
        ledger.load()

        for link in links:
            await self._save(link, first_seen[link], Path(download_dir), report)
            await self._record(ledger, link, report)

        report.runtime_seconds = time.perf_counter() - start_time
        logger.info(
            "Download finished: %d/%d links completed (%d downloaded, %d already present, %d failed); "
            "%d new ledger entries in %s",
            report.completed,
            report.attempted,
            len(report.saved),
            len(report.skipped_existing),
            len(report.failed),
            report.ledger_appended,
            ledger_path,
        )
        return report

    async def _save(self, link: str, source_url: str, download_dir: Path, report: DownloadReport) -> Optional[SaveOutcome]:
        try:
            outcome = await self.store.save(source_url, download_dir)
        except SaveError as exc:
            report.failed[link] = str(exc)
            logger.warning("Error downloading %s: %s", link, exc)
            return None
        except Exception as exc:
            report.failed[link] = f"unexpected download failure: {exc!r}"
            logger.exception("Unexpected error downloading %s", link)
            return None
        if outcome.skipped:
            report.skipped_existing.append(outcome)
            logger.info("File %s already exists, skipping download.", outcome.path)
        else:
            report.saved.append(outcome)
            logger.info("Saved %s (%d bytes)", outcome.path, outcome.size)
        return outcome

    async def _record(self, ledger: Ledger, link: str, report: DownloadReport) -> None:
        if ledger.contains(link):
            report.ledger_known += 1
            return
        try:
            await ledger.record(link)
        except LedgerError as exc:
            report.ledger_errors[link] = str(exc)
            logger.warning("Error recording %s in ledger: %s", link, exc)
            return
        report.ledger_appended += 1


__all__ = ["DownloadOrchestrator", "DownloadReport"]
