from __future__ import annotations

import asyncio
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .workflows.append_log import AppendLog
from .workflows.artifact_store import ArtifactStore
from .workflows.download import DownloadOrchestrator, DownloadReport
from .workflows.errors import HarvestError
from .workflows.harvest_config import HarvestConfig
from .workflows.harvest_utils import collect_environment_warnings
from .workflows.page_fetch import FetchConfig, HttpPageFetcher, build_page_fetcher
from .workflows.pagination import PaginationOrchestrator, PaginationReport

logger = logging.getLogger(__name__)


def generate_run_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    suffix = secrets.token_hex(3)
    return f"{stamp}_{suffix}"


def _iso(ts: datetime) -> str:
    return ts.replace(microsecond=0).isoformat().replace("+00:00", "Z")


async def run_pages(config: HarvestConfig) -> PaginationReport:
    """Fetch every result page and append its markup to ``config.output_path``."""

    fetch_config = FetchConfig.from_harvest_config(config)
    try:
        config.output_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise HarvestError(f"Unable to create folder for {config.output_path}: {exc}") from exc
    output = AppendLog(config.output_path)
    async with build_page_fetcher(fetch_config, config.fetch_strategy) as fetcher:
        orchestrator = PaginationOrchestrator(fetcher, page_url_template=config.page_url_template)
        return await orchestrator.run(
            config.total_items,
            config.page_size,
            config.concurrency,
            output,
        )


async def run_downloads(config: HarvestConfig) -> DownloadReport:
    """Download every linked document found in ``config.output_path``."""

    fetch_config = FetchConfig.from_harvest_config(config)
    async with HttpPageFetcher(fetch_config) as fetcher:
        orchestrator = DownloadOrchestrator(
            ArtifactStore(fetcher),
            link_strategy=config.link_strategy,
            marker_class=config.marker_class,
            extension=config.extension,
            ledger_match=config.ledger_match,
        )
        return await orchestrator.run(config.output_path, config.download_dir, config.ledger_path)


def build_summary(
    *,
    command: str,
    run_id: str,
    config: HarvestConfig,
    started_at: datetime,
    finished_at: datetime,
    pages: Optional[PaginationReport],
    downloads: Optional[DownloadReport],
    env_warnings: List[Dict[str, str]],
) -> Dict[str, Any]:
    attempted = 0
    completed = 0
    summary: Dict[str, Any] = {
        "command": command,
        "run_id": run_id,
        "started_at": _iso(started_at),
        "finished_at": _iso(finished_at),
        "duration_ms": int((finished_at - started_at).total_seconds() * 1000),
        "config": {
            "total_items": config.total_items,
            "page_size": config.page_size,
            "concurrency": config.concurrency,
            "fetch_strategy": config.fetch_strategy,
            "link_strategy": config.link_strategy,
            "ledger_match": config.ledger_match,
            "output_path": str(config.output_path),
            "download_dir": str(config.download_dir),
            "ledger_path": str(config.ledger_path),
        },
    }
    if pages is not None:
        summary["pages"] = pages.to_dict()
        attempted += pages.requested
        completed += pages.succeeded
    if downloads is not None:
        summary["downloads"] = downloads.to_dict()
        attempted += downloads.attempted
        completed += downloads.completed
    summary["counts"] = {
        "attempted": attempted,
        "completed": completed,
        "failed": attempted - completed,
    }
    if env_warnings:
        summary["environment_warnings"] = env_warnings
    return summary


def run_harvest(
    config: HarvestConfig,
    *,
    command: str = "run",
    pages: bool = True,
    download: bool = True,
    soft_fail: bool = False,
) -> Tuple[Dict[str, Any], int]:
    """Run the selected phases and return ``(summary, exit_code)``.

    Per-page and per-link failures only affect the exit code; failure to read
    the aggregated content or ledger propagates as ``HarvestError``.
    """

    config.validate()
    started_at = datetime.now(timezone.utc)
    run_id = generate_run_id(started_at)

    env_warnings = collect_environment_warnings(fetch_strategy=config.fetch_strategy if pages else "http")
    for warning in env_warnings:
        logger.warning("%s (%s)", warning.get("message"), warning.get("remedy"))

    page_report: Optional[PaginationReport] = None
    download_report: Optional[DownloadReport] = None
    if pages:
        page_report = asyncio.run(run_pages(config))
    if download:
        download_report = asyncio.run(run_downloads(config))

    finished_at = datetime.now(timezone.utc)
    summary = build_summary(
        command=command,
        run_id=run_id,
        config=config,
        started_at=started_at,
        finished_at=finished_at,
        pages=page_report,
        downloads=download_report,
        env_warnings=env_warnings,
    )
    counts = summary["counts"]
    logger.info(
        "Harvest %s finished: %d/%d units completed", run_id, counts["completed"], counts["attempted"]
    )

    if config.summary_path is not None:
        try:
            config.summary_path.parent.mkdir(parents=True, exist_ok=True)
            config.summary_path.write_text(json.dumps(summary, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            raise HarvestError(f"Unable to write summary {config.summary_path}: {exc}") from exc

    exit_code = 0
    if not soft_fail and counts["failed"] > 0:
        exit_code = 3
    return summary, exit_code


__all__ = [
    "build_summary",
    "generate_run_id",
    "run_downloads",
    "run_harvest",
    "run_pages",
]
