from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .append_log import AppendLog
from .errors import FetchError
from .harvest_config import PAGE_URL_TEMPLATE
from .page_fetch import PageFetcher

logger = logging.getLogger(__name__)


def total_pages(total_items: int, page_size: int) -> int:
    if page_size <= 0:
        raise ValueError(f"page_size must be > 0 (got {page_size})")
    if total_items < 0:
        raise ValueError(f"total_items must be >= 0 (got {total_items})")
    return math.ceil(total_items / page_size)


def build_page_url(template: str, offset: int) -> str:
    """Fill ``{offset}`` in ``template``; literal spaces are percent-encoded."""

    return template.replace("{offset}", str(offset)).replace(" ", "%20")


@dataclass
class PageRequest:
    index: int
    offset: int
    url: str


@dataclass
class PageResult:
    """Outcome of one page task."""

    index: int
    url: str
    error: Optional[str] = None
    appended_bytes: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "index": self.index,
            "url": self.url,
            "ok": self.ok,
            "appended_bytes": self.appended_bytes,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class PaginationReport:
    requested: int
    results: List[PageResult] = field(default_factory=list)
    runtime_seconds: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed_pages(self) -> List[int]:
        return sorted(r.index for r in self.results if not r.ok)

    def to_dict(self) -> Dict[str, Any]:
        runtime = max(self.runtime_seconds, 1e-6)
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "requested": self.requested,
            "fetched": self.succeeded,
            "failed": len(self.failed_pages),
            "failed_pages": self.failed_pages,
            "runtime_seconds": round(runtime, 3),
            "effective_pps": round(len(self.results) / runtime, 3) if self.results else 0.0,
        }


class PaginationOrchestrator:
    """Fetches every result page under a concurrency cap into one append log.

    Each page runs as its own task; an ``asyncio.Semaphore`` of capacity
    ``concurrency`` admits at most that many fetches at once. A failed page is
    logged and skipped. Output order follows completion order.
    """

    def __init__(self, fetcher: PageFetcher, *, page_url_template: str = PAGE_URL_TEMPLATE) -> None:
        self.fetcher = fetcher
        self.page_url_template = page_url_template

    def plan(self, total_items: int, page_size: int) -> List[PageRequest]:
        return [
            PageRequest(
                index=index,
                offset=index * page_size,
                url=build_page_url(self.page_url_template, index * page_size),
            )
            for index in range(total_pages(total_items, page_size))
        ]

    async def run(
        self,
        total_items: int,
        page_size: int,
        concurrency: int,
        output: AppendLog,
        progress_hook: Optional[Callable[[int, int, PageResult], None]] = None,
    ) -> PaginationReport:
        if concurrency <= 0:
            raise ValueError(f"concurrency must be > 0 (got {concurrency})")
        requests = self.plan(total_items, page_size)
        semaphore = asyncio.Semaphore(concurrency)
        report = PaginationReport(requested=len(requests))
        start_time = time.perf_counter()

        tasks = [asyncio.create_task(self._fetch_page(request, semaphore, output)) for request in requests]
        total = len(tasks)
        completed = 0
        for task in asyncio.as_completed(tasks):
            result = await task
            report.results.append(result)
            completed += 1
            if progress_hook is not None:
                try:
                    progress_hook(completed, total, result)
                except Exception:
                    pass

        report.runtime_seconds = time.perf_counter() - start_time
        logger.info(
            "Pagination finished: %d/%d pages appended to %s (%d failed)",
            report.succeeded,
            report.requested,
            output.path,
            len(report.failed_pages),
        )
        return report

    async def _fetch_page(self, request: PageRequest, semaphore: asyncio.Semaphore, output: AppendLog) -> PageResult:
        result = PageResult(index=request.index, url=request.url)
        async with semaphore:
            try:
                content = await self.fetcher.fetch(request.url)
            except FetchError as exc:
                result.error = str(exc)
                logger.warning("Error scraping page %d (%s): %s", request.index + 1, request.url, exc)
                return result
            except Exception as exc:
                result.error = f"unexpected fetch failure: {exc!r}"
                logger.exception("Unexpected error scraping page %d (%s)", request.index + 1, request.url)
                return result
        try:
            result.appended_bytes = await output.append(content)
        except OSError as exc:
            result.error = f"append failed: {exc}"
            logger.warning("Error appending page %d to %s: %s", request.index + 1, output.path, exc)
            return result
        except Exception as exc:
            result.error = f"unexpected append failure: {exc!r}"
            logger.exception("Unexpected error appending page %d to %s", request.index + 1, output.path)
            return result
        logger.info("Page %d scraped successfully and appended to %s", request.index + 1, output.path)
        return result


__all__ = [
    "PageRequest",
    "PageResult",
    "PaginationOrchestrator",
    "PaginationReport",
    "build_page_url",
    "total_pages",
]
