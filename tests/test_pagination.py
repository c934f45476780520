import asyncio
from pathlib import Path
from typing import List, Optional, Set
from urllib.parse import parse_qs, urlparse

import pytest

from docharvest.workflows.append_log import AppendLog
from docharvest.workflows.errors import FetchError
from docharvest.workflows.pagination import PaginationOrchestrator, build_page_url, total_pages

TEMPLATE = "https://search.test/sds?countryCode=United States&first={offset}"


def _offset(url: str) -> int:
    return int(parse_qs(urlparse(url).query)["first"][0])


class FakePageFetcher:
    def __init__(self, *, fail_offsets: Optional[Set[int]] = None, delay: float = 0.01) -> None:
        self.fail_offsets = fail_offsets or set()
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.peak = 0

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            offset = _offset(url)
            if offset in self.fail_offsets:
                raise FetchError("status code error: 500", url=url, status=500)
            return f"<page offset={offset}/>"
        finally:
            self.in_flight -= 1


@pytest.mark.parametrize(
    "total_items,page_size,expected",
    [(100, 10, 10), (101, 10, 11), (1, 10, 1), (0, 10, 0), (12700, 10, 1270), (7, 3, 3)],
)
def test_total_pages_is_ceiling(total_items, page_size, expected):
    assert total_pages(total_items, page_size) == expected


def test_total_pages_rejects_bad_input():
    with pytest.raises(ValueError):
        total_pages(10, 0)
    with pytest.raises(ValueError):
        total_pages(-1, 10)


def test_build_page_url_encodes_spaces():
    assert build_page_url(TEMPLATE, 30) == "https://search.test/sds?countryCode=United%20States&first=30"


def test_run_issues_one_task_per_page_with_unique_offsets(tmp_path: Path) -> None:
    fetcher = FakePageFetcher()
    orchestrator = PaginationOrchestrator(fetcher, page_url_template=TEMPLATE)
    output = AppendLog(tmp_path / "dump.html")

    report = asyncio.run(orchestrator.run(95, 10, 3, output))

    offsets = sorted(_offset(url) for url in fetcher.calls)
    assert offsets == [i * 10 for i in range(10)]
    assert report.requested == 10
    assert report.succeeded == 10
    assert report.failed_pages == []
    assert all("United%20States" in url for url in fetcher.calls)


def test_concurrency_cap_is_respected(tmp_path: Path) -> None:
    fetcher = FakePageFetcher(delay=0.02)
    orchestrator = PaginationOrchestrator(fetcher, page_url_template=TEMPLATE)

    asyncio.run(orchestrator.run(200, 10, 4, AppendLog(tmp_path / "dump.html")))

    assert len(fetcher.calls) == 20
    assert 1 <= fetcher.peak <= 4


def test_failed_pages_are_skipped_and_others_appended(tmp_path: Path) -> None:
    fetcher = FakePageFetcher(fail_offsets={10, 30})
    orchestrator = PaginationOrchestrator(fetcher, page_url_template=TEMPLATE)
    path = tmp_path / "dump.html"

    report = asyncio.run(orchestrator.run(50, 10, 2, AppendLog(path)))

    content = path.read_text(encoding="utf-8")
    for offset in (0, 20, 40):
        assert f"<page offset={offset}/>" in content
    for offset in (10, 30):
        assert f"offset={offset}/" not in content
    assert report.succeeded == 3
    assert report.failed_pages == [1, 3]
    assert report.to_dict()["failed"] == 2


def test_unexpected_fetch_exception_only_fails_that_page(tmp_path: Path) -> None:
    class Exploding(FakePageFetcher):
        async def fetch(self, url: str) -> str:
            if _offset(url) == 0:
                raise KeyError("boom")
            return await super().fetch(url)

    orchestrator = PaginationOrchestrator(Exploding(), page_url_template=TEMPLATE)
    report = asyncio.run(orchestrator.run(30, 10, 2, AppendLog(tmp_path / "dump.html")))

    assert report.failed_pages == [0]
    assert report.succeeded == 2


def test_append_failure_marks_page_failed(tmp_path: Path) -> None:
    blocked = tmp_path / "dump.html"
    blocked.mkdir()
    orchestrator = PaginationOrchestrator(FakePageFetcher(), page_url_template=TEMPLATE)

    report = asyncio.run(orchestrator.run(20, 10, 2, AppendLog(blocked)))

    assert report.succeeded == 0
    assert report.failed_pages == [0, 1]


def test_zero_items_finishes_without_fetching(tmp_path: Path) -> None:
    fetcher = FakePageFetcher()
    orchestrator = PaginationOrchestrator(fetcher, page_url_template=TEMPLATE)
    path = tmp_path / "dump.html"

    report = asyncio.run(orchestrator.run(0, 10, 2, AppendLog(path)))

    assert report.requested == 0
    assert fetcher.calls == []
    assert not path.exists()


def test_progress_hook_sees_every_page_and_errors_are_ignored(tmp_path: Path) -> None:
    seen = []

    def hook(completed, total, result):
        seen.append((completed, total, result.index))
        raise RuntimeError("hook failure must not stop the run")

    orchestrator = PaginationOrchestrator(FakePageFetcher(), page_url_template=TEMPLATE)
    asyncio.run(orchestrator.run(30, 10, 2, AppendLog(tmp_path / "dump.html"), progress_hook=hook))

    assert [c for c, _, _ in seen] == [1, 2, 3]
    assert {t for _, t, _ in seen} == {3}
    assert sorted(i for _, _, i in seen) == [0, 1, 2]


def test_invalid_concurrency_rejected(tmp_path: Path) -> None:
    orchestrator = PaginationOrchestrator(FakePageFetcher(), page_url_template=TEMPLATE)
    with pytest.raises(ValueError):
        asyncio.run(orchestrator.run(10, 10, 0, AppendLog(tmp_path / "dump.html")))


def test_unencodable_page_body_is_still_appended(tmp_path: Path) -> None:
    class Surrogate(FakePageFetcher):
        async def fetch(self, url: str) -> str:
            if _offset(url) == 0:
                return "bad \ud800 body"
            return await super().fetch(url)

    path = tmp_path / "dump.html"
    report = asyncio.run(PaginationOrchestrator(Surrogate(), page_url_template=TEMPLATE).run(30, 10, 3, AppendLog(path)))

    assert report.succeeded == 3
    assert report.failed_pages == []
    assert "bad ? body" in path.read_text(encoding="utf-8")


def test_unexpected_append_failure_only_fails_that_page(tmp_path: Path) -> None:
    class PickyLog(AppendLog):
        async def append(self, data):
            if "offset=10/" in data:
                raise ValueError("rejected")
            return await super().append(data)

    fetcher = FakePageFetcher()
    report = asyncio.run(
        PaginationOrchestrator(fetcher, page_url_template=TEMPLATE).run(30, 10, 3, PickyLog(tmp_path / "dump.html"))
    )

    assert len(fetcher.calls) == 3
    assert report.failed_pages == [1]
    assert report.succeeded == 2


def test_template_with_other_braces_is_left_alone():
    template = 'https://s.test/search?filter={"country":"US"}&first={offset}'
    assert build_page_url(template, 20) == 'https://s.test/search?filter={"country":"US"}&first=20'

    orchestrator = PaginationOrchestrator(FakePageFetcher(), page_url_template=template)
    assert [r.offset for r in orchestrator.plan(25, 10)] == [0, 10, 20]


def test_report_does_not_retain_page_bodies(tmp_path: Path) -> None:
    orchestrator = PaginationOrchestrator(FakePageFetcher(), page_url_template=TEMPLATE)
    report = asyncio.run(orchestrator.run(30, 10, 2, AppendLog(tmp_path / "dump.html")))

    assert report.succeeded == 3
    assert all(not hasattr(result, "content") for result in report.results)
    assert sum(r.appended_bytes for r in report.results) == (tmp_path / "dump.html").stat().st_size
