from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .harvest import run_harvest
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.errors import HarvestError
from .workflows.harvest_config import HarvestConfig, load_config_from_env

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Paginated search harvester.")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level_name = os.getenv("HARVEST_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format=_LOG_FORMAT, stream=sys.stderr)


def _build_config(overrides: Dict[str, Any]) -> HarvestConfig:
    try:
        return load_config_from_env().with_overrides(**overrides).validate()
    except ValueError as exc:
        raise typer.BadParameter(str(exc))


def _execute(command: str, overrides: Dict[str, Any], *, pages: bool, download: bool, json_out: bool, soft_fail: bool) -> None:
    config = _build_config(overrides)
    try:
        summary, exit_code = run_harvest(
            config,
            command=command,
            pages=pages,
            download=download,
            soft_fail=soft_fail,
        )
    except HarvestError as exc:
        if not json_out:
            typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if json_out:
        sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
    else:
        counts = summary["counts"]
        typer.echo(f"{command}: {counts['completed']}/{counts['attempted']} completed, {counts['failed']} failed")
    raise typer.Exit(code=exit_code)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log warnings and errors."),
) -> None:
    _configure_logging(verbose, quiet)


@app.command("pages")
def pages_cmd(
    total_items: Optional[int] = typer.Option(None, "--total-items", help="Number of results to page through."),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Results per page."),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Maximum pages fetched at once."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Aggregated markup file (append-only)."),
    template: Optional[str] = typer.Option(None, "--template", help="Page URL template with an {offset} placeholder."),
    strategy: Optional[str] = typer.Option(None, "--fetch-strategy", help="http or browser."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-request timeout in seconds."),
    render_timeout: Optional[float] = typer.Option(None, "--render-timeout", help="Browser page lifetime cap in seconds."),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window (browser strategy)."),
    summary: Optional[Path] = typer.Option(None, "--summary", help="Write the JSON summary to this file."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if some pages fail."),
) -> None:
    """Fetch every result page into the aggregated markup file."""
    overrides = {
        "total_items": total_items,
        "page_size": page_size,
        "concurrency": concurrency,
        "output_path": output,
        "page_url_template": template,
        "fetch_strategy": strategy,
        "request_timeout": timeout,
        "render_timeout": render_timeout,
        "headless": False if headed else None,
        "summary_path": summary,
    }
    _execute("pages", overrides, pages=True, download=False, json_out=json_out, soft_fail=soft_fail)


@app.command("download")
def download_cmd(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Aggregated markup file to read."),
    download_dir: Optional[Path] = typer.Option(None, "--download-dir", "-d", help="Directory for documents."),
    ledger: Optional[Path] = typer.Option(None, "--ledger", help="Newline-delimited link ledger."),
    link_strategy: Optional[str] = typer.Option(None, "--link-strategy", help="markup or pattern."),
    ledger_match: Optional[str] = typer.Option(None, "--ledger-match", help="line or substring."),
    marker: Optional[str] = typer.Option(None, "--marker", help="CSS class marking download anchors."),
    extension: Optional[str] = typer.Option(None, "--extension", help="Document file extension."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-request timeout in seconds."),
    summary: Optional[Path] = typer.Option(None, "--summary", help="Write the JSON summary to this file."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if some downloads fail."),
) -> None:
    """Extract links from the aggregated markup and download each document once."""
    overrides = {
        "output_path": output,
        "download_dir": download_dir,
        "ledger_path": ledger,
        "link_strategy": link_strategy,
        "ledger_match": ledger_match,
        "marker_class": marker,
        "extension": extension,
        "request_timeout": timeout,
        "summary_path": summary,
    }
    _execute("download", overrides, pages=False, download=True, json_out=json_out, soft_fail=soft_fail)


@app.command("run")
def run_cmd(
    total_items: Optional[int] = typer.Option(None, "--total-items", help="Number of results to page through."),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Results per page."),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Maximum pages fetched at once."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Aggregated markup file."),
    download_dir: Optional[Path] = typer.Option(None, "--download-dir", "-d", help="Directory for documents."),
    ledger: Optional[Path] = typer.Option(None, "--ledger", help="Newline-delimited link ledger."),
    template: Optional[str] = typer.Option(None, "--template", help="Page URL template with an {offset} placeholder."),
    strategy: Optional[str] = typer.Option(None, "--fetch-strategy", help="http or browser."),
    link_strategy: Optional[str] = typer.Option(None, "--link-strategy", help="markup or pattern."),
    ledger_match: Optional[str] = typer.Option(None, "--ledger-match", help="line or substring."),
    marker: Optional[str] = typer.Option(None, "--marker", help="CSS class marking download anchors."),
    extension: Optional[str] = typer.Option(None, "--extension", help="Document file extension."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-request timeout in seconds."),
    render_timeout: Optional[float] = typer.Option(None, "--render-timeout", help="Browser page lifetime cap in seconds."),
    headed: bool = typer.Option(False, "--headed", help="Show the browser window (browser strategy)."),
    summary: Optional[Path] = typer.Option(None, "--summary", help="Write the JSON summary to this file."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if some units fail."),
) -> None:
    """Fetch all pages, then download every linked document."""
    overrides = {
        "total_items": total_items,
        "page_size": page_size,
        "concurrency": concurrency,
        "output_path": output,
        "download_dir": download_dir,
        "ledger_path": ledger,
        "page_url_template": template,
        "fetch_strategy": strategy,
        "link_strategy": link_strategy,
        "ledger_match": ledger_match,
        "marker_class": marker,
        "extension": extension,
        "request_timeout": timeout,
        "render_timeout": render_timeout,
        "headless": False if headed else None,
        "summary_path": summary,
    }
    _execute("run", overrides, pages=True, download=True, json_out=json_out, soft_fail=soft_fail)


@app.command("doctor")
def doctor_cmd(
    strategy: Optional[str] = typer.Option(None, "--fetch-strategy", help="http or browser."),
) -> None:
    """Print environment and configuration diagnostics."""
    config = load_config_from_env().with_overrides(fetch_strategy=strategy)
    report = build_doctor_report(config)
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


if __name__ == "__main__":  # pragma: no cover
    app()
