from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .harvest_config import HarvestConfig
from .harvest_utils import check_writable, collect_environment_warnings

# Warnings already reported as a dedicated check.
_COVERED_BY_CHECKS = {"playwright_missing"}


def _check_playwright_available() -> bool:
    try:
        from . import page_fetch
        return getattr(page_fetch, "async_playwright", None) is not None
    except Exception:
        return False


def build_doctor_report(config: HarvestConfig) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": [
            warning
            for warning in collect_environment_warnings(fetch_strategy=config.fetch_strategy)
            if warning.get("code") not in _COVERED_BY_CHECKS
        ],
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    try:
        config.validate()
        add_check("config", True, detail="configuration is valid")
    except ValueError as exc:
        add_check("config", False, detail=str(exc), remedy="Fix the HARVEST_* variables or CLI options.")

    playwright_ok = _check_playwright_available()
    add_check(
        "playwright",
        playwright_ok,
        detail="browser fetch strategy available" if playwright_ok else "browser fetch strategy unavailable",
        remedy="Install Playwright and run `playwright install --with-deps chromium`.",
        level="warn" if config.fetch_strategy == "browser" else "info",
    )

    for name, path in (
        ("output_path", config.output_path),
        ("download_dir", config.download_dir),
        ("ledger_path", config.ledger_path),
    ):
        add_check(
            name,
            check_writable(path),
            detail=str(path),
            remedy=f"Create a writable location for {path} or point the option elsewhere.",
        )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("docharvest doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        lines.append(f"- [{level}] {name}: {status}")
        detail = check.get("detail")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            lines.append(f"- {warning.get('code', 'warning')}: {warning.get('message', '')}")
            remedy = warning.get("remedy", "")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
