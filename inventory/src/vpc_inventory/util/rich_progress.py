from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, Optional, Sequence

try:
    from rich.console import Console
    from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
    from rich.table import Table
except Exception:  # pragma: no cover - fallback when rich isn't available
    Console = None  # type: ignore[assignment]
    Progress = None  # type: ignore[assignment]
    BarColumn = None  # type: ignore[assignment]
    TaskProgressColumn = None  # type: ignore[assignment]
    TextColumn = None  # type: ignore[assignment]
    TimeElapsedColumn = None  # type: ignore[assignment]
    Table = None  # type: ignore[assignment]


def _format_region_counts(counts: Dict[str, int], *, max_regions: int = 4) -> str:
    if not counts:
        return ""
    items = sorted(counts.items(), key=lambda item: item[0])
    shown = items[:max_regions]
    tail = len(items) - len(shown)
    rendered = ", ".join([f"{name}={count}" for name, count in shown])
    if tail > 0:
        rendered = f"{rendered} (+{tail} more)"
    return rendered


class RunProgress:
    """
    Transient progress bars on stderr: one for VPCs scanned (per-region counts),
    one for export. advance_scan is called from scan worker threads.
    """

    def __init__(self, *, enabled: bool, console: Optional[Console] = None) -> None:
        self._enabled = bool(enabled and Console and Progress)
        self._console = console or (Console(stderr=True) if Console else None)
        self._progress = None
        self._scan_task: Optional[int] = None
        self._export_task: Optional[int] = None
        self._region_counts: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._started = False
        if self._enabled:
            self._progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("{task.fields[regions]}", justify="left"),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )

    def __enter__(self) -> RunProgress:
        if self._enabled and self._progress and not self._started:
            self._progress.start()
            self._started = True
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._enabled and self._progress and self._started:
            self._progress.stop()
            self._started = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_scan(self, regions: Sequence[str], *, description: str = "VPCs") -> None:
        if not self._enabled or not self._progress:
            return
        self._region_counts = {region: 0 for region in regions}
        self._scan_task = self._progress.add_task(
            description,
            total=None,
            regions=_format_region_counts(self._region_counts),
        )

    def advance_scan(self, region: str, *, count: int = 1) -> None:
        if not self._enabled or not self._progress or self._scan_task is None:
            return
        with self._lock:
            if region:
                self._region_counts[region] = self._region_counts.get(region, 0) + count
            rendered = _format_region_counts(self._region_counts)
        self._progress.update(self._scan_task, advance=count, regions=rendered)

    def start_export(self) -> None:
        if not self._enabled or not self._progress:
            return
        self._export_task = self._progress.add_task("Export", total=None, regions="")

    def advance_export(self, *, count: int = 1) -> None:
        if not self._enabled or not self._progress or self._export_task is None:
            return
        self._progress.update(self._export_task, advance=count, regions="")


def render_run_summary_table(
    *,
    enabled: bool,
    status: str,
    metrics: Dict[str, Any],
    regions: Sequence[str],
    outdir: str,
    console: Optional[Console] = None,
) -> None:
    if not enabled or not Table or not Console:
        return
    table = Table(title="Run Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", status)
    table.add_row("Regions in scope", ", ".join(regions))
    for key, value in metrics.items():
        if isinstance(value, (dict, list)):
            continue
        table.add_row(key.replace("_", " ").capitalize(), str(value))
    table.add_row("Output dir", outdir)
    (console or Console(stderr=True)).print(table)


def render_networks_table(
    rows: Iterable[Dict[str, Any]],
    *,
    console: Optional[Console] = None,
) -> bool:
    """
    Print one row per VPC (Region, VPC ID, Name, Public, Peering, CIDRs) to stdout.
    Returns False when rich is unavailable so the caller can fall back to plain text.
    """
    if not Table or not Console:
        return False
    table = Table(show_header=True, header_style="bold")
    for header in ("Region", "VPC ID", "Name", "Public", "Peering", "CIDRs"):
        table.add_column(header, overflow="fold")
    for row in rows:
        table.add_row(
            str(row.get("region") or ""),
            str(row.get("vpc_id") or ""),
            str(row.get("name") or ""),
            "yes" if row.get("public") else "no",
            "peered" if row.get("peered") else "unpeered",
            "\n".join(row.get("cidrs") or []),
        )
    (console or Console()).print(table)
    return True


def render_resources_table(
    vpc_label: str,
    rows: Iterable[Dict[str, Any]],
    *,
    console: Optional[Console] = None,
) -> bool:
    if not Table or not Console:
        return False
    table = Table(title=vpc_label, show_header=True, header_style="bold")
    for header in ("Type", "Name", "Identifier"):
        table.add_column(header, overflow="fold")
    for row in rows:
        ident = str(row.get("identifier") or "")
        if not row.get("verified_network", True):
            ident = f"{ident} (unverified)"
        table.add_row(str(row.get("type") or ""), str(row.get("name") or ""), ident)
    (console or Console()).print(table)
    return True
