from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .scan.aggregate import ScanResult

REPORT_FILENAME = "report.md"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _md_cell(value: str) -> str:
    # Escape pipes and keep each row on one line.
    v = (value or "").replace("\n", "<br>").strip()
    v = v.replace("|", "\\|")
    return v


def _md_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[str]:
    hdr = [_md_cell(str(h)) for h in headers]
    out: List[str] = []
    out.append("| " + " | ".join(hdr) + " |")
    out.append("| " + " | ".join(["---"] * len(headers)) + " |")
    for r in rows:
        rr = [_md_cell(str(c)) for c in r]
        out.append("| " + " | ".join(rr) + " |")
    return out


def render_run_report_md(
    *,
    status: str,
    cfg_dict: Dict[str, Any],
    result: Optional[ScanResult],
    started_at: str,
    finished_at: str,
    fatal_error: Optional[str] = None,
) -> str:
    lines: List[str] = ["# VPC Inventory Report", ""]
    lines.append(f"- Status: **{status}**")
    lines.append(f"- Started: {started_at}")
    lines.append(f"- Finished: {finished_at}")
    lines.append(f"- Mode: {cfg_dict.get('mode')}")
    lines.append(f"- Regions requested: {', '.join(cfg_dict.get('regions') or [])}")
    if fatal_error:
        lines.append(f"- Fatal error: `{fatal_error}`")
    lines.append("")

    if result is None:
        return "\n".join(lines) + "\n"

    counts = result.counts()
    lines.append("## Summary")
    lines.extend(_md_table(["Metric", "Value"], [[k, str(v)] for k, v in counts.items()]))
    lines.append("")

    lines.append("## Networks")
    net_rows = [
        [
            n.region,
            n.network_id,
            n.name or "",
            n.account_id or "",
            "yes" if n.public else "no",
            "peered" if n.peered else "unpeered",
            "\n".join(n.cidrs),
        ]
        for n in result.records()
    ]
    if net_rows:
        lines.extend(_md_table(["Region", "VPC ID", "Name", "Account", "Public", "Peering", "CIDRs"], net_rows))
    else:
        lines.append("_No VPCs found._")
    lines.append("")

    with_resources = [n for n in result.records() if n.resources]
    if with_resources:
        lines.append("## Resources")
        for n in with_resources:
            lines.append(f"### {n.region} / {n.network_id}")
            rows = [
                [
                    r.resource_type.value,
                    r.name,
                    r.identifier if r.verified_network else f"{r.identifier} (unverified)",
                ]
                for r in n.resources
            ]
            lines.extend(_md_table(["Type", "Name", "Identifier"], rows))
            lines.append("")
        lines.append(
            "Database and DocumentDB clusters are marked unverified: their APIs expose no VPC, "
            "so they appear under every scanned VPC of their region."
        )
        lines.append("")

    if result.failures:
        lines.append("## Failures")
        rows = [
            [f.region, f.scope, f.vpc_id or "", f.stage, f.family or "", f.code or "", f.message]
            for f in result.failures
        ]
        lines.extend(_md_table(["Region", "Scope", "VPC", "Stage", "Family", "Code", "Message"], rows))
        lines.append("")

    return "\n".join(lines) + "\n"


def write_run_report_md(
    *,
    outdir: Path,
    status: str,
    cfg_dict: Dict[str, Any],
    result: Optional[ScanResult],
    started_at: Optional[str] = None,
    finished_at: Optional[str] = None,
    fatal_error: Optional[str] = None,
) -> Path:
    outdir.mkdir(parents=True, exist_ok=True)
    text = render_run_report_md(
        status=status,
        cfg_dict=cfg_dict,
        result=result,
        started_at=started_at or _utc_now_iso(),
        finished_at=finished_at or _utc_now_iso(),
        fatal_error=fatal_error,
    )
    p = outdir / REPORT_FILENAME
    p.write_text(text, encoding="utf-8")
    return p
