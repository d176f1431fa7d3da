from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .auth.providers import AuthContext, detect_bootstrap_region, get_caller_identity, resolve_auth
from .auth.scope import ScopePath
from .config import PROG, RunConfig, dump_config, load_run_config
from .logging import LogConfig, StepTimers, add_run_log_file, default_log_dir, get_logger, log_event, setup_logging
from .scan.aggregate import ScanResult
from .scan.orchestrator import ScanOrchestrator, ScanRequest
from .scan.rds import RdsInventory, RdsScanResult, format_instance
from .util.errors import ConfigError, ExportError, as_exit_code
from .util.rich_progress import RunProgress, render_networks_table, render_resources_table, render_run_summary_table
from .util.serialization import stable_json_dumps

LOG = get_logger(__name__)

OUT_SCHEMA_VERSION = "1"
RUN_SUMMARY_FILENAME = "run_summary.json"


def _resolve_auth(cfg: RunConfig) -> AuthContext:
    bootstrap = cfg.bootstrap_region or detect_bootstrap_region(cfg.regions)
    return resolve_auth(cfg.profile, bootstrap)


def _run_log_path(cfg: RunConfig) -> Path:
    return cfg.log_file or default_log_dir() / f"{PROG}.log"


def _write_run_summary(outdir: Path, metrics: Dict[str, Any]) -> Path:
    summary = dict(metrics)
    summary["schema_version"] = OUT_SCHEMA_VERSION
    path = outdir / RUN_SUMMARY_FILENAME
    try:
        path.write_text(stable_json_dumps(summary), encoding="utf-8")
    except OSError as e:
        raise ExportError(f"Failed to write {path}: {e}") from e
    return path


def _vpc_metrics(result: ScanResult, cfg: RunConfig, status: str) -> Dict[str, Any]:
    failures_by_stage: Dict[str, int] = {}
    for f in result.failures:
        failures_by_stage[f.stage] = failures_by_stage.get(f.stage, 0) + 1
    counts_by_type: Dict[str, int] = {}
    for net in result.records():
        for res in net.resources:
            counts_by_type[res.resource_type.value] = counts_by_type.get(res.resource_type.value, 0) + 1
    return {
        "status": status,
        "mode": cfg.mode.value,
        "summary_only": cfg.summary_only,
        "regions_scanned": list(result.regions_scanned),
        **result.counts(),
        "failures_by_stage": dict(sorted(failures_by_stage.items())),
        "counts_by_resource_type": dict(sorted(counts_by_type.items())),
        "failure_details": [f.to_dict() for f in result.failures],
    }


def _export_vpcs(cfg: RunConfig, result: ScanResult, progress: RunProgress) -> Dict[str, int]:
    from .export.csv import write_networks_csv, write_resources_csv
    from .export.jsonl import write_networks_jsonl

    records = result.records()
    progress.start_export()
    written: Dict[str, int] = {}
    try:
        written["networks.jsonl"] = write_networks_jsonl(records, cfg.outdir / "networks.jsonl")
        progress.advance_export()
        written["networks.csv"] = write_networks_csv(records, cfg.outdir / "networks.csv")
        progress.advance_export()
        if not cfg.summary_only:
            written["resources.csv"] = write_resources_csv(records, cfg.outdir / "resources.csv")
            progress.advance_export()
    except OSError as e:
        raise ExportError(f"Failed to write export files to {cfg.outdir}: {e}") from e
    return written


def _print_vpcs(result: ScanResult, *, show_resources: bool) -> None:
    from .export.csv import network_rows, resource_rows

    records = result.records()
    rows = network_rows(records)
    if not render_networks_table(rows):
        for row in rows:
            print("\t".join([row["region"], row["vpc_id"], row["name"] or "", ",".join(row["cidrs"])]))
    if not show_resources:
        return
    for net in records:
        res_rows = resource_rows([net])
        if not res_rows:
            continue
        label = f"{net.region} / {net.network_id}"
        if not render_resources_table(label, res_rows):
            for row in res_rows:
                print("\t".join([label, row["type"], row["name"], row["identifier"]]))


def cmd_vpcs(cfg: RunConfig) -> int:
    from .report import write_run_report_md

    cfg.outdir.mkdir(parents=True, exist_ok=True)
    started_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
    timers = StepTimers()
    status = "OK"
    fatal_error: Optional[str] = None
    result: Optional[ScanResult] = None
    metrics: Dict[str, Any] = {}

    log_event(
        LOG,
        logging.INFO,
        "Starting VPC inventory run",
        step="run",
        phase="start",
        timers=timers,
        outdir=str(cfg.outdir),
        mode=cfg.mode.value,
    )
    try:
        log_event(LOG, logging.INFO, "Authentication resolution started", step="auth", phase="start", timers=timers)
        ctx = _resolve_auth(cfg)
        log_event(
            LOG,
            logging.INFO,
            "Authentication resolved",
            step="auth",
            phase="complete",
            timers=timers,
            profile=cfg.profile,
            bootstrap_region=ctx.bootstrap_region,
        )

        with RunProgress(enabled=cfg.progress) as progress:
            progress.start_scan(cfg.regions)
            orchestrator = ScanOrchestrator(
                ctx,
                workers_region=cfg.workers_region,
                workers_scan=cfg.workers_scan,
                session_name=cfg.session_name,
                org_role_name=cfg.org_role_name,
                progress=progress,
            )
            result = orchestrator.run(
                ScanRequest(
                    regions=tuple(cfg.regions),
                    mode=cfg.mode,
                    role_arns=tuple(cfg.role_arns),
                    vpc_ids=tuple(cfg.vpc_ids),
                    summary_only=cfg.summary_only,
                )
            )
            if result.failures:
                status = "PARTIAL"

            log_event(LOG, logging.INFO, "Export started", step="export", phase="start", timers=timers)
            written = _export_vpcs(cfg, result, progress)
            log_event(
                LOG,
                logging.INFO,
                "Export complete",
                step="export",
                phase="complete",
                timers=timers,
                files=sorted(written),
            )

        metrics = _vpc_metrics(result, cfg, status)
        _write_run_summary(cfg.outdir, metrics)
        _print_vpcs(result, show_resources=not cfg.summary_only)
    except Exception as e:
        status = "FAILED"
        fatal_error = str(e)
        log_event(LOG, logging.ERROR, "VPC inventory run failed", step="run", phase="error", timers=timers, error=str(e))
        raise
    finally:
        try:
            write_run_report_md(
                outdir=cfg.outdir,
                status=status,
                cfg_dict=dump_config(cfg),
                result=result,
                started_at=started_at,
                fatal_error=fatal_error,
            )
        except OSError as e:
            LOG.warning("Failed to write run report", extra={"error": str(e)})

    log_event(
        LOG,
        logging.INFO,
        "VPC inventory run complete",
        step="run",
        phase="complete",
        timers=timers,
        status=status,
    )
    render_run_summary_table(
        enabled=cfg.progress,
        status=status,
        metrics={k: v for k, v in metrics.items() if k not in {"status", "mode"}},
        regions=cfg.regions,
        outdir=str(cfg.outdir),
    )
    return 0


def _rds_metrics(result: RdsScanResult, cfg: RunConfig) -> Dict[str, Any]:
    by_region: Dict[str, int] = {}
    for inst in result.instances:
        by_region[inst.region] = by_region.get(inst.region, 0) + 1
    failed = result.failed
    return {
        "status": "PARTIAL" if failed else "OK",
        "mode": cfg.mode.value,
        "instances": len(result.instances),
        "units_scanned": sum(1 for o in result.outcomes if o.path == ScopePath.SCANNED),
        "units_failed": len(failed),
        "counts_by_region": dict(sorted(by_region.items())),
        "failure_details": [
            {"scope": o.scope.label, "region": o.region, "message": o.error} for o in failed
        ],
    }


def cmd_rds(cfg: RunConfig) -> int:
    from .export.csv import write_rds_csv
    from .export.jsonl import write_rds_jsonl

    cfg.outdir.mkdir(parents=True, exist_ok=True)
    timers = StepTimers()
    log_event(
        LOG,
        logging.INFO,
        "Starting RDS inventory run",
        step="run",
        phase="start",
        timers=timers,
        outdir=str(cfg.outdir),
        mode=cfg.mode.value,
    )
    ctx = _resolve_auth(cfg)
    inventory = RdsInventory(
        ctx,
        workers_region=cfg.workers_region,
        session_name=cfg.session_name,
        org_role_name=cfg.org_role_name,
    )
    result = inventory.run(cfg.mode, list(cfg.regions), tuple(cfg.role_arns))

    try:
        write_rds_jsonl(result.instances, cfg.outdir / "rds_instances.jsonl")
        write_rds_csv(result.instances, cfg.outdir / "rds_instances.csv")
    except OSError as e:
        raise ExportError(f"Failed to write export files to {cfg.outdir}: {e}") from e
    metrics = _rds_metrics(result, cfg)
    _write_run_summary(cfg.outdir, metrics)

    for inst in result.instances:
        print(format_instance(inst))

    log_event(
        LOG,
        logging.INFO,
        "RDS inventory run complete",
        step="run",
        phase="complete",
        timers=timers,
        status=metrics["status"],
        instances=len(result.instances),
    )
    render_run_summary_table(
        enabled=cfg.progress,
        status=str(metrics["status"]),
        metrics={k: v for k, v in metrics.items() if k not in {"status", "mode"}},
        regions=cfg.regions,
        outdir=str(cfg.outdir),
    )
    return 0


def cmd_validate_auth(cfg: RunConfig) -> int:
    ctx = _resolve_auth(cfg)
    identity = get_caller_identity(ctx)
    LOG.info(
        "Authentication validated",
        extra={"profile": cfg.profile, "account_id": identity["Account"], "bootstrap_region": ctx.bootstrap_region},
    )
    # Print to stdout a concise success message (no secrets)
    print(f"OK: authenticated as {identity['Arn']} (account {identity['Account']})")
    return 0


def cmd_list_accounts(cfg: RunConfig) -> int:
    from .aws.organizations import list_member_accounts

    ctx = _resolve_auth(cfg)
    accounts: List[Dict[str, str]] = list_member_accounts(ctx)
    for a in accounts:
        print(f'{a["id"]},{a["name"]},{a["status"]}')
    return 0


def main() -> None:
    try:
        command, cfg = load_run_config()
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))
        add_run_log_file(_run_log_path(cfg))

        if command == "vpcs":
            code = cmd_vpcs(cfg)
        elif command == "rds":
            code = cmd_rds(cfg)
        elif command == "validate-auth":
            code = cmd_validate_auth(cfg)
        elif command == "list-accounts":
            code = cmd_list_accounts(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        # Treat as a normal early-exit and avoid logging after stdout is closed.
        try:
            sys.exit(0)
        except SystemExit:
            raise
    except Exception as e:
        # Map to consistent exit code and log
        try:
            setup_logging(LogConfig())  # ensure something is configured
        except Exception:
            pass
        LOG.error("Execution failed: %s", e, extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
