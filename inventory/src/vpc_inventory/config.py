from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .auth.providers import DEFAULT_SESSION_NAME
from .auth.scope import DEFAULT_ORG_ROLE_NAME, RunMode, validate_role_arn
from .util.errors import ConfigError

# --------
# Defaults
# --------
PROG = "vpc-inv"
DEFAULT_REGIONS = ("us-east-1", "us-west-2")
DEFAULT_WORKERS_REGION = 6
DEFAULT_WORKERS_SCAN = 6
SCAN_COMMANDS = {"vpcs", "rds"}
ALLOWED_CONFIG_KEYS = {
    "outdir",
    "regions",
    "vpc_ids",
    "role_arns",
    "use_org",
    "org_role_name",
    "summary_only",
    "profile",
    "bootstrap_region",
    "session_name",
    "workers_region",
    "workers_scan",
    "log_level",
    "json_logs",
    "log_file",
    "progress",
}
LIST_CONFIG_KEYS = {"regions", "vpc_ids", "role_arns"}
BOOL_CONFIG_KEYS = {"use_org", "summary_only", "json_logs", "progress"}
INT_CONFIG_KEYS = {"workers_region", "workers_scan"}
PATH_CONFIG_KEYS = {"outdir", "log_file"}
STR_CONFIG_KEYS = {"org_role_name", "profile", "bootstrap_region", "session_name", "log_level"}


@dataclass(frozen=True)
class RunConfig:
    # General
    outdir: Path
    regions: List[str] = field(default_factory=lambda: list(DEFAULT_REGIONS))
    vpc_ids: List[str] = field(default_factory=list)
    summary_only: bool = True
    json_logs: bool = False
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    progress: bool = True

    # Scope
    role_arns: List[str] = field(default_factory=list)
    use_org: bool = False
    org_role_name: str = DEFAULT_ORG_ROLE_NAME

    # Performance
    workers_region: int = DEFAULT_WORKERS_REGION
    workers_scan: int = DEFAULT_WORKERS_SCAN

    # Auth
    profile: Optional[str] = None
    bootstrap_region: Optional[str] = None
    session_name: str = DEFAULT_SESSION_NAME

    # Internal/derived
    collected_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )

    @property
    def mode(self) -> RunMode:
        if self.use_org:
            return RunMode.ORGANIZATION
        if self.role_arns:
            return RunMode.EXPLICIT
        return RunMode.CURRENT


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        elif path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            # Try YAML first then JSON
            try:
                data = yaml.safe_load(text) or {}
            except yaml.YAMLError:
                data = json.loads(text)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ConfigError(f"Config field '{key}' must be an integer")


def _split_list(value: Any) -> Optional[List[str]]:
    """
    Accept a comma-separated string or a list of strings (which may themselves
    contain commas, as with repeated CLI flags).
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        return None
    out: List[str] = []
    for item in value:
        out.extend(part.strip() for part in item.split(",") if part.strip())
    return out


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
            continue
        if key in LIST_CONFIG_KEYS:
            items = _split_list(value)
            if items is None:
                raise ConfigError(f"Config field '{key}' must be a list of strings or comma-separated string")
            normalized[key] = items
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in PATH_CONFIG_KEYS:
            if isinstance(value, (str, Path)):
                normalized[key] = value
            else:
                raise ConfigError(f"Config field '{key}' must be a string path")
        elif key in STR_CONFIG_KEYS:
            if isinstance(value, str):
                normalized[key] = value
            else:
                raise ConfigError(f"Config field '{key}' must be a string")
        else:
            normalized[key] = value
    return _compact_dict(normalized)


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def _timestamp_dir(base: Optional[Union[str, Path]]) -> Path:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    if base:
        return Path(base) / ts
    return Path("out") / ts


def validate_run_config(cfg: RunConfig) -> None:
    """
    Raise ConfigError for inputs no scan can start with. Role ARNs are checked
    here so a malformed identifier fails before any credential is touched.
    """
    if not cfg.regions:
        raise ConfigError("At least one region must be specified")
    for vpc_id in cfg.vpc_ids:
        if not vpc_id.startswith("vpc-"):
            raise ConfigError(f"Invalid VPC ID format: '{vpc_id}'. VPC IDs must start with 'vpc-'")
    if cfg.use_org and cfg.role_arns:
        raise ConfigError("--use-org and --role-arns are mutually exclusive")
    for arn in cfg.role_arns:
        validate_role_arn(arn)
    if not cfg.org_role_name.strip():
        raise ConfigError("org_role_name must not be empty")
    if cfg.workers_region < 1 or cfg.workers_scan < 1:
        raise ConfigError("Worker counts must be positive integers")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description="AWS VPC and RDS inventory across accounts and regions")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # common flags builder
    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument("--log-file", type=Path, default=None, help=f"Run log file (default: <log dir>/{PROG}.log)")
        # Auth
        p.add_argument("--profile", default=None, help="AWS shared-config profile (default credential chain if unset)")
        p.add_argument(
            "--bootstrap-region",
            default=None,
            help="Region for STS/Organizations calls (default: AWS_REGION, AWS_DEFAULT_REGION, first region)",
        )

    def add_scan(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--regions",
            default=None,
            help=f"Comma-separated regions to scan (default {','.join(DEFAULT_REGIONS)})",
        )
        scope = p.add_mutually_exclusive_group()
        scope.add_argument(
            "--role-arns",
            nargs="+",
            default=None,
            metavar="ROLE_ARN",
            help="Role ARNs to assume; roles in the caller's own account are scanned without AssumeRole",
        )
        scope.add_argument(
            "--use-org",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Scan every AWS Organizations member account through --org-role-name",
        )
        p.add_argument(
            "--org-role-name",
            default=None,
            help=f"Role assumed in each member account with --use-org (default {DEFAULT_ORG_ROLE_NAME})",
        )
        p.add_argument("--session-name", default=None, help=f"AssumeRole session name (default {DEFAULT_SESSION_NAME})")
        p.add_argument("--outdir", type=Path, default=None, help="Output base directory (out/TS)")
        p.add_argument(
            "--workers-region",
            type=int,
            default=None,
            help=f"Max parallel (account, region) units (default {DEFAULT_WORKERS_REGION})",
        )
        p.add_argument(
            "--progress",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Show a progress bar and summary table",
        )

    # vpcs
    p_vpcs = subparsers.add_parser("vpcs", help="Inventory VPCs and the resources inside them")
    add_common(p_vpcs)
    add_scan(p_vpcs)
    p_vpcs.add_argument(
        "vpc_ids",
        nargs="*",
        metavar="VPC_ID",
        help="Restrict to these VPC ids; resources are listed only when ids are given",
    )
    p_vpcs.add_argument(
        "--summary-only",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Skip resource scanners (default: on when no VPC ids are given)",
    )
    p_vpcs.add_argument(
        "--workers-scan",
        type=int,
        default=None,
        help=f"Max parallel resource scanners per VPC (default {DEFAULT_WORKERS_SCAN})",
    )

    # rds
    p_rds = subparsers.add_parser("rds", help="List RDS DB instances per account and region")
    add_common(p_rds)
    add_scan(p_rds)

    # validate-auth
    p_val = subparsers.add_parser("validate-auth", help="Validate credentials and print the caller identity")
    add_common(p_val)

    # list-accounts
    p_la = subparsers.add_parser("list-accounts", help="List AWS Organizations member accounts")
    add_common(p_la)

    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
    subcommand: Optional[str] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is the subcommand selected: vpcs|rds|validate-auth|list-accounts
    """
    parser = build_parser()
    ns = args if args is not None else parser.parse_args(argv)
    command = ns.command if subcommand is None else subcommand

    # defaults
    base: Dict[str, Any] = {
        "outdir": None,
        "regions": list(DEFAULT_REGIONS),
        "vpc_ids": [],
        "role_arns": [],
        "use_org": False,
        "org_role_name": DEFAULT_ORG_ROLE_NAME,
        "summary_only": None,
        "profile": None,
        "bootstrap_region": None,
        "session_name": DEFAULT_SESSION_NAME,
        "workers_region": DEFAULT_WORKERS_REGION,
        "workers_scan": DEFAULT_WORKERS_SCAN,
        "log_level": "INFO",
        "json_logs": False,
        "log_file": None,
        "progress": True,
    }

    # config file
    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    # env
    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": _env_str("VPC_INV_OUTDIR"),
            "regions": _split_list(_env_str("VPC_INV_REGIONS")),
            "role_arns": _split_list(_env_str("VPC_INV_ROLE_ARNS")),
            "use_org": _env_bool("VPC_INV_USE_ORG"),
            "org_role_name": _env_str("VPC_INV_ORG_ROLE_NAME"),
            "summary_only": _env_bool("VPC_INV_SUMMARY_ONLY"),
            "profile": _env_str("VPC_INV_PROFILE") or _env_str("AWS_PROFILE"),
            "bootstrap_region": _env_str("VPC_INV_BOOTSTRAP_REGION"),
            "session_name": _env_str("VPC_INV_SESSION_NAME"),
            "workers_region": _env_int("VPC_INV_WORKERS_REGION"),
            "workers_scan": _env_int("VPC_INV_WORKERS_SCAN"),
            "log_level": _env_str("VPC_INV_LOG_LEVEL"),
            "json_logs": _env_bool("VPC_INV_JSON_LOGS"),
            "log_file": _env_str("VPC_INV_LOG_FILE"),
            "progress": _env_bool("VPC_INV_PROGRESS"),
        }
    )

    # CLI
    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": getattr(ns, "outdir", None),
            "regions": _split_list(getattr(ns, "regions", None)),
            "vpc_ids": getattr(ns, "vpc_ids", None) or None,
            "role_arns": _split_list(getattr(ns, "role_arns", None)),
            "use_org": getattr(ns, "use_org", None),
            "org_role_name": getattr(ns, "org_role_name", None),
            "summary_only": getattr(ns, "summary_only", None),
            "profile": getattr(ns, "profile", None),
            "bootstrap_region": getattr(ns, "bootstrap_region", None),
            "session_name": getattr(ns, "session_name", None),
            "workers_region": getattr(ns, "workers_region", None),
            "workers_scan": getattr(ns, "workers_scan", None),
            "log_level": getattr(ns, "log_level", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_file": getattr(ns, "log_file", None),
            "progress": getattr(ns, "progress", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    # Normalize/construct types
    outdir_raw = merged.get("outdir")
    outdir = _timestamp_dir(outdir_raw) if command in SCAN_COMMANDS else Path(outdir_raw) if outdir_raw else Path.cwd()
    vpc_ids = [str(v).strip() for v in merged.get("vpc_ids") or [] if str(v).strip()]
    summary_only = merged.get("summary_only")
    if summary_only is None:
        # resources are listed only for explicitly requested VPCs
        summary_only = not vpc_ids
    profile = merged.get("profile")
    bootstrap = merged.get("bootstrap_region")
    log_file = merged.get("log_file")

    cfg = RunConfig(
        outdir=outdir,
        regions=[str(r).strip() for r in merged.get("regions") or [] if str(r).strip()],
        vpc_ids=vpc_ids,
        summary_only=bool(summary_only),
        json_logs=bool(merged["json_logs"]),
        log_level=(merged.get("log_level") or "INFO").upper(),
        log_file=Path(log_file) if log_file else None,
        progress=bool(merged["progress"]),
        role_arns=[str(a).strip() for a in merged.get("role_arns") or [] if str(a).strip()],
        use_org=bool(merged["use_org"]),
        org_role_name=str(merged.get("org_role_name") or DEFAULT_ORG_ROLE_NAME),
        workers_region=DEFAULT_WORKERS_REGION if merged["workers_region"] is None else int(merged["workers_region"]),
        workers_scan=DEFAULT_WORKERS_SCAN if merged["workers_scan"] is None else int(merged["workers_scan"]),
        profile=str(profile) if profile else None,
        bootstrap_region=str(bootstrap) if bootstrap else None,
        session_name=str(merged.get("session_name") or DEFAULT_SESSION_NAME),
    )
    if command in SCAN_COMMANDS:
        validate_run_config(cfg)
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "outdir": str(cfg.outdir),
        "regions": list(cfg.regions),
        "vpc_ids": list(cfg.vpc_ids),
        "summary_only": cfg.summary_only,
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
        "log_file": str(cfg.log_file) if cfg.log_file else None,
        "progress": cfg.progress,
        "mode": cfg.mode.value,
        "role_arns": list(cfg.role_arns),
        "use_org": cfg.use_org,
        "org_role_name": cfg.org_role_name,
        "workers_region": cfg.workers_region,
        "workers_scan": cfg.workers_scan,
        "profile": cfg.profile,
        "bootstrap_region": cfg.bootstrap_region,
        "session_name": cfg.session_name,
        "collected_at": cfg.collected_at,
    }
