from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from ..scan.aggregate import NetworkRecord
from ..scan.rds import RdsInstance

NETWORK_CSV_FIELDS = ["region", "vpc_id", "name", "account_id", "public", "peered", "peers", "cidrs"]
RESOURCE_CSV_FIELDS = ["region", "vpc_id", "type", "identifier", "name", "verified_network"]
RDS_CSV_FIELDS = ["role_arn", "region", "instance_id"]

# Multi-valued cells (CIDRs, peers) are joined with this separator.
LIST_SEPARATOR = ";"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return LIST_SEPARATOR.join(str(v) for v in value)
    return str(value)


def write_csv(rows: Iterable[Dict[str, Any]], fields: Sequence[str], path: Path) -> int:
    """
    Write rows (dicts) with a fixed header. Missing keys become empty cells.
    Returns the number of data rows written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(list(fields))
        for row in rows:
            writer.writerow([_cell(row.get(name)) for name in fields])
            count += 1
    return count


def network_rows(records: Iterable[NetworkRecord]) -> List[Dict[str, Any]]:
    return [
        {
            "region": r.region,
            "vpc_id": r.network_id,
            "name": r.name,
            "account_id": r.account_id,
            "public": r.public,
            "peered": r.peered,
            "peers": r.peers,
            "cidrs": r.cidrs,
        }
        for r in sorted(records, key=lambda r: r.key)
    ]


def resource_rows(records: Iterable[NetworkRecord]) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for r in sorted(records, key=lambda r: r.key):
        for res in r.resources:
            rows.append(
                {
                    "region": r.region,
                    "vpc_id": r.network_id,
                    "type": res.resource_type.value,
                    "identifier": res.identifier,
                    "name": res.name,
                    "verified_network": res.verified_network,
                }
            )
    return rows


def write_networks_csv(records: Iterable[NetworkRecord], path: Path) -> int:
    return write_csv(network_rows(records), NETWORK_CSV_FIELDS, path)


def write_resources_csv(records: Iterable[NetworkRecord], path: Path) -> int:
    return write_csv(resource_rows(records), RESOURCE_CSV_FIELDS, path)


def write_rds_csv(instances: Iterable[RdsInstance], path: Path) -> int:
    return write_csv((i.to_dict() for i in instances), RDS_CSV_FIELDS, path)
