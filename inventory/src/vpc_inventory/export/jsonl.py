from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..scan.aggregate import NetworkRecord
from ..scan.rds import RdsInstance
from ..util.serialization import stable_json_dumps


def write_jsonl(rows: Iterable[Dict[str, Any]], path: Path) -> int:
    """
    Write one stable-key JSON object per line. Row order is the caller's.
    Returns the number of lines written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8") as f:
        for row in rows:
            f.write(stable_json_dumps(row))
            f.write("\n")
            count += 1
    return count


def write_networks_jsonl(records: Iterable[NetworkRecord], path: Path) -> int:
    """
    Ordering: region, then vpc_id (the aggregate order), regardless of input order.
    """
    ordered: List[NetworkRecord] = sorted(records, key=lambda r: r.key)
    return write_jsonl((r.to_dict() for r in ordered), path)


def write_rds_jsonl(instances: Iterable[RdsInstance], path: Path) -> int:
    return write_jsonl((i.to_dict() for i in instances), path)
