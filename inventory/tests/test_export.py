from __future__ import annotations

import csv
import json

from vpc_inventory.export.csv import NETWORK_CSV_FIELDS, write_networks_csv, write_rds_csv, write_resources_csv
from vpc_inventory.export.jsonl import write_networks_jsonl, write_rds_jsonl
from vpc_inventory.scan.aggregate import NetworkRecord
from vpc_inventory.scan.rds import RdsInstance
from vpc_inventory.scanners import ResourceRecord, ResourceType


def _records() -> list:
    return [
        NetworkRecord(
            "vpc-2",
            "us-west-2",
            name="shared",
            cidrs=["10.0.0.0/16", "10.1.0.0/16"],
            public=True,
            peers=["vpc-9"],
            resources=[
                ResourceRecord("db-1", ResourceType.RDS_INSTANCE, "orders"),
                ResourceRecord("cl-1", ResourceType.RDS_CLUSTER, "cl-1", verified_network=False),
            ],
            account_id="123456789012",
        ),
        NetworkRecord("vpc-1", "eu-west-1", account_id="123456789012"),
    ]


def test_networks_jsonl_is_sorted_and_stable(tmp_path) -> None:
    path = tmp_path / "networks.jsonl"

    assert write_networks_jsonl(_records(), path) == 2

    lines = path.read_text(encoding="utf-8").splitlines()
    rows = [json.loads(line) for line in lines]
    assert [(r["region"], r["vpc_id"]) for r in rows] == [("eu-west-1", "vpc-1"), ("us-west-2", "vpc-2")]
    assert rows[1]["peered"] is True
    assert rows[1]["resources"][1] == {
        "identifier": "cl-1",
        "type": "rds.cluster",
        "name": "cl-1",
        "verified_network": False,
    }
    # keys are sorted for diffable output
    assert lines[0].startswith('{"account_id":')


def test_networks_csv_joins_multi_valued_cells(tmp_path) -> None:
    path = tmp_path / "networks.csv"
    write_networks_csv(_records(), path)

    with path.open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))

    assert list(rows[0].keys()) == NETWORK_CSV_FIELDS
    assert rows[0]["name"] == ""
    assert rows[1]["cidrs"] == "10.0.0.0/16;10.1.0.0/16"
    assert rows[1]["public"] == "true"
    assert rows[1]["peered"] == "true"


def test_resources_csv_flags_unverified(tmp_path) -> None:
    path = tmp_path / "resources.csv"

    assert write_resources_csv(_records(), path) == 2

    with path.open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert [(r["type"], r["verified_network"]) for r in rows] == [
        ("rds.instance", "true"),
        ("rds.cluster", "false"),
    ]


def test_rds_exports(tmp_path) -> None:
    instances = [RdsInstance("us-east-1", None, "db-1"), RdsInstance("us-east-1", "arn:aws:iam::1:role/R", "db-2")]

    write_rds_jsonl(instances, tmp_path / "rds.jsonl")
    write_rds_csv(instances, tmp_path / "rds.csv")

    first = json.loads((tmp_path / "rds.jsonl").read_text(encoding="utf-8").splitlines()[0])
    assert first == {"instance_id": "db-1", "region": "us-east-1", "role_arn": None}
    csv_lines = (tmp_path / "rds.csv").read_text(encoding="utf-8").splitlines()
    assert csv_lines == ["role_arn,region,instance_id", ",us-east-1,db-1", "arn:aws:iam::1:role/R,us-east-1,db-2"]
