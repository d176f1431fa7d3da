from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..scanners.base import ResourceRecord

NetworkKey = Tuple[str, str]


@dataclass
class NetworkRecord:
    """
    Summary of one VPC. Owned by the worker that scans it until merged into a
    ResultAggregate; not mutated afterwards.
    """

    network_id: str
    region: str
    name: Optional[str] = None
    cidrs: List[str] = field(default_factory=list)
    public: bool = False
    peers: List[str] = field(default_factory=list)
    resources: List[ResourceRecord] = field(default_factory=list)
    account_id: Optional[str] = None
    role_arn: Optional[str] = None

    @property
    def key(self) -> NetworkKey:
        return (self.region, self.network_id)

    @property
    def peered(self) -> bool:
        return bool(self.peers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region,
            "vpc_id": self.network_id,
            "name": self.name or "",
            "account_id": self.account_id or "",
            "role_arn": self.role_arn,
            "cidrs": list(self.cidrs),
            "public": self.public,
            "peered": self.peered,
            "peers": list(self.peers),
            "resources": [
                {
                    "identifier": r.identifier,
                    "type": r.resource_type.value,
                    "name": r.name,
                    "verified_network": r.verified_network,
                }
                for r in self.resources
            ],
        }


@dataclass(frozen=True)
class ScanFailure:
    """An isolated failure that cost completeness but did not stop the run."""

    stage: str
    region: str
    scope: str
    message: str
    vpc_id: Optional[str] = None
    family: Optional[str] = None
    code: Optional[str] = None

    def sort_key(self) -> Tuple[str, str, str, str, str]:
        return (self.region, self.scope, self.vpc_id or "", self.stage, self.family or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "region": self.region,
            "scope": self.scope,
            "vpc_id": self.vpc_id,
            "family": self.family,
            "code": self.code,
            "message": self.message,
        }


@dataclass(frozen=True)
class ScanResult:
    networks: Dict[NetworkKey, NetworkRecord]
    regions_scanned: List[str]
    failures: List[ScanFailure]

    def records(self) -> List[NetworkRecord]:
        return list(self.networks.values())

    @property
    def resource_count(self) -> int:
        return sum(len(n.resources) for n in self.networks.values())

    def counts(self) -> Dict[str, int]:
        nets = self.records()
        return {
            "networks": len(nets),
            "public": sum(1 for n in nets if n.public),
            "peered": sum(1 for n in nets if n.peered),
            "resources": self.resource_count,
            "failures": len(self.failures),
        }


def _sorted_unique(values: Iterable[str]) -> List[str]:
    return sorted({v for v in values if v})


def normalize_resources(resources: Iterable[ResourceRecord]) -> List[ResourceRecord]:
    """One record per (type, identifier), the lowest sort key wins; sorted by type, identifier, name."""
    unique: Dict[Tuple[str, str], ResourceRecord] = {}
    for r in sorted(resources, key=lambda r: (r.sort_key(), r.verified_network)):
        unique.setdefault((r.resource_type.value, r.identifier), r)
    return list(unique.values())


MergeRank = Tuple[int, str, str, str]


def _rank(record: NetworkRecord, order: int) -> MergeRank:
    return (order, record.account_id or "", record.role_arn or "", record.name or "")


def _combine(primary: NetworkRecord, secondary: NetworkRecord) -> NetworkRecord:
    # Same VPC reached through two scopes (shared VPCs, or two roles into one
    # account): facts are unioned; name and attribution come from the first
    # record in rank order that has them.
    owner = primary if primary.account_id or not secondary.account_id else secondary
    return NetworkRecord(
        network_id=primary.network_id,
        region=primary.region,
        name=primary.name or secondary.name,
        cidrs=_sorted_unique([*primary.cidrs, *secondary.cidrs]),
        public=primary.public or secondary.public,
        peers=_sorted_unique([*primary.peers, *secondary.peers]),
        resources=normalize_resources([*primary.resources, *secondary.resources]),
        account_id=owner.account_id,
        role_arn=owner.role_arn,
    )


def _fold(reports: List[Tuple[MergeRank, NetworkRecord]]) -> NetworkRecord:
    ranked = [record for _, record in sorted(reports, key=lambda item: item[0])]
    merged = ranked[0]
    for record in ranked[1:]:
        merged = _combine(merged, record)
    return merged


class ResultAggregate:
    """
    Shared sink for concurrent scan workers. merge/add_failure/mark_region are
    the only mutation points and all run under one lock; snapshot() returns a
    ScanResult ordered by (region, vpc_id) whatever the completion order was.

    When several scopes report the same VPC, every report is kept and folded at
    snapshot time in (order, account_id, role_arn, name) rank, where order is
    the position of the reporting unit in the scan plan; merge order does not
    matter.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._networks: Dict[NetworkKey, List[Tuple[MergeRank, NetworkRecord]]] = {}
        self._regions: set[str] = set()
        self._failures: List[ScanFailure] = []

    def merge(self, record: NetworkRecord, order: int = 0) -> None:
        record = NetworkRecord(
            network_id=record.network_id,
            region=record.region,
            name=record.name,
            cidrs=_sorted_unique(record.cidrs),
            public=record.public,
            peers=_sorted_unique(record.peers),
            resources=normalize_resources(record.resources),
            account_id=record.account_id,
            role_arn=record.role_arn,
        )
        with self._lock:
            self._networks.setdefault(record.key, []).append((_rank(record, order), record))

    def add_failure(self, failure: ScanFailure) -> None:
        with self._lock:
            self._failures.append(failure)

    def mark_region(self, region: str) -> None:
        with self._lock:
            self._regions.add(region)

    def __len__(self) -> int:
        with self._lock:
            return len(self._networks)

    def snapshot(self) -> ScanResult:
        with self._lock:
            networks = {key: _fold(self._networks[key]) for key in sorted(self._networks)}
            return ScanResult(
                networks=networks,
                regions_scanned=sorted(self._regions),
                failures=sorted(self._failures, key=lambda f: f.sort_key()),
            )
