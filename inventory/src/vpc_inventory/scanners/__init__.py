from __future__ import annotations

from typing import List

from .base import ResourceRecord, ResourceScanner, ResourceType
from .compute import ComputeScanner
from .database import DatabaseScanner
from .load_balancing import LoadBalancingScanner

__all__ = [
    "ComputeScanner",
    "DatabaseScanner",
    "LoadBalancingScanner",
    "ResourceRecord",
    "ResourceScanner",
    "ResourceType",
    "ScannerRegistry",
    "default_registry",
]


class ScannerRegistry:
    """
    Ordered set of resource scanners, one per family.
    Scanners run in registration order; results are merged afterwards so the
    order only affects log output.
    """

    def __init__(self) -> None:
        self._scanners: List[ResourceScanner] = []

    def register(self, scanner: ResourceScanner) -> None:
        if not isinstance(scanner, ResourceScanner):
            raise TypeError(f"Not a resource scanner: {scanner!r}")
        if self.is_registered(scanner.family):
            raise ValueError(f"Scanner family already registered: {scanner.family}")
        self._scanners.append(scanner)

    def is_registered(self, family: str) -> bool:
        return any(s.family == family for s in self._scanners)

    def families(self) -> List[str]:
        return [s.family for s in self._scanners]

    def scanners(self) -> List[ResourceScanner]:
        return list(self._scanners)

    def __len__(self) -> int:
        return len(self._scanners)


def default_registry() -> ScannerRegistry:
    registry = ScannerRegistry()
    registry.register(ComputeScanner())
    registry.register(LoadBalancingScanner())
    registry.register(DatabaseScanner())
    return registry
