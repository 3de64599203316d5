"""Workload flavors known to the controller, keyed by instance kind."""

from __future__ import annotations

from typing import Dict, Type

from .ansibletest import AnsibleTest, AnsibleTestFlavor
from .base import FlavorContext, WorkloadFlavor
from .horizontest import HorizonTest, HorizonTestFlavor
from .tempest import Tempest, TempestFlavor
from .tobiko import Tobiko, TobikoFlavor

FLAVORS: Dict[str, Type[WorkloadFlavor]] = {
    TempestFlavor.kind: TempestFlavor,
    TobikoFlavor.kind: TobikoFlavor,
    AnsibleTestFlavor.kind: AnsibleTestFlavor,
    HorizonTestFlavor.kind: HorizonTestFlavor,
}


def get_flavor(kind: str) -> WorkloadFlavor:
    """Return a flavor for ``kind``; the lookup ignores case."""
    for name, flavor_cls in FLAVORS.items():
        if name.lower() == kind.lower():
            return flavor_cls()
    raise ValueError(f"Unknown workload kind: {kind}")


__all__ = [
    "FLAVORS",
    "AnsibleTest",
    "AnsibleTestFlavor",
    "FlavorContext",
    "HorizonTest",
    "HorizonTestFlavor",
    "Tempest",
    "TempestFlavor",
    "Tobiko",
    "TobikoFlavor",
    "WorkloadFlavor",
    "get_flavor",
]
