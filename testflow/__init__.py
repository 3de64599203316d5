"""testflow: serialized, multi-step test workloads on a shared cluster."""

from .config import OperatorConfig, load_config
from .contracts import ReconcileRequest, ReconcileResult, StepArtifact, WorkloadInstance
from .controller import Controller
from .engine import Reconciler
from .flavors import FLAVORS, get_flavor
from .lock import ExecutionLock
from .store import get_store

__version__ = "0.1.0"
__all__ = [
    "Controller",
    "ExecutionLock",
    "FLAVORS",
    "OperatorConfig",
    "ReconcileRequest",
    "ReconcileResult",
    "Reconciler",
    "StepArtifact",
    "WorkloadInstance",
    "get_flavor",
    "get_store",
    "load_config",
]
