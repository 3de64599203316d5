"""Deterministic names and labels for the records an instance owns."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Dict, Optional

from .constants import (
    APP_LABEL,
    ARTIFACT_STEP_INFIX,
    CUSTOM_DATA_RECORD_INFIX,
    ENV_VARS_RECORD_INFIX,
    INSTANCE_NAME_LABEL,
    OPERATOR_NAME_LABEL,
    STORAGE_HASH_LENGTH,
    WORKFLOW_STEP_LABEL,
    WORKFLOW_STEP_NAME_INVALID,
)

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def string_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def unix_date(ts: datetime) -> str:
    """Render ``ts`` like ``Mon Jan  2 15:04:05 UTC 2006`` (day space padded)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return (
        f"{_WEEKDAYS[ts.weekday()]} {_MONTHS[ts.month - 1]} {ts.day:>2} "
        f"{ts:%H:%M:%S} UTC {ts.year}"
    )


def step_name_or_placeholder(step_name: Optional[str]) -> str:
    return step_name or WORKFLOW_STEP_NAME_INVALID


def artifact_name(
    instance_name: str,
    step_index: int,
    step_name: Optional[str] = None,
    workflow_length: int = 0,
) -> str:
    """Name of the Pod/Job for one step.

    Instances without a workflow use their own name; otherwise the zero
    padded step index and the step name are appended.
    """
    if workflow_length == 0:
        return instance_name
    return (
        f"{instance_name}{ARTIFACT_STEP_INFIX}{step_index:02d}-"
        f"{step_name_or_placeholder(step_name)}"
    )


def storage_name(
    instance_name: str, step_index: int, creation_timestamp: Optional[datetime]
) -> str:
    stamp = unix_date(creation_timestamp) if creation_timestamp else ""
    digest = string_hash(instance_name + stamp)[:STORAGE_HASH_LENGTH]
    return f"{instance_name}-{step_index}-{digest}"


def env_vars_record_name(instance_name: str, step_index: int) -> str:
    return f"{instance_name}{ENV_VARS_RECORD_INFIX}{step_index}"


def custom_data_record_name(instance_name: str, step_index: int) -> str:
    return f"{instance_name}{CUSTOM_DATA_RECORD_INFIX}{step_index}"


def finalizer_name(domain: str, kind: str) -> str:
    return f"{domain}/{kind.lower()}"


def artifact_labels(
    service_name: str, step_index: int, instance_name: str, operator_name: str
) -> Dict[str, str]:
    return {
        APP_LABEL: service_name,
        WORKFLOW_STEP_LABEL: str(step_index),
        INSTANCE_NAME_LABEL: instance_name,
        OPERATOR_NAME_LABEL: operator_name,
    }
