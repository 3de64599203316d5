"""Merge a workflow step's overrides onto a base configuration.

Each configuration type declares an :class:`OverlayTable` listing the fields a
step may override and the nested groups that are merged recursively. A step
value of ``None``, ``""`` or ``{}`` inherits the base value; anything else,
``False``, ``0`` and ``[]`` included, replaces it.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class GroupOverlay:
    """Nested group on the base model fed from ``source`` on the overlay."""

    source: str
    table: "OverlayTable"


@dataclass(frozen=True)
class OverlayTable:
    fields: Tuple[str, ...] = ()
    groups: Mapping[str, GroupOverlay] = field(default_factory=dict)


def is_inherited(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, dict) and not value:
        return True
    return False


def merge_overlay(base: ModelT, overlay: Optional[BaseModel], table: OverlayTable) -> ModelT:
    """Return a copy of ``base`` with every non-empty overlay value applied.

    ``base`` is never mutated and the result never aliases ``overlay``.
    """
    if overlay is None:
        return base.model_copy(deep=True)

    update: Dict[str, Any] = {}
    for name in table.fields:
        if not hasattr(overlay, name):
            continue
        value = getattr(overlay, name)
        if is_inherited(value):
            continue
        update[name] = copy.deepcopy(value)

    for group_name, group in table.groups.items():
        base_group = getattr(base, group_name, None)
        overlay_group = getattr(overlay, group.source, None)
        if base_group is None or overlay_group is None:
            continue
        update[group_name] = merge_overlay(base_group, overlay_group, group.table)

    if update:
        logger.debug(f"Step overlay overrides: {sorted(update)}")
    merged = base.model_copy(deep=True, update=update)
    return merged
