"""Condition bookkeeping for workload instance status."""

from __future__ import annotations

from typing import Iterable, List, Optional

from .contracts import Condition, ConditionStatus, Severity

READY = "Ready"
INPUT_READY = "InputReady"
SERVICE_CONFIG_READY = "ServiceConfigReady"
DEPLOYMENT_READY = "DeploymentReady"
NETWORK_ATTACHMENTS_READY = "NetworkAttachmentsReady"

REASON_INIT = "Init"
REASON_ERROR = "Error"
REASON_REQUESTED = "Requested"
REASON_READY = "Ready"

INIT_MESSAGES = {
    READY: "Setup started",
    INPUT_READY: "Input data init",
    SERVICE_CONFIG_READY: "Service config create not started",
    DEPLOYMENT_READY: "Deployment not started",
    NETWORK_ATTACHMENTS_READY: "NetworkAttachments not started",
}

READY_MESSAGES = {
    READY: "Setup complete",
    INPUT_READY: "Input data complete",
    SERVICE_CONFIG_READY: "Service config create completed",
    DEPLOYMENT_READY: "Deployment completed",
    NETWORK_ATTACHMENTS_READY: "NetworkAttachments completed",
}

_SEVERITY_RANK = {Severity.ERROR: 3, Severity.WARNING: 2, Severity.INFO: 1, Severity.NONE: 0}


class ConditionList:
    """Mutable view over ``status.conditions``.

    All updates are applied in place to the wrapped list so the caller's
    status object always reflects them.
    """

    def __init__(self, conditions: List[Condition]) -> None:
        self._conditions = conditions

    def __iter__(self):
        return iter(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)

    def snapshot(self) -> List[Condition]:
        return [c.model_copy(deep=True) for c in self._conditions]

    def init(self, extra: Iterable[str] = ()) -> None:
        """Reset to Ready plus ``extra``, all Unknown."""
        types = [READY] + [t for t in extra if t != READY]
        self._conditions[:] = [
            Condition(
                type=t,
                status=ConditionStatus.UNKNOWN,
                reason=REASON_INIT,
                message=INIT_MESSAGES.get(t, f"{t} not started"),
            )
            for t in types
        ]

    def get(self, type_: str) -> Optional[Condition]:
        for cond in self._conditions:
            if cond.type == type_:
                return cond
        return None

    def set(self, condition: Condition) -> None:
        for i, cond in enumerate(self._conditions):
            if cond.type == condition.type:
                if cond.same_state(condition):
                    return
                self._conditions[i] = condition
                return
        self._conditions.append(condition)

    def is_true(self, type_: str) -> bool:
        cond = self.get(type_)
        return cond is not None and cond.status == ConditionStatus.TRUE

    def is_unknown(self, type_: str) -> bool:
        cond = self.get(type_)
        return cond is None or cond.status == ConditionStatus.UNKNOWN

    def mark_true(self, type_: str, message: Optional[str] = None) -> None:
        self.set(
            Condition(
                type=type_,
                status=ConditionStatus.TRUE,
                reason=REASON_READY,
                message=message or READY_MESSAGES.get(type_, f"{type_} completed"),
            )
        )

    def mark_false(
        self,
        type_: str,
        reason: str,
        severity: Severity,
        message: str,
    ) -> None:
        self.set(
            Condition(
                type=type_,
                status=ConditionStatus.FALSE,
                reason=reason,
                severity=severity,
                message=message,
            )
        )

    def all_sub_conditions_true(self) -> bool:
        subs = [c for c in self._conditions if c.type != READY]
        return all(c.status == ConditionStatus.TRUE for c in subs)

    def mirror(self, type_: str) -> Condition:
        """Summarise the sub-conditions into a condition of ``type_``.

        The worst False sub-condition wins; otherwise True when all of them
        are True, Unknown when any is still pending.
        """
        subs = [c for c in self._conditions if c.type != READY]
        failed = [c for c in subs if c.status == ConditionStatus.FALSE]
        if failed:
            worst = max(failed, key=lambda c: _SEVERITY_RANK[c.severity])
            return Condition(
                type=type_,
                status=ConditionStatus.FALSE,
                reason=worst.reason,
                severity=worst.severity,
                message=worst.message,
            )
        pending = [c for c in subs if c.status == ConditionStatus.UNKNOWN]
        if pending:
            return Condition(
                type=type_,
                status=ConditionStatus.UNKNOWN,
                reason=pending[0].reason,
                message=pending[0].message,
            )
        return Condition(
            type=type_,
            status=ConditionStatus.TRUE,
            reason=REASON_READY,
            message=READY_MESSAGES.get(type_, f"{type_} completed"),
        )

    def restore_last_transition_times(self, saved: Iterable[Condition]) -> None:
        """Keep the original timestamp of every condition whose state is unchanged."""
        previous = {c.type: c for c in saved}
        for i, cond in enumerate(self._conditions):
            old = previous.get(cond.type)
            if old is not None and old.same_state(cond):
                self._conditions[i] = cond.model_copy(
                    update={"last_transition_time": old.last_transition_time}
                )
