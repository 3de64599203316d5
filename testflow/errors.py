"""Exception types raised by testflow."""

from __future__ import annotations


class TestflowError(Exception):
    """Base class for all testflow errors."""


class NotFoundError(TestflowError):
    """The requested object does not exist in the cluster store."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(TestflowError):
    """A create call hit an object that already exists."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} already exists")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(TestflowError):
    """The store rejected a write because the object is being modified."""


class LockFieldMissingError(TestflowError):
    """The lock record exists but carries no owner field."""


class LockNotDeletedError(TestflowError):
    """The lock record was still visible after every deletion check."""


class MalformedStepLabelError(TestflowError):
    """A step artifact carries a workflow step label that is not an index."""


class InputValidationError(TestflowError):
    """A workload references inputs (secrets, config maps) that are missing."""


class ConfigGenerationError(TestflowError):
    """Generated configuration for a workflow step could not be written."""


class NetworkAttachmentsMismatchError(TestflowError):
    """A step artifact does not report the requested network interfaces."""


class UnexpectedActionError(TestflowError):
    """The action resolver produced an action the engine does not handle."""
