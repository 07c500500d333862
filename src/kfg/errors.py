"""Exceptions raised by the configuration engine, its drivers and the validator."""

from dataclasses import dataclass
from typing import Any


class KfgError(Exception):
    """Base exception for all Kfg errors."""

    pass


class NotLoadedError(KfgError):
    """Raised when the configuration is read or mutated before a successful mount."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"[Kfg] Configuration not loaded. Call mount() before {operation}().")


@dataclass
class ValidationIssue:
    """A single field-level validation failure."""

    path: str
    expected: str | None = None
    received: str | None = None
    message: str = ""
    value: Any = None

    def __str__(self) -> str:
        expected = f" expected {self.expected}" if self.expected else ""
        received = f", received {self.received}" if self.received else ""
        detail = f" ({self.message})" if self.message else ""
        return f"- {self.path or '(root)'}:{expected}{received}{detail}"


class KfgValidationError(KfgError):
    """Raised when data fails schema validation on load or on a mutating call."""

    def __init__(self, issues: list[ValidationIssue], message: str | None = None):
        self.issues = issues
        if message is None:
            lines = ["[Kfg] Invalid configuration.", "Please fix the entries below and load again:"]
            lines.extend(str(issue) for issue in issues)
            message = "\n".join(lines)
        super().__init__(message)

    @property
    def paths(self) -> list[str]:
        return [issue.path for issue in self.issues]


class DriverCapabilityError(KfgError):
    """Raised when a driver lacks the hook required for an operation."""

    def __init__(self, driver: str, operation: str):
        self.driver = driver
        self.operation = operation
        super().__init__(f"Driver '{driver}' does not implement {operation}")


class StructuralError(KfgError):
    """Raised when an operation targets data of the wrong shape.

    Examples are inserting into a non-object path, creating a record without
    an id, or asking for a relation on a field that does not declare one.
    """

    pass


class ReadOnlyError(KfgError):
    """Raised when a write is attempted through a read-only view."""

    pass
