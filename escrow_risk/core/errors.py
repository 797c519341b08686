"""
Error taxonomy for the decision engine.

Ineligibility and hard-gate hits are NOT exceptions: they come back as
structured ReleaseEligibility results so the rationale can be shown and
reconstructed later. Exceptions are reserved for conditions the caller has
to handle.
"""
from __future__ import annotations

from typing import Any


class RiskEngineError(Exception):
    """Base class for all engine errors."""


class NotFound(RiskEngineError):
    """Referenced entity is absent. Raised before any write happens."""

    def __init__(self, entity: str, key: Any) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class AdvisorUnavailable(RiskEngineError):
    """External fraud advisory failed, timed out or answered out of range."""


class AuditWriteFailure(RiskEngineError):
    """Event append failed. Only ever raised (and swallowed) inside the event log."""


class InvalidTransition(RiskEngineError):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Transition {current} -> {target} is not allowed")


class DisputeNotAllowed(RiskEngineError):
    """Opener is restricted from disputing, or a dispute is already open."""


class InvalidEnum(RiskEngineError):
    def __init__(self, enum_name: str, value: Any) -> None:
        self.enum_name = enum_name
        self.value = value
        super().__init__(f"Unrecognized {enum_name}: {value!r}")
