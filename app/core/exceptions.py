"""
Application-level exception types.

Every failure the wizard can surface maps onto one of these. Gateway calls
only ever raise `GenerationError`; local precondition checks raise
`ValidationError`; stage guards raise `GuardViolation`.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        self.detail = detail or message
        super().__init__(message)


class ValidationError(AppError):
    """Raised when a local precondition fails before any provider call."""


class ItemBusyError(ValidationError):
    """Raised when an operation targets an item that already has one in flight."""

    def __init__(self, kind: str, item_id: str) -> None:
        super().__init__(
            f"{kind} {item_id} already has an operation in progress",
            detail=f"{kind} is busy",
        )
        self.kind = kind
        self.item_id = item_id


class GenerationError(AppError):
    """Raised when a provider call fails or returns an unusable shape."""


class GuardViolation(AppError):
    """Raised when a stage transition is attempted without satisfying its guard."""

    def __init__(self, from_stage: str, to_stage: str, reason: str) -> None:
        super().__init__(f"cannot move from {from_stage} to {to_stage}: {reason}", detail=reason)
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.reason = reason


class ConfigurationError(AppError):
    """Raised when required configuration is missing or invalid."""


class SessionNotFoundError(AppError):
    """Raised when a session id is not in the registry."""

    def __init__(self, session_id: object) -> None:
        super().__init__(f"session not found: {session_id}", detail="session not found")
        self.session_id = session_id
