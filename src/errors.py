"""Domain exceptions raised by the broker engine.

Every engine operation raises one of these instead of returning error values.
The HTTP layer maps them to responses in one handler (see ``src.main``); the
CLI prints the message and exits non-zero.
"""

from __future__ import annotations


class BrokerError(Exception):
    """Base exception for engine errors."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or message


class NotFound(BrokerError):
    """Unknown task, fixture, contract, service or version."""

    status_code = 404


class ValidationError(BrokerError):
    """Input is missing required fields or carries invalid values."""

    status_code = 400


class InvalidTransition(BrokerError):
    """A fixture status change that the transition table does not allow."""

    status_code = 409

    def __init__(self, current: str, target: str, detail: str | None = None):
        super().__init__(f"Cannot transition fixture from {current} to {target}", detail)
        self.current = current
        self.target = target


class ConflictingState(BrokerError):
    """A concurrent writer changed the row between read and write.

    Safe to retry: every guarded write is idempotent per key.
    """

    status_code = 409
    retryable = True


class ImmutableVersion(BrokerError):
    """A service version already exists with different content."""

    status_code = 409


class DuplicateTask(BrokerError):
    """An open verification task already exists for the tuple.

    Absorbed by the coordinator's upsert; never reaches callers.
    """

    status_code = 409


class CircularDependency(BrokerError):
    """Services consume each other, so no deployment order exists."""

    status_code = 409
