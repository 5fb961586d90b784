"""Wizard error hierarchy.

Input problems (refused steps, rejected files) are recoverable and carry a
reason code plus a user-facing message.  ``WizardStateError`` marks calls the
host should never make in the first place.
"""

from __future__ import annotations

from typing import Any


class WizardError(Exception):
    """Base class for everything the wizard raises on purpose."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class StepValidationError(WizardError):
    """A step gate refused to let the user move forward."""

    def __init__(self, step_index: int, reason_code: str, message: str) -> None:
        self.step_index = step_index
        self.reason_code = reason_code
        super().__init__(message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "stepIndex": self.step_index,
            "reasonCode": self.reason_code,
            "message": self.message,
        }


class FileRejectedError(WizardError):
    """Pre-check failure at file selection time (extension or size)."""

    def __init__(self, file_name: str, reason_code: str, message: str) -> None:
        self.file_name = file_name
        self.reason_code = reason_code
        super().__init__(message)


class DocumentNotReadyError(WizardError):
    """Evidence document cannot take a file (or cannot be added) yet."""


class SubmissionBlockedError(WizardError):
    """Submit while a geo check is still running."""


class SubmissionFailedError(WizardError):
    """The persistence service rejected or never received the payload."""

    retryable = True

    def __init__(
        self,
        message: str,
        status: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.status = status
        self.payload = payload
        super().__init__(message)


class WizardStateError(WizardError):
    """Programming error: the host asked for a transition that cannot exist."""


class LastItemError(WizardStateError):
    """Removing the only remaining line item."""
