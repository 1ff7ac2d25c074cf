"""
errors.py — Exception taxonomy for Simple Tracker.

  - WizardValidationError  client-local validation (never leaves the detecting component)
  - StepSaveError          per-step checkpoint failed; local wizard data preserved
  - SubmissionError        finalize round-trip failed; local wizard data preserved
  - AuthError family       login / refresh failures with distinct user-facing messages

Every error carries a `user_message` safe to show in a toast or inline alert.
"""
from __future__ import annotations

import json
from typing import Any, Optional


class WizardValidationError(ValueError):
    """
    Raised by the wizard validators with every violation collected in one pass.

    str(exc) is a JSON list of {"field": str | None, "issue": str} dicts, the same
    format the HTTP layer expands into the standard error envelope.
    """

    def __init__(self, violations: list[dict[str, Any]]):
        self.violations = violations
        super().__init__(json.dumps(violations))

    @property
    def user_message(self) -> str:
        if not self.violations:
            return "Validation failed"
        return self.violations[0]["issue"]


class StepSaveError(Exception):
    """A wizard step checkpoint could not be saved remotely."""

    def __init__(self, step: str, user_message: str = "Failed to save your progress. Please try again."):
        self.step = step
        self.user_message = user_message
        super().__init__(f"step={step}: {user_message}")


class SubmissionError(Exception):
    """The finalize endpoint rejected or never received the ticket."""

    def __init__(self, user_message: str = "Failed to submit ticket. Please try again."):
        self.user_message = user_message
        super().__init__(user_message)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class AuthError(Exception):
    """Base class for authentication failures."""

    default_message = "An unexpected error occurred. Please try again."

    def __init__(self, user_message: Optional[str] = None):
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class InvalidCredentialsError(AuthError):
    default_message = "Invalid email or password. Please try again."


class TooManyAttemptsError(AuthError):
    default_message = "Too many failed login attempts. Please wait a few minutes and try again."


class AccountDisabledError(AuthError):
    default_message = "This account has been disabled. Please contact an administrator."


class ProviderUnavailableError(AuthError):
    """Network-level failure talking to the identity provider. Login retries these."""

    default_message = "Authentication service is not available. Please try again shortly."


class RefreshFailedError(AuthError):
    default_message = "Your session has expired. Please log in again."


class SessionExpiredError(AuthError):
    default_message = "Your session has expired. Please log in again."


class NotAuthenticatedError(AuthError):
    default_message = "You must be logged in to continue."
