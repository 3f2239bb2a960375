"""
Custom exceptions for RTM-Triage.

This module defines the exceptions used throughout the engine so that
triage-queue consumers can tell apart a missing alert, an alert in an
invalid state, and a claim lost to another clinician.
"""

from typing import Optional


class TriageError(Exception):
    """Base exception for RTM-Triage."""
    pass


class ConfigError(TriageError):
    """Configuration-related errors."""
    pass


class StorageError(TriageError):
    """Storage-related errors."""
    pass


class ValidationError(TriageError):
    """Validation errors for caller-supplied input."""
    pass


class AlertNotFoundError(TriageError):
    """The requested alert does not exist."""

    def __init__(self, alert_id: str):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class ConflictError(TriageError):
    """Base class for state conflicts between concurrent or invalid actions."""

    code = "conflict"

    def __init__(self, message: str, alert_id: Optional[str] = None):
        super().__init__(message)
        self.alert_id = alert_id


class ClaimConflictError(ConflictError):
    """The alert is already owned by a clinician."""

    code = "claim_conflict"

    def __init__(self, alert_id: str, claimed_by: Optional[str]):
        super().__init__(
            f"Alert {alert_id} is already claimed by {claimed_by}", alert_id
        )
        self.claimed_by = claimed_by


class InvalidTransitionError(ConflictError):
    """The requested action is not allowed from the alert's current status."""

    code = "invalid_transition"

    def __init__(self, alert_id: str, action: str, current_status: str):
        super().__init__(
            f"Cannot {action} alert {alert_id} in status {current_status}", alert_id
        )
        self.action = action
        self.current_status = current_status


class AlertTerminalError(InvalidTransitionError):
    """The alert is resolved or suppressed and can no longer change."""

    code = "alert_terminal"
