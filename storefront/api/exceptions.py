"""Custom exceptions for the Storefront API.

Visitor-facing endpoints never raise these: engine failures degrade to
empty or neutral answers. They cover back-office requests that cannot be
satisfied and are rendered as ``{"error", "message", "details"}`` bodies.
"""

from typing import Any, Dict, Optional


class StorefrontException(Exception):
    """Base exception carrying an HTTP status and structured details.

    Args:
        message: Human-readable error message
        status_code: HTTP status code for API responses
        details: Machine-readable context, such as the offending id
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ExperimentNotFoundError(StorefrontException):
    """Raised when an experiment id is unknown."""

    status_code = 404

    def __init__(self, experiment_id: str):
        super().__init__(
            f"Experiment '{experiment_id}' not found.",
            details={"experiment_id": experiment_id},
        )


class InvalidExperimentError(StorefrontException):
    """Raised when an experiment definition or update is rejected."""

    status_code = 400

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Invalid experiment: {reason}",
            details=details or {"reason": reason},
        )
