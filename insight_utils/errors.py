"""
Error taxonomy shared by every function in the app.

Each error carries the HTTP status it maps to and a ``details`` payload that
the HTTP layer emits verbatim as ``{"error": ..., "details": ...}``.
"""


class DashboardError(Exception):
    status_code = 500

    def __init__(self, message, details=None, status_code=None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message, "details": self.details}


class ValidationError(DashboardError):
    """Bad or missing input, or a reference to an entity that does not exist."""
    status_code = 400


class ConflictError(ValidationError):
    """Duplicate name, or a delete that would orphan child entities."""
    status_code = 409


class NotFoundError(DashboardError):
    status_code = 404


class DataIntegrityError(DashboardError):
    """A stored record has no recognizable foreign key under any known alias."""
    status_code = 500


class UpstreamError(DashboardError):
    """The workflow engine answered with a non-2xx status."""

    def __init__(self, status_code, body, url=None):
        super().__init__(
            f"Workflow engine returned status {status_code}",
            details={"upstreamStatus": status_code, "upstreamBody": body, "url": url},
            status_code=status_code,
        )
        self.body = body
        self.url = url


class UnreachableError(DashboardError):
    """The workflow engine could not be reached (refused, DNS, timeout)."""
    status_code = 502


class AggregationError(DashboardError):
    """Every task of a fan-out dispatch failed."""
    status_code = 502
