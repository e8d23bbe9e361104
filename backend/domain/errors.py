"""Error types shared by services and routers."""
from __future__ import annotations


class ReportingError(Exception):
    """Base error carrying the HTTP status a router should answer with."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ReportingError):
    status_code = 400


class NotFoundError(ReportingError):
    status_code = 404


class ConflictError(ReportingError):
    status_code = 409


class DataSourceError(ReportingError):
    """Raised when the historian (OPC UA server) cannot be reached or read."""

    status_code = 502
