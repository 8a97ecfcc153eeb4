"""
Error taxonomy for the analytics query service.

Every failure the pipeline can surface to a caller is a ``QueryError``
subclass carrying its HTTP status code.  ``to_response()`` renders the
``{"ok": false, "error": ...}`` body the API returns.
"""

from typing import Any, Dict, List, Optional


class QueryError(Exception):
    """Base class for failures surfaced to the API caller."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_response(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message}


class InvalidRequest(QueryError):
    status_code = 400


class UpstreamPlanInvalid(QueryError):
    """The oracle's text was not JSON or did not match the plan grammar."""

    status_code = 400

    def __init__(
        self,
        message: str,
        raw: Optional[str] = None,
        issues: Optional[List[Dict[str, str]]] = None,
    ):
        super().__init__(message)
        self.raw = raw
        self.issues = issues or []

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["raw"] = self.raw
        if self.issues:
            body["issues"] = self.issues
        return body


class UnknownFieldReference(QueryError):
    status_code = 400

    def __init__(self, message: str, field: str, path: str):
        super().__init__(message)
        self.field = field
        self.path = path

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["field"] = self.field
        body["path"] = self.path
        return body


class UnsafePipeline(QueryError):
    status_code = 400


class PlannerUnavailable(QueryError):
    status_code = 502


class ExecutionError(QueryError):
    status_code = 500
