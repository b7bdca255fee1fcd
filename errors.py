"""
Error taxonomy shared by the store helpers and the routes.

Each error knows the HTTP status it maps to; main.py registers one handler
for the whole family.
"""
from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def body(self) -> Dict[str, Any]:
        return {"error": self.message}


class InvalidInput(AppError):
    status_code = 400


class NotFound(AppError):
    status_code = 404


class Conflict(AppError):
    status_code = 409


class StoreUnavailable(AppError):
    status_code = 500


class PartialReconcileError(StoreUnavailable):
    """A batch of upserts stopped part way; earlier writes stay applied."""

    def __init__(self, message: str, applied: List[Dict[str, Any]], pending: List[Dict[str, Any]],
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.applied = applied
        self.pending = pending
        self.cause = cause

    def body(self) -> Dict[str, Any]:
        return {"error": self.message, "applied": self.applied, "pending": self.pending}
