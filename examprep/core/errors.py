"""
Typed failures raised by the session engine.

Each error carries ``status_code`` and ``code`` so the request layer can map it
to a response without inspecting messages.
"""
from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all engine failures."""

    status_code: int = 500
    code: str = "ENGINE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFound(EngineError):
    status_code = 404
    code = "NOT_FOUND"


class Unauthorized(EngineError):
    status_code = 403
    code = "UNAUTHORIZED"


class InvalidState(EngineError):
    status_code = 409
    code = "INVALID_STATE"


class Conflict(EngineError):
    status_code = 409
    code = "CONFLICT"


class InvalidInput(EngineError):
    status_code = 400
    code = "INVALID_INPUT"


class InsufficientQuestions(EngineError):
    status_code = 422
    code = "INSUFFICIENT_QUESTIONS"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Not enough questions available: {required} required, {available} available",
            {"required": required, "available": available},
        )
        self.required = required
        self.available = available


class StaleEntitlement(Exception):
    """A concurrent start consumed the purchase row first. Internal, retried."""

    def __init__(self, purchase_id: Any):
        super().__init__(f"Purchase {purchase_id} changed concurrently")
        self.purchase_id = purchase_id
