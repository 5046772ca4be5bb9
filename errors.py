"""
Exceptions raised by the marketplace components.

Each class carries the HTTP status it maps to; the handlers in main.py turn
them into ``{"error": ...}`` responses.

Usage:
    from errors import NotFound

    if task is None:
        raise NotFound("Task not found")
"""

from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base exception for all marketplace errors"""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class Unauthorized(MarketplaceError):
    """Missing or invalid identity"""

    status_code = 401

    def __init__(self, message: str = "Please login first"):
        super().__init__(message, code="UNAUTHORIZED")


class Forbidden(MarketplaceError):
    """Wrong role or not the owner of the resource"""

    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, code="FORBIDDEN")


class NotFound(MarketplaceError):
    status_code = 404

    def __init__(self, message: str = "Not found", resource: Optional[str] = None):
        details = {"resource": resource} if resource else None
        super().__init__(message, code="NOT_FOUND", details=details)


class Conflict(MarketplaceError):
    """Duplicate entity or an illegal state transition"""

    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, code="CONFLICT")


class ValidationError(MarketplaceError):
    """Input validation failed"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else None
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class ResourceExhausted(MarketplaceError):
    """Bounded internal retries ran out"""

    status_code = 503

    def __init__(self, message: str):
        super().__init__(message, code="RESOURCE_EXHAUSTED")
