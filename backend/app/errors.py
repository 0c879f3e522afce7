# Overview: Base class for typed domain failures returned to order/cart/stock callers.

from __future__ import annotations


class DomainError(Exception):
    """
    Business-rule failure surfaced to the caller.

    WHY: Routes map these to 4xx responses with an actionable message and
    structured details; anything else is an unexpected 500.

    Subclasses set `code` (stable, machine-readable) and `http_status`.
    """
    code = "DOMAIN_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class NotFoundError(DomainError):
    """Referenced row does not exist (or belongs to another store)."""
    code = "NOT_FOUND"
    http_status = 404
