"""Domain exceptions shared by services and API routes.

Services raise these instead of ``HTTPException`` so they stay usable
from workers and scripts.  ``billsplit.api.error_handlers`` maps them onto
HTTP responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BillSplitError(Exception):
    """Base class for all domain errors."""

    def to_dict(self) -> Dict[str, Any]:
        return {"message": str(self)}


class InvalidAllocation(BillSplitError):
    """A product's shares cannot be normalised into weights."""

    def __init__(self, reason: str, product_id: Any = None) -> None:
        self.reason = reason
        self.product_id = product_id
        super().__init__(reason)

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "product_id": self.product_id}


class NotFound(BillSplitError):
    """Referenced resource is absent or not owned by the requesting user."""

    def __init__(self, resource: str, identifier: Any = None) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")

    def to_dict(self) -> Dict[str, Any]:
        return {"resource": self.resource, "id": self.identifier}


class LimitExceeded(BillSplitError):
    """Plan quota denies the requested action."""

    def __init__(self, action: str, quota: str, limit: float, usage: int, message: Optional[str] = None) -> None:
        self.action = action
        self.quota = quota
        self.limit = limit
        self.usage = usage
        super().__init__(message or f"Plan limit reached for {quota}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "quota": self.quota,
            "limit": None if self.limit == float("inf") else int(self.limit),
            "usage": self.usage,
            "message": str(self),
        }


__all__ = ["BillSplitError", "InvalidAllocation", "NotFound", "LimitExceeded"]
