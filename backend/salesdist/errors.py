# Overview: Error taxonomy shared by the stock, transaction and visit services.

"""
Error kinds raised by the core services.

Every CoreError aborts the enclosing unit of work and propagates to the
caller unchanged. The edge layer maps status_code to its own response codes;
the services never decide user-facing behaviour.

StorageUnavailableError is deliberately NOT a CoreError: it is an
infrastructure fault (database locked/unreachable after bounded retries),
not a business rule violation.
"""

from __future__ import annotations


class CoreError(Exception):
    """Base class for business-level failures."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": type(self).__name__}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CoreError):
    """400-level input problem that reached the core."""

    status_code = 400


class NotFoundError(CoreError):
    """404-level: referenced product, branch, stock, transaction or visit is missing."""

    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class BusinessError(CoreError):
    """422-level business rule violation (e.g. illegal status transition)."""

    status_code = 422


class InsufficientStockError(BusinessError):
    def __init__(self, product_id: int, product_name: str | None, requested: int, available: int):
        label = product_name or f"#{product_id}"
        super().__init__(
            f"Insufficient stock for product '{label}'. Requested: {requested}, Available: {available}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available


class DuplicateError(BusinessError):
    """409-level: a unique business value is already taken."""

    status_code = 409

    def __init__(self, field: str, value):
        super().__init__(
            f"The {field} '{value}' already exists.",
            details={"field": field, "value": value},
        )


class UnauthorizedActionError(BusinessError):
    """Business-rule refusal of an action (not an authentication failure)."""

    status_code = 403

    def __init__(self, action: str = "perform this action"):
        super().__init__(f"You are not authorized to {action}.")


class StorageUnavailableError(Exception):
    """The backing store stayed locked or unreachable after bounded retries."""

    status_code = 503
