"""
Typed errors raised by the storefront services and their HTTP translation.

Services raise these instead of ``HTTPException`` so the same rules apply
whether a decision is reached from a route, a job or a test.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    error_key = "storefront.error"

    def __init__(self, message: str = "", context: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict:
        return {
            "error": True,
            "error_key": self.error_key,
            "message": self.message,
            "context": self.context,
            "status_code": self.status_code,
        }


class EntityNotFound(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    error_key = "entity.not_found"

    def __init__(self, entity: str, **lookup: Any):
        super().__init__(f"{entity} not found", {"entity": entity, **lookup})
        self.entity = entity


class BusinessRuleError(StorefrontError):
    error_key = "business_rule.violation"

    def __init__(self, rule: str, message: str = "", context: Optional[dict] = None):
        message = message or f"Business rule violation: {rule}"
        super().__init__(message, {**(context or {}), "rule": rule})
        self.rule = rule

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["rule"] = self.rule
        return payload


class InvalidStatusTransition(BusinessRuleError):
    def __init__(self, current, target):
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            "invalid_status_transition",
            f"Cannot transition from {current_value} to {target_value}",
            {"from": current_value, "to": target_value},
        )
        self.current = current
        self.target = target


class CouponNotEligible(BusinessRuleError):
    def __init__(self, reasons, code: Optional[str] = None):
        values = [getattr(r, "value", r) for r in reasons]
        super().__init__(
            "coupon_not_eligible",
            f"Coupon cannot be applied: {', '.join(values)}",
            {"code": code, "reasons": values},
        )
        self.reasons = list(reasons)


class OrderDeletionProhibited(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    error_key = "order.deletion_prohibited"


class AuditTrailImmutable(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    error_key = "order.history_immutable"


async def storefront_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StorefrontError):
        return await global_exception_handler(request, exc)

    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle request validation errors with detailed error messages."""
    if not isinstance(exc, RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": True, "message": str(exc), "status_code": status.HTTP_422_UNPROCESSABLE_ENTITY},
        )

    errors = []
    for error in exc.errors():
        errors.append(
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
        )

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": True,
            "message": "Validation error",
            "details": errors,
            "status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc!s}",
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": True,
            "message": "Internal server error",
            "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
