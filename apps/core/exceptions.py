"""
Domain error taxonomy for billing operations and the REST framework handler
that renders it.

Every error carries an HTTP status, a stable machine-readable ``code`` and a
human-readable message. Errors flagged ``retryable`` were caused by a lost race
against another writer; the caller may resubmit the same request.
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for every error raised by the billing core."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"
    retryable = False

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


# Validation failures (400)


class ValidationFailed(LedgerError):
    """Raised when input is malformed or out of range."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class UnknownUnit(ValidationFailed):
    code = "UNKNOWN_UNIT"
    default_message = "Unit not defined for product"


class InvalidQuantity(ValidationFailed):
    code = "INVALID_QUANTITY"
    default_message = "Invalid quantity"


class PriceNotDefined(ValidationFailed):
    code = "PRICE_NOT_DEFINED"
    default_message = "Price not defined for unit"


class InvalidPrice(ValidationFailed):
    code = "INVALID_PRICE"
    default_message = "Invalid unit price"


class InvalidAmount(ValidationFailed):
    code = "INVALID_AMOUNT"
    default_message = "Invalid amount"


# Business rule violations (400)


class BusinessRuleViolation(LedgerError):
    """Raised when a well-formed request breaks a balance or stock rule."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "BUSINESS_RULE_VIOLATION"
    default_message = "Operation not allowed"


class InsufficientStock(BusinessRuleViolation):
    code = "INSUFFICIENT_STOCK"
    default_message = "Insufficient stock"


class DiscountExceedsTotal(BusinessRuleViolation):
    code = "DISCOUNT_EXCEEDS_TOTAL"
    default_message = "Discount cannot exceed total amount"


class PaymentExceedsPayable(BusinessRuleViolation):
    code = "PAYMENT_EXCEEDS_PAYABLE"
    default_message = "Payment cannot exceed payable amount"


class PaymentExceedsBalance(BusinessRuleViolation):
    code = "PAYMENT_EXCEEDS_BALANCE"
    default_message = "Payment exceeds pending amount"


class PaymentExceedsDue(BusinessRuleViolation):
    code = "PAYMENT_EXCEEDS_DUE"
    default_message = "Payment exceeds customer due"


class ReturnExceedsPending(BusinessRuleViolation):
    code = "RETURN_EXCEEDS_PENDING"
    default_message = "Return exceeds pending"


class ReturnExceedsSoldQuantity(BusinessRuleViolation):
    code = "RETURN_EXCEEDS_SOLD_QUANTITY"
    default_message = "Return quantity exceeds sold quantity"


class AdjustmentExceedsBalance(BusinessRuleViolation):
    code = "ADJUSTMENT_EXCEEDS_BALANCE"
    default_message = "Adjustment exceeds balance"


class ItemNotInSale(BusinessRuleViolation):
    code = "ITEM_NOT_IN_SALE"
    default_message = "Item not found in sale"


class SaleAlreadyCancelled(BusinessRuleViolation):
    code = "SALE_CANCELLED"
    default_message = "Already cancelled"


class CustomerRequired(BusinessRuleViolation):
    code = "CUSTOMER_REQUIRED"
    default_message = "Customer required for this operation"


class CustomerMismatch(BusinessRuleViolation):
    code = "CUSTOMER_MISMATCH"
    default_message = "Customer mismatch"


# Not found (404)


class NotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Not found"


class SaleNotFound(NotFound):
    code = "SALE_NOT_FOUND"
    default_message = "Sale not found"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"
    default_message = "Product not found"


class CustomerNotFound(NotFound):
    code = "CUSTOMER_NOT_FOUND"
    default_message = "Customer not found"


# Conflicts (409)


class Conflict(LedgerError):
    """Raised on a unique-constraint collision that cannot be resolved as a replay."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Resource already exists"


class WriteConflict(Conflict):
    """Raised when a concurrent writer won the race; safe to resubmit."""

    code = "RETRY"
    default_message = "Concurrent update detected. Please retry"
    retryable = True


class StockConflict(WriteConflict):
    default_message = "Stock changed during sale. Please retry"


# Context and infrastructure


class MissingTenantContext(LedgerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TENANT_CONTEXT_MISSING"
    default_message = "Tenant context missing"


class StoreUnavailable(LedgerError):
    """Raised when the transactional store cannot run a multi-row transaction."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "STORE_UNAVAILABLE"
    default_message = "Transactional store unavailable. Check database connectivity"


def _first_message(data):
    """Pull the first human-readable message out of a DRF error payload."""
    if isinstance(data, dict):
        if "detail" in data:
            return _first_message(data["detail"])
        for field, value in data.items():
            message = _first_message(value)
            if field == "non_field_errors":
                return message
            return f"{field}: {message}"
    if isinstance(data, (list, tuple)):
        return _first_message(data[0]) if data else "Invalid request"
    return str(data)


def ledger_exception_handler(exc, context):
    """
    Render every error as ``{"message": ..., "code": ...}``.

    Domain errors map to their own status. DRF and Django errors keep the status
    DRF assigns them. Anything else is logged and reported as an opaque 500.
    """
    if isinstance(exc, LedgerError):
        if exc.status_code >= 500:
            logger.error(f"{exc.__class__.__name__}: {exc.message}", exc_info=exc)
        body = {"message": exc.message, "code": exc.code}
        if exc.retryable:
            body["retryable"] = True
        return Response(body, status=exc.status_code)

    if isinstance(exc, DjangoValidationError):
        message = exc.messages[0] if exc.messages else "Invalid request"
        return Response(
            {"message": message, "code": "VALIDATION_ERROR"},
            status=status.HTTP_400_BAD_REQUEST,
        )

    response = exception_handler(exc, context)
    if response is not None:
        if isinstance(exc, APIException):
            code = str(exc.default_code).upper()
        elif isinstance(exc, Http404):
            code = "NOT_FOUND"
        else:
            code = "ERROR"
        response.data = {
            "message": _first_message(response.data),
            "code": code,
            "errors": response.data,
        }
        return response

    view = context.get("view")
    logger.error(
        f"Unhandled error in {view.__class__.__name__ if view else 'unknown view'}: {exc}",
        exc_info=exc,
    )
    return Response(
        {"message": "Internal server error", "code": "INTERNAL_ERROR"},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
