from __future__ import annotations
"""Typed exceptions for the reconciliation engine.

Each class carries a machine-readable ``code`` and the HTTP ``status`` client-facing
routes answer with. Gateway-facing handlers never let these escape (see
``decorators.gateway``).
"""
from decimal import Decimal
from typing import Any, Dict, Optional

SERVICE_UNAVAILABLE_MESSAGE = 'Payment service unavailable, try again.'


def format_amount(value) -> str:
    """Render an amount the way staff read it: 1500, 1500.50."""
    d = Decimal(str(value))
    if d == d.to_integral_value():
        return str(int(d))
    return f'{d:.2f}'


class PaymentError(Exception):
    code = 'PAYMENT_ERROR'
    status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {'message': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class ConfigurationError(PaymentError):
    """Missing or invalid gateway configuration. Raised at startup only."""
    code = 'CONFIGURATION_ERROR'
    status = 500


class ValidationError(PaymentError):
    code = 'VALIDATION_ERROR'
    status = 400


class AmountMismatchError(PaymentError):
    code = 'AMOUNT_MISMATCH'
    status = 400

    def __init__(self, actual, expected):
        super().__init__(
            f'Amount mismatch. Receipt shows KES {format_amount(actual)}, but sale total is KES {format_amount(expected)}.',
            actual=format_amount(actual),
            expected=format_amount(expected),
        )
        self.actual = actual
        self.expected = expected


class NotFoundError(PaymentError):
    code = 'NOT_FOUND'
    status = 404


class DuplicateEventError(PaymentError):
    """An already-applied gateway event was delivered again. Not a failure."""
    code = 'DUPLICATE_EVENT'
    status = 200


class InvalidTransitionError(PaymentError):
    code = 'INVALID_TRANSITION'
    status = 409


class GatewayError(PaymentError):
    """Base for failures talking to the gateway; surfaced as 'service unavailable'."""
    code = 'GATEWAY_ERROR'
    status = 502

    def to_dict(self) -> Dict[str, Any]:
        payload = {'message': SERVICE_UNAVAILABLE_MESSAGE, 'code': self.code, 'detail': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class AuthenticationError(GatewayError):
    code = 'AUTHENTICATION_ERROR'
    status = 502


class NetworkTimeoutError(GatewayError):
    code = 'NETWORK_TIMEOUT'
    status = 503


class GatewayRejectedError(GatewayError):
    code = 'GATEWAY_REJECTED'
    status = 502

    def __init__(self, message: str, response_code: Optional[str] = None, **details: Any):
        super().__init__(message, **details)
        self.response_code = response_code


__all__ = [
    'PaymentError', 'ConfigurationError', 'ValidationError', 'AmountMismatchError', 'NotFoundError',
    'DuplicateEventError', 'InvalidTransitionError', 'GatewayError', 'AuthenticationError',
    'NetworkTimeoutError', 'GatewayRejectedError', 'SERVICE_UNAVAILABLE_MESSAGE'
]
