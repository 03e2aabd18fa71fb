"""
Stripe Integration Module
=========================

Usage::

    from queueup.integrations.stripe import StripePaymentGateway, ChargeResult
"""

from .paymentService import (
    ChargeResult,
    PaymentGateway,
    StripePaymentGateway,
    to_cents,
)

__all__ = [
    "ChargeResult",
    "PaymentGateway",
    "StripePaymentGateway",
    "to_cents",
]
