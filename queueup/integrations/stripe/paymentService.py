"""
Stripe Payment Gateway
======================

Charges customers through Stripe PaymentIntents, confirmed immediately with
a payment method token collected by the client (tokenization and vaulting
stay on the client / Stripe side).

The workflow engine talks to the ``PaymentGateway`` protocol only; this
module is the production implementation. Amounts cross the boundary as
``Decimal`` dollars and are converted to integer cents here.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Protocol, runtime_checkable

import stripe

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2024-06-20"


# ---------------------------------------------------------------------------
# Gateway contract
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChargeResult:
    """Outcome of a single charge attempt."""
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    decline_code: Optional[str] = None


@runtime_checkable
class PaymentGateway(Protocol):
    async def charge(
        self,
        amount: Decimal,
        payment_token: str,
        *,
        job_id: uuid.UUID,
        description: str,
        idempotency_key: Optional[str] = None,
    ) -> ChargeResult:
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_cents(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _handle_stripe_error(exc: stripe.StripeError) -> ChargeResult:
    """Convert a Stripe SDK exception into a failed ChargeResult."""
    error_body = getattr(exc, "error", None)

    code = getattr(error_body, "code", None) if error_body else None
    error_type = getattr(error_body, "type", None) if error_body else None
    decline_code = getattr(error_body, "decline_code", None) if error_body else None

    logger.error(
        "Stripe API error: %s (code=%s, type=%s, decline_code=%s)",
        str(exc),
        code,
        error_type,
        decline_code,
    )
    message = getattr(exc, "user_message", None) or str(exc) or "Payment failed"
    return ChargeResult(success=False, error=message, decline_code=decline_code)


# ---------------------------------------------------------------------------
# Stripe implementation
# ---------------------------------------------------------------------------

class StripePaymentGateway:
    def __init__(self, api_key: str, currency: str = "usd") -> None:
        self.api_key = api_key
        self.currency = currency.lower()

    async def charge(
        self,
        amount: Decimal,
        payment_token: str,
        *,
        job_id: uuid.UUID,
        description: str,
        idempotency_key: Optional[str] = None,
    ) -> ChargeResult:
        """Create and confirm a PaymentIntent for ``amount``.

        Declines and API errors come back as ``ChargeResult(success=False)``;
        this method never raises for a Stripe-side failure. Stripe returns the
        original PaymentIntent for a repeated ``idempotency_key``.
        """
        amount_cents = to_cents(amount)
        if amount_cents <= 0:
            return ChargeResult(success=False, error="Charge amount must be positive.")

        params: dict = {
            "amount": amount_cents,
            "currency": self.currency,
            "payment_method": payment_token,
            "confirm": True,
            "description": description,
            "metadata": {
                "job_id": str(job_id),
                "platform": "queueup",
            },
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            "api_key": self.api_key,
            "stripe_version": STRIPE_API_VERSION,
        }
        if idempotency_key is not None:
            params["idempotency_key"] = idempotency_key

        # The SDK is blocking; keep it off the event loop
        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as exc:
            return _handle_stripe_error(exc)

        if intent.status != "succeeded":
            logger.warning(
                "PaymentIntent not settled: id=%s, job_id=%s, status=%s",
                intent.id,
                job_id,
                intent.status,
            )
            return ChargeResult(
                success=False,
                transaction_id=intent.id,
                error=f"Payment requires further action (status: {intent.status})",
            )

        logger.info(
            "PaymentIntent confirmed: id=%s, job_id=%s, amount=%d %s",
            intent.id,
            job_id,
            amount_cents,
            self.currency,
        )
        return ChargeResult(success=True, transaction_id=intent.id)
