"""
Pricing Calculator
==================

Pure, stateless money arithmetic for the booking and settlement flows:

- Booking deposit (flat fee, independent of job size)
- Processing fee on the deposit, by payment method:
  - card / google_pay / apple_pay: 2.9%
  - paypal: 3.4%
- Total due now (deposit + processing fee)
- Platform commission and mechanic payout on the job total

Rates are read from ``Settings`` so they stay configuration. Every result is
rounded to cents with ROUND_HALF_UP.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from queueup.core.config import Settings, settings as default_settings
from queueup.services.workflowErrors import UnknownPaymentMethodError

Number = Union[Decimal, int, float, str]

CENTS = Decimal("0.01")

# Subcategory keywords mapped to the commission category they belong to.
# Checked as an exact match first, then as a substring of the lowercased name.
CATEGORY_KEYWORDS: dict[str, str] = {
    "oil-change": "Maintenance",
    "oil_change": "Maintenance",
    "filter": "Maintenance",
    "fluid": "Maintenance",
    "inspection": "Maintenance",
    "brake": "Brake",
    "tire": "Tire",
    "wheel": "Tire",
    "alignment": "Tire",
    "balancing": "Tire",
    "battery": "Battery",
    "alternator": "Electrical",
    "starter": "Electrical",
    "wiring": "Electrical",
    "electrical": "Electrical",
    "air-conditioning": "AC",
    "air_conditioning": "AC",
    "heating": "AC",
    "cooling": "AC",
    "engine": "Engine",
    "transmission": "Transmission",
    "diagnostic": "Diagnostic/Other",
    "diagnosis": "Diagnostic/Other",
    "detailing": "Detailing",
    "wash": "Detailing",
    "polish": "Detailing",
    "roadside": "Emergency",
    "towing": "Emergency",
    "emergency": "Emergency",
}


# ---------------------------------------------------------------------------
# Result DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PaymentComputation:
    """What the customer owes at booking time for a job."""
    job_id: Optional[uuid.UUID]
    payment_method: str
    deposit: Decimal
    processing_fee: Decimal
    total_due_now: Decimal


@dataclass(frozen=True)
class SettlementBreakdown:
    """Final split of a completed job's effective total."""
    job_id: uuid.UUID
    effective_total: Decimal
    commission_rate: Decimal
    commission: Decimal
    mechanic_payout: Decimal


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_money(value: Number) -> Decimal:
    """Coerce to ``Decimal`` and round half-up to cents.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _as_rate(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ---------------------------------------------------------------------------
# Core calculations
# ---------------------------------------------------------------------------

def compute_deposit(config: Settings | None = None) -> Decimal:
    """Flat booking fee charged when a job is booked."""
    config = config or default_settings
    return to_money(config.booking_deposit)


def processing_rate(payment_method: str, config: Settings | None = None) -> Decimal:
    """Look up the processing-fee rate for a payment method id.

    Raises:
        UnknownPaymentMethodError: If no rate is configured for the method.
    """
    config = config or default_settings
    rate = config.payment_method_rates.get(payment_method)
    if rate is None:
        raise UnknownPaymentMethodError(payment_method)
    return _as_rate(rate)


def compute_processing_fee(
    deposit_amount: Number,
    payment_method: str,
    config: Settings | None = None,
) -> Decimal:
    """``round(deposit * method_rate, 2)``."""
    rate = processing_rate(payment_method, config)
    return to_money(Decimal(str(deposit_amount)) * rate)


def compute_total_due_now(deposit: Number, processing_fee: Number) -> Decimal:
    return to_money(to_money(deposit) + to_money(processing_fee))


def compute_commission(job_total: Number, commission_rate: Number) -> Decimal:
    return to_money(to_money(job_total) * _as_rate(commission_rate))


def compute_mechanic_payout(job_total: Number, commission_rate: Number) -> Decimal:
    """``job_total * (1 - commission_rate)``, rounded to cents."""
    rate = _as_rate(commission_rate)
    if rate < 0 or rate > 1:
        raise ValueError(f"Commission rate must be between 0 and 1, got {rate}")
    return to_money(to_money(job_total) * (Decimal("1") - rate))


def commission_rate_for_category(
    category: Optional[str],
    config: Settings | None = None,
) -> Decimal:
    """Resolve the commission rate for a service category.

    Resolution order: exact category name, keyword mapping of the lowercased
    name (exact, then substring), then the platform-wide default.
    """
    config = config or default_settings
    rates = config.category_commission_rates
    default = _as_rate(config.platform_commission_rate)
    if not category:
        return default

    if category in rates:
        return _as_rate(rates[category])

    lowered = category.lower()
    mapped = CATEGORY_KEYWORDS.get(lowered)
    if mapped is None:
        for keyword, target in CATEGORY_KEYWORDS.items():
            if keyword in lowered:
                mapped = target
                break

    if mapped is not None and mapped in rates:
        return _as_rate(rates[mapped])
    return default


# ---------------------------------------------------------------------------
# Job-level computations
# ---------------------------------------------------------------------------

def compute_payment(
    job,
    payment_method: str,
    config: Settings | None = None,
) -> PaymentComputation:
    """Build the booking-time payment computation for a job."""
    deposit = compute_deposit(config)
    fee = compute_processing_fee(deposit, payment_method, config)
    return PaymentComputation(
        job_id=getattr(job, "id", None),
        payment_method=payment_method,
        deposit=deposit,
        processing_fee=fee,
        total_due_now=compute_total_due_now(deposit, fee),
    )


def compute_settlement(job, config: Settings | None = None) -> SettlementBreakdown:
    """Split a job's effective total into platform commission and payout.

    The commission rate is resolved from the job's subcategory when it maps
    to a known category, else from its category.
    """
    rate = commission_rate_for_category(job.category, config)
    if job.subcategory:
        sub_rate = commission_rate_for_category(job.subcategory, config)
        config = config or default_settings
        if sub_rate != _as_rate(config.platform_commission_rate):
            rate = sub_rate

    total = to_money(job.effective_total)
    commission = compute_commission(total, rate)
    return SettlementBreakdown(
        job_id=job.id,
        effective_total=total,
        commission_rate=rate,
        commission=commission,
        mechanic_payout=to_money(total - commission),
    )
