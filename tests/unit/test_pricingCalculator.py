"""
Unit tests for the Pricing Calculator.

Tests the booking deposit, per-method processing fees, total due now,
commission and payout splits, category commission resolution and half-up
rounding to cents.
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest

from queueup.core.config import Settings
from queueup.services.pricingCalculator import (
    commission_rate_for_category,
    compute_commission,
    compute_deposit,
    compute_mechanic_payout,
    compute_payment,
    compute_processing_fee,
    compute_settlement,
    compute_total_due_now,
    to_money,
)
from queueup.services.workflowErrors import UnknownPaymentMethodError


@pytest.fixture
def config() -> Settings:
    return Settings(_env_file=None)


def _job(**overrides):
    fields = {
        "id": uuid.uuid4(),
        "category": "Repair",
        "subcategory": None,
        "effective_total": Decimal("100.00"),
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


# ---------------------------------------------------------------------------
# to_money
# ---------------------------------------------------------------------------


class TestToMoney:
    def test_rounds_half_up(self):
        assert to_money(Decimal("0.125")) == Decimal("0.13")

    def test_rounds_down_below_half(self):
        assert to_money(Decimal("0.124")) == Decimal("0.12")

    def test_float_goes_through_str(self):
        """0.1 + 0.2 must not leak its binary expansion into the result."""
        assert to_money(0.1) == Decimal("0.10")

    def test_int_and_str_inputs(self):
        assert to_money(10) == Decimal("10.00")
        assert to_money("49.995") == Decimal("50.00")


# ---------------------------------------------------------------------------
# Deposit, processing fee, total due now
# ---------------------------------------------------------------------------


class TestDepositAndFees:
    """Booking-time amounts for every supported payment method."""

    def test_default_deposit_is_ten_dollars(self, config):
        assert compute_deposit(config) == Decimal("10.00")

    def test_deposit_follows_configuration(self):
        assert compute_deposit(Settings(_env_file=None, booking_deposit=Decimal("15"))) == Decimal("15.00")

    @pytest.mark.parametrize("method", ["card", "google_pay", "apple_pay"])
    def test_card_like_methods_charge_2_9_percent(self, config, method):
        assert compute_processing_fee(Decimal("10.00"), method, config) == Decimal("0.29")

    def test_paypal_charges_3_4_percent(self, config):
        assert compute_processing_fee(Decimal("10.00"), "paypal", config) == Decimal("0.34")

    def test_unknown_method_raises(self, config):
        with pytest.raises(UnknownPaymentMethodError) as exc_info:
            compute_processing_fee(Decimal("10.00"), "bitcoin", config)
        assert exc_info.value.code == "unknown_payment_method"
        assert "bitcoin" in exc_info.value.message

    def test_total_due_now_card(self, config):
        deposit = compute_deposit(config)
        fee = compute_processing_fee(deposit, "card", config)
        assert compute_total_due_now(deposit, fee) == Decimal("10.29")

    def test_fee_rounding_half_up(self, config):
        """17.50 * 0.029 = 0.5075 -> 0.51."""
        assert compute_processing_fee(Decimal("17.50"), "card", config) == Decimal("0.51")


class TestComputePayment:
    def test_builds_full_computation(self, config):
        job = _job()
        result = compute_payment(job, "paypal", config)
        assert result.job_id == job.id
        assert result.payment_method == "paypal"
        assert result.deposit == Decimal("10.00")
        assert result.processing_fee == Decimal("0.34")
        assert result.total_due_now == Decimal("10.34")

    def test_unknown_method_propagates(self, config):
        with pytest.raises(UnknownPaymentMethodError):
            compute_payment(_job(), "cash", config)


# ---------------------------------------------------------------------------
# Commission and payout
# ---------------------------------------------------------------------------


class TestCommissionAndPayout:
    def test_default_rate_payout(self):
        assert compute_mechanic_payout(Decimal("140.00"), Decimal("0.10")) == Decimal("126.00")

    def test_commission(self):
        assert compute_commission(Decimal("140.00"), Decimal("0.10")) == Decimal("14.00")

    def test_commission_plus_payout_is_total(self):
        total = Decimal("99.99")
        rate = Decimal("0.12")
        assert compute_commission(total, rate) + compute_mechanic_payout(total, rate) == total

    def test_zero_rate_pays_everything(self):
        assert compute_mechanic_payout(Decimal("50"), Decimal("0")) == Decimal("50.00")

    @pytest.mark.parametrize("rate", [Decimal("-0.01"), Decimal("1.01")])
    def test_rate_out_of_range_raises(self, rate):
        with pytest.raises(ValueError):
            compute_mechanic_payout(Decimal("100"), rate)


class TestCommissionRateForCategory:
    def test_exact_category(self, config):
        assert commission_rate_for_category("Detailing", config) == Decimal("0.15")

    def test_keyword_exact_match(self, config):
        assert commission_rate_for_category("oil-change", config) == Decimal("0.08")

    def test_keyword_substring_match(self, config):
        assert commission_rate_for_category("Front Brake Pads", config) == Decimal("0.10")
        assert commission_rate_for_category("tire rotation", config) == Decimal("0.06")

    def test_unknown_category_uses_default(self, config):
        assert commission_rate_for_category("Upholstery", config) == Decimal("0.10")

    def test_missing_category_uses_default(self, config):
        assert commission_rate_for_category(None, config) == Decimal("0.10")


class TestComputeSettlement:
    def test_category_rate(self, config):
        result = compute_settlement(_job(category="Repair"), config)
        assert result.commission_rate == Decimal("0.12")
        assert result.commission == Decimal("12.00")
        assert result.mechanic_payout == Decimal("88.00")

    def test_subcategory_overrides_category(self, config):
        job = _job(category="Repair", subcategory="tire-replacement")
        result = compute_settlement(job, config)
        assert result.commission_rate == Decimal("0.06")
        assert result.mechanic_payout == Decimal("94.00")

    def test_unmapped_subcategory_keeps_category_rate(self, config):
        job = _job(category="Detailing", subcategory="custom")
        assert compute_settlement(job, config).commission_rate == Decimal("0.15")

    def test_uses_effective_total(self, config):
        job = _job(category="Upholstery", effective_total=Decimal("140.00"))
        result = compute_settlement(job, config)
        assert result.effective_total == Decimal("140.00")
        assert result.commission == Decimal("14.00")
        assert result.mechanic_payout == Decimal("126.00")
