import pytest
from protean import current_domain
from protean.exceptions import ConfigurationError

from storefront.checkout.pricing import (
    FlatRateShipping,
    NoShipping,
    PercentageTax,
    PricingPolicy,
    ThresholdFreeShipping,
    pricing_from_settings,
    shipping_policy_from_settings,
)


class TestShippingPolicies:
    def test_no_shipping(self):
        assert NoShipping().cost(50.0) == 0.0

    def test_flat_rate(self):
        assert FlatRateShipping(rate=4.999).cost(10.0) == 5.0

    @pytest.mark.parametrize(
        "subtotal,expected",
        [(99.99, 5.0), (100.0, 5.0), (100.01, 0.0), (2000.0, 0.0)],
    )
    def test_threshold_is_free_strictly_above(self, subtotal, expected):
        assert ThresholdFreeShipping(threshold=100.0, rate=5.0).cost(subtotal) == expected


class TestPricingPolicy:
    def test_tax_rounds_to_cents(self):
        assert PercentageTax(rate=0.075).tax(19.99) == 1.5

    def test_charges_for_shipped_order(self):
        policy = PricingPolicy(shipping=FlatRateShipping(rate=5.0), tax=PercentageTax(rate=0.1))

        charges = policy.charges(40.0, requires_shipping=True)

        assert charges.tax_amount == 4.0
        assert charges.shipping_cost == 5.0

    def test_digital_only_orders_never_pay_shipping(self):
        policy = PricingPolicy(shipping=FlatRateShipping(rate=5.0), tax=PercentageTax(rate=0.0))
        assert policy.charges(40.0, requires_shipping=False).shipping_cost == 0.0


class TestPolicyFromSettings:
    def test_default_is_threshold_free_shipping(self):
        policy = pricing_from_settings()

        assert policy.shipping == ThresholdFreeShipping(threshold=100.0, rate=5.0)
        assert policy.tax == PercentageTax(rate=0.0)

    def test_flat_policy(self, monkeypatch):
        monkeypatch.setitem(current_domain.config["custom"], "shipping_policy", "flat")
        monkeypatch.setitem(current_domain.config["custom"], "flat_shipping_rate", 7.5)

        assert shipping_policy_from_settings() == FlatRateShipping(rate=7.5)

    def test_unknown_policy_is_a_configuration_error(self, monkeypatch):
        monkeypatch.setitem(current_domain.config["custom"], "shipping_policy", "carrier-pigeon")

        with pytest.raises(ConfigurationError):
            shipping_policy_from_settings()
