"""Shipping and tax strategies applied to a Pending order's subtotal.

Strategies are selected from the ``[custom]`` settings:

    shipping_policy = "flat" | "threshold" | "none"
    flat_shipping_rate = 5.00
    free_shipping_threshold = 100.00
    tax_rate = 0.0

Digital-only orders never pay shipping, whatever the policy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from protean.exceptions import ConfigurationError

from storefront.order.order import to_cents
from storefront.settings import setting


class ShippingPolicy(ABC):
    @abstractmethod
    def cost(self, subtotal: float) -> float:
        ...


class NoShipping(ShippingPolicy):
    def cost(self, subtotal: float) -> float:  # noqa: ARG002
        return 0.0


@dataclass(frozen=True)
class FlatRateShipping(ShippingPolicy):
    rate: float

    def cost(self, subtotal: float) -> float:  # noqa: ARG002
        return to_cents(self.rate)


@dataclass(frozen=True)
class ThresholdFreeShipping(ShippingPolicy):
    """Flat rate below the threshold, free above it."""

    threshold: float
    rate: float

    def cost(self, subtotal: float) -> float:
        return 0.0 if subtotal > self.threshold else to_cents(self.rate)


class TaxPolicy(ABC):
    @abstractmethod
    def tax(self, subtotal: float) -> float:
        ...


@dataclass(frozen=True)
class PercentageTax(TaxPolicy):
    rate: float

    def tax(self, subtotal: float) -> float:
        return to_cents(subtotal * self.rate)


@dataclass(frozen=True)
class Charges:
    tax_amount: float
    shipping_cost: float


@dataclass(frozen=True)
class PricingPolicy:
    shipping: ShippingPolicy
    tax: TaxPolicy

    def charges(self, subtotal: float, requires_shipping: bool) -> Charges:
        shipping = self.shipping.cost(subtotal) if requires_shipping else 0.0
        return Charges(tax_amount=self.tax.tax(subtotal), shipping_cost=shipping)


def shipping_policy_from_settings() -> ShippingPolicy:
    name = setting("shipping_policy")
    if name == "none":
        return NoShipping()
    if name == "flat":
        return FlatRateShipping(rate=float(setting("flat_shipping_rate")))
    if name == "threshold":
        return ThresholdFreeShipping(
            threshold=float(setting("free_shipping_threshold")),
            rate=float(setting("flat_shipping_rate")),
        )
    raise ConfigurationError(f"Unknown shipping policy: {name}")


def pricing_from_settings() -> PricingPolicy:
    return PricingPolicy(
        shipping=shipping_policy_from_settings(),
        tax=PercentageTax(rate=float(setting("tax_rate"))),
    )
