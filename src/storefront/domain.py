"""Storefront domain — order lifecycle, inventory reservations and payments.

A single bounded context: checkout has to reserve stock, create the order and
record its payment intent in one flow, so the Order, StockRecord and Payment
aggregates are registered on the same domain and share units of work.
"""

from protean.domain import Domain

storefront = Domain(name="storefront")
