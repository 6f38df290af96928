"""Pydantic request/response schemas for the storefront API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands and aggregates.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    first_name: str
    last_name: str
    company: str | None = None
    address_line1: str
    address_line2: str | None = None
    city: str
    state: str | None = None
    postal_code: str
    country: str
    phone_number: str | None = None


class StatusResponse(BaseModel):
    status: str = "ok"


# ---------------------------------------------------------------------------
# Baskets
# ---------------------------------------------------------------------------
class CreateBasketRequest(BaseModel):
    buyer_id: str | None = None
    buyer_email: str | None = None


class BasketIdResponse(BaseModel):
    basket_id: str


class AddBasketItemRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(ge=1, default=1)


class BasketItemResponse(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int


class BasketResponse(BaseModel):
    basket_id: str
    buyer_id: str | None = None
    buyer_email: str | None = None
    items: list[BasketItemResponse]


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    basket_id: str
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "basket_id": "basket-001",
                    "shipping_address": {
                        "first_name": "Ada",
                        "last_name": "Lovelace",
                        "address_line1": "12 Analytical Way",
                        "city": "London",
                        "postal_code": "N1 9GU",
                        "country": "GB",
                    },
                }
            ]
        }
    }


class OrderItemResponse(BaseModel):
    item_id: str
    product_id: str
    variant_id: str | None = None
    product_name: str
    product_type: str
    unit_price: float
    quantity: int
    line_total: float
    attributes: list[dict]


class OrderTotalsResponse(BaseModel):
    subtotal: float
    tax_amount: float
    shipping_cost: float
    total_amount: float
    currency: str


class StatusHistoryResponse(BaseModel):
    sequence: int
    from_status: str
    to_status: str
    changed_at: datetime
    notes: str | None = None
    tracking_number: str | None = None
    updated_by: str


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    user_id: str | None = None
    buyer_email: str | None = None
    order_date: datetime
    status: str
    payment_status: str
    payment_intent_id: str | None = None
    contains_digital_products: bool
    requires_shipping: bool
    totals: OrderTotalsResponse
    items: list[OrderItemResponse]
    notes: str | None = None
    tracking_number: str | None = None
    revision: int

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        totals = order.totals
        return cls(
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=str(order.user_id) if order.user_id else None,
            buyer_email=order.buyer_email,
            order_date=order.order_date,
            status=order.status,
            payment_status=order.payment_status,
            payment_intent_id=order.payment_intent_id,
            contains_digital_products=bool(order.contains_digital_products),
            requires_shipping=bool(order.requires_shipping),
            totals=OrderTotalsResponse(
                subtotal=totals.subtotal,
                tax_amount=totals.tax_amount,
                shipping_cost=totals.shipping_cost,
                total_amount=totals.total_amount,
                currency=totals.currency,
            ),
            items=[
                OrderItemResponse(
                    item_id=str(item.id),
                    product_id=str(item.product_id),
                    variant_id=str(item.variant_id) if item.variant_id else None,
                    product_name=item.product_name,
                    product_type=item.product_type,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    line_total=item.line_total,
                    attributes=item.attribute_snapshots(),
                )
                for item in order.ordered_items()
            ],
            notes=order.notes,
            tracking_number=order.tracking_number,
            revision=order.revision,
        )


class CheckoutResponse(BaseModel):
    order: OrderResponse
    client_secret: str | None = None


class CancelOrderRequest(BaseModel):
    user_id: str


def history_response(entry) -> StatusHistoryResponse:
    return StatusHistoryResponse(
        sequence=entry.sequence,
        from_status=entry.from_status,
        to_status=entry.to_status,
        changed_at=entry.changed_at,
        notes=entry.notes,
        tracking_number=entry.tracking_number,
        updated_by=entry.updated_by,
    )


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------
class TransitionRequest(BaseModel):
    status: str
    updated_by: str = "Admin"
    actor_id: str | None = None
    notes: str | None = None
    tracking_number: str | None = None
    expected_revision: int | None = None


class BulkTransitionRequest(BaseModel):
    order_ids: list[str] = Field(min_length=1)
    status: str
    updated_by: str = "Admin"


class BulkTransitionResultResponse(BaseModel):
    order_id: str
    succeeded: bool
    error: str | None = None


class TrackingRequest(BaseModel):
    tracking_number: str
    notes: str | None = None
    updated_by: str = "Admin"
    expected_revision: int | None = None


class NotesRequest(BaseModel):
    notes: str | None = None
    updated_by: str = "Admin"
    expected_revision: int | None = None


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class WebhookResponse(BaseModel):
    received: bool = True
    handled: bool


class RetryPaymentResponse(BaseModel):
    order_id: str
    payment_intent_id: str
    client_secret: str | None = None


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool
    failure_reason: str = "Card declined"
    delay_seconds: float = Field(ge=0, default=0.0)


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
class InitializeStockRequest(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int = Field(ge=0)
    low_stock_threshold: int | None = Field(ge=0, default=None)


class ReceiveStockRequest(BaseModel):
    quantity: int = Field(ge=1)
    reference: str | None = None


class StockKeyResponse(BaseModel):
    stock_key: str


class AvailabilityResponse(BaseModel):
    stock_key: str
    on_hand: int
    reserved: int
    available: int


class SweepResponse(BaseModel):
    released: int


# ---------------------------------------------------------------------------
# Digital downloads
# ---------------------------------------------------------------------------
class DownloadResponse(BaseModel):
    download_id: str
    order_id: str
    product_name: str
    download_count: int
    max_downloads: int
    expires_at: datetime
    can_download: bool


class IssueTokenRequest(BaseModel):
    user_id: str


class TokenResponse(BaseModel):
    token: str
    expires_at: datetime


class RedeemResponse(BaseModel):
    file_url: str
    downloads_remaining: int
