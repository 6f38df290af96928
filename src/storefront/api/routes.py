"""FastAPI routes for the storefront — baskets, checkout, back office, payments.

Handlers are plain functions so FastAPI runs them in its threadpool: checkout
waits on the payment gateway and every command blocks on locks and storage.
The webhook reads its raw body asynchronously and hands the event to the
threadpool.
"""

import os

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from protean.utils.globals import current_domain

from storefront.api.schemas import (
    AddBasketItemRequest,
    AvailabilityResponse,
    BasketIdResponse,
    BasketItemResponse,
    BasketResponse,
    BulkTransitionRequest,
    BulkTransitionResultResponse,
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    ConfigureGatewayRequest,
    CreateBasketRequest,
    DownloadResponse,
    InitializeStockRequest,
    IssueTokenRequest,
    NotesRequest,
    OrderResponse,
    ReceiveStockRequest,
    RedeemResponse,
    RetryPaymentResponse,
    StatusHistoryResponse,
    StatusResponse,
    StockKeyResponse,
    SweepResponse,
    TokenResponse,
    TrackingRequest,
    TransitionRequest,
    WebhookResponse,
    history_response,
)
from storefront.basket import get_basket_service
from storefront.basket.management import AddBasketItem, ClearBasket, CreateBasket, RemoveBasketItem
from storefront.checkout.orchestrator import checkout
from storefront.delivery.download import DigitalDownload
from storefront.delivery.granting import IssueDownloadToken, RedeemDownloadToken
from storefront.gateway import get_gateway
from storefront.gateway.fake_adapter import FakeGateway
from storefront.gateway.port import WebhookSignatureError
from storefront.inventory.ledger import ledger
from storefront.order.order import Order
from storefront.order.state_machine import state_machine
from storefront.payment.reconciliation import reconciliation

# ---------------------------------------------------------------------------
# Basket Router
# ---------------------------------------------------------------------------
basket_router = APIRouter(prefix="/baskets", tags=["baskets"])


@basket_router.post("", status_code=201, response_model=BasketIdResponse)
def create_basket(body: CreateBasketRequest) -> BasketIdResponse:
    command = CreateBasket(buyer_id=body.buyer_id, buyer_email=body.buyer_email)
    result = current_domain.process(command, asynchronous=False)
    return BasketIdResponse(basket_id=result)


@basket_router.get("/{basket_id}", response_model=BasketResponse)
def get_basket(basket_id: str) -> BasketResponse:
    basket = get_basket_service().get_basket(basket_id)
    if basket is None:
        raise HTTPException(status_code=404, detail=f"Basket {basket_id} not found")
    return BasketResponse(
        basket_id=basket.id,
        buyer_id=basket.buyer_id,
        buyer_email=basket.buyer_email,
        items=[
            BasketItemResponse(product_id=line.product_id, variant_id=line.variant_id, quantity=line.quantity)
            for line in basket.items
        ],
    )


@basket_router.post("/{basket_id}/items", response_model=StatusResponse)
def add_basket_item(basket_id: str, body: AddBasketItemRequest) -> StatusResponse:
    command = AddBasketItem(
        basket_id=basket_id,
        product_id=body.product_id,
        variant_id=body.variant_id,
        quantity=body.quantity,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@basket_router.delete("/{basket_id}/items/{product_id}", response_model=StatusResponse)
def remove_basket_item(
    basket_id: str, product_id: str, variant_id: str | None = None, quantity: int | None = None
) -> StatusResponse:
    command = RemoveBasketItem(
        basket_id=basket_id,
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse()


@basket_router.delete("/{basket_id}/items", response_model=StatusResponse)
def clear_basket(basket_id: str) -> StatusResponse:
    current_domain.process(ClearBasket(basket_id=basket_id), asynchronous=False)
    return StatusResponse()


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=CheckoutResponse)
def create_order(body: CheckoutRequest) -> CheckoutResponse:
    """Check out a basket.

    1. Reserve stock for every basket line
    2. Price the order and open a payment intent
    3. Persist the Pending order and clear the basket
    """
    result = checkout.create_order(
        body.basket_id,
        shipping_address=body.shipping_address.model_dump(),
        billing_address=body.billing_address.model_dump() if body.billing_address else None,
    )
    return CheckoutResponse(order=OrderResponse.from_order(result.order), client_secret=result.client_secret)


@order_router.get("", response_model=list[OrderResponse])
def list_orders(user_id: str) -> list[OrderResponse]:
    orders = current_domain.repository_for(Order).for_user(user_id)
    return [OrderResponse.from_order(order) for order in orders]


@order_router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: str) -> OrderResponse:
    return OrderResponse.from_order(current_domain.repository_for(Order).get(order_id))


@order_router.get("/{order_id}/history", response_model=list[StatusHistoryResponse])
def get_order_history(order_id: str) -> list[StatusHistoryResponse]:
    return [history_response(entry) for entry in state_machine.history(order_id)]


@order_router.post("/{order_id}/cancel", response_model=StatusHistoryResponse)
def cancel_order(order_id: str, body: CancelOrderRequest) -> StatusHistoryResponse:
    entry = state_machine.cancel_by_customer(order_id, body.user_id)
    return history_response(entry)


@order_router.post("/{order_id}/payments", status_code=201, response_model=RetryPaymentResponse)
def retry_payment(order_id: str) -> RetryPaymentResponse:
    result = checkout.retry_payment(order_id)
    return RetryPaymentResponse(
        order_id=str(result.order.id),
        payment_intent_id=result.order.payment_intent_id,
        client_secret=result.client_secret,
    )


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


@admin_router.put("/{order_id}/status", response_model=StatusHistoryResponse)
def update_order_status(order_id: str, body: TransitionRequest) -> StatusHistoryResponse:
    entry = state_machine.transition(
        order_id,
        body.status,
        updated_by=body.updated_by,
        actor_id=body.actor_id,
        notes=body.notes,
        tracking_number=body.tracking_number,
        expected_revision=body.expected_revision,
    )
    return history_response(entry)


@admin_router.post("/status", response_model=list[BulkTransitionResultResponse])
def bulk_update_order_status(body: BulkTransitionRequest) -> list[BulkTransitionResultResponse]:
    results = state_machine.bulk_transition(body.order_ids, body.status, updated_by=body.updated_by)
    return [
        BulkTransitionResultResponse(order_id=r.order_id, succeeded=r.succeeded, error=r.error) for r in results
    ]


@admin_router.put("/{order_id}/tracking", response_model=StatusResponse)
def update_tracking(order_id: str, body: TrackingRequest) -> StatusResponse:
    state_machine.update_tracking(
        order_id,
        body.tracking_number,
        updated_by=body.updated_by,
        notes=body.notes,
        expected_revision=body.expected_revision,
    )
    return StatusResponse()


@admin_router.put("/{order_id}/notes", response_model=StatusResponse)
def update_notes(order_id: str, body: NotesRequest) -> StatusResponse:
    state_machine.update_notes(
        order_id,
        body.notes,
        updated_by=body.updated_by,
        expected_revision=body.expected_revision,
    )
    return StatusResponse()


@admin_router.get("/{order_id}/history", response_model=list[StatusHistoryResponse])
def admin_order_history(order_id: str) -> list[StatusHistoryResponse]:
    return [history_response(entry) for entry in state_machine.history(order_id)]


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
) -> WebhookResponse:
    payload = (await request.body()).decode("utf-8")
    try:
        event = get_gateway().parse_event(payload, stripe_signature or "")
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=401, detail="Invalid webhook signature") from exc

    outcome = await run_in_threadpool(reconciliation.handle_webhook, event)
    return WebhookResponse(handled=outcome is not None)


@payment_router.put("/gateway", response_model=StatusResponse)
def configure_gateway(body: ConfigureGatewayRequest) -> StatusResponse:
    """Make the fake gateway succeed, fail or stall. Not available in production."""
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration is disabled in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=409, detail="The active payment gateway cannot be configured")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
        delay_seconds=body.delay_seconds,
    )
    return StatusResponse()


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("/stock", status_code=201, response_model=StockKeyResponse)
def initialize_stock(body: InitializeStockRequest) -> StockKeyResponse:
    key = ledger.initialize(
        body.product_id,
        variant_id=body.variant_id,
        quantity=body.quantity,
        low_stock_threshold=body.low_stock_threshold,
    )
    return StockKeyResponse(stock_key=key)


@inventory_router.post("/products/{product_id}/receive", response_model=AvailabilityResponse)
def receive_stock(product_id: str, body: ReceiveStockRequest, variant_id: str | None = None) -> AvailabilityResponse:
    ledger.receive(product_id, variant_id=variant_id, quantity=body.quantity, reference=body.reference)
    return _availability(product_id, variant_id)


@inventory_router.get("/products/{product_id}", response_model=AvailabilityResponse)
def get_availability(product_id: str, variant_id: str | None = None) -> AvailabilityResponse:
    return _availability(product_id, variant_id)


@inventory_router.post("/reservations/expire", response_model=SweepResponse)
def expire_reservations() -> SweepResponse:
    return SweepResponse(released=ledger.sweep_expired())


def _availability(product_id, variant_id) -> AvailabilityResponse:
    record = ledger.record(product_id, variant_id)
    return AvailabilityResponse(
        stock_key=str(record.id),
        on_hand=record.on_hand,
        reserved=record.reserved,
        available=record.available(),
    )


# ---------------------------------------------------------------------------
# Download Router
# ---------------------------------------------------------------------------
download_router = APIRouter(prefix="/downloads", tags=["downloads"])


@download_router.get("", response_model=list[DownloadResponse])
def list_downloads(user_id: str) -> list[DownloadResponse]:
    downloads = current_domain.repository_for(DigitalDownload).for_user(user_id)
    return [
        DownloadResponse(
            download_id=str(d.id),
            order_id=str(d.order_id),
            product_name=d.product_name,
            download_count=d.download_count,
            max_downloads=d.max_downloads,
            expires_at=d.expires_at,
            can_download=d.can_download(),
        )
        for d in downloads
    ]


@download_router.post("/{download_id}/token", status_code=201, response_model=TokenResponse)
def issue_download_token(download_id: str, body: IssueTokenRequest) -> TokenResponse:
    token = current_domain.process(
        IssueDownloadToken(download_id=download_id, user_id=body.user_id),
        asynchronous=False,
    )
    download = current_domain.repository_for(DigitalDownload).get(download_id)
    return TokenResponse(token=token, expires_at=download.token_expires_at)


@download_router.post("/redeem/{token}", response_model=RedeemResponse)
def redeem_download_token(token: str) -> RedeemResponse:
    repo = current_domain.repository_for(DigitalDownload)
    download = repo.find_by_token(token)
    file_url = current_domain.process(RedeemDownloadToken(token=token), asynchronous=False)
    download = repo.get(download.id)
    return RedeemResponse(file_url=file_url, downloads_remaining=download.max_downloads - download.download_count)
