"""Stock initialization and restocking — commands and handler."""

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.inventory.stock import StockRecord, stock_key
from storefront.settings import setting


@storefront.command(part_of="StockRecord")
class InitializeStock:
    """Start tracking stock for a product or variant."""

    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=0)
    low_stock_threshold = Integer(min_value=0)


@storefront.command(part_of="StockRecord")
class ReceiveStock:
    """Add units to an existing record (explicit restock)."""

    stock_key = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    reference = String(max_length=255)


@storefront.command_handler(part_of=StockRecord)
class StockLevelHandler:
    @handle(InitializeStock)
    def initialize_stock(self, command):
        repo = current_domain.repository_for(StockRecord)
        key = stock_key(command.product_id, command.variant_id)
        try:
            repo.get(key)
        except ObjectNotFoundError:
            pass
        else:
            raise ValidationError({"stock_key": [f"Stock for {key} is already initialized"]})

        threshold = command.low_stock_threshold
        if threshold is None:
            threshold = setting("low_stock_threshold")

        record = StockRecord.create(
            product_id=command.product_id,
            variant_id=command.variant_id,
            quantity=command.quantity,
            low_stock_threshold=threshold,
        )
        repo.add(record)
        return key

    @handle(ReceiveStock)
    def receive_stock(self, command):
        repo = current_domain.repository_for(StockRecord)
        record = repo.get_for_update(command.stock_key)
        record.receive(command.quantity, reference=command.reference)
        repo.add(record)
        return record.on_hand
