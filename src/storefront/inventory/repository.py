"""Repository for the StockRecord aggregate."""

from storefront.domain import storefront
from storefront.inventory.stock import StockRecord
from storefront.utils.db import lock_row


@storefront.repository(part_of=StockRecord)
class StockRecordRepository:
    def get_for_update(self, key) -> StockRecord:
        """Load a record, holding its row lock until the unit of work ends."""
        lock_row(self._dao, key)
        return self.get(key)

    def keys_with_unreleased_reservations(self, page_size: int = 100) -> list[str]:
        """Identities of records still holding unreleased reservations."""
        keys = []
        offset = 0
        while True:
            page = self._dao.query.filter(reserved__gt=0).order_by("id").offset(offset).limit(page_size).all().items
            keys.extend(str(record.id) for record in page)
            if len(page) < page_size:
                return keys
            offset += page_size
