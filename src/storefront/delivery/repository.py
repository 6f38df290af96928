"""Repository for the DigitalDownload aggregate."""

from storefront.delivery.download import DigitalDownload
from storefront.domain import storefront


@storefront.repository(part_of=DigitalDownload)
class DigitalDownloadRepository:
    def find_by_token(self, token: str) -> DigitalDownload | None:
        results = self._dao.query.filter(download_token=token).all().items
        return results[0] if results else None

    def for_order_item(self, order_item_id: str) -> DigitalDownload | None:
        results = self._dao.query.filter(order_item_id=str(order_item_id)).all().items
        return results[0] if results else None

    def for_user(self, user_id: str) -> list[DigitalDownload]:
        downloads = self._dao.query.filter(user_id=str(user_id)).all().items
        return sorted(downloads, key=lambda d: d.created_at, reverse=True)
