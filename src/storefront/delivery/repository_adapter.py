"""Digital delivery backed by the DigitalDownload aggregate."""

from protean.utils.globals import current_domain

from storefront.delivery.granting import GrantDownload
from storefront.delivery.port import DigitalDelivery


class RepositoryDigitalDelivery(DigitalDelivery):
    def grant_download(self, order_id, order_item_id, user_id, file_ref, product_name) -> str:
        return current_domain.process(
            GrantDownload(
                order_id=order_id,
                order_item_id=order_item_id,
                user_id=user_id,
                product_name=product_name,
                file_url=file_ref,
            ),
            asynchronous=False,
        )
