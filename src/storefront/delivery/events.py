"""Domain events for the DigitalDownload aggregate."""

from protean.fields import DateTime, Identifier, Integer

from storefront.domain import storefront


@storefront.event(part_of="DigitalDownload")
class DigitalDownloadGranted:
    __version__ = 1

    download_id = Identifier(required=True)
    order_id = Identifier(required=True)
    order_item_id = Identifier(required=True)
    user_id = Identifier()
    expires_at = DateTime(required=True)


@storefront.event(part_of="DigitalDownload")
class DigitalDownloadRedeemed:
    __version__ = 1

    download_id = Identifier(required=True)
    order_id = Identifier(required=True)
    download_count = Integer(required=True)
    redeemed_at = DateTime(required=True)
