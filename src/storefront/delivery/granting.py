"""Digital download grants and redemption — commands and handler."""

from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.delivery.download import DigitalDownload
from storefront.domain import storefront
from storefront.settings import download_expiry, download_token_ttl, setting


@storefront.command(part_of="DigitalDownload")
class GrantDownload:
    order_id = Identifier(required=True)
    order_item_id = Identifier(required=True)
    user_id = Identifier()
    product_name = String(required=True, max_length=255)
    file_url = String(required=True, max_length=500)


@storefront.command(part_of="DigitalDownload")
class IssueDownloadToken:
    download_id = Identifier(required=True)
    user_id = Identifier(required=True)


@storefront.command(part_of="DigitalDownload")
class RedeemDownloadToken:
    token = String(required=True, max_length=100)


@storefront.command_handler(part_of=DigitalDownload)
class DigitalDownloadHandler:
    @handle(GrantDownload)
    def grant_download(self, command):
        repo = current_domain.repository_for(DigitalDownload)
        # One grant per purchased line
        existing = repo.for_order_item(command.order_item_id)
        if existing is not None:
            return str(existing.id)

        download = DigitalDownload.grant(
            order_id=command.order_id,
            order_item_id=command.order_item_id,
            user_id=command.user_id,
            product_name=command.product_name,
            file_url=command.file_url,
            valid_for=download_expiry(),
            max_downloads=setting("max_downloads"),
        )
        repo.add(download)
        return str(download.id)

    @handle(IssueDownloadToken)
    def issue_token(self, command):
        repo = current_domain.repository_for(DigitalDownload)
        download = repo.get(command.download_id)
        if str(download.user_id) != str(command.user_id):
            raise ObjectNotFoundError({"download_id": [f"Download {command.download_id} not found"]})

        token = download.issue_token(download_token_ttl())
        repo.add(download)
        return token

    @handle(RedeemDownloadToken)
    def redeem_token(self, command):
        repo = current_domain.repository_for(DigitalDownload)
        download = repo.find_by_token(command.token)
        if download is None:
            raise ObjectNotFoundError({"token": ["Invalid download token"]})

        file_url = download.redeem(command.token)
        repo.add(download)
        return file_url
