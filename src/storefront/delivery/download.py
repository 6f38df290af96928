"""DigitalDownload aggregate — a buyer's right to fetch a purchased file.

A grant expires after a configured number of days and allows a limited
number of downloads. Each download needs a short-lived single-use token.
"""

import secrets
from datetime import UTC, datetime, timedelta

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String

from storefront.delivery.events import DigitalDownloadGranted, DigitalDownloadRedeemed
from storefront.domain import storefront
from storefront.utils.clock import as_utc


@storefront.aggregate
class DigitalDownload:
    order_id = Identifier(required=True)
    order_item_id = Identifier(required=True)
    user_id = Identifier()
    product_name = String(required=True, max_length=255)
    file_url = String(required=True, max_length=500)
    created_at = DateTime(required=True)
    expires_at = DateTime(required=True)
    download_count = Integer(default=0, min_value=0)
    max_downloads = Integer(default=3, min_value=1)
    downloaded_at = DateTime()
    download_token = String(max_length=100)
    token_expires_at = DateTime()

    @classmethod
    def grant(cls, order_id, order_item_id, user_id, product_name, file_url, valid_for: timedelta, max_downloads=3):
        now = datetime.now(UTC)
        download = cls(
            order_id=order_id,
            order_item_id=order_item_id,
            user_id=user_id,
            product_name=product_name,
            file_url=file_url,
            created_at=now,
            expires_at=now + valid_for,
            max_downloads=max_downloads,
        )
        download.raise_(
            DigitalDownloadGranted(
                download_id=str(download.id),
                order_id=str(order_id),
                order_item_id=str(order_item_id),
                user_id=str(user_id) if user_id else None,
                expires_at=download.expires_at,
            )
        )
        return download

    def is_expired(self, as_of: datetime | None = None) -> bool:
        return as_utc(self.expires_at) <= (as_of or datetime.now(UTC))

    def can_download(self, as_of: datetime | None = None) -> bool:
        return not self.is_expired(as_of) and self.download_count < self.max_downloads

    def issue_token(self, valid_for: timedelta) -> str:
        if not self.can_download():
            raise ValidationError({"download": ["Download limit exceeded or expired"]})

        self.download_token = secrets.token_urlsafe(32)
        self.token_expires_at = datetime.now(UTC) + valid_for
        return self.download_token

    def redeem(self, token) -> str:
        """Consume ``token`` and return the file reference to serve."""
        now = datetime.now(UTC)
        if not self.download_token or not secrets.compare_digest(self.download_token, token):
            raise ValidationError({"token": ["Invalid download token"]})
        if self.token_expires_at and as_utc(self.token_expires_at) <= now:
            raise ValidationError({"token": ["Download token has expired"]})
        if not self.can_download(now):
            raise ValidationError({"download": ["Download limit exceeded or expired"]})

        self.download_count += 1
        self.downloaded_at = now
        self.download_token = None
        self.token_expires_at = None

        self.raise_(
            DigitalDownloadRedeemed(
                download_id=str(self.id),
                order_id=str(self.order_id),
                download_count=self.download_count,
                redeemed_at=now,
            )
        )
        return self.file_url
