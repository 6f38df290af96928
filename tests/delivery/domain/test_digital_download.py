from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from storefront.delivery.download import DigitalDownload


def _download(valid_for=timedelta(days=30), max_downloads=3):
    return DigitalDownload.grant(
        order_id="order-1",
        order_item_id="item-1",
        user_id="user-001",
        product_name="E-Book",
        file_url="https://files.example.com/ebook.pdf",
        valid_for=valid_for,
        max_downloads=max_downloads,
    )


class TestGrant:
    def test_new_grant_can_be_downloaded(self):
        download = _download()

        assert download.download_count == 0
        assert download.can_download() is True
        assert download._events[-1].__class__.__name__ == "DigitalDownloadGranted"

    def test_grant_expires(self):
        download = _download(valid_for=timedelta(days=1))
        assert download.can_download(datetime.now(UTC) + timedelta(days=2)) is False


class TestTokens:
    def test_redeem_returns_file_and_counts(self):
        download = _download()
        token = download.issue_token(timedelta(minutes=60))

        assert download.redeem(token) == "https://files.example.com/ebook.pdf"
        assert download.download_count == 1
        assert download.download_token is None

    def test_token_is_single_use(self):
        download = _download()
        token = download.issue_token(timedelta(minutes=60))
        download.redeem(token)

        with pytest.raises(ValidationError):
            download.redeem(token)

    def test_wrong_token(self):
        download = _download()
        download.issue_token(timedelta(minutes=60))

        with pytest.raises(ValidationError):
            download.redeem("not-the-token")

    def test_expired_token(self):
        download = _download()
        token = download.issue_token(timedelta(minutes=60))
        download.token_expires_at = datetime.now(UTC) - timedelta(seconds=1)

        with pytest.raises(ValidationError):
            download.redeem(token)

    def test_limit_stops_new_tokens(self):
        download = _download(max_downloads=1)
        download.redeem(download.issue_token(timedelta(minutes=60)))

        assert download.can_download() is False
        with pytest.raises(ValidationError):
            download.issue_token(timedelta(minutes=60))
