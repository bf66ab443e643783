"""Download link entitlement, embedded on the Order.

A link grants ``max_downloads`` downloads of one product until
``expires_at``. The count never exceeds the limit: a request at the limit is
refused before anything is incremented.
"""

from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String

from commerce.domain import commerce
from commerce.errors import DownloadDenied

DEFAULT_MAX_DOWNLOADS = 5
DEFAULT_VALID_DAYS = 30


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@commerce.entity(part_of="Order")
class DownloadLink:
    product_id = Identifier(required=True)
    url = String(max_length=1000, required=True)
    expires_at = DateTime(required=True)
    download_count = Integer(default=0, min_value=0)
    max_downloads = Integer(default=DEFAULT_MAX_DOWNLOADS, min_value=1)
    issued_at = DateTime()
    last_downloaded_at = DateTime()

    @invariant.post
    def download_count_within_limit(self):
        if (self.download_count or 0) > (self.max_downloads or 0):
            raise ValidationError({"download_count": ["Download count cannot exceed the download limit"]})

    @property
    def remaining_downloads(self) -> int:
        return max(0, self.max_downloads - (self.download_count or 0))

    def is_expired(self, now: datetime) -> bool:
        return _aware(now) > _aware(self.expires_at)

    def consume(self, now: datetime | None = None) -> str:
        """Count one download and return the url, or raise DownloadDenied."""
        now = now or datetime.now(UTC)
        if (self.download_count or 0) >= self.max_downloads:
            raise DownloadDenied(DownloadDenied.LIMIT_EXCEEDED)
        if self.is_expired(now):
            raise DownloadDenied(DownloadDenied.EXPIRED)

        self.download_count = (self.download_count or 0) + 1
        self.last_downloaded_at = now
        return self.url
