"""License key index — resolves a key to the order that carries it."""

from protean.core.projector import on
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.order.events import LicenseKeyIssued
from commerce.order.order import Order


@commerce.projection
class LicenseKeyIndex:
    license_key = String(identifier=True, required=True, max_length=100)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    product_id = Identifier(required=True)
    expires_at = DateTime()


@commerce.projector(projector_for=LicenseKeyIndex, aggregates=[Order])
class LicenseKeyIndexProjector:
    @on(LicenseKeyIssued)
    def on_license_key_issued(self, event):
        current_domain.repository_for(LicenseKeyIndex).add(
            LicenseKeyIndex(
                license_key=event.license_key,
                order_id=event.order_id,
                customer_id=event.customer_id,
                product_id=event.product_id,
                expires_at=event.expires_at,
            )
        )
