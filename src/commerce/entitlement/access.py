"""Entitlement use — downloads and license activations.

``RequestDownload`` checks, in this order, that the order is paid, that the
product is part of it, that the link has downloads left and that it has not
expired. A refusal raises ``DownloadDenied`` with a reason code the caller
can tell apart. A paid digital line without a link (an order fulfilled
before the product had a file, say) gets one on first request.
"""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.catalog.product import Product
from commerce.domain import commerce
from commerce.entitlement.issuer import EntitlementIssuer
from commerce.errors import DownloadDenied
from commerce.order.order import Order
from commerce.projections.license_key_index import LicenseKeyIndex
from commerce.services import collaborators

logger = structlog.get_logger(__name__)


@commerce.command(part_of="Order")
class RequestDownload:
    order_id = Identifier(required=True)
    product_id = Identifier(required=True)
    customer_id = Identifier(required=True)


@commerce.command(part_of="Order")
class ActivateLicense:
    license_key = String(required=True, max_length=100)
    device_id = String(required=True, max_length=255)


@commerce.command(part_of="Order")
class DeactivateLicense:
    license_key = String(required=True, max_length=100)
    device_id = String(required=True, max_length=255)


def _order_for_key(license_key: str):
    try:
        entry = current_domain.repository_for(LicenseKeyIndex).get(license_key)
    except ObjectNotFoundError:
        raise ObjectNotFoundError(f"License key {license_key} does not exist") from None
    return current_domain.repository_for(Order).get(entry.order_id)


@commerce.command_handler(part_of=Order)
class EntitlementAccessHandler:
    @handle(RequestDownload)
    def request_download(self, command):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(command.order_id)
        if str(order.customer_id) != str(command.customer_id):
            raise ObjectNotFoundError(f"Order {command.order_id} does not exist")
        if not order.is_paid:
            raise DownloadDenied(DownloadDenied.NOT_PAID)

        if order.line_for_product(command.product_id) is None:
            raise ObjectNotFoundError(f"Product {command.product_id} is not part of order {order.id}")

        now = datetime.now(UTC)
        product_repo = current_domain.repository_for(Product)
        product = product_repo.get(command.product_id)

        link = order.download_link_for(command.product_id)
        if link is None:
            if not product.is_digital:
                raise ValidationError({"product_id": ["Product is not downloadable"]})
            link = EntitlementIssuer(collaborators().settings).issue_download_link(order, product, now)
            if link is None:
                raise ObjectNotFoundError(f"Product {command.product_id} has no downloadable file")
            logger.info("Download link issued on request", order_id=str(order.id), product_id=command.product_id)

        url = link.consume(now)
        product.record_download()

        order_repo.add(order)
        product_repo.add(product)
        return {
            "url": url,
            "download_count": link.download_count,
            "remaining_downloads": link.remaining_downloads,
            "expires_at": link.expires_at.isoformat(),
        }

    @handle(ActivateLicense)
    def activate_license(self, command):
        order = _order_for_key(command.license_key)
        license_key = order.license_key(command.license_key)
        license_key.activate(command.device_id)
        current_domain.repository_for(Order).add(order)

        logger.info("License activated", product_id=str(license_key.product_id), device_id=command.device_id)
        return {
            "license_key": license_key.key,
            "activations": len(license_key.devices),
            "max_activations": license_key.max_activations,
        }

    @handle(DeactivateLicense)
    def deactivate_license(self, command):
        order = _order_for_key(command.license_key)
        license_key = order.license_key(command.license_key)
        license_key.deactivate(command.device_id)
        current_domain.repository_for(Order).add(order)

        return {
            "license_key": license_key.key,
            "activations": len(license_key.devices),
            "max_activations": license_key.max_activations,
        }
