"""Entitlement issuance for a paid order.

Runs inside the fulfillment unit of work. For every line of the order:

- digital products get a download link, and a license key when the
  product's license type is keyed
- subscription plans get a Subscription for this purchase and an access
  grant recorded on the Payment

Issuance is idempotent per order: issuing twice refreshes the existing
link, key or subscription window instead of adding another.
"""

from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from commerce.catalog.plan import SubscriptionPlan
from commerce.catalog.product import Product
from commerce.entitlement.billing import access_window
from commerce.entitlement.licensing import generate_license_key, max_activations_for
from commerce.entitlement.subscription import Subscription
from commerce.order.lines import LineType

logger = structlog.get_logger(__name__)


class EntitlementIssuer:
    def __init__(self, settings):
        self.settings = settings

    def issue(self, order, payment, now=None) -> dict:
        """Issue everything the order's lines entitle the customer to."""
        now = now or datetime.now(UTC)
        issued = {"download_links": 0, "license_keys": 0, "subscriptions": 0}

        for line in order.lines:
            if line.line_type == LineType.PRODUCT.value:
                product = self._load(Product, line.product_id)
                if product is None or not product.is_digital:
                    continue
                if self.issue_download_link(order, product, now) is not None:
                    issued["download_links"] += 1
                if self.issue_license_key(order, product, now) is not None:
                    issued["license_keys"] += 1
            else:
                plan = self._load(SubscriptionPlan, line.plan_id)
                if plan is None:
                    continue
                self.start_subscription(order, payment, plan, now)
                issued["subscriptions"] += 1

        logger.info("Entitlements issued", order_id=str(order.id), **issued)
        return issued

    def issue_download_link(self, order, product, now=None):
        if not product.digital_file_url:
            logger.warning("Digital product has no file, no link issued", product_id=str(product.id))
            return None
        return order.issue_download_link(
            product_id=str(product.id),
            url=product.digital_file_url,
            max_downloads=product.download_limit or self.settings.default_max_downloads,
            valid_days=self.settings.download_link_days,
            now=now,
        )

    def issue_license_key(self, order, product, now=None):
        max_activations = max_activations_for(product.license_type)
        if max_activations is None:
            return None
        now = now or datetime.now(UTC)
        return order.issue_license_key(
            product_id=str(product.id),
            license_type=product.license_type,
            max_activations=max_activations,
            key=generate_license_key(),
            expires_at=now + timedelta(days=self.settings.license_expiry_days),
            now=now,
        )

    def start_subscription(self, order, payment, plan, now=None):
        """Start (or re-window) the subscription bought by this payment."""
        starts_at, ends_at = access_window(plan.billing_cycle, now or datetime.now(UTC))
        repo = current_domain.repository_for(Subscription)

        subscription = repo.for_purchase(payment.transaction_id, str(plan.id))
        if subscription is None:
            subscription = Subscription.start(
                customer_id=str(order.customer_id),
                plan_id=str(plan.id),
                order_id=str(order.id),
                payment_id=str(payment.id),
                transaction_id=payment.transaction_id,
                starts_at=starts_at,
                ends_at=ends_at,
            )
        else:
            subscription.reset_window(starts_at, ends_at)
        repo.add(subscription)

        payment.grant_subscription_access(str(plan.id), str(subscription.id), starts_at, ends_at)
        return subscription

    @staticmethod
    def _load(aggregate_cls, identifier):
        try:
            return current_domain.repository_for(aggregate_cls).get(identifier)
        except ObjectNotFoundError:
            logger.warning("Catalog item missing, entitlement skipped", kind=aggregate_cls.__name__, ref=identifier)
            return None
