"""Shared fixtures for the commerce test suites.

Every test runs inside the commerce domain context with a fresh FakeGateway
and FakeNotifier wired in. The builder fixtures below seed catalog items and
drive orders through checkout and verification.
"""

import json

import pytest
from protean import current_domain


@pytest.fixture(scope="session")
def _commerce_domain():
    """Initialize the commerce domain once per session."""
    from commerce.domain import commerce

    commerce.init()
    return commerce


@pytest.fixture(scope="session", autouse=True)
def setup_db(_commerce_domain):
    from commerce.utils.db import drop_db, setup_db

    setup_db(_commerce_domain)

    yield

    drop_db(_commerce_domain)


@pytest.fixture(autouse=True)
def run_around_tests(_commerce_domain):
    """Push domain context before each test, cleanup after."""
    ctx = _commerce_domain.domain_context()
    ctx.push()

    yield

    for _, provider in current_domain.providers.items():
        provider._data_reset()

    for _, broker in current_domain.brokers.items():
        broker._data_reset()

    current_domain.event_store.store._data_reset()
    ctx.pop()


@pytest.fixture(autouse=True)
def services(_commerce_domain, run_around_tests):  # noqa: ARG001
    from commerce.config import Settings
    from commerce.gateway.fake_adapter import FakeGateway
    from commerce.notification.fake_notifier import FakeNotifier
    from commerce.services import Collaborators, unwire, wire

    collaborators = Collaborators(gateway=FakeGateway(), notifier=FakeNotifier(), settings=Settings())
    wire(_commerce_domain, collaborators)
    yield collaborators
    unwire(_commerce_domain)


@pytest.fixture()
def gateway(services):
    return services.gateway


@pytest.fixture()
def notifier(services):
    return services.notifier


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
@pytest.fixture()
def make_product():
    from commerce.catalog.product import Product

    def _make(name="E-book", price=100.0, **kwargs):
        kwargs.setdefault("digital_file_url", f"https://files.example.com/{name.lower().replace(' ', '-')}.zip")
        product = Product.create(name=name, price=price, **kwargs)
        current_domain.repository_for(Product).add(product)
        return product

    return _make


@pytest.fixture()
def make_plan():
    from commerce.catalog.plan import SubscriptionPlan

    def _make(name="Pro Monthly", price=30.0, billing_cycle="monthly"):
        plan = SubscriptionPlan.create(name=name, price=price, billing_cycle=billing_cycle)
        current_domain.repository_for(SubscriptionPlan).add(plan)
        return plan

    return _make


@pytest.fixture()
def make_cart():
    from commerce.cart.cart import Cart

    def _make(customer_id, lines, coupon_code=None, coupon_discount=0.0):
        cart = Cart.create(customer_id)
        for line in lines:
            cart.add_line(**line)
        if coupon_code:
            cart.apply_coupon(coupon_code, coupon_discount)
        current_domain.repository_for(Cart).add(cart)
        return cart

    return _make


@pytest.fixture()
def checkout():
    """Open a payment session for a list of item dicts; returns the session result."""
    from commerce.payment.initiation import InitiatePaymentSession

    def _checkout(customer_id, items=None, **kwargs):
        command = InitiatePaymentSession(
            customer_id=customer_id,
            items=json.dumps(items) if items is not None else None,
            **kwargs,
        )
        return current_domain.process(command, asynchronous=False)

    return _checkout


@pytest.fixture()
def paid_order(checkout):
    """Check out and verify in one go; returns the session result."""
    from commerce.payment.verification import verify_payment

    def _paid(customer_id, items, **kwargs):
        session = checkout(customer_id, items, **kwargs)
        verify_payment(session["transaction_id"], {"payment_method": "card"})
        return session

    return _paid


@pytest.fixture()
def load_order():
    from commerce.order.order import Order

    def _load(order_id):
        return current_domain.repository_for(Order).get(order_id)

    return _load


@pytest.fixture()
def load_payment():
    from commerce.payment.payment import Payment

    def _load(payment_id):
        return current_domain.repository_for(Payment).get(payment_id)

    return _load
