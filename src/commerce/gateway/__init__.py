"""Payment gateway adapters.

``build_gateway(settings)`` constructs the adapter named in configuration:
- FakeGateway for development and testing
- SSLCommerzGateway for production (sandbox unless SSLCOMMERZ_LIVE is "true")
The instance is created once at wiring time and injected through
``commerce.services``; nothing here holds a shared instance.
"""

import os

from commerce.gateway.fake_adapter import FakeGateway
from commerce.gateway.port import PaymentGateway
from commerce.gateway.sslcommerz_adapter import SSLCommerzGateway


def build_gateway(name: str, timeout_seconds: float) -> PaymentGateway:
    """Construct the configured gateway adapter."""
    if name == FakeGateway.name:
        return FakeGateway(timeout_seconds=timeout_seconds)
    if name == SSLCommerzGateway.name:
        return SSLCommerzGateway(
            store_id=os.environ.get("SSLCOMMERZ_STORE_ID", ""),
            store_password=os.environ.get("SSLCOMMERZ_STORE_PASSWORD", ""),
            timeout_seconds=timeout_seconds,
            sandbox=os.environ.get("SSLCOMMERZ_LIVE", "false").lower() != "true",
        )
    raise ValueError(f"Unknown payment gateway: {name}")
