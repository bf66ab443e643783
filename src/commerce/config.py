"""Runtime settings for the commerce engines.

Values come from the ``[custom]`` table of ``domain.toml`` (environment
overlays included) and can be overridden per process with ``COMMERCE_<KEY>``
environment variables, e.g. ``COMMERCE_GATEWAY_TIMEOUT_SECONDS=5``.
"""

import os
from dataclasses import dataclass, fields


@dataclass(frozen=True)
class Settings:
    session_expiry_minutes: int = 30
    download_link_days: int = 30
    default_max_downloads: int = 5
    license_expiry_days: int = 365
    gateway: str = "fake"
    gateway_timeout_seconds: float = 10.0
    gateway_callback_base_url: str = "http://localhost:8000/payments"

    @classmethod
    def from_domain(cls, domain) -> "Settings":
        custom = domain.config.get("custom") or {}
        values = {}
        for setting in fields(cls):
            key = setting.name.upper()
            raw = os.environ.get(f"COMMERCE_{key}", custom.get(key))
            if raw is None:
                continue
            values[setting.name] = type(setting.default)(raw)
        return cls(**values)
