"""License key entitlement, embedded on the Order.

Activations are tracked per device id; a key accepts at most
``max_activations`` devices at a time. Activating a device that already
holds an activation is a no-op.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String, Text

from commerce.domain import commerce
from commerce.errors import StateError


class LicenseStatus(Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    REVOKED = "revoked"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@commerce.entity(part_of="Order")
class LicenseKey:
    product_id = Identifier(required=True)
    key = String(max_length=100, required=True)
    license_type = String(max_length=20, required=True)
    max_activations = Integer(required=True, min_value=1)
    activated_devices = Text()  # JSON array of device ids
    status = String(choices=LicenseStatus, default=LicenseStatus.ACTIVE.value)
    issued_at = DateTime()
    expires_at = DateTime(required=True)

    @property
    def devices(self) -> list[str]:
        return json.loads(self.activated_devices) if self.activated_devices else []

    def activate(self, device_id: str, now: datetime | None = None) -> None:
        now = now or datetime.now(UTC)
        if self.status != LicenseStatus.ACTIVE.value:
            raise StateError(f"License key is {self.status}")
        if _aware(now) > _aware(self.expires_at):
            raise StateError("License key has expired")

        devices = self.devices
        if device_id in devices:
            return
        if len(devices) >= self.max_activations:
            raise StateError(f"Maximum activations ({self.max_activations}) reached for this license")

        devices.append(device_id)
        self.activated_devices = json.dumps(devices)

    def deactivate(self, device_id: str) -> None:
        devices = self.devices
        if device_id not in devices:
            raise StateError("Device not activated for this license")
        devices.remove(device_id)
        self.activated_devices = json.dumps(devices)
