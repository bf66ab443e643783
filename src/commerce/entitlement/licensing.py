"""License key rules: which license types get a key, and how many activations."""

from commerce.catalog.product import LicenseType
from commerce.utils.ids import hex_token, timestamp_token

DEFAULT_EXPIRY_DAYS = 365

# None means the license type is not keyed
_MAX_ACTIVATIONS: dict[LicenseType, int | None] = {
    LicenseType.NONE: None,
    LicenseType.SINGLE: 1,
    LicenseType.MULTIPLE: 5,
    LicenseType.UNLIMITED: None,
}

if set(_MAX_ACTIVATIONS) != set(LicenseType):
    raise RuntimeError("Every license type needs an activation rule")


def max_activations_for(license_type: str | None) -> int | None:
    """Activation limit for a keyed license type, None when no key is issued."""
    return _MAX_ACTIVATIONS[LicenseType(license_type or LicenseType.NONE.value)]


def generate_license_key() -> str:
    return f"LIC-{timestamp_token()}-{hex_token(12)}"
