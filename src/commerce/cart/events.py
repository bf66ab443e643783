"""Domain events for the Cart aggregate."""

from protean.fields import DateTime, Identifier, String

from commerce.domain import commerce


@commerce.event(part_of="Cart")
class CartCleared:
    """The cart was emptied after a successful checkout."""

    __version__ = 1

    cart_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    reason = String()
    cleared_at = DateTime(required=True)
