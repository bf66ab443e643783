"""Collaborator wiring for the commerce domain.

The gateway adapter, notifier and settings are constructed once per process
and wired onto a domain by name::

    wire(commerce, Collaborators(gateway=FakeGateway(), notifier=FakeNotifier(),
                                 settings=Settings()))

Handlers fetch them for the active domain through ``collaborators()``. A
domain that was never wired gets collaborators built from its configuration
on first use.
"""

from dataclasses import dataclass

import structlog
from protean.utils.globals import current_domain

from commerce.config import Settings
from commerce.gateway import build_gateway
from commerce.gateway.port import PaymentGateway
from commerce.notification.log_notifier import LogNotifier
from commerce.notification.port import Notifier

logger = structlog.get_logger(__name__)

_wired: dict[str, "Collaborators"] = {}


@dataclass
class Collaborators:
    gateway: PaymentGateway
    notifier: Notifier
    settings: Settings


def build_collaborators(domain) -> Collaborators:
    """Construct collaborators from the domain's configuration."""
    settings = Settings.from_domain(domain)
    return Collaborators(
        gateway=build_gateway(settings.gateway, settings.gateway_timeout_seconds),
        notifier=LogNotifier(),
        settings=settings,
    )


def wire(domain, collaborators: Collaborators) -> None:
    _wired[domain.name] = collaborators
    logger.debug(
        "Collaborators wired",
        domain=domain.name,
        gateway=type(collaborators.gateway).__name__,
        notifier=type(collaborators.notifier).__name__,
    )


def unwire(domain) -> None:
    _wired.pop(domain.name, None)


def collaborators() -> Collaborators:
    """Collaborators of the active domain."""
    if current_domain.name not in _wired:
        wire(current_domain, build_collaborators(current_domain))
    return _wired[current_domain.name]
