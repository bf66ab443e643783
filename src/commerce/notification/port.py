"""Notifier port — fire-and-forget messages to customers and staff."""

from abc import ABC, abstractmethod


class Notifier(ABC):
    """Abstract interface for notification dispatch adapters."""

    @abstractmethod
    def notify(self, user_id: str, event_type: str, payload: dict) -> dict:
        """Send a notification about a commerce event.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...
