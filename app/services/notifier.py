"""Outbound notification seam for recovery and verification messages.

Delivery itself (templates, provider API) lives outside this service. The
contract is that `send_*` either returns after the message was accepted for
delivery or raises NotificationError; callers roll back the token they just
created when it raises.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a message could not be handed to the delivery provider."""


class Notifier(ABC):
    @abstractmethod
    def send_recovery_message(self, email: str, token: str) -> None:
        """Deliver a password-reset token to `email`."""

    @abstractmethod
    def send_verification_message(self, email: str, display_name: str, token: str) -> None:
        """Deliver an email-verification token to `email`."""


class LoggingNotifier(Notifier):
    """Development notifier: records that a message went out, never the token."""

    def send_recovery_message(self, email: str, token: str) -> None:
        logger.info("Password reset message dispatched to %s", email)

    def send_verification_message(self, email: str, display_name: str, token: str) -> None:
        logger.info("Verification message dispatched to %s (%s)", email, display_name)
