"""
Messaging Provider - Abstraction Layer for the Messaging Gateway
=================================================================

Provides a unified interface for sending WhatsApp/SMS messages.
The dispatch engine and webhook handler only see `MessagingProvider.send`,
so tests can inject a fake provider and no network call is made.

USAGE:
    provider = TwilioProvider(settings.twilio)
    receipt = provider.send("whatsapp:+14155238886", "whatsapp:+254700000001", "Hello!")
    print(receipt.provider_message_id)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from ..config import TwilioSettings
from ...domain.errors import ProviderSendFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendReceipt:
    """Gateway acknowledgment for one accepted message."""
    provider_message_id: str
    status: str = ""


class MessagingProvider(ABC):
    """
    Abstract base class for messaging gateways.
    Implement this interface to add new messaging backends.
    """

    @abstractmethod
    def send(self, from_address: str, to_address: str, body: str) -> SendReceipt:
        """
        Send one message.

        Returns:
            SendReceipt with the provider message id.

        Raises:
            ProviderSendFailure: The gateway refused or could not be reached.
        """
        ...


def with_channel_prefix(address: str, prefix: str) -> str:
    """Add the channel scheme (e.g. 'whatsapp:') unless already present."""
    if not prefix or address.startswith(prefix):
        return address
    return f"{prefix}{address}"


class TwilioProvider(MessagingProvider):
    """
    Twilio Programmable Messaging over its REST API.

    One form-encoded POST per message, basic-auth with account SID and
    auth token. Retries and rate limiting are left to Twilio.
    """

    MESSAGES_PATH = "/2010-04-01/Accounts/{account_sid}/Messages.json"

    def __init__(self, settings: TwilioSettings, session: Optional[requests.Session] = None):
        self._settings = settings
        self._session = session
        self._url = settings.api_base.rstrip("/") + self.MESSAGES_PATH.format(
            account_sid=settings.account_sid
        )

        if not settings.is_configured:
            logger.warning("Twilio credentials are incomplete; sends will be rejected by the gateway")

    def send(self, from_address: str, to_address: str, body: str) -> SendReceipt:
        prefix = self._settings.channel_prefix
        payload = {
            "From": with_channel_prefix(from_address, prefix),
            "To": with_channel_prefix(to_address, prefix),
            "Body": body,
        }
        post = self._session.post if self._session is not None else requests.post

        try:
            response = post(
                self._url,
                data=payload,
                auth=(self._settings.account_sid, self._settings.auth_token),
                timeout=self._settings.timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning(f"Twilio request to {payload['To']} failed: {e}")
            raise ProviderSendFailure(str(e)) from e

        if not response.ok:
            # Keep the raw provider text for operators
            logger.warning(f"Twilio rejected message to {payload['To']}: {response.status_code}")
            raise ProviderSendFailure(response.text, status_code=response.status_code)

        data = self._parse_json(response)
        sid = data.get("sid", "")
        logger.debug(f"Twilio accepted message {sid} to {payload['To']}")
        return SendReceipt(provider_message_id=sid, status=data.get("status", ""))

    def _parse_json(self, response: requests.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
