"""
Dispatch Engine - fan-out of one broadcast to its recipients.

Each recipient is sent independently through the messaging provider. A
failure for one recipient is recorded and never stops the others. Every
accepted send gets a MessageContext so the reply can be routed back later.

Sends run on a small thread pool. Workers only talk to the gateway and
return an outcome; counting and context writes happen afterwards on the
calling thread, in recipient order.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from ..domain.errors import BroadcastNotSendable, ProviderSendFailure
from ..domain.models import (
    Broadcast,
    DispatchResult,
    MessageContext,
    MessageType,
    Recipient,
    context_expiry,
    dial_digits,
    utc_now,
)
from ..infrastructure.config import DispatchSettings
from ..infrastructure.messaging import MessagingProvider, SendReceipt, with_channel_prefix
from ..infrastructure.persistence import Database
from .message_renderer import personalize

logger = logging.getLogger(__name__)


def normalize_address(phone: str, channel_prefix: str = "whatsapp:") -> str:
    """
    Channel address for a stored phone number.

    "0722 000-001" -> "whatsapp:+0722000001", "+254 700 000001" -> "whatsapp:+254700000001"
    """
    return f"{channel_prefix}+{dial_digits(phone)}"


@dataclass
class _SendOutcome:
    recipient: Recipient
    sent_at: datetime
    receipt: Optional[SendReceipt] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.receipt is not None


class DispatchEngine:
    """
    Usage:
        engine = DispatchEngine(db, provider, from_address="whatsapp:+14155238886",
                                settings=settings.dispatch)
        engine.ensure_sendable(poll)
        result = engine.dispatch(poll, recipients, render(poll))
    """

    def __init__(
        self,
        db: Database,
        provider: MessagingProvider,
        from_address: str,
        settings: Optional[DispatchSettings] = None,
        channel_prefix: str = "whatsapp:",
        clock: Callable[[], datetime] = utc_now,
    ):
        self._db = db
        self._provider = provider
        self._settings = settings or DispatchSettings()
        self._channel_prefix = channel_prefix
        self._from_address = with_channel_prefix(from_address, channel_prefix)
        self._clock = clock

    def ttl_hours(self, message_type: MessageType) -> int:
        if message_type is MessageType.POLL:
            return self._settings.poll_ttl_hours
        if message_type is MessageType.ANNOUNCEMENT:
            return self._settings.announcement_ttl_hours
        return self._settings.checkin_ttl_hours

    def ensure_sendable(self, broadcast: Broadcast, now: Optional[datetime] = None):
        """
        Raises:
            BroadcastNotSendable: inactive/unpublished, deleted, or expired.
        """
        now = now or self._clock()
        if broadcast.is_deleted:
            raise BroadcastNotSendable(broadcast.id, "deleted")
        if not broadcast.is_active:
            state = "unpublished" if broadcast.kind is MessageType.ANNOUNCEMENT else "inactive"
            raise BroadcastNotSendable(broadcast.id, state)
        if broadcast.is_expired(now):
            raise BroadcastNotSendable(broadcast.id, "expired")

    def dispatch(self, broadcast: Broadcast, recipients: Sequence[Recipient], template: str) -> DispatchResult:
        """
        Send `template` to every recipient and record a context per accepted send.

        Raises:
            BroadcastNotSendable: checked before any recipient is touched.
        """
        self.ensure_sendable(broadcast)

        recipients = list(recipients)
        logger.info(
            f"Dispatching {broadcast.kind.value} {broadcast.id} to {len(recipients)} recipient(s)"
        )

        outcomes = self._send_all(recipients, template)

        result = DispatchResult()
        for outcome in outcomes:
            if outcome.ok:
                result.sent += 1
                self._record_context(broadcast, outcome)
            else:
                result.failed += 1
                result.errors.append(outcome.error)

        if result.sent > 0:
            self._db.mark_broadcast_sent(broadcast.id, self._clock())

        logger.info(
            f"{broadcast.kind.value.capitalize()} {broadcast.id} dispatch completed. "
            f"Sent: {result.sent}, Failed: {result.failed}"
        )
        return result

    def _send_all(self, recipients: List[Recipient], template: str) -> List[_SendOutcome]:
        workers = max(1, self._settings.max_workers)
        if workers == 1 or len(recipients) <= 1:
            return [self._send_one(recipient, template) for recipient in recipients]

        with ThreadPoolExecutor(max_workers=min(workers, len(recipients))) as executor:
            futures = [executor.submit(self._send_one, recipient, template) for recipient in recipients]
            return [future.result() for future in futures]

    def _send_one(self, recipient: Recipient, template: str) -> _SendOutcome:
        to_address = normalize_address(recipient.phone, self._channel_prefix)
        body = personalize(template, recipient.name)
        logger.debug(f"Sending to {to_address} for employee: {recipient.name}")

        try:
            receipt = self._provider.send(self._from_address, to_address, body)
        except ProviderSendFailure as e:
            logger.error(f"Failed to send to {recipient.name}: {e.detail}")
            return _SendOutcome(recipient, self._clock(), error=f"Failed to send to {recipient.name}: {e.detail}")
        except Exception as e:
            logger.exception(f"Error sending to {recipient.name}: {e}")
            return _SendOutcome(recipient, self._clock(), error=f"Error sending to {recipient.name}: {e}")

        logger.info(f"Sent to {recipient.name}: {receipt.provider_message_id}")
        return _SendOutcome(recipient, self._clock(), receipt=receipt)

    def _record_context(self, broadcast: Broadcast, outcome: _SendOutcome):
        # Not transactional with the send: a failure here leaves the message uncorrelated
        context = MessageContext(
            id="",
            organization_id=broadcast.organization_id,
            employee_id=outcome.recipient.id,
            message_type=broadcast.kind,
            reference_id=broadcast.id,
            sent_at=outcome.sent_at,
            expires_at=context_expiry(broadcast, outcome.sent_at, self.ttl_hours(broadcast.kind)),
        )
        try:
            self._db.create_message_context(context)
        except Exception as e:
            logger.exception(f"Sent to {outcome.recipient.name} but could not store reply context: {e}")
