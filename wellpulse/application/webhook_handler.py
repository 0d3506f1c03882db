"""
Inbound Webhook Handler - Twilio message callbacks.

Framework-agnostic: the web layer passes in the method, URL, form fields and
signature header, and sends back whatever WebhookReply comes out. Twilio
expects a well-formed (empty) TwiML document for every callback, so the body
is always the empty envelope; only the status code varies.

    405  not a POST
    403  signature present and wrong
    200  everything else, including ignored events and routing failures
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Optional

from twilio.twiml.messaging_response import MessagingResponse

from ..domain.errors import (
    InterpretationFailed,
    MalformedWebhookEvent,
    NoActiveContext,
    RoutingError,
    SignatureInvalid,
)
from ..domain.models import utc_now
from ..infrastructure.messaging import MessagingProvider, is_valid_signature
from ..infrastructure.persistence import Database
from .response_router import ResponseRouter

logger = logging.getLogger(__name__)

EMPTY_TWIML = str(MessagingResponse())
TWIML_CONTENT_TYPE = "application/xml"


@dataclass(frozen=True)
class WebhookReply:
    status_code: int = 200
    body: str = EMPTY_TWIML
    content_type: str = TWIML_CONTENT_TYPE


@dataclass(frozen=True)
class InboundEvent:
    """The fields we use from a Twilio callback. Unknown fields are ignored."""
    from_address: str
    body: str
    message_sid: str = ""
    account_sid: str = ""
    to_address: str = ""
    profile_name: str = ""
    wa_id: str = ""
    num_media: int = 0

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "InboundEvent":
        try:
            num_media = int(params.get("NumMedia") or 0)
        except ValueError:
            num_media = 0
        return cls(
            from_address=params.get("From", ""),
            body=params.get("Body", ""),
            message_sid=params.get("MessageSid", ""),
            account_sid=params.get("AccountSid", ""),
            to_address=params.get("To", ""),
            profile_name=params.get("ProfileName", ""),
            wa_id=params.get("WaId", ""),
            num_media=num_media,
        )


class InboundWebhookHandler:
    """
    Usage:
        handler = InboundWebhookHandler(router, provider, db,
                                        auth_token=settings.twilio.auth_token,
                                        reply_from=settings.twilio.reply_from)
        reply = handler.handle("POST", url, form_params, request.headers.get(SIGNATURE_HEADER))
    """

    def __init__(
        self,
        router: ResponseRouter,
        provider: Optional[MessagingProvider],
        db: Database,
        auth_token: str = "",
        reply_from: str = "",
        channel_prefix: str = "whatsapp:",
        send_correction_hints: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._router = router
        self._provider = provider
        self._db = db
        self._auth_token = auth_token
        self._reply_from = reply_from
        self._channel_prefix = channel_prefix
        self._send_hints = send_correction_hints
        self._clock = clock

    def handle(
        self,
        method: str,
        url: str,
        params: Mapping[str, str],
        signature: Optional[str] = None,
    ) -> WebhookReply:
        if method.upper() != "POST":
            logger.error(f"Invalid method: {method}")
            return WebhookReply(status_code=405)

        params = dict(params)
        logger.info(f"Webhook received: {len(params)} params, signed={bool(signature)}")

        try:
            self.verify(url, params, signature)
        except SignatureInvalid as e:
            logger.warning(f"Rejected webhook: {e}")
            return WebhookReply(status_code=403)

        try:
            event = self.parse(params)
        except MalformedWebhookEvent as e:
            logger.error(f"Ignoring webhook event: {e}")
            return WebhookReply()

        self._process(event)
        return WebhookReply()

    def verify(self, url: str, params: Mapping[str, str], signature: Optional[str]):
        """
        Raises:
            SignatureInvalid: secret and signature both present and they disagree.
        """
        if not self._auth_token or not signature:
            logger.warning(
                "Processing unverified webhook "
                f"(auth token configured: {bool(self._auth_token)}, signature present: {bool(signature)})"
            )
            return
        if not is_valid_signature(self._auth_token, signature, url, params):
            raise SignatureInvalid(f"signature mismatch for {url}")

    def parse(self, params: Mapping[str, str]) -> InboundEvent:
        """
        Raises:
            MalformedWebhookEvent: From/Body missing, or From lacks the channel scheme.
        """
        event = InboundEvent.from_params(params)
        if not event.from_address.strip() or not event.body.strip():
            raise MalformedWebhookEvent(
                f"missing required fields (From: {bool(event.from_address.strip())}, Body: {bool(event.body.strip())})"
            )
        if self._channel_prefix and not event.from_address.startswith(self._channel_prefix):
            raise MalformedWebhookEvent(f"invalid From format: {event.from_address}")
        return event

    def _process(self, event: InboundEvent):
        organization_id = None
        try:
            outcome = self._router.route(event.from_address, event.body, event.message_sid)
            organization_id = outcome.employee.organization_id
            logger.info(f"Recorded {outcome.context.message_type.value} reply from {outcome.recipient_name}")
            self._acknowledge(event.from_address, outcome.acknowledgment)
        except InterpretationFailed as e:
            logger.info(f"Could not interpret reply {event.message_sid or '-'}: {e.reason}")
            if self._send_hints and e.hint:
                self._acknowledge(event.from_address, e.hint)
        except NoActiveContext as e:
            logger.info(f"Reply {event.message_sid or '-'} not routed: {e}")
            if e.acknowledgment:
                self._acknowledge(event.from_address, e.acknowledgment)
        except RoutingError as e:
            logger.info(f"Reply {event.message_sid or '-'} not routed: {e}")
        except Exception as e:
            # Twilio has no error channel mid-conversation; keep it in the logs
            logger.exception(f"Error processing reply {event.message_sid or '-'}: {e}")

        self._log_inbound(event, organization_id)

    def _acknowledge(self, to_address: str, text: str):
        if self._provider is None or not self._reply_from:
            logger.error("Missing messaging credentials; acknowledgment not sent")
            return
        try:
            receipt = self._provider.send(self._reply_from, to_address, text)
            logger.info(f"Acknowledgment sent to {to_address}: {receipt.provider_message_id}")
        except Exception as e:
            logger.error(f"Failed to send acknowledgment to {to_address}: {e}")

    def _log_inbound(self, event: InboundEvent, organization_id: Optional[str]):
        try:
            self._db.log_inbound_message(
                message_sid=event.message_sid,
                from_number=event.from_address,
                to_number=event.to_address,
                body=event.body,
                received_at=self._clock(),
                media_count=event.num_media,
                profile_name=event.profile_name or None,
                organization_id=organization_id,
            )
        except Exception as e:
            logger.error(f"Error logging inbound message {event.message_sid or '-'}: {e}")
