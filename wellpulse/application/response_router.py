"""
Response Router - match an inbound reply to what it answers.

The reply is matched to the employee's most recent MessageContext that is
neither responded nor expired (latest sent_at wins), interpreted against
that broadcast's answer shape, stored, and the context closed. A reply that
cannot be interpreted leaves the context open so the employee can correct it.
"""

import logging
import re
from datetime import datetime
from typing import Callable, Optional

from ..domain.errors import InterpretationFailed, NoActiveContext, UnknownSender
from ..domain.models import (
    AnnouncementBroadcast,
    MessageContext,
    MessageType,
    PollBroadcast,
    PollType,
    Recipient,
    Response,
    RoutingOutcome,
    utc_now,
)
from ..infrastructure.llm import SentimentService
from ..infrastructure.persistence import Database

logger = logging.getLogger(__name__)

_LEADING_NUMBER = re.compile(r"^\s*(\d+)(?!\d)(?![.,]\d)")
_LEADING_FRACTION = re.compile(r"^\s*\d+[.,]\d")

YES_WORDS = {"yes", "y", "yeah", "yep", "yup", "1"}
NO_WORDS = {"no", "n", "nope", "nah", "2"}

MOOD_MIN, MOOD_MAX, MOOD_DEFAULT = 1, 10, 5

# Checked in order; first match wins
MOOD_KEYWORDS = [
    (("great", "excellent", "amazing", "fantastic"), 9),
    (("good", "fine", "ok", "well"), 7),
    (("stressed", "overwhelmed", "anxious"), 4),
    (("bad", "terrible", "awful", "horrible"), 3),
]


def leading_number(text: str) -> Optional[int]:
    """Whole number the text starts with. "4.5" and "4,5" are not whole numbers."""
    match = _LEADING_NUMBER.match(text)
    return int(match.group(1)) if match else None


def interpret_mood(body: str) -> int:
    """Mood score 1-10 from a check-in reply. Keywords are used when no score leads the text."""
    if _LEADING_FRACTION.match(body):
        raise InterpretationFailed(
            f"mood score '{body.strip()}' is not a whole number",
            hint=f"Please start your reply with a whole number from {MOOD_MIN} to {MOOD_MAX}.",
        )
    score = leading_number(body)
    if score is not None:
        if not MOOD_MIN <= score <= MOOD_MAX:
            raise InterpretationFailed(
                f"mood score {score} out of range",
                hint=f"Please start your reply with a mood score from {MOOD_MIN} to {MOOD_MAX}.",
            )
        return score

    lowered = body.lower()
    for words, mood in MOOD_KEYWORDS:
        if any(re.search(rf"\b{word}\b", lowered) for word in words):
            return mood
    return MOOD_DEFAULT


def interpret_poll_answer(poll: PollBroadcast, body: str) -> dict:
    """
    Structured answer fields for a poll reply.

    Returns a dict with `response_choice` and/or `response_rating`.
    """
    text = body.strip()

    if poll.poll_type is PollType.MULTIPLE_CHOICE:
        count = len(poll.options)
        number = leading_number(text)
        if number is not None and 1 <= number <= count:
            return {"response_choice": poll.options[number - 1]}
        for option in poll.options:
            if option.strip().casefold() == text.casefold():
                return {"response_choice": option}
        raise InterpretationFailed(
            f"'{text}' is not one of {count} options",
            hint=f"Please reply with the number of your choice (1 to {count}).",
        )

    if poll.poll_type is PollType.YES_NO:
        words = re.findall(r"[a-z0-9]+", text.lower())
        first = words[0] if words else ""
        if first in YES_WORDS:
            return {"response_choice": "Yes"}
        if first in NO_WORDS:
            return {"response_choice": "No"}
        raise InterpretationFailed(
            f"'{text}' is not a yes/no answer",
            hint="Please reply 1 for Yes or 2 for No.",
        )

    if poll.poll_type is PollType.RATING:
        scale = poll.rating_scale or 10
        rating = leading_number(text)
        if rating is None or not 1 <= rating <= scale:
            raise InterpretationFailed(
                f"'{text}' is not a rating from 1 to {scale}",
                hint=f"Please reply with a number from 1 to {scale}.",
            )
        return {"response_rating": rating}

    return {}


class ResponseRouter:
    """
    Usage:
        router = ResponseRouter(db, classifier=SentimentService(settings.llm))
        outcome = router.route("whatsapp:+254700000001", "4", "SM123")
        provider.send(reply_from, "whatsapp:+254700000001", outcome.acknowledgment)
    """

    def __init__(
        self,
        db: Database,
        classifier: Optional[SentimentService] = None,
        channel_prefix: str = "whatsapp:",
        store_unmatched_as_feedback: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._db = db
        self._classifier = classifier
        self._channel_prefix = channel_prefix
        self._store_unmatched = store_unmatched_as_feedback
        self._clock = clock

    def route(self, sender_address: str, body: str, provider_message_id: str = "") -> RoutingOutcome:
        """
        Route one reply.

        Raises:
            UnknownSender: No employee has this phone number.
            NoActiveContext: No open context, or another reply claimed it first.
            InterpretationFailed: Reply does not fit; the context stays open.
        """
        now = self._clock()
        employee = self._find_employee(sender_address)

        context = self._db.get_active_context(employee.id, now)
        if context is None:
            logger.info(f"No active context for {employee.name}; reply {provider_message_id or '-'} discarded")
            raise NoActiveContext(employee.id, acknowledgment=self._keep_as_feedback(employee, body, now))

        logger.info(f"Routing {context.message_type.value} reply from {employee.name} (context {context.id})")

        if context.message_type is MessageType.CHECKIN:
            response, ack = self._checkin_response(employee, body, context, now)
        elif context.message_type is MessageType.POLL:
            response, ack = self._poll_response(employee, body, context, now)
        else:
            response, ack = self._announcement_response(employee, body, context, now)

        response_id = self._db.record_response(response)
        if response_id is None:
            logger.info(f"Context {context.id} was already claimed by another reply")
            raise NoActiveContext(employee.id)

        response.id = response_id
        context.is_responded = True
        context.responded_at = now
        return RoutingOutcome(context=context, employee=employee, response=response, acknowledgment=ack)

    def _find_employee(self, sender_address: str) -> Recipient:
        address = sender_address.strip()
        if self._channel_prefix and address.startswith(self._channel_prefix):
            address = address[len(self._channel_prefix):]

        employee = self._db.find_employee_by_phone(address)
        if employee is None:
            logger.info(f"No employee found for phone number: {address}")
            raise UnknownSender(address)
        return employee

    def _keep_as_feedback(self, employee: Recipient, body: str, now: datetime) -> str:
        if not self._store_unmatched:
            return ""
        self._db.add_feedback(employee.organization_id, employee.id, body, now)
        return (
            f"Thank you {employee.name}! 💬 We've received your message and will review it. "
            "If you need immediate assistance, please contact your manager or HR directly."
        )

    def _base_response(self, employee: Recipient, body: str, context: MessageContext, now: datetime) -> Response:
        return Response(
            organization_id=employee.organization_id,
            employee_id=employee.id,
            broadcast_id=context.reference_id,
            context_id=context.id,
            message_type=context.message_type,
            response_text=body,
            submitted_at=now,
        )

    def _checkin_response(self, employee, body, context, now):
        response = self._base_response(employee, body, context, now)
        response.mood_score = interpret_mood(body)
        if self._classifier is not None:
            response.sentiment = self._classifier.classify(body, mood_score=response.mood_score).value

        ack = (
            f"Thank you {employee.name}! 🙏 We've received your check-in "
            f"(mood: {response.mood_score}/10) and appreciate you sharing how you're feeling. "
            "Your wellbeing matters to us! 💙"
        )
        return response, ack

    def _poll_response(self, employee, body, context, now):
        poll = self._db.get_broadcast(context.reference_id, employee.organization_id)
        if not isinstance(poll, PollBroadcast):
            raise InterpretationFailed(
                f"poll {context.reference_id} is no longer available",
                hint="Thank you for your response! However, this poll is no longer available. 📊",
            )

        response = self._base_response(employee, body, context, now)
        answer = interpret_poll_answer(poll, body)
        response.response_choice = answer.get("response_choice")
        response.response_rating = answer.get("response_rating")

        ack = (
            f"Thank you {employee.name}! 📊 Your response to \"{poll.title}\" has been recorded. "
            "We value your input! 🙏"
        )
        return response, ack

    def _announcement_response(self, employee, body, context, now):
        announcement = self._db.get_broadcast(context.reference_id, employee.organization_id)
        response = self._base_response(employee, body, context, now)
        response.is_read_ack = True

        if isinstance(announcement, AnnouncementBroadcast):
            ack = (
                f"Thank you {employee.name}! 📢 We've noted your acknowledgment of "
                f"\"{announcement.title}\". Your engagement is appreciated! 👍"
            )
        else:
            ack = "Thank you for your response! 📢"
        return response, ack
