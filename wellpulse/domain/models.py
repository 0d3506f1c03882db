"""
Domain Models - Broadcasts, Recipients and Reply Correlation
=============================================================

Plain dataclasses with no I/O. The persistence layer converts database rows
into these types and the application layer works only with them.

A broadcast is one of three variants (check-in, poll, announcement). Each
variant carries only the fields it uses; code that needs to branch on the
variant checks `broadcast.kind`.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Union


_NON_DIGITS = re.compile(r"\D")


def dial_digits(phone: str) -> str:
    """Digits of a phone number with formatting, "+" and any channel scheme removed."""
    return _NON_DIGITS.sub("", phone.split(":", 1)[-1])


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize with fixed precision so stored timestamps sort lexically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MessageType(Enum):
    """Broadcast kind, also used as the MessageContext message type."""
    CHECKIN = "checkin"
    POLL = "poll"
    ANNOUNCEMENT = "announcement"


class TargetingMode(Enum):
    ALL = "all"
    DEPARTMENT = "department"
    SPECIFIC = "specific"


class PollType(Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    YES_NO = "yes_no"
    RATING = "rating"
    OPEN_TEXT = "open_text"


class AnnouncementCategory(Enum):
    GENERAL = "general"
    URGENT = "urgent"
    CELEBRATION = "celebration"
    POLICY = "policy"
    EVENT = "event"


class Priority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class Targeting:
    """Who a broadcast goes to inside its organization."""
    mode: TargetingMode = TargetingMode.ALL
    departments: List[str] = field(default_factory=list)
    employee_ids: List[str] = field(default_factory=list)


@dataclass
class Recipient:
    """Employee record, read-only from the dispatch side."""
    id: str
    organization_id: str
    name: str
    phone: str = ""
    department: str = ""
    is_active: bool = True

    @property
    def has_contact(self) -> bool:
        return bool(self.phone and self.phone.strip())


@dataclass
class _BroadcastBase:
    id: str
    organization_id: str
    title: str
    targeting: Targeting = field(default_factory=Targeting)
    is_active: bool = True
    expires_at: Optional[datetime] = None
    send_via_channel: bool = False
    sent_at: Optional[datetime] = None
    is_deleted: bool = False

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now


@dataclass
class CheckInBroadcast(_BroadcastBase):
    message: str = ""
    kind: MessageType = field(default=MessageType.CHECKIN, init=False)


@dataclass
class PollBroadcast(_BroadcastBase):
    question: str = ""
    poll_type: PollType = PollType.OPEN_TEXT
    options: List[str] = field(default_factory=list)
    rating_scale: int = 10
    kind: MessageType = field(default=MessageType.POLL, init=False)


@dataclass
class AnnouncementBroadcast(_BroadcastBase):
    content: str = ""
    category: AnnouncementCategory = AnnouncementCategory.GENERAL
    priority: Priority = Priority.NORMAL
    kind: MessageType = field(default=MessageType.ANNOUNCEMENT, init=False)


Broadcast = Union[CheckInBroadcast, PollBroadcast, AnnouncementBroadcast]


@dataclass
class MessageContext:
    """Correlates one outbound send with the reply it expects."""
    id: str
    organization_id: str
    employee_id: str
    message_type: MessageType
    reference_id: str
    sent_at: datetime
    expires_at: datetime
    is_responded: bool = False
    responded_at: Optional[datetime] = None


@dataclass
class Response:
    """An employee reply, interpreted against its broadcast."""
    organization_id: str
    employee_id: str
    broadcast_id: str
    context_id: str
    message_type: MessageType
    response_text: str
    submitted_at: datetime
    response_choice: Optional[str] = None
    response_rating: Optional[int] = None
    mood_score: Optional[int] = None
    sentiment: Optional[str] = None
    is_read_ack: bool = False
    id: Optional[str] = None


@dataclass
class DispatchResult:
    """Aggregate of one dispatch call. Returned to the caller, never stored."""
    sent: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total_eligible(self) -> int:
        return self.sent + self.failed

    @property
    def success(self) -> bool:
        return self.sent > 0

    def to_dict(self, noun: str = "Broadcast") -> dict:
        return {
            "success": self.success,
            "message": f"{noun} sent to {self.sent} employees",
            "totalSent": self.sent,
            "totalFailed": self.failed,
            "totalEmployees": self.total_eligible,
            "errors": list(self.errors),
        }


@dataclass
class RoutingOutcome:
    """Result of routing one inbound reply."""
    context: MessageContext
    employee: Recipient
    response: Response
    acknowledgment: str

    @property
    def recipient_name(self) -> str:
        return self.employee.name


def context_expiry(broadcast: Broadcast, sent_at: datetime, ttl_hours: int) -> datetime:
    """Polls live until their own expiry when set; everything else uses the TTL."""
    if isinstance(broadcast, PollBroadcast) and broadcast.expires_at is not None:
        return broadcast.expires_at
    return sent_at + timedelta(hours=ttl_hours)
