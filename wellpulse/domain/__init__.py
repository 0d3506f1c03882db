from .errors import (
    BroadcastNotFound,
    BroadcastNotSendable,
    InterpretationFailed,
    MalformedWebhookEvent,
    NoActiveContext,
    NoEligibleRecipients,
    NoValidContacts,
    ProviderSendFailure,
    RoutingError,
    SignatureInvalid,
    UnknownSender,
    WellPulseError,
)
from .models import (
    AnnouncementBroadcast,
    AnnouncementCategory,
    Broadcast,
    CheckInBroadcast,
    DispatchResult,
    MessageContext,
    MessageType,
    PollBroadcast,
    PollType,
    Priority,
    Recipient,
    Response,
    RoutingOutcome,
    Targeting,
    TargetingMode,
    utc_now,
)
