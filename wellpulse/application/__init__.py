# Application Layer
# =================
# Use cases of the messaging pipeline. No I/O of its own: every store,
# gateway and classifier is passed in.

from .broadcast_service import BroadcastService
from .dispatch_engine import DispatchEngine, normalize_address
from .message_renderer import personalize, render
from .recipient_resolver import RecipientResolver, ResolvedRecipients
from .response_router import ResponseRouter
from .webhook_handler import EMPTY_TWIML, InboundWebhookHandler, WebhookReply
