"""
Broadcast Service - the dispatch trigger use case.

load -> check sendable -> resolve recipients -> render -> dispatch
"""

import logging

from ..domain.errors import BroadcastNotFound
from ..domain.models import DispatchResult, MessageType
from ..infrastructure.persistence import Database
from .dispatch_engine import DispatchEngine
from .message_renderer import render
from .recipient_resolver import RecipientResolver

logger = logging.getLogger(__name__)

KIND_NOUN = {
    MessageType.CHECKIN: "Check-in",
    MessageType.POLL: "Poll",
    MessageType.ANNOUNCEMENT: "Announcement",
}


class BroadcastService:
    """
    Usage:
        service = BroadcastService(db, RecipientResolver(db), engine)
        result = service.send("poll_1", "org_1")
        print(result.to_dict())
    """

    def __init__(self, db: Database, resolver: RecipientResolver, engine: DispatchEngine):
        self._db = db
        self._resolver = resolver
        self._engine = engine

    def send(self, broadcast_id: str, organization_id: str) -> DispatchResult:
        """
        Raises:
            BroadcastNotFound, BroadcastNotSendable, NoEligibleRecipients, NoValidContacts
        """
        logger.info(f"Processing broadcast {broadcast_id} for organization {organization_id}")

        broadcast = self._db.get_broadcast(broadcast_id, organization_id)
        if broadcast is None:
            raise BroadcastNotFound(broadcast_id, organization_id)

        self._engine.ensure_sendable(broadcast)

        resolved = self._resolver.resolve_for(organization_id, broadcast.targeting)
        template = render(broadcast)
        return self._engine.dispatch(broadcast, resolved.recipients, template)

    def noun_for(self, broadcast_id: str) -> str:
        broadcast = self._db.get_broadcast(broadcast_id)
        return KIND_NOUN.get(broadcast.kind, "Broadcast") if broadcast else "Broadcast"
