"""
Error taxonomy for dispatch and reply routing.

Resolver and precondition errors abort a whole dispatch. ProviderSendFailure
is per recipient and only recorded. Webhook and router errors are logged and
never surfaced to the messaging provider.
"""

from typing import Optional


class WellPulseError(Exception):
    """Base exception for the messaging pipeline."""
    pass


# ── Dispatch side ──────────────────────────────────────────────

class BroadcastNotFound(WellPulseError):
    """No broadcast with that id in the organization."""

    def __init__(self, broadcast_id: str, organization_id: str):
        self.broadcast_id = broadcast_id
        self.organization_id = organization_id
        super().__init__(f"Broadcast {broadcast_id} not found for organization {organization_id}")


class BroadcastNotSendable(WellPulseError):
    """Broadcast is inactive, unpublished, deleted or expired."""

    def __init__(self, broadcast_id: str, reason: str):
        self.broadcast_id = broadcast_id
        self.reason = reason
        super().__init__(f"Cannot send {reason} broadcast {broadcast_id}")


class NoEligibleRecipients(WellPulseError):
    """Targeting matched no active employees."""

    def __init__(self, organization_id: str):
        self.organization_id = organization_id
        super().__init__("No employees found for the specified target")


class NoValidContacts(WellPulseError):
    """Every matched employee lacks a contact address."""

    def __init__(self, organization_id: str, skipped: int):
        self.organization_id = organization_id
        self.skipped = skipped
        super().__init__("No employees with valid phone numbers found")


class ProviderSendFailure(WellPulseError):
    """Gateway refused a single message. Carries the provider text verbatim."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


# ── Webhook side ───────────────────────────────────────────────

class SignatureInvalid(WellPulseError):
    """Request signature does not match the shared secret."""
    pass


class MalformedWebhookEvent(WellPulseError):
    """Required inbound fields missing or in the wrong form."""
    pass


# ── Router side ────────────────────────────────────────────────

class RoutingError(WellPulseError):
    """Base for replies that could not be routed."""
    pass


class UnknownSender(RoutingError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"No employee found for {address}")


class NoActiveContext(RoutingError):
    """Nothing to correlate the reply with. `acknowledgment` is set when it was kept as feedback."""

    def __init__(self, employee_id: str, acknowledgment: str = ""):
        self.employee_id = employee_id
        self.acknowledgment = acknowledgment
        super().__init__(f"No active message context for employee {employee_id}")


class InterpretationFailed(RoutingError):
    """Reply does not fit the expected answer shape. The context stays open."""

    def __init__(self, reason: str, hint: str = ""):
        self.reason = reason
        self.hint = hint
        super().__init__(reason)
