from .messaging_provider import MessagingProvider, SendReceipt, TwilioProvider, with_channel_prefix
from .signature import SIGNATURE_HEADER, compute_signature, is_valid_signature

__all__ = [
    "MessagingProvider",
    "SendReceipt",
    "TwilioProvider",
    "with_channel_prefix",
    "SIGNATURE_HEADER",
    "compute_signature",
    "is_valid_signature",
]
