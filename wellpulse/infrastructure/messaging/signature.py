"""
Twilio request signature validation.

Twilio signs each webhook with HMAC-SHA1 over the full request URL followed
by every POST parameter, sorted by name, appended as name+value. The digest
is base64-encoded into the X-Twilio-Signature header.
"""

import base64
import hashlib
import hmac
from typing import Mapping

SIGNATURE_HEADER = "X-Twilio-Signature"


def compute_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Expected signature for a request URL and its form parameters."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def is_valid_signature(auth_token: str, signature: str, url: str, params: Mapping[str, str]) -> bool:
    expected = compute_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)
