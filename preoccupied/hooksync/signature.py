"""
Webhook delivery signature verification.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import hashlib
import hmac
import re
from typing import Optional, Union


SIGNATURE_PREFIX = 'sha256='

_SIGNATURE_RE = re.compile(r'sha256=([0-9a-f]{64})')


def sign(secret: Union[bytes, str], payload: bytes) -> str:
    """
    Produce the X-Hub-Signature-256 header value for payload.
    """

    if isinstance(secret, str):
        secret = secret.encode('utf-8')
    return SIGNATURE_PREFIX + hmac.new(secret, payload, hashlib.sha256).hexdigest()


def verify(secret: Union[bytes, str], header: Optional[str], payload: bytes) -> bool:
    """
    Check that payload was signed with secret, given the value of the
    X-Hub-Signature-256 header.

    payload must be the raw request body exactly as received. Parsing and
    re-serializing the JSON changes the bytes and breaks the signature.

    Malformed headers yield False rather than raising.
    """

    if not secret or not header:
        return False

    match = _SIGNATURE_RE.fullmatch(header)
    if match is None:
        return False

    if isinstance(secret, str):
        secret = secret.encode('utf-8')

    received = bytes.fromhex(match.group(1))
    expected = hmac.new(secret, payload, hashlib.sha256).digest()

    return hmac.compare_digest(expected, received)


# The end.
