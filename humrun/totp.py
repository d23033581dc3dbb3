"""Time-based one-time passwords (TOTP) with six digits and 30-second periods."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets
import struct
from datetime import datetime, timedelta
from urllib.parse import quote, urlencode

TOTP_DIGITS = 6
TOTP_PERIOD = 30  # seconds


def generate_totp_secret() -> str:
    """A new random base32 secret of 20 bytes."""
    return base64.b32encode(secrets.token_bytes(20)).decode("ascii")


def _decode_secret(secret: str) -> bytes:
    try:
        return base64.b32decode(secret)
    except (binascii.Error, ValueError):
        pass
    # Accept secrets stored without padding.
    try:
        return base64.b32decode(secret + "=" * (-len(secret) % 8))
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"decoding secret: {exc}") from exc


def generate_hotp(key: bytes, counter: int) -> str:
    """The HMAC-SHA1 one-time code of key for counter."""
    digest = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return f"{code % 10 ** TOTP_DIGITS:0{TOTP_DIGITS}d}"


def generate_totp_code(secret: str, when: datetime | None = None) -> str:
    """The code of a base32 secret at the given time (now by default).

    Raises ValueError when the secret is not valid base32.
    """
    key = _decode_secret(secret)
    moment = when if when is not None else datetime.now()
    counter = int(moment.timestamp()) // TOTP_PERIOD
    return generate_hotp(key, counter)


def validate_totp_code(secret: str, code: str) -> bool:
    """Whether code is valid now, allowing one period of drift either way."""
    now = datetime.now()
    for offset in (0, -TOTP_PERIOD, TOTP_PERIOD):
        expected = generate_totp_code(secret, now + timedelta(seconds=offset))
        if hmac.compare_digest(expected.encode(), code.encode()):
            return True
    return False


def totp_provisioning_uri(secret: str, email: str, issuer: str) -> str:
    """An otpauth:// URI for enrolling the secret in an authenticator app."""
    segment_safe = "$&+:=@"
    label = quote(issuer, safe=segment_safe) + ":" + quote(email, safe=segment_safe)
    params = {
        "secret": secret,
        "issuer": issuer,
        "digits": str(TOTP_DIGITS),
        "period": str(TOTP_PERIOD),
    }
    return f"otpauth://totp/{label}?{urlencode(sorted(params.items()))}"