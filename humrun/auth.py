"""Tokens, password hashing and single sign-on links for the secrets server."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from cryptography.hazmat.primitives.kdf.argon2 import Argon2id

JWT_LIFETIME = 24 * 60 * 60  # seconds
_JWT_HEADER = b'{"alg":"HS256","typ":"JWT"}'

# Argon2id parameters: 3 passes over 64 MiB with 4 lanes, 32-byte output.
_ARGON_ITERATIONS = 3
_ARGON_MEMORY_KIB = 64 * 1024
_ARGON_LANES = 4
_ARGON_KEY_LENGTH = 32
_SALT_LENGTH = 16
_HASH_SCHEME = "argon2id"


class TokenError(ValueError):
    """Raised when a token is malformed, forged or expired."""


@dataclass(frozen=True)
class JWTClaims:
    """The payload of a token."""

    email: str
    expires_at: int
    issued_at: int

    def to_json(self) -> bytes:
        """Compact JSON encoding with the wire field names."""
        payload = {"email": self.email, "exp": self.expires_at, "iat": self.issued_at}
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass
class User:
    """An authenticated user."""

    id: str
    email: str
    role: str  # admin, developer or viewer
    tenant_id: str
    totp_enabled: bool = False


@dataclass
class Session:
    """An active user session."""

    token: str
    user_id: str
    tenant_id: str
    expires_at: datetime


@dataclass(frozen=True)
class OIDCConfig:
    """Settings of an OpenID Connect identity provider."""

    issuer: str
    client_id: str
    client_secret: str
    redirect_url: str


class OIDCProvider:
    """Builds the links of an OpenID Connect login flow."""

    def __init__(self, config: OIDCConfig) -> None:
        self.config = config

    def authorization_url(self, state: str) -> str:
        """The URL to send the user to for single sign-on."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_url,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
        }
        return f"{self.config.issuer}/authorize?{urlencode(sorted(params.items()))}"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64_decode_unpadded(data: str, altchars: bytes | None) -> bytes:
    if "=" in data:
        raise binascii.Error("unexpected padding")
    padded = data + "=" * (-len(data) % 4)
    return base64.b64decode(padded, altchars=altchars, validate=True)


def _sign(signing_input: str, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256)
    return _b64url_encode(mac.digest())


def generate_jwt(email: str, secret: str) -> str:
    """An HMAC-SHA256 signed token for email, valid for 24 hours."""
    now = int(time.time())
    claims = JWTClaims(email=email, expires_at=now + JWT_LIFETIME, issued_at=now)
    signing_input = _b64url_encode(_JWT_HEADER) + "." + _b64url_encode(claims.to_json())
    return signing_input + "." + _sign(signing_input, secret)


def _decode_json_segment(segment: str, what: str) -> Any:
    try:
        raw = _b64_decode_unpadded(segment, b"-_")
    except (binascii.Error, ValueError) as exc:
        raise TokenError(f"decoding {what}: {exc}") from exc
    try:
        value = json.loads(raw)
    except ValueError as exc:
        raise TokenError(f"parsing {what}: {exc}") from exc
    if not isinstance(value, dict):
        raise TokenError(f"parsing {what}: not a JSON object")
    return value


def _int_field(data: dict[str, Any], name: str) -> int:
    value = data.get(name, 0)
    if isinstance(value, bool) or not isinstance(value, int):
        raise TokenError(f"unmarshalling claims: field {name!r} is not an integer")
    return value


def validate_jwt(token: str, secret: str) -> JWTClaims:
    """Verify an HS256 token and return its claims; TokenError if it is not valid."""
    parts = token.split(".")
    if len(parts) != 3:
        raise TokenError("invalid token format")

    header = _decode_json_segment(parts[0], "header")
    alg = header.get("alg", "")
    if alg != "HS256":
        raise TokenError(f"unsupported algorithm {alg!r}: only HS256 is allowed")

    expected = _sign(parts[0] + "." + parts[1], secret)
    if not hmac.compare_digest(parts[2].encode("utf-8"), expected.encode("ascii")):
        raise TokenError("invalid token signature")

    data = _decode_json_segment(parts[1], "claims")
    email = data.get("email", "")
    if not isinstance(email, str):
        raise TokenError("unmarshalling claims: field 'email' is not a string")
    claims = JWTClaims(
        email=email,
        expires_at=_int_field(data, "exp"),
        issued_at=_int_field(data, "iat"),
    )
    if int(time.time()) > claims.expires_at:
        raise TokenError("token expired")
    return claims


def _argon2(password: str, salt: bytes) -> bytes:
    kdf = Argon2id(
        salt=salt,
        length=_ARGON_KEY_LENGTH,
        iterations=_ARGON_ITERATIONS,
        lanes=_ARGON_LANES,
        memory_cost=_ARGON_MEMORY_KIB,
    )
    return kdf.derive(password.encode("utf-8"))


def _b64_std_encode(data: bytes) -> str:
    return base64.b64encode(data).rstrip(b"=").decode("ascii")


def hash_password(password: str) -> str:
    """An Argon2id hash in the form $argon2id$<salt>$<hash>, both unpadded base64."""
    salt = secrets.token_bytes(_SALT_LENGTH)
    digest = _argon2(password, salt)
    return f"${_HASH_SCHEME}${_b64_std_encode(salt)}${_b64_std_encode(digest)}"


def verify_password(password: str, encoded: str) -> bool:
    """Whether password matches an encoded Argon2id hash.

    Raises ValueError when the encoded hash is malformed.
    """
    parts = encoded.split("$")
    if len(parts) != 4 or parts[1] != _HASH_SCHEME:
        raise ValueError("invalid hash format")
    try:
        salt = _b64_decode_unpadded(parts[2], None)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"decoding salt: {exc}") from exc
    try:
        expected = _b64_decode_unpadded(parts[3], None)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"decoding hash: {exc}") from exc
    return hmac.compare_digest(expected, _argon2(password, salt))


def generate_session_token() -> str:
    """A random 32-byte session token in padded URL-safe base64."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("ascii")