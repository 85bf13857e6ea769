"""
auth/tokens.py -- Compact signed tokens and duration parsing.

Security design decisions:
  Format: header.payload.signature, each segment base64url without padding.
       header is {"alg": "HS256", "typ": "JWT"}; payload carries sub, role,
       typ (token kind: "access" or "refresh"), iat, exp and a random jti.
       The jti makes every issued token unique even when two are minted for
       the same user within the same second. Refresh rotation depends on it.

  Signing: HMAC-SHA256 over the ASCII bytes of "header.payload" with the
       process-wide secret. The secret is passed in once at startup and never
       rotated while the process runs.

  Verification order: segment count -> header -> signature -> payload -> exp.
       The signature is checked before the payload is trusted. Comparison is
       length-checked, then hmac.compare_digest, so response time does not
       depend on where the first mismatching byte is.

  Refresh-token storage: hash_token() is HMAC-SHA256(secret, raw_token) hex,
       the same construction used for API-key hashes. A leaked users table
       does not yield usable refresh tokens without the secret.

Layer rule: no imports from api/. Standard library only.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import re
import secrets
from collections.abc import Callable
from datetime import datetime, timezone

from auth.errors import ConfigError, TokenExpired, TokenInvalid, TokenMalformed

TOKEN_KINDS = ("access", "refresh")

_ALGORITHM = "HS256"
_HEADER = {"alg": _ALGORITHM, "typ": "JWT"}

_DURATION_RE = re.compile(r"([0-9]+)([smhd]?)", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_duration(value: str | int) -> int:
    """Convert "<integer><unit>" to seconds. Unit is s, m, h or d in any case (default s).

    Plain ints are accepted as seconds so callers can pass either form.

    Raises:
        ConfigError: on any other shape ("1.5h", "-5m", "10 m", "", "2w", None).
    """
    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise ConfigError(f"Duration must not be negative: {value!r}")
        return value
    if not isinstance(value, str):
        raise ConfigError(f"Duration must be a string like '15m', got {type(value).__name__}")
    match = _DURATION_RE.fullmatch(value)
    if match is None:
        raise ConfigError(f"Invalid duration {value!r}: expected <integer><s|m|h|d>")
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit.lower()]


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode((segment + padding).encode("ascii"))


def _encode_json(data: dict) -> str:
    return _b64encode(json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8"))


def _decode_json(segment: str) -> dict:
    """Decode one base64url JSON object segment or raise TokenMalformed."""
    try:
        data = json.loads(_b64decode(segment))
    except (binascii.Error, ValueError, UnicodeError) as exc:
        # json.JSONDecodeError is a ValueError subclass
        raise TokenMalformed("segment is not base64url JSON") from exc
    if not isinstance(data, dict):
        raise TokenMalformed("segment is not a JSON object")
    return data


def constant_time_equals(a: str | bytes, b: str | bytes) -> bool:
    """Length-checked, timing-safe equality for secret-derived values."""
    if isinstance(a, str):
        a = a.encode("utf-8")
    if isinstance(b, str):
        b = b.encode("utf-8")
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)


class TokenCodec:
    """Sign and verify compact HS256 tokens.

    Usage:
        codec = TokenCodec(secret)
        token = codec.sign({"sub": "42", "role": "user"}, "access", "15m")
        claims = codec.verify(token, kind="access")
    """

    def __init__(self, secret: str, clock: Callable[[], datetime] = utc_now) -> None:
        if not secret:
            raise ConfigError("Token signing secret must not be empty.")
        self._key = secret.encode("utf-8")
        self._clock = clock

    def _signature(self, signing_input: str) -> str:
        digest = hmac.new(self._key, signing_input.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)

    def sign(self, claims: dict, kind: str, ttl: str | int) -> str:
        """Return a signed token for ``claims`` valid for ``ttl``.

        ``claims`` must carry at least sub and role. iat/exp/typ/jti are set
        here and override anything of the same name in ``claims``.
        """
        if kind not in TOKEN_KINDS:
            raise ValueError(f"Unknown token kind: {kind!r}")
        issued_at = int(self._clock().timestamp())
        payload = dict(claims)
        payload.update(
            typ=kind,
            iat=issued_at,
            exp=issued_at + parse_duration(ttl),
            jti=secrets.token_urlsafe(16),
        )
        signing_input = f"{_encode_json(_HEADER)}.{_encode_json(payload)}"
        return f"{signing_input}.{self._signature(signing_input)}"

    def verify(self, token: str, kind: str | None = None) -> dict:
        """Verify ``token`` and return its claims.

        Raises:
            TokenMalformed: not three segments, or header/payload not JSON objects.
            TokenInvalid:   signature mismatch, or typ differs from ``kind``.
            TokenExpired:   exp <= now.
        """
        if not isinstance(token, str):
            raise TokenMalformed("token is not a string")
        segments = token.split(".")
        if len(segments) != 3:
            raise TokenMalformed(f"expected 3 segments, got {len(segments)}")
        header_seg, payload_seg, signature_seg = segments

        header = _decode_json(header_seg)
        if header.get("alg") != _ALGORITHM:
            raise TokenMalformed(f"unsupported alg {header.get('alg')!r}")

        try:
            expected = self._signature(f"{header_seg}.{payload_seg}")
        except UnicodeEncodeError as exc:
            raise TokenMalformed("non-ASCII token") from exc
        if not constant_time_equals(expected, signature_seg):
            raise TokenInvalid("signature mismatch")

        claims = _decode_json(payload_seg)
        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenMalformed("missing or non-numeric exp")
        if exp <= self._clock().timestamp():
            raise TokenExpired("token expired")
        if kind is not None and claims.get("typ") != kind:
            raise TokenInvalid(f"expected {kind} token, got {claims.get('typ')!r}")
        return claims

    def hash_token(self, raw_token: str) -> str:
        """Return HMAC-SHA256(secret, raw_token) as hex, for server-side storage."""
        return hmac.new(self._key, raw_token.encode("utf-8"), hashlib.sha256).hexdigest()
