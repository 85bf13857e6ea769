"""
auth/passwords.py -- Salted, memory-hard password hashing.

Stored format: "<salt hex>:<derived key hex>" with a 16-byte random salt and a
64-byte scrypt key. The salt enters scrypt as its 32-character hex text, not
the decoded bytes; existing stored hashes depend on that. scrypt is
memory-hard, so GPU/ASIC brute force of a leaked hash costs memory as well
as time. Default cost parameters
(N=16384, r=8, p=1) need 16 MiB per derivation.

verify() never raises on a malformed stored value -- it returns False, which
callers treat exactly like a wrong password.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

_SALT_BYTES = 16
_KEY_BYTES = 64


class PasswordHasher:
    def __init__(self, cost: int = 16384, block_size: int = 8, parallelism: int = 1) -> None:
        self.cost = cost
        self.block_size = block_size
        self.parallelism = parallelism
        # 128 * r * N bytes for the scrypt working set, plus headroom for OpenSSL.
        self._maxmem = 128 * block_size * cost * parallelism + 8 * 1024 * 1024

    def _derive(self, password: str, salt_hex: str) -> bytes:
        return hashlib.scrypt(
            password.encode("utf-8"),
            salt=salt_hex.encode("ascii"),
            n=self.cost,
            r=self.block_size,
            p=self.parallelism,
            maxmem=self._maxmem,
            dklen=_KEY_BYTES,
        )

    def hash(self, password: str) -> str:
        """Return "salt:key" for ``password``. Two calls never return the same value."""
        salt_hex = secrets.token_hex(_SALT_BYTES)
        return f"{salt_hex}:{self._derive(password, salt_hex).hex()}"

    def verify(self, password: str, stored_hash: str | None) -> bool:
        """Return True only if ``password`` derives to the key in ``stored_hash``."""
        if not stored_hash or not isinstance(stored_hash, str):
            return False
        salt_hex, sep, key_hex = stored_hash.partition(":")
        if not sep or not salt_hex or not key_hex:
            return False
        try:
            bytes.fromhex(salt_hex)
            expected = bytes.fromhex(key_hex)
        except ValueError:
            return False
        candidate = self._derive(password, salt_hex)
        if len(candidate) != len(expected):
            return False
        return hmac.compare_digest(candidate, expected)
