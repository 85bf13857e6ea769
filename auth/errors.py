"""
auth/errors.py -- Typed failures raised by the authentication subsystem.

Every AuthError carries the HTTP status and machine-readable code the API
layer renders, so route handlers never translate exceptions by hand. The
exception handler in api/main.py turns any AuthError into the standard
ErrorResponse envelope.

Token failures are split into three classes (malformed, bad signature,
expired) for logging and tests only. They share one code and one message so
the response never tells a caller which check failed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime


class ConfigError(ValueError):
    """A configuration value (duration string, secret, ...) is unusable.

    Subclasses ValueError so it also surfaces cleanly from pydantic validators.
    """


class AuthError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class TokenError(AuthError):
    status_code = 401
    code = "unauthorized"
    message = "Invalid or expired token."

    def __init__(self, reason: str = "") -> None:
        # The reason is for logs only; the rendered message stays generic.
        super().__init__()
        self.reason = reason

    def __str__(self) -> str:
        return self.reason or self.message


class TokenMalformed(TokenError):
    """Token is not three segments of decodable JSON."""


class TokenInvalid(TokenError):
    """Signature mismatch, or the token is the wrong kind for this use."""


class TokenExpired(TokenError):
    """exp is at or before the current time."""


class InvalidCredentials(AuthError):
    status_code = 401
    code = "bad_credentials"
    message = "Invalid email or password."


class AccountLocked(AuthError):
    status_code = 423
    code = "account_locked"
    message = "Account is temporarily locked due to repeated failed logins."

    def __init__(self, lock_until: datetime) -> None:
        super().__init__()
        self.lock_until = lock_until

    def retry_after(self, now: datetime) -> int:
        """Whole seconds until the lock window closes (never less than 1)."""
        return max(1, int((self.lock_until - now).total_seconds() + 0.999))


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    message = "Email is already registered."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "Admin self-registration is disabled."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    message = "User not found."
