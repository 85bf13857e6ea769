"""
auth/service.py -- Register / login / refresh / logout orchestration.

AuthSessionService is the only code that combines the hasher, the lockout
policy, the token codec and the user store. Route handlers call it and turn
its typed errors (auth/errors.py) into HTTP responses.

Refresh-token lifecycle, tracked through users.refresh_token_hash/_expires_at:

    Issued --(first use / stored expiry not reached)--> Active
    Active --(refresh or login issues a new pair)-----> Rotated  (terminal)
    Active --(logout clears the stored pair)----------> Revoked  (terminal)
    Active --(refresh_token_expires_at reached)-------> Expired  (terminal)

Only the HMAC of the newest refresh token is stored, so issuing any new pair
makes every older refresh token fail the hash comparison. Presenting a
rotated token looks exactly like presenting an unknown one.

Security:
  [C1] Unknown emails still pay for one password derivation against a dummy
       hash, so response time does not reveal which emails are registered.
  Locked accounts are rejected before the password is compared and without
       touching the failure counter.
  Wrong password and unknown email raise the same InvalidCredentials.

Concurrency:
  All methods are synchronous and CPU-bound (scrypt, HMAC). The HTTP layer
  calls them from plain `def` endpoints so FastAPI runs them in its worker
  threadpool instead of on the event loop. Store writes are read-modify-write
  without compare-and-swap; lockout counts are best-effort under concurrent
  failures for one user, and concurrent refreshes of the same token can both
  succeed if they interleave between the read and the write.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from auth.errors import AccountLocked, Conflict, Forbidden, InvalidCredentials, NotFound, TokenError, TokenInvalid
from auth.lockout import LockoutPolicy
from auth.models import USER_ROLES, AuthResult, FieldSet, FieldUpdate, PublicUser, UserRecord
from auth.passwords import PasswordHasher
from auth.store import UserStore, normalize_email
from auth.tokens import TokenCodec, constant_time_equals, parse_duration, utc_now

logger = logging.getLogger("jobboard.auth")

_REFRESH_FIELDS = ("refresh_token_hash", "refresh_token_expires_at")


@dataclass(frozen=True)
class AuthConfig:
    """Explicit configuration for the auth subsystem.

    Durations use the "<integer><s|m|h|d>" form and are validated on
    construction, so a bad value raises ConfigError at startup.
    """

    secret_key: str
    access_token_ttl: str = "15m"
    refresh_token_ttl: str = "7d"
    max_login_failures: int = 5
    lock_duration: str = "15m"
    password_hash_cost: int = 16384

    def __post_init__(self) -> None:
        parse_duration(self.access_token_ttl)
        parse_duration(self.refresh_token_ttl)
        parse_duration(self.lock_duration)

    @classmethod
    def from_settings(cls, settings) -> AuthConfig:
        return cls(
            secret_key=settings.secret_key,
            access_token_ttl=settings.access_token_ttl,
            refresh_token_ttl=settings.refresh_token_ttl,
            max_login_failures=settings.max_login_failures,
            lock_duration=settings.lock_duration,
            password_hash_cost=settings.password_hash_cost,
        )

    @property
    def access_token_seconds(self) -> int:
        return parse_duration(self.access_token_ttl)


class AuthSessionService:
    """Usage:
    service = AuthSessionService.from_config(store, AuthConfig(secret_key=...))
    result = service.register("Alice", "alice@x.com", "Passw0rd!")
    result = service.refresh(result.refresh_token)
    """

    def __init__(
        self,
        store: UserStore,
        config: AuthConfig,
        codec: TokenCodec,
        hasher: PasswordHasher,
        lockout: LockoutPolicy,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.config = config
        self.codec = codec
        self.hasher = hasher
        self.lockout = lockout
        self._clock = clock
        # Timing equalization target for unknown emails [C1]. Computed once so
        # the first login is not measurably slower than later ones.
        self._dummy_hash = hasher.hash("jobboard_timing_dummy")

    @classmethod
    def from_config(
        cls, store: UserStore, config: AuthConfig, clock: Callable[[], datetime] = utc_now
    ) -> AuthSessionService:
        return cls(
            store=store,
            config=config,
            codec=TokenCodec(config.secret_key, clock=clock),
            hasher=PasswordHasher(cost=config.password_hash_cost),
            lockout=LockoutPolicy(config.max_login_failures, parse_duration(config.lock_duration)),
            clock=clock,
        )

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Token pair
    # ------------------------------------------------------------------

    def _issue_pair(self, user: UserRecord, now: datetime) -> tuple[str, str, FieldUpdate]:
        """Mint access + refresh tokens and the FieldUpdate that stores the refresh hash."""
        claims = {"sub": str(user.id), "role": user.role}
        access = self.codec.sign(claims, "access", self.config.access_token_ttl)
        refresh = self.codec.sign(claims, "refresh", self.config.refresh_token_ttl)
        expires_at = now + timedelta(seconds=parse_duration(self.config.refresh_token_ttl))
        update = FieldUpdate(
            values={
                "refresh_token_hash": self.codec.hash_token(refresh),
                "refresh_token_expires_at": expires_at,
            }
        )
        return access, refresh, update

    def _result(self, user: UserRecord, access: str, refresh: str) -> AuthResult:
        return AuthResult(
            user=user.public(),
            access_token=access,
            refresh_token=refresh,
            expires_in=self.config.access_token_seconds,
        )

    def _commit(self, user: UserRecord, update: FieldUpdate) -> None:
        self.store.update_user(user.id, update.values, update.unset)
        update.apply_to(user)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, role: str = "user") -> AuthResult:
        """Create a user and return a fresh token pair.

        Admin bootstrap: role="admin" is accepted only while the store is
        empty. Later admins must be promoted by an existing admin elsewhere.

        Raises:
            Conflict:   email already registered (case-insensitive).
            Forbidden:  admin requested and at least one user exists.
            ValueError: role is not one of USER_ROLES.
        """
        if role not in USER_ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        email = normalize_email(email)
        if self.store.get_by_email(email) is not None:
            raise Conflict()
        if role == "admin" and self.store.count_users() > 0:
            logger.warning("Rejected admin self-registration for %s", email)
            raise Forbidden()

        record = UserRecord(name=name, email=email, password_hash=self.hasher.hash(password), role=role)
        try:
            record.id = self.store.create_user(record)
        except IntegrityError as exc:
            # Another request registered the same email between check and insert.
            raise Conflict() from exc

        now = self._clock()
        access, refresh, update = self._issue_pair(record, now)
        self._commit(record, update)
        # Reload for the store-assigned timestamps.
        stored = self.store.get_by_id(record.id, FieldSet.SENSITIVE) or record
        logger.info("Registered user %s (role=%s)", record.id, role)
        return self._result(stored, access, refresh)

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate with email + password.

        Raises:
            AccountLocked:      lock window still open (no password check made).
            InvalidCredentials: unknown email or wrong password.
        """
        user = self.store.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running the KDF [C1]
            self.hasher.verify(password, self._dummy_hash)
            raise InvalidCredentials()

        now = self._clock()
        if self.lockout.is_locked(user, now):
            logger.warning("Login attempt on locked account %s", user.id)
            raise AccountLocked(user.lock_until)

        if not self.hasher.verify(password, user.password_hash):
            update = self.lockout.on_failure(user, now)
            self._commit(user, update)
            if user.lock_until is not None and user.lock_until > now:
                logger.warning("Account %s locked until %s", user.id, user.lock_until.isoformat())
            else:
                logger.info("Failed login for user %s (%d/%d)", user.id, user.login_failures, self.lockout.max_failures)
            raise InvalidCredentials()

        access, refresh, update = self._issue_pair(user, now)
        # Lockout reset and refresh rotation go out in one write.
        update = FieldUpdate().merge(self.lockout.on_success(user)).merge(update)
        self._commit(user, update)
        logger.info("User %s logged in", user.id)
        return self._result(user, access, refresh)

    def refresh(self, refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new pair. Each refresh token works once.

        Raises:
            TokenError:         token malformed, badly signed, expired or not a refresh token.
            InvalidCredentials: no stored refresh state, stored expiry passed, or
                                token superseded by a later login/refresh/logout.
        """
        try:
            claims = self.codec.verify(refresh_token, kind="refresh")
            user_id = int(claims["sub"])
        except TokenError as exc:
            logger.info("Refresh rejected: %s (%s)", type(exc).__name__, exc)
            raise
        except (KeyError, TypeError, ValueError) as exc:
            logger.info("Refresh rejected: bad subject claim")
            raise TokenInvalid("bad subject claim") from exc

        user = self.store.get_by_id(user_id, FieldSet.SENSITIVE)
        if user is None:
            logger.info("Refresh rejected: user %s no longer exists", user_id)
            raise InvalidCredentials("Invalid refresh token.")

        now = self._clock()
        if user.refresh_token_hash is None or user.refresh_token_expires_at is None:
            logger.info("Refresh rejected for user %s: no active refresh token", user.id)
            raise InvalidCredentials("Invalid refresh token.")
        if user.refresh_token_expires_at <= now:
            logger.info("Refresh rejected for user %s: stored refresh token expired", user.id)
            raise InvalidCredentials("Invalid refresh token.")
        if not constant_time_equals(self.codec.hash_token(refresh_token), user.refresh_token_hash):
            logger.warning("Refresh rejected for user %s: token superseded or unknown", user.id)
            raise InvalidCredentials("Invalid refresh token.")

        access, refresh, update = self._issue_pair(user, now)
        self._commit(user, update)
        logger.info("Rotated refresh token for user %s", user.id)
        return self._result(user, access, refresh)

    def logout(self, user_id: int) -> None:
        """Revoke the stored refresh token. Access tokens stay valid until they expire."""
        self.store.update_user(user_id, unset=_REFRESH_FIELDS)
        logger.info("User %s logged out", user_id)

    def authenticate(self, access_token: str) -> PublicUser:
        """Resolve a bearer access token to its user.

        Raises:
            TokenError:         token malformed, badly signed, expired or not an access token.
            InvalidCredentials: the subject no longer exists.
        """
        claims = self.codec.verify(access_token, kind="access")
        try:
            user_id = int(claims["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid("bad subject claim") from exc
        user = self.store.get_by_id(user_id)
        if user is None:
            raise InvalidCredentials("User for this token no longer exists.")
        return user

    def get_me(self, user_id: int) -> PublicUser:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound()
        return user

    def list_users(self) -> list[PublicUser]:
        return self.store.list_users()
