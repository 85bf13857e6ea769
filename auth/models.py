"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Stores own
persistence, services own behaviour; these classes only own shape.

Two views of a user exist on purpose:
  PublicUser  -- safe to return to any caller (no secrets).
  UserRecord  -- the sensitive variant with password hash, lockout state and
                 refresh-token state. Only the service layer handles it.
The store returns one or the other depending on the FieldSet the caller asks
for, so secrets are never loaded by accident.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

USER_ROLES = ("user", "admin")


class FieldSet(str, Enum):
    """Which view of a user record a store lookup should return."""

    PUBLIC = "public"
    SENSITIVE = "sensitive"


@dataclass
class PublicUser:
    id: int
    name: str
    email: str
    role: str
    created_at: str = ""
    updated_at: str = ""


@dataclass
class UserRecord:
    """A user row including secrets.

    refresh_token_hash and refresh_token_expires_at are either both set or both
    None. The store mapper drops a half-populated pair, and the service always
    writes or clears the two together.
    """

    name: str
    email: str
    password_hash: str
    role: str = "user"
    id: int | None = None
    login_failures: int = 0
    lock_until: datetime | None = None
    refresh_token_hash: str | None = None
    refresh_token_expires_at: datetime | None = None
    created_at: str = ""
    updated_at: str = ""

    def public(self) -> PublicUser:
        return PublicUser(
            id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass
class FieldUpdate:
    """A partial write against one user: columns to set and columns to clear.

    Maps one-to-one onto UserStore.update_user(user_id, values, unset).
    """

    values: dict = field(default_factory=dict)
    unset: tuple[str, ...] = ()

    def merge(self, other: FieldUpdate | None) -> FieldUpdate:
        """Combine two updates; ``other`` wins where both touch a column."""
        if other is None:
            return self
        values = {k: v for k, v in self.values.items() if k not in other.unset}
        values.update(other.values)
        unset = tuple(c for c in self.unset if c not in other.values) + tuple(
            c for c in other.unset if c not in self.unset
        )
        return FieldUpdate(values=values, unset=unset)

    def apply_to(self, user: UserRecord) -> None:
        """Mirror the update onto an in-memory record."""
        for name, value in self.values.items():
            setattr(user, name, value)
        for name in self.unset:
            setattr(user, name, 0 if name == "login_failures" else None)


@dataclass
class AuthResult:
    """Success payload of register / login / refresh.

    The raw refresh token only ever lives here and in the HTTP response.
    The store keeps its hash.
    """

    user: PublicUser
    access_token: str
    refresh_token: str
    expires_in: int
