"""
auth/lockout.py -- Login-failure counting and temporary account lock.

State lives on the user record (login_failures, lock_until). The policy only
reads that state and returns FieldUpdates; the caller persists them. This
makes the read-modify-write explicit: two concurrent failed logins for the
same user can both read the same count and both write count + 1. Counting is
therefore best-effort, not linearizable, unless the store grows an atomic
increment.

Callers must check is_locked() before comparing a password. A locked account
fails without consuming a failure, so repeated probing cannot extend the lock.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from auth.models import FieldUpdate, UserRecord


class LockoutPolicy:
    def __init__(self, max_failures: int = 5, lock_duration_seconds: int = 900) -> None:
        if max_failures < 1:
            raise ValueError("max_failures must be at least 1")
        self.max_failures = max_failures
        self.lock_duration = timedelta(seconds=lock_duration_seconds)

    def is_locked(self, user: UserRecord, now: datetime) -> bool:
        return user.lock_until is not None and user.lock_until > now

    def on_failure(self, user: UserRecord, now: datetime) -> FieldUpdate:
        """Count one failed password; lock once the count reaches max_failures.

        The counter restarts at 0 when the lock engages, so a user coming back
        after the window gets the full allowance again.
        """
        failures = user.login_failures + 1
        if failures >= self.max_failures:
            return FieldUpdate(values={"login_failures": 0, "lock_until": now + self.lock_duration})
        return FieldUpdate(values={"login_failures": failures}, unset=("lock_until",))

    def on_success(self, user: UserRecord) -> FieldUpdate | None:
        """Reset lockout state, or return None when there is nothing to reset."""
        if user.login_failures == 0 and user.lock_until is None:
            return None
        return FieldUpdate(values={"login_failures": 0}, unset=("lock_until",))
