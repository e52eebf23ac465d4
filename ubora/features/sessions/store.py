"""
ubora/features/sessions/store.py

User document stores.

Every mutation of the package engine is one read of the user record followed
by one whole-field overwrite. The store bumps `version` on each write; when a
caller passes `expected_version` and the stored record has moved on, the write
is refused with ConflictError instead of silently dropping the other update.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from pydantic import ValidationError as SchemaError
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ubora.core.database import get_db_session, users
from ubora.core.errors import ConflictError, PersistenceError, UserNotFoundError, ValidationError
from ubora.core.timeutils import Clock, utc_now
from ubora.models.user import UserRecord


logger = logging.getLogger(__name__)

# Fields a service may overwrite; identity and version are store-owned
WRITABLE_FIELDS = frozenset(UserRecord.model_fields) - {"user_id", "version", "created_at", "updated_at"}


class UserStore(Protocol):
    """
    Protocol for user document stores.

    Implementations must provide whole-field overwrite semantics: the value
    given for a field replaces the stored one, arrays included.
    """

    def get(self, user_id: str) -> UserRecord:
        """
        Load a user record.

        Raises:
            UserNotFoundError: no record for user_id
            PersistenceError: the backend failed
        """
        ...

    def add(self, user: UserRecord) -> UserRecord:
        """Insert a new user record (version starts at 0)."""
        ...

    def update(self, user_id: str, fields: Dict[str, Any], expected_version: Optional[int] = None) -> UserRecord:
        """
        Overwrite the given fields and bump the version.

        Raises:
            UserNotFoundError: no record for user_id
            ConflictError: expected_version does not match the stored version
            PersistenceError: the backend failed
        """
        ...


def _check_fields(fields: Dict[str, Any]) -> None:
    unknown = set(fields) - WRITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not writable: {', '.join(sorted(unknown))}")


def _merge(user: UserRecord, fields: Dict[str, Any], now: datetime) -> UserRecord:
    data = user.model_dump()
    data.update(fields)
    data["version"] = user.version + 1
    data["updated_at"] = now
    try:
        return UserRecord.model_validate(data)
    except SchemaError as e:
        raise ValidationError(f"Invalid update for user {user.user_id}: {e.error_count()} field error(s)") from e


class InMemoryUserStore:
    """Dict-backed store for tests and local development."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._users: Dict[str, UserRecord] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def add(self, user: UserRecord) -> UserRecord:
        with self._lock:
            if user.user_id in self._users:
                raise ConflictError(f"User {user.user_id} already exists")
            stored = user.model_copy(update={"version": 0, "created_at": user.created_at or self._clock()})
            self._users[user.user_id] = stored
            return stored

    def update(self, user_id: str, fields: Dict[str, Any], expected_version: Optional[int] = None) -> UserRecord:
        _check_fields(fields)
        with self._lock:
            current = self.get(user_id)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(
                    f"User {user_id} was modified concurrently "
                    f"(expected version {expected_version}, found {current.version})"
                )
            updated = _merge(current, fields, self._clock())
            self._users[user_id] = updated
            return updated


def _from_row(row) -> UserRecord:
    """Rebuild a record from a `users` row; a row that no longer parses is a store fault."""
    try:
        return UserRecord.model_validate(dict(row))
    except SchemaError as e:
        logger.error("[store] unreadable record", extra={"user_id": row["user_id"], "error_code": "persistence_failure"})
        raise PersistenceError(f"Stored record for user {row['user_id']} is malformed") from e


def _to_row(user: UserRecord) -> Dict[str, Any]:
    row = user.model_dump(mode="json", exclude={"subscription_sessions", "created_at", "updated_at"})
    row["subscription_sessions"] = [s.model_dump(mode="json") for s in user.subscription_sessions]
    row["created_at"] = user.created_at
    row["updated_at"] = user.updated_at
    return row


class SqlUserStore:
    """
    SQLAlchemy-backed store over the `users` table.

    The session history is kept as a JSON array and rewritten whole on every
    update. SQLAlchemy failures surface as PersistenceError and are not retried.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def get(self, user_id: str) -> UserRecord:
        try:
            with get_db_session() as session:
                row = session.execute(
                    select(users).where(users.c.user_id == user_id)
                ).mappings().first()
        except SQLAlchemyError as e:
            logger.error("[store] read failed", extra={"user_id": user_id, "error_code": "persistence_failure"})
            raise PersistenceError(f"Failed to load user {user_id}") from e

        if row is None:
            raise UserNotFoundError(user_id)
        return _from_row(row)

    def add(self, user: UserRecord) -> UserRecord:
        stored = user.model_copy(update={"version": 0, "created_at": user.created_at or self._clock()})
        try:
            with get_db_session() as session:
                session.execute(insert(users).values(**_to_row(stored)))
        except IntegrityError as e:
            raise ConflictError(f"User {user.user_id} already exists") from e
        except SQLAlchemyError as e:
            logger.error("[store] insert failed", extra={"user_id": user.user_id, "error_code": "persistence_failure"})
            raise PersistenceError(f"Failed to create user {user.user_id}") from e
        return stored

    def update(self, user_id: str, fields: Dict[str, Any], expected_version: Optional[int] = None) -> UserRecord:
        _check_fields(fields)
        try:
            with get_db_session() as session:
                row = session.execute(
                    select(users).where(users.c.user_id == user_id)
                ).mappings().first()
                if row is None:
                    raise UserNotFoundError(user_id)

                current = _from_row(row)
                if expected_version is not None and current.version != expected_version:
                    raise ConflictError(
                        f"User {user_id} was modified concurrently "
                        f"(expected version {expected_version}, found {current.version})"
                    )

                updated = _merge(current, fields, self._clock())
                values = _to_row(updated)
                values.pop("user_id")
                values.pop("created_at")

                # Compare-and-swap on the version read above
                result = session.execute(
                    update(users)
                    .where(users.c.user_id == user_id, users.c.version == current.version)
                    .values(**values)
                )
                if result.rowcount != 1:
                    raise ConflictError(f"User {user_id} was modified concurrently")
        except SQLAlchemyError as e:
            logger.error("[store] write failed", extra={"user_id": user_id, "error_code": "persistence_failure"})
            raise PersistenceError(f"Failed to update user {user_id}") from e
        return updated
