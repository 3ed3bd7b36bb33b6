"""
Append-only storage for login attempts.

Every attempt is written as its own row. Nothing here ever reads a counter,
changes it and writes it back, so concurrent writers for the same identity
cannot lose each other's updates.
"""
import enum
import itertools
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.login_attempt import LoginAttempt
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class StorageUnavailable(Exception):
    """The attempt store could not be read or written."""


class AttemptOutcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ADMIN_RESET = "ADMIN_RESET"


@dataclass(frozen=True)
class AttemptRecord:
    identity_key: str
    outcome: AttemptOutcome
    timestamp: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    seq: int = 0


class AttemptStore:
    def record_attempt(self, identity_key: str, outcome: AttemptOutcome, ip=None,
                       user_agent=None, timestamp: Optional[datetime] = None) -> AttemptRecord:
        raise NotImplementedError

    def attempts_since(self, identity_key: str, since: datetime) -> list[AttemptRecord]:
        """Records newer than ``since``, oldest first."""
        raise NotImplementedError

    def failure_counts_since(self, since: datetime) -> dict[str, int]:
        raise NotImplementedError

    def prune_before(self, cutoff: datetime) -> int:
        raise NotImplementedError


class SqlAttemptStore(AttemptStore):
    """Durable store on the application database. Needs an app context."""

    def record_attempt(self, identity_key, outcome, ip=None, user_agent=None, timestamp=None):
        outcome = AttemptOutcome(outcome)
        row = LoginAttempt(
            identity_key=identity_key,
            outcome=outcome.value,
            ip=ip,
            user_agent=user_agent[:255] if user_agent else None,
            created_at=timestamp or utcnow(),
        )
        try:
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Could not record %s attempt for %s", outcome.value, identity_key)
            raise StorageUnavailable("login attempt could not be stored") from exc
        return _to_record(row)

    def attempts_since(self, identity_key, since):
        try:
            rows = (
                LoginAttempt.query
                .filter(LoginAttempt.identity_key == identity_key, LoginAttempt.created_at > since)
                .order_by(LoginAttempt.created_at.asc(), LoginAttempt.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Could not read login attempts for %s", identity_key)
            raise StorageUnavailable("login attempts could not be read") from exc
        return [_to_record(r) for r in rows]

    def failure_counts_since(self, since):
        try:
            rows = (
                db.session.query(LoginAttempt.identity_key, func.count(LoginAttempt.id))
                .filter(
                    LoginAttempt.outcome == AttemptOutcome.FAILURE.value,
                    LoginAttempt.created_at > since,
                )
                .group_by(LoginAttempt.identity_key)
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Could not aggregate login failures")
            raise StorageUnavailable("login attempts could not be read") from exc
        return {key: count for key, count in rows}

    def prune_before(self, cutoff):
        try:
            deleted = LoginAttempt.query.filter(LoginAttempt.created_at < cutoff).delete(
                synchronize_session=False
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Could not prune login attempts")
            raise StorageUnavailable("login attempts could not be pruned") from exc
        return deleted


def _to_record(row: LoginAttempt) -> AttemptRecord:
    return AttemptRecord(
        identity_key=row.identity_key,
        outcome=AttemptOutcome(row.outcome),
        timestamp=row.created_at,
        ip_address=row.ip,
        user_agent=row.user_agent,
        seq=row.id,
    )


class MemoryAttemptStore(AttemptStore):
    """Process-local store. Fine for development and tests, lost on restart."""

    def __init__(self):
        self._records = defaultdict(list)
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def record_attempt(self, identity_key, outcome, ip=None, user_agent=None, timestamp=None):
        with self._lock:
            record = AttemptRecord(
                identity_key=identity_key,
                outcome=AttemptOutcome(outcome),
                timestamp=timestamp or utcnow(),
                ip_address=ip,
                user_agent=user_agent[:255] if user_agent else None,
                seq=next(self._seq),
            )
            self._records[identity_key].append(record)
        return record

    def attempts_since(self, identity_key, since):
        with self._lock:
            records = [r for r in self._records.get(identity_key, ()) if r.timestamp > since]
        return sorted(records, key=lambda r: (r.timestamp, r.seq))

    def failure_counts_since(self, since):
        counts = {}
        with self._lock:
            for key, records in self._records.items():
                n = sum(1 for r in records if r.outcome is AttemptOutcome.FAILURE and r.timestamp > since)
                if n:
                    counts[key] = n
        return counts

    def prune_before(self, cutoff):
        deleted = 0
        with self._lock:
            for key in list(self._records):
                kept = [r for r in self._records[key] if r.timestamp >= cutoff]
                deleted += len(self._records[key]) - len(kept)
                if kept:
                    self._records[key] = kept
                else:
                    del self._records[key]
        return deleted


def build_attempt_store(kind: str) -> AttemptStore:
    if kind == "memory":
        return MemoryAttemptStore()
    if kind == "sql":
        return SqlAttemptStore()
    raise ValueError(f"Unknown ATTEMPT_STORE: {kind!r}")
