"""Account ledger primitives shared by every credit-moving protocol.

All balance mutations go through :func:`apply_delta`, and every protocol body
runs inside :func:`run_transaction`, which re-runs the body from a fresh read
whenever the store reports that a concurrent transaction got there first.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import FailedPrecondition, Internal, InvalidArgument, ServiceError, TransientStoreError
from app.core.settings import settings
from app.models.credit_account import CreditAccount


logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected.
_RETRYABLE_PGCODES = {"40001", "40P01"}
# PostgreSQL unique_violation.
_UNIQUE_VIOLATION_PGCODE = "23505"


class CreditPool(str, enum.Enum):
    NON_EXCLUSIVE = "non_exclusive"
    EXCLUSIVE = "exclusive"

    @classmethod
    def normalize(cls, raw: object) -> "CreditPool":
        v = str(raw or "").strip().lower()
        if v in {"exclusive", "ex"}:
            return cls.EXCLUSIVE
        return cls.NON_EXCLUSIVE

    @classmethod
    def for_unlock(cls, exclusive: bool) -> "CreditPool":
        return cls.EXCLUSIVE if exclusive else cls.NON_EXCLUSIVE


@dataclass(frozen=True)
class IdempotencyKey:
    job_id: str
    contractor_id: str
    mode: str

    @classmethod
    def for_unlock(cls, job_id: str, contractor_id: str, exclusive: bool) -> "IdempotencyKey":
        return cls(job_id=job_id, contractor_id=contractor_id, mode="ex" if exclusive else "ne")

    @property
    def value(self) -> str:
        blob = "\x1f".join((self.job_id, self.contractor_id, self.mode))
        return hashlib.sha256(blob.encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return self.value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_duplicate_key(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) == _UNIQUE_VIOLATION_PGCODE:
        return True
    msg = str(orig or "").lower()
    return "unique constraint" in msg or "duplicate key" in msg


def is_conflict(exc: BaseException) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, IntegrityError):
        # NOT NULL, FK and CHECK failures never go away on retry.
        return is_duplicate_key(exc)
    if isinstance(exc, DBAPIError):
        orig = getattr(exc, "orig", None)
        if getattr(orig, "pgcode", None) in _RETRYABLE_PGCODES:
            return True
        if "database is locked" in str(orig or "").lower():
            return True
    return False


def run_transaction(
    db: Session,
    fn: Callable[[Session], T],
    *,
    name: str = "ledger",
    max_attempts: int | None = None,
    backoff_ms: int | None = None,
) -> T:
    attempts = max(1, int(max_attempts or settings.ledger_tx_max_attempts))
    base_ms = settings.ledger_tx_backoff_ms if backoff_ms is None else max(0, int(backoff_ms))

    # Start from a clean snapshot even if the caller already touched the session.
    if db.in_transaction():
        db.commit()

    for attempt in range(1, attempts + 1):
        try:
            result = fn(db)
            db.commit()
            return result
        except ServiceError:
            db.rollback()
            raise
        except Exception as exc:
            db.rollback()
            if not is_conflict(exc):
                if isinstance(exc, IntegrityError):
                    logger.error("%s.tx.integrity_error error=%s", name, exc.orig)
                    raise Internal("Ledger write rejected") from exc
                raise
            if attempt >= attempts:
                logger.warning("%s.tx.exhausted attempts=%s error=%s", name, attempt, type(exc).__name__)
                raise TransientStoreError("The request conflicted with another update; please retry") from exc
            logger.info("%s.tx.conflict attempt=%s error=%s", name, attempt, type(exc).__name__)
            if base_ms:
                delay_ms = base_ms * (2 ** (attempt - 1))
                time.sleep(random.uniform(0, delay_ms) / 1000.0)

    raise TransientStoreError("The request conflicted with another update; please retry")


def get_account(db: Session, user_id: str) -> CreditAccount | None:
    return db.get(CreditAccount, user_id, populate_existing=True)


def pool_balance(acct: CreditAccount | None, pool: CreditPool) -> int:
    if acct is None:
        return 0
    if pool == CreditPool.EXCLUSIVE:
        return int(acct.exclusive_credits or 0)
    return int(acct.non_exclusive_credits or 0)


def apply_delta(db: Session, user_id: str, pool: CreditPool, delta: int) -> CreditAccount:
    """Move ``delta`` credits into (or out of) one pool of ``user_id``'s account.

    Must be called inside :func:`run_transaction`. The account row is created on
    first grant; the legacy ``credits`` alias tracks the non-exclusive pool.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidArgument("delta must be an integer")

    acct = get_account(db, user_id)
    if acct is None:
        acct = CreditAccount(user_id=user_id, non_exclusive_credits=0, exclusive_credits=0, credits=0)
        db.add(acct)
        # Later lookups in this transaction only see the row once it is flushed.
        db.flush()

    current = pool_balance(acct, pool)
    updated = current + delta
    if updated < 0:
        raise FailedPrecondition("Not enough credits", reason="insufficient_credits")

    if pool == CreditPool.EXCLUSIVE:
        acct.exclusive_credits = updated
    else:
        acct.non_exclusive_credits = updated
        acct.credits = updated
    return acct
