from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.errors import ResourceExhausted
from app.core.settings import settings
from app.models.rate_limit import RateLimitWindow
from app.services.ledger import run_transaction


logger = logging.getLogger(__name__)

HOUR_S = 60 * 60
DAY_S = 24 * HOUR_S

UNLOCK_LEAD_LIMIT = ("unlockLead", 120, HOUR_S)
UNLOCK_EXCLUSIVE_LEAD_LIMIT = ("unlockExclusiveLead", 120, HOUR_S)
GRANT_LEAD_CREDITS_LIMIT = ("grantLeadCredits", 200, HOUR_S)
CLAIM_JOB_LIMIT = ("claimJob", 120, HOUR_S)
LEAD_PACK_CHECKOUT_LIMIT = ("createLeadPackCheckoutSession", 30, DAY_S)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining_calls: int
    reset_at: float | None = None


def _record_call(db: Session, uid: str, function_name: str, max_calls: int, window_s: int, now: float) -> RateLimitDecision:
    window_start = now - window_s

    def _body(tx: Session) -> RateLimitDecision:
        row = tx.get(RateLimitWindow, (uid, function_name), populate_existing=True)
        calls = [float(t) for t in (row.call_times if row else []) or [] if float(t) > window_start]
        if len(calls) >= max_calls:
            return RateLimitDecision(allowed=False, remaining_calls=0, reset_at=min(calls) + window_s)
        calls.append(now)
        if row is None:
            tx.add(RateLimitWindow(user_id=uid, function_name=function_name, call_times=calls))
        else:
            row.call_times = calls
        return RateLimitDecision(allowed=True, remaining_calls=max_calls - len(calls))

    return run_transaction(db, _body, name="rate_limit")


def check_rate_limit(
    db: Session,
    uid: str,
    function_name: str,
    max_calls: int,
    window_s: int,
    now: float | None = None,
) -> RateLimitDecision:
    if not settings.rate_limits_enabled:
        return RateLimitDecision(allowed=True, remaining_calls=max_calls)

    try:
        decision = _record_call(db, uid, function_name, max_calls, window_s, now or time.time())
    except Exception:
        # Fail open on store errors.
        logger.exception("rate_limit.error uid=%s function=%s", uid, function_name)
        db.rollback()
        return RateLimitDecision(allowed=True, remaining_calls=max_calls)

    if not decision.allowed:
        reset = datetime.fromtimestamp(decision.reset_at or 0, tz=timezone.utc).isoformat()
        logger.info("rate_limit.exceeded uid=%s function=%s reset_at=%s", uid, function_name, reset)
        raise ResourceExhausted(f"Rate limit exceeded. Try again after {reset}.")
    return decision


def enforce(db: Session, uid: str, limit: tuple[str, int, int]) -> RateLimitDecision:
    function_name, max_calls, window_s = limit
    return check_rate_limit(db, uid, function_name, max_calls, window_s)
