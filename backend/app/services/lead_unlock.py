from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied, Unauthenticated
from app.models.lead import Lead, LeadBuyer, LeadState
from app.models.lead_unlock import LeadUnlock
from app.models.profile import Profile
from app.services.ledger import (
    CreditPool,
    IdempotencyKey,
    apply_delta,
    get_account,
    pool_balance,
    run_transaction,
    utcnow,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnlockResult:
    ok: bool
    credits: int
    replayed: bool = False


def assert_contractor(db: Session, uid: str) -> Profile:
    profile = db.get(Profile, uid)
    if profile is None:
        raise FailedPrecondition("User profile missing", reason="profile_missing")
    role = str(profile.role or "").strip().lower()
    if role != "contractor":
        raise PermissionDenied("Contractor account required")
    return profile


def _transition(lead: Lead, target: LeadState) -> None:
    if not lead.can_transition(target):
        raise FailedPrecondition(
            f"Lead cannot move from {LeadState(lead.state).value} to {target.value}",
            reason="illegal_transition",
        )
    lead.state = target


def unlock_lead(db: Session, *, uid: str | None, job_id: str | None, exclusive: bool = False) -> UnlockResult:
    uid = str(uid or "").strip()
    job_id = str(job_id or "").strip()
    if not uid:
        raise Unauthenticated("Sign in required")
    if not job_id:
        raise InvalidArgument("jobId required")

    want_exclusive = bool(exclusive)
    pool = CreditPool.for_unlock(want_exclusive)
    key = IdempotencyKey.for_unlock(job_id, uid, want_exclusive)

    assert_contractor(db, uid)

    def _body(tx: Session) -> UnlockResult:
        acct = get_account(tx, uid)
        lead = tx.get(Lead, job_id, populate_existing=True)
        existing = tx.get(LeadUnlock, key.value)

        if lead is None:
            raise NotFound("Job not found")

        if existing is not None:
            return UnlockResult(ok=True, credits=pool_balance(acct, pool), replayed=True)

        available = pool_balance(acct, pool)
        if available < 1:
            raise FailedPrecondition("Not enough credits", reason="insufficient_credits")

        state = LeadState(lead.state)
        if state == LeadState.CLAIMED:
            raise FailedPrecondition("Job already claimed", reason="already_claimed")

        if state == LeadState.EXCLUSIVE and lead.exclusive_owner != uid:
            raise FailedPrecondition(
                "This lead has already been purchased as exclusive by another contractor.",
                reason="exclusive_conflict",
            )

        if want_exclusive:
            buyers = lead.buyer_ids
            if buyers and uid not in buyers:
                raise FailedPrecondition(
                    "This lead has already been purchased by another contractor.",
                    reason="exclusive_conflict",
                )

        now = utcnow()
        acct = apply_delta(tx, uid, pool, -1)
        if want_exclusive:
            _transition(lead, LeadState.EXCLUSIVE)
            lead.exclusive_owner = uid
            lead.exclusive_unlocked_at = now
        else:
            _transition(lead, LeadState.EXCLUSIVE if state == LeadState.EXCLUSIVE else LeadState.SHARED)
            if uid not in lead.buyer_ids:
                tx.add(LeadBuyer(job_id=job_id, contractor_id=uid))
            lead.non_exclusive_unlocked_at = now

        tx.add(
            LeadUnlock(
                id=key.value,
                job_id=job_id,
                contractor_id=uid,
                exclusive=want_exclusive,
                source="exclusive_credits" if want_exclusive else "credits",
            )
        )
        return UnlockResult(ok=True, credits=pool_balance(acct, pool))

    result = run_transaction(db, _body, name="lead_unlock")
    logger.info(
        "lead_unlock.%s job_id=%s contractor_id=%s exclusive=%s credits=%s",
        "replay" if result.replayed else "success",
        job_id,
        uid,
        want_exclusive,
        result.credits,
    )
    return result


def claim_job(db: Session, *, uid: str | None, job_id: str | None) -> dict:
    uid = str(uid or "").strip()
    job_id = str(job_id or "").strip()
    if not uid:
        raise Unauthenticated("Sign in required")
    if not job_id:
        raise InvalidArgument("jobId required")

    def _body(tx: Session) -> dict:
        profile = tx.get(Profile, uid)
        lead = tx.get(Lead, job_id, populate_existing=True)
        if profile is None:
            raise FailedPrecondition("User profile missing", reason="profile_missing")
        if lead is None:
            raise NotFound("Job not found")
        if str(profile.role or "").strip().lower() != "contractor":
            raise PermissionDenied("Only contractors can claim jobs")
        if lead.claimed:
            raise FailedPrecondition("Job already claimed", reason="already_claimed")
        if not lead.has_accepted_offer:
            raise FailedPrecondition(
                "This job can only be claimed after a quote/bid is accepted",
                reason="no_accepted_bid",
            )

        _transition(lead, LeadState.CLAIMED)
        lead.claimed_by = uid
        lead.claimed_at = utcnow()
        return {"ok": True}

    result = run_transaction(db, _body, name="claim_job")
    logger.info("claim_job.success job_id=%s contractor_id=%s", job_id, uid)
    return result
