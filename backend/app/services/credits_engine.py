from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import InvalidArgument, PermissionDenied, Unauthenticated
from app.core.settings import settings
from app.models.admin_action import AdminAction
from app.models.payment import Payment
from app.models.profile import Admin, Profile
from app.schemas.billing import PaymentCompletionEvent
from app.services.ledger import CreditPool, apply_delta, pool_balance, run_transaction


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeadPack:
    id: str
    leads: int
    amount_cents: int
    name: str
    credit_type: CreditPool


LEAD_PACKS: dict[str, LeadPack] = {
    "ne_1": LeadPack("ne_1", 1, 5000, "1 Lead (Non-exclusive)", CreditPool.NON_EXCLUSIVE),
    "ne_10": LeadPack("ne_10", 10, 45000, "10 Leads (Non-exclusive)", CreditPool.NON_EXCLUSIVE),
    "ne_20": LeadPack("ne_20", 20, 85000, "20 Leads (Non-exclusive)", CreditPool.NON_EXCLUSIVE),
    "ex_1": LeadPack("ex_1", 1, 8000, "1 Lead (Exclusive)", CreditPool.EXCLUSIVE),
    "ex_10": LeadPack("ex_10", 10, 72000, "10 Leads (Exclusive)", CreditPool.EXCLUSIVE),
    "ex_20": LeadPack("ex_20", 20, 136000, "20 Leads (Exclusive)", CreditPool.EXCLUSIVE),
}

LEAD_PACK_PAYMENT_TYPE = "lead_pack"
PAID_STATUSES = {"paid", "no_payment_required"}
MAX_ADMIN_DELTA = 1000


def get_lead_pack(pack_id: object) -> LeadPack | None:
    key = str(pack_id or "").strip()
    return LEAD_PACKS.get(key) if key else None


def is_fully_paid(event: PaymentCompletionEvent) -> bool:
    # Status fields are only checked when the provider actually sent them.
    payment_status = (event.payment_status or "").strip().lower()
    status = (event.status or "").strip().lower()
    if payment_status and payment_status not in PAID_STATUSES:
        return False
    if status and status != "complete":
        return False
    return True


def fulfill_credits(db: Session, event: PaymentCompletionEvent) -> bool:
    """Credit a contractor for a completed lead-pack payment, at most once per session.

    Returns True when credits were granted by this call. Events that can never
    succeed (unpaid, unknown pack, no contractor) are logged and dropped; store
    failures propagate so the provider redelivers.
    """
    session_id = (event.session_id or "").strip()
    if not session_id:
        logger.warning("fulfill_credits.drop reason=missing_session_id")
        return False

    if not is_fully_paid(event):
        logger.info(
            "fulfill_credits.skip session_id=%s payment_status=%s status=%s",
            session_id,
            event.payment_status,
            event.status,
        )
        return False

    contractor_id = event.resolved_contractor_id()
    pack = get_lead_pack(event.pack_id)
    if not contractor_id or pack is None:
        logger.warning(
            "fulfill_credits.drop session_id=%s contractor_id=%s pack_id=%s",
            session_id,
            contractor_id or None,
            event.pack_id,
        )
        return False

    def _body(tx: Session) -> bool:
        marker = tx.get(Payment, session_id, populate_existing=True)
        if marker is not None and marker.type == LEAD_PACK_PAYMENT_TYPE and marker.status == "success":
            return False

        if marker is None:
            marker = Payment(session_id=session_id, type=LEAD_PACK_PAYMENT_TYPE, status="success")
            tx.add(marker)
        marker.type = LEAD_PACK_PAYMENT_TYPE
        marker.status = "success"
        marker.contractor_id = contractor_id
        marker.pack_id = pack.id
        marker.credit_type = pack.credit_type.value
        marker.leads_granted = pack.leads
        marker.amount_cents = event.amount_total
        marker.currency = (event.currency or "usd").lower()

        apply_delta(tx, contractor_id, pack.credit_type, pack.leads)
        return True

    granted = run_transaction(db, _body, name="fulfill_credits")
    if granted:
        logger.info(
            "fulfill_credits.success session_id=%s contractor_id=%s pack_id=%s leads=%s",
            session_id,
            contractor_id,
            pack.id,
            pack.leads,
        )
    else:
        logger.info("fulfill_credits.duplicate session_id=%s", session_id)
    return granted


def is_admin(db: Session, uid: str, email: str | None = None) -> bool:
    uid = str(uid or "").strip()
    if not uid:
        return False
    if db.get(Admin, uid) is not None:
        return True
    normalized = str(email or "").strip().lower()
    return bool(normalized) and normalized in (settings.admin_emails or set())


def _coerce_delta(delta: Any) -> int:
    if isinstance(delta, bool) or delta is None:
        raise InvalidArgument("delta must be a non-zero integer")
    if isinstance(delta, float):
        if not delta.is_integer():
            raise InvalidArgument("delta must be a non-zero integer")
        delta = int(delta)
    if not isinstance(delta, int) or delta == 0:
        raise InvalidArgument("delta must be a non-zero integer")
    if abs(delta) > MAX_ADMIN_DELTA:
        raise InvalidArgument("delta out of range")
    return delta


def adjust_credits(
    db: Session,
    *,
    admin_id: str | None,
    target_uid: str | None,
    delta: Any,
    pool: CreditPool = CreditPool.NON_EXCLUSIVE,
    admin_email: str | None = None,
) -> dict:
    admin_id = str(admin_id or "").strip()
    target_uid = str(target_uid or "").strip()
    if not admin_id:
        raise Unauthenticated("Sign in required")
    if not target_uid:
        raise InvalidArgument("targetUid required")
    n = _coerce_delta(delta)

    if not is_admin(db, admin_id, admin_email):
        raise PermissionDenied("Admin privileges required")
    target = db.get(Profile, target_uid)
    if target is None or str(target.role or "").strip().lower() != "contractor":
        raise PermissionDenied("Contractor account required")

    def _body(tx: Session) -> int:
        acct = apply_delta(tx, target_uid, pool, n)
        tx.add(
            AdminAction(
                type="grantLeadCredits",
                admin_id=admin_id,
                target_uid=target_uid,
                pool=pool.value,
                delta=n,
            )
        )
        return pool_balance(acct, pool)

    credits = run_transaction(db, _body, name="adjust_credits")
    logger.info(
        "adjust_credits.success admin_id=%s target_uid=%s pool=%s delta=%s credits=%s",
        admin_id,
        target_uid,
        pool.value,
        n,
        credits,
    )
    return {"ok": True, "credits": credits}
