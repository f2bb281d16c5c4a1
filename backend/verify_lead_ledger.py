from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.core.errors import FailedPrecondition, InvalidArgument
from app.models.admin_action import AdminAction
from app.models.lead import Lead, LeadState
from app.models.lead_unlock import LeadUnlock
from app.models.profile import Admin, Profile
from app.schemas.billing import PaymentCompletionEvent
from app.services.credits_engine import adjust_credits, fulfill_credits
from app.services.lead_unlock import unlock_lead
from app.services.ledger import CreditPool, apply_delta, get_account, run_transaction


def _seed_balance(db, uid: str, non_exclusive: int, exclusive: int) -> None:
    def _body(tx):
        if non_exclusive:
            apply_delta(tx, uid, CreditPool.NON_EXCLUSIVE, non_exclusive)
        if exclusive:
            apply_delta(tx, uid, CreditPool.EXCLUSIVE, exclusive)

    run_transaction(db, _body, name="seed")


def _balance(db, uid: str) -> tuple[int, int]:
    acct = get_account(db, uid)
    return (int(acct.non_exclusive_credits or 0), int(acct.exclusive_credits or 0)) if acct else (0, 0)


def main() -> None:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        db.add_all(
            [
                Profile(id="contractor-a", email="a@example.com", role="contractor"),
                Profile(id="contractor-b", email="b@example.com", role="contractor"),
                Profile(id="admin-1", email="ops@example.com", role="customer"),
                Admin(user_id="admin-1", granted_by="verify"),
                Lead(job_id="job1", title="Kitchen remodel", state=LeadState.OPEN),
                Lead(job_id="job2", title="Roof repair", state=LeadState.OPEN),
            ]
        )
        db.commit()

        # Non-exclusive buyer blocks another contractor's exclusive unlock.
        _seed_balance(db, "contractor-a", 2, 0)
        _seed_balance(db, "contractor-b", 0, 1)
        res = unlock_lead(db, uid="contractor-a", job_id="job1", exclusive=False)
        assert res.credits == 1, res
        assert _balance(db, "contractor-a") == (1, 0)
        lead = db.get(Lead, "job1", populate_existing=True)
        assert lead.buyer_ids == {"contractor-a"}, lead.buyer_ids
        assert lead.state == LeadState.SHARED
        try:
            unlock_lead(db, uid="contractor-b", job_id="job1", exclusive=True)
            raise AssertionError("expected FailedPrecondition")
        except FailedPrecondition as e:
            assert e.reason == "exclusive_conflict", e.reason
        assert _balance(db, "contractor-b") == (0, 1)

        # Exclusive unlock replays without a second debit.
        res = unlock_lead(db, uid="contractor-b", job_id="job2", exclusive=True)
        assert res.credits == 0, res
        res2 = unlock_lead(db, uid="contractor-b", job_id="job2", exclusive=True)
        assert res2.replayed and res2.credits == 0, res2
        assert _balance(db, "contractor-b") == (0, 0)
        lead2 = db.get(Lead, "job2", populate_existing=True)
        assert lead2.exclusive_owner == "contractor-b"
        assert db.query(LeadUnlock).filter(LeadUnlock.job_id == "job2").count() == 1

        # The same completed payment delivered twice grants one pack.
        event = PaymentCompletionEvent(
            session_id="cs_test_ex10",
            payment_type="lead_pack",
            contractor_id="contractor-a",
            pack_id="ex_10",
            payment_status="paid",
            status="complete",
            amount_total=72000,
            currency="usd",
        )
        assert fulfill_credits(db, event) is True
        assert fulfill_credits(db, event) is False
        assert _balance(db, "contractor-a") == (1, 10)

        # Admin adjustments are bounded and audited.
        try:
            adjust_credits(db, admin_id="admin-1", target_uid="contractor-a", delta=5000)
            raise AssertionError("expected InvalidArgument")
        except InvalidArgument:
            pass
        out = adjust_credits(db, admin_id="admin-1", target_uid="contractor-a", delta=3)
        assert out == {"ok": True, "credits": 4}, out
        assert db.query(AdminAction).count() == 1
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
