import unittest
from unittest import mock

from sqlalchemy import event

from app.core.errors import FailedPrecondition, InvalidArgument, PermissionDenied, Unauthenticated
from app.core.settings import settings
from app.models.admin_action import AdminAction
from app.models.payment import Payment
from app.schemas.billing import PaymentCompletionEvent
from app.services.credits_engine import LEAD_PACKS, adjust_credits, fulfill_credits, get_lead_pack, is_admin
from app.services.ledger import CreditPool

from ledger_support import LedgerTestCase


def _event(**overrides):
    fields = {
        "session_id": "cs_test_1",
        "payment_type": "lead_pack",
        "contractor_id": "a",
        "pack_id": "ex_10",
        "payment_status": "paid",
        "status": "complete",
        "amount_total": 72000,
        "currency": "usd",
    }
    fields.update(overrides)
    return PaymentCompletionEvent(**fields)


class TestLeadPackCatalog(unittest.TestCase):
    def test_catalog(self):
        self.assertEqual(sorted(LEAD_PACKS), ["ex_1", "ex_10", "ex_20", "ne_1", "ne_10", "ne_20"])
        pack = get_lead_pack("ex_10")
        self.assertEqual(pack.leads, 10)
        self.assertEqual(pack.credit_type, CreditPool.EXCLUSIVE)
        self.assertEqual(get_lead_pack("ne_20").credit_type, CreditPool.NON_EXCLUSIVE)
        self.assertIsNone(get_lead_pack("gold"))
        self.assertIsNone(get_lead_pack(None))


class TestPaymentCompletionEvent(unittest.TestCase):
    def test_from_checkout_session(self):
        ev = PaymentCompletionEvent.from_checkout_session(
            {
                "id": "cs_1",
                "client_reference_id": "ref-uid",
                "payment_status": "paid",
                "status": "complete",
                "amount_total": "45000",
                "currency": "USD",
                "metadata": {"type": "lead_pack", "packId": "ne_10", "contractorId": " "},
            }
        )
        self.assertEqual(ev.session_id, "cs_1")
        self.assertEqual(ev.payment_type, "lead_pack")
        self.assertEqual(ev.pack_id, "ne_10")
        self.assertIsNone(ev.contractor_id)
        self.assertEqual(ev.resolved_contractor_id(), "ref-uid")
        self.assertEqual(ev.amount_total, 45000)


class TestFulfillCredits(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.add_profile("a")

    def test_same_event_twice_grants_one_pack(self):
        self.assertTrue(fulfill_credits(self.db, _event()))
        self.assertFalse(fulfill_credits(self.db, _event()))
        self.assertEqual(self.balance("a"), (0, 10, 0))
        marker = self.db.get(Payment, "cs_test_1")
        self.assertEqual(marker.status, "success")
        self.assertEqual(marker.leads_granted, 10)
        self.assertEqual(marker.credit_type, "exclusive")

    def test_non_exclusive_pack_updates_alias(self):
        self.assertTrue(fulfill_credits(self.db, _event(pack_id="ne_10")))
        self.assertEqual(self.balance("a"), (10, 0, 10))

    def test_pending_marker_is_completed(self):
        self.db.add(Payment(session_id="cs_test_1", type="lead_pack", status="pending", contractor_id="a"))
        self.db.commit()
        self.assertTrue(fulfill_credits(self.db, _event(pack_id="ne_1")))
        self.assertEqual(self.balance("a"), (1, 0, 1))

    def test_unpaid_events_are_ignored(self):
        self.assertFalse(fulfill_credits(self.db, _event(payment_status="unpaid")))
        self.assertFalse(fulfill_credits(self.db, _event(status="open")))
        self.assertEqual(self.balance("a"), (0, 0, 0))
        self.assertIsNone(self.db.get(Payment, "cs_test_1"))

    def test_no_payment_required_counts_as_paid(self):
        self.assertTrue(fulfill_credits(self.db, _event(payment_status="no_payment_required")))

    def test_malformed_events_are_dropped(self):
        self.assertFalse(fulfill_credits(self.db, _event(pack_id="gold")))
        self.assertFalse(fulfill_credits(self.db, _event(contractor_id=None)))
        self.assertFalse(fulfill_credits(self.db, _event(session_id=None)))
        self.assertEqual(self.db.query(Payment).count(), 0)

    def test_client_reference_id_fallback(self):
        ev = _event(contractor_id=None, client_reference_id="a")
        self.assertTrue(fulfill_credits(self.db, ev))
        self.assertEqual(self.balance("a"), (0, 10, 0))

    def test_concurrent_delivery_grants_once(self):
        session_a = self.new_session()
        session_b = self.new_session()
        fired = []

        def _deliver_first(session, flush_context, instances):
            if fired:
                return
            fired.append(True)
            self.assertTrue(fulfill_credits(session_a, _event()))

        event.listen(session_b, "before_flush", _deliver_first)
        self.assertFalse(fulfill_credits(session_b, _event()))
        self.assertEqual(self.balance("a"), (0, 10, 0))
        self.assertEqual(self.db.query(Payment).count(), 1)


class TestAdjustCredits(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.add_admin("admin")
        self.add_profile("a")

    def test_grant_is_audited(self):
        out = adjust_credits(self.db, admin_id="admin", target_uid="a", delta=5)
        self.assertEqual(out, {"ok": True, "credits": 5})
        self.assertEqual(self.balance("a"), (5, 0, 5))
        rows = self.db.query(AdminAction).all()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].type, "grantLeadCredits")
        self.assertEqual(rows[0].admin_id, "admin")
        self.assertEqual(rows[0].target_uid, "a")
        self.assertEqual(rows[0].delta, 5)
        self.assertEqual(rows[0].pool, "non_exclusive")

    def test_exclusive_pool(self):
        out = adjust_credits(self.db, admin_id="admin", target_uid="a", delta=2, pool=CreditPool.EXCLUSIVE)
        self.assertEqual(out["credits"], 2)
        self.assertEqual(self.balance("a"), (0, 2, 0))

    def test_out_of_range_delta(self):
        for delta in (5000, -1001):
            with self.assertRaises(InvalidArgument):
                adjust_credits(self.db, admin_id="admin", target_uid="a", delta=delta)
        adjust_credits(self.db, admin_id="admin", target_uid="a", delta=1000)
        self.assertEqual(self.balance("a"), (1000, 0, 1000))

    def test_bad_deltas(self):
        for delta in (0, None, True, 1.5, "3"):
            with self.assertRaises(InvalidArgument):
                adjust_credits(self.db, admin_id="admin", target_uid="a", delta=delta)
        self.assertEqual(self.db.query(AdminAction).count(), 0)

    def test_integral_float_is_accepted(self):
        self.assertEqual(adjust_credits(self.db, admin_id="admin", target_uid="a", delta=3.0)["credits"], 3)

    def test_missing_target(self):
        with self.assertRaises(InvalidArgument):
            adjust_credits(self.db, admin_id="admin", target_uid="", delta=1)

    def test_unauthenticated(self):
        with self.assertRaises(Unauthenticated):
            adjust_credits(self.db, admin_id=None, target_uid="a", delta=1)

    def test_non_admin_caller(self):
        with self.assertRaises(PermissionDenied):
            adjust_credits(self.db, admin_id="a", target_uid="a", delta=1)
        self.assertEqual(self.balance("a"), (0, 0, 0))

    def test_target_must_be_contractor(self):
        self.add_profile("cust", role="customer")
        with self.assertRaises(PermissionDenied):
            adjust_credits(self.db, admin_id="admin", target_uid="cust", delta=1)
        with self.assertRaises(PermissionDenied):
            adjust_credits(self.db, admin_id="admin", target_uid="ghost", delta=1)

    def test_debit_below_zero_is_rejected_without_audit(self):
        self.grant("a", non_exclusive=1)
        with self.assertRaises(FailedPrecondition):
            adjust_credits(self.db, admin_id="admin", target_uid="a", delta=-2)
        self.assertEqual(self.balance("a"), (1, 0, 1))
        self.assertEqual(self.db.query(AdminAction).count(), 0)

    def test_admin_emails_setting(self):
        self.add_profile("ops", role="customer", email="ops@example.com")
        with mock.patch.object(settings, "admin_emails", {"ops@example.com"}):
            self.assertTrue(is_admin(self.db, "ops", "OPS@example.com"))
            out = adjust_credits(self.db, admin_id="ops", admin_email="ops@example.com", target_uid="a", delta=1)
        self.assertEqual(out["credits"], 1)
        self.assertFalse(is_admin(self.db, "ops", "ops@example.com"))


if __name__ == "__main__":
    unittest.main()
