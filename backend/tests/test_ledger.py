import sqlite3
import unittest
from unittest import mock

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import FailedPrecondition, Internal, InvalidArgument, NotFound, TransientStoreError
from app.models.payment import Payment
from app.services.ledger import CreditPool, IdempotencyKey, apply_delta, get_account, is_conflict, run_transaction

from ledger_support import LedgerTestCase


class TestIdempotencyKey(unittest.TestCase):
    def test_deterministic(self):
        a = IdempotencyKey.for_unlock("job1", "c1", False)
        b = IdempotencyKey.for_unlock("job1", "c1", False)
        self.assertEqual(a.value, b.value)
        self.assertEqual(len(a.value), 64)
        self.assertEqual(str(a), a.value)

    def test_mode_is_part_of_the_key(self):
        ne = IdempotencyKey.for_unlock("job1", "c1", False)
        ex = IdempotencyKey.for_unlock("job1", "c1", True)
        self.assertEqual(ne.mode, "ne")
        self.assertEqual(ex.mode, "ex")
        self.assertNotEqual(ne.value, ex.value)

    def test_no_concatenation_collisions(self):
        a = IdempotencyKey.for_unlock("job_1", "c", False)
        b = IdempotencyKey.for_unlock("job", "1_c", False)
        self.assertNotEqual(a.value, b.value)


class TestCreditPool(unittest.TestCase):
    def test_normalize(self):
        self.assertEqual(CreditPool.normalize("exclusive"), CreditPool.EXCLUSIVE)
        self.assertEqual(CreditPool.normalize(" EX "), CreditPool.EXCLUSIVE)
        self.assertEqual(CreditPool.normalize("non_exclusive"), CreditPool.NON_EXCLUSIVE)
        self.assertEqual(CreditPool.normalize(None), CreditPool.NON_EXCLUSIVE)

    def test_for_unlock(self):
        self.assertEqual(CreditPool.for_unlock(True), CreditPool.EXCLUSIVE)
        self.assertEqual(CreditPool.for_unlock(False), CreditPool.NON_EXCLUSIVE)


class TestConflictDetection(unittest.TestCase):
    def test_conflicts(self):
        self.assertTrue(is_conflict(StaleDataError("stale")))
        self.assertTrue(is_conflict(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))))
        self.assertTrue(is_conflict(OperationalError("UPDATE", {}, sqlite3.OperationalError("database is locked"))))

    def test_non_conflicts(self):
        self.assertFalse(is_conflict(ValueError("boom")))
        self.assertFalse(is_conflict(OperationalError("SELECT", {}, sqlite3.OperationalError("no such table: x"))))

    def test_only_duplicate_keys_are_integrity_conflicts(self):
        self.assertTrue(is_conflict(IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed: payments.session_id"))))
        self.assertTrue(is_conflict(IntegrityError("INSERT", {}, Exception("duplicate key value violates unique constraint"))))
        self.assertFalse(is_conflict(IntegrityError("INSERT", {}, sqlite3.IntegrityError("NOT NULL constraint failed: payments.type"))))
        self.assertFalse(is_conflict(IntegrityError("INSERT", {}, sqlite3.IntegrityError("FOREIGN KEY constraint failed"))))


class TestApplyDelta(LedgerTestCase):
    def test_first_grant_creates_account_and_syncs_alias(self):
        self.grant("c1", non_exclusive=3)
        self.assertEqual(self.balance("c1"), (3, 0, 3))

    def test_exclusive_pool_leaves_alias_alone(self):
        self.grant("c1", non_exclusive=2, exclusive=4)
        self.assertEqual(self.balance("c1"), (2, 4, 2))

    def test_both_pools_of_a_new_account_in_one_transaction(self):
        def _body(tx):
            apply_delta(tx, "new", CreditPool.NON_EXCLUSIVE, 1)
            apply_delta(tx, "new", CreditPool.EXCLUSIVE, 1)
            return get_account(tx, "new")

        acct = run_transaction(self.db, _body, max_attempts=1)
        self.assertEqual(acct.user_id, "new")
        self.assertEqual(self.balance("new"), (1, 1, 1))

    def test_repeated_deltas_on_a_new_account_accumulate(self):
        def _body(tx):
            for _ in range(3):
                apply_delta(tx, "new", CreditPool.EXCLUSIVE, 2)

        run_transaction(self.db, _body, max_attempts=1)
        self.assertEqual(self.balance("new"), (0, 6, 0))

    def test_negative_result_is_rejected(self):
        self.grant("c1", non_exclusive=1)
        with self.assertRaises(FailedPrecondition) as ctx:
            run_transaction(self.db, lambda tx: apply_delta(tx, "c1", CreditPool.NON_EXCLUSIVE, -2))
        self.assertEqual(ctx.exception.reason, "insufficient_credits")
        self.assertEqual(self.balance("c1"), (1, 0, 1))

    def test_delta_must_be_int(self):
        with self.assertRaises(InvalidArgument):
            run_transaction(self.db, lambda tx: apply_delta(tx, "c1", CreditPool.NON_EXCLUSIVE, True))
        with self.assertRaises(InvalidArgument):
            run_transaction(self.db, lambda tx: apply_delta(tx, "c1", CreditPool.NON_EXCLUSIVE, 1.5))


class TestRunTransaction(LedgerTestCase):
    def test_retries_conflicts_then_succeeds(self):
        calls = []

        def _body(tx):
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("stale")
            return "done"

        self.assertEqual(run_transaction(self.db, _body, max_attempts=5, backoff_ms=0), "done")
        self.assertEqual(len(calls), 3)

    def test_exhausted_retries_raise_transient_error(self):
        calls = []

        def _body(tx):
            calls.append(1)
            raise OperationalError("UPDATE", {}, sqlite3.OperationalError("database is locked"))

        with self.assertRaises(TransientStoreError) as ctx:
            run_transaction(self.db, _body, max_attempts=3, backoff_ms=0)
        self.assertEqual(len(calls), 3)
        self.assertEqual(ctx.exception.code, "aborted")

    def test_service_errors_are_not_retried(self):
        calls = []

        def _body(tx):
            calls.append(1)
            raise NotFound("Job not found")

        with self.assertRaises(NotFound):
            run_transaction(self.db, _body, max_attempts=5, backoff_ms=0)
        self.assertEqual(len(calls), 1)

    def test_other_errors_propagate(self):
        def _body(tx):
            raise ValueError("boom")

        with self.assertRaises(ValueError):
            run_transaction(self.db, _body, backoff_ms=0)

    def test_constraint_violations_are_not_retried(self):
        calls = []

        def _body(tx):
            calls.append(1)
            tx.add(Payment(session_id="cs_1", type=None, status="success"))
            tx.flush()

        with self.assertRaises(Internal):
            run_transaction(self.db, _body, max_attempts=5, backoff_ms=0)
        self.assertEqual(len(calls), 1)
        self.assertIsNone(self.db.get(Payment, "cs_1"))

    def test_failed_body_leaves_no_partial_write(self):
        def _body(tx):
            apply_delta(tx, "c1", CreditPool.NON_EXCLUSIVE, 5)
            raise FailedPrecondition("nope")

        with self.assertRaises(FailedPrecondition):
            run_transaction(self.db, _body)
        self.assertEqual(self.balance("c1"), (0, 0, 0))

    def test_backoff_sleeps_between_attempts(self):
        calls = []

        def _body(tx):
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("stale")
            return True

        with mock.patch("app.services.ledger.time.sleep") as sleep:
            run_transaction(self.db, _body, max_attempts=2, backoff_ms=10)
        sleep.assert_called_once()


if __name__ == "__main__":
    unittest.main()
