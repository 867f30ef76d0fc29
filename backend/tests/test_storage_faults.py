"""
Infrastructure-fault handling in the unit-of-work helpers.

Lock errors are retried a bounded number of times and then surface as
StorageUnavailableError with nothing written. Deterministic constraint
failures are not retried.
"""

import unittest
from unittest import mock

from sqlalchemy.exc import IntegrityError, OperationalError

from salesdist.errors import StorageUnavailableError
from salesdist.extensions import db
from salesdist.models import StockMovement
from salesdist.services import stock_service
from salesdist.services.concurrency import atomic, is_retryable, run_with_retry

from support import ServiceTestCase


def _locked():
    return OperationalError("INSERT INTO stock_movements", {}, Exception("database is locked"))


def _integrity(message):
    return IntegrityError("INSERT", {}, Exception(message))


class StorageFaultTests(ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.seed(self.product, self.branch, 20)

    def _movement_count(self):
        return db.session.query(StockMovement).count()

    def test_retry_gives_up_after_the_configured_attempts(self):
        calls = []

        def _op():
            calls.append(1)
            raise _locked()

        with self.assertRaises(StorageUnavailableError):
            run_with_retry(_op, attempts=4)
        self.assertEqual(len(calls), 4)

    def test_transient_lock_is_absorbed(self):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise _locked()
            return "done"

        self.assertEqual(run_with_retry(_op, attempts=3), "done")
        self.assertEqual(len(calls), 3)

    def test_exhausted_retries_write_nothing(self):
        attempts = self.app.config["DB_RETRY_ATTEMPTS"]
        before = self._movement_count()

        with mock.patch.object(stock_service, "_record_movement", side_effect=_locked()) as record:
            with self.assertRaises(StorageUnavailableError):
                stock_service.reduce_stock(self.product.id, self.branch.id, 5)

        self.assertEqual(record.call_count, attempts)
        self.assertEqual(self.quantity(self.product, self.branch), 20)
        self.assertEqual(self._movement_count(), before)

    def test_only_unique_violations_are_retryable(self):
        self.assertTrue(is_retryable(_integrity("UNIQUE constraint failed: stocks.product_id")))
        self.assertTrue(is_retryable(_integrity('duplicate key value violates unique constraint "uq_x"')))
        self.assertFalse(is_retryable(_integrity("CHECK constraint failed: ck_stocks_quantity_non_negative")))
        self.assertFalse(is_retryable(_integrity("NOT NULL constraint failed: stocks.branch_id")))
        self.assertTrue(is_retryable(_locked()))

    def test_check_constraint_failure_is_not_reported_as_storage_outage(self):
        calls = []

        def _op():
            calls.append(1)
            raise _integrity("CHECK constraint failed: ck_sales_transaction_items_quantity_positive")

        with self.assertRaises(IntegrityError):
            atomic(_op)
        self.assertEqual(len(calls), 1)


if __name__ == "__main__":
    unittest.main()
