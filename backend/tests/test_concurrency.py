"""
Threaded concurrency tests against a temporary SQLite file.

Each worker runs in its own app context (own session and connection), so
the database locking path is exercised rather than a shared session.
"""

import os
import tempfile
import threading
import unittest

from salesdist import create_app
from salesdist.errors import BusinessError, InsufficientStockError
from salesdist.extensions import db
from salesdist.models import Branch, Product, StockMovement
from salesdist.services import sales_transaction_service, stock_service, visit_service
from salesdist.validation import TransactionRequest


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLITE_BUSY_TIMEOUT": 15.0,
            "DB_RETRY_ATTEMPTS": 10,
            "DB_RETRY_BACKOFF": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            branch = Branch(code="JKT", name="Jakarta")
            other = Branch(code="BDG", name="Bandung")
            product = Product(code="CONCUR-1", name="Concurrent Product", price=1000)
            db.session.add_all([branch, other, product])
            db.session.commit()
            self.branch_id = branch.id
            self.other_branch_id = other.id
            self.product_id = product.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, targets):
        """Start all targets together; collect (result, error) per worker."""
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(targets))

        def runner(target):
            with self.app.app_context():
                try:
                    barrier.wait()
                    value = target()
                    with lock:
                        results.append(("ok", value))
                except Exception as exc:
                    with lock:
                        results.append(("error", exc))
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=runner, args=(t,)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _quantity(self, branch_id):
        with self.app.app_context():
            return stock_service.get_quantity(self.product_id, branch_id)

    def _request(self, quantity):
        return TransactionRequest.from_dict({
            "branch_id": self.branch_id,
            "sales_id": 1,
            "items": [{"product_id": self.product_id, "quantity": quantity, "price": 1000}],
        })

    def test_racing_creates_cannot_oversell(self):
        with self.app.app_context():
            stock_service.add_stock(self.product_id, self.branch_id, 5)

        results = self._run_workers([
            lambda: sales_transaction_service.create(self._request(5)).id,
            lambda: sales_transaction_service.create(self._request(5)).id,
        ])

        ok = [value for status, value in results if status == "ok"]
        errors = [value for status, value in results if status == "error"]
        self.assertEqual(len(ok), 1, errors)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], InsufficientStockError)
        self.assertEqual(self._quantity(self.branch_id), 0)

    def test_concurrent_reductions_never_go_negative(self):
        with self.app.app_context():
            stock_service.add_stock(self.product_id, self.branch_id, 5)

        results = self._run_workers([
            lambda: stock_service.reduce_stock(self.product_id, self.branch_id, 1).quantity
            for _ in range(10)
        ])

        ok = [value for status, value in results if status == "ok"]
        errors = [value for status, value in results if status == "error"]
        self.assertEqual(len(ok), 5)
        self.assertTrue(all(isinstance(e, InsufficientStockError) for e in errors), errors)
        self.assertEqual(self._quantity(self.branch_id), 0)

        with self.app.app_context():
            outbound = db.session.query(StockMovement).filter_by(from_branch_id=self.branch_id).count()
            self.assertEqual(outbound, 5)

    def test_approve_and_cancel_race_has_one_winner(self):
        with self.app.app_context():
            stock_service.add_stock(self.product_id, self.branch_id, 10)
            txn_id = sales_transaction_service.create(self._request(4)).id

        results = self._run_workers([
            lambda: sales_transaction_service.approve(txn_id, approver_user_id=1).status,
            lambda: sales_transaction_service.cancel(txn_id, reason="race").status,
        ])

        ok = [value for status, value in results if status == "ok"]
        errors = [value for status, value in results if status == "error"]
        self.assertEqual(len(ok), 1, errors)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], BusinessError)

        expected = 10 if ok[0] == "cancelled" else 6
        self.assertEqual(self._quantity(self.branch_id), expected)

    def test_reference_numbers_stay_unique(self):
        results = self._run_workers([
            lambda: visit_service.create({
                "branch_id": self.branch_id,
                "sales_id": 1,
                "customer_name": "Toko Jaya",
            }).visit_number
            for _ in range(8)
        ])

        errors = [value for status, value in results if status == "error"]
        numbers = sorted(value for status, value in results if status == "ok")
        self.assertFalse(errors)
        self.assertEqual(len(numbers), 8)
        self.assertEqual([n[-4:] for n in numbers], [f"{i:04d}" for i in range(1, 9)])

    def test_opposite_transfers_conserve_quantity(self):
        with self.app.app_context():
            stock_service.add_stock(self.product_id, self.branch_id, 20)
            stock_service.add_stock(self.product_id, self.other_branch_id, 20)

        targets = []
        for _ in range(4):
            targets.append(lambda: stock_service.transfer_stock(
                self.product_id, self.branch_id, self.other_branch_id, 3))
            targets.append(lambda: stock_service.transfer_stock(
                self.product_id, self.other_branch_id, self.branch_id, 2))

        results = self._run_workers(targets)

        self.assertFalse([value for status, value in results if status == "error"])
        self.assertEqual(self._quantity(self.branch_id) + self._quantity(self.other_branch_id), 40)
        self.assertEqual(self._quantity(self.branch_id), 16)


if __name__ == "__main__":
    unittest.main()
