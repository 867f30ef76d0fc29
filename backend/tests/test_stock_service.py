import random
import unittest

from salesdist.errors import (
    DuplicateError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from salesdist.extensions import db
from salesdist.models import Stock, StockMovement
from salesdist.services import stock_service

from support import ServiceTestCase


class StockLedgerTests(ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.other_branch = self.make_branch("BDG", "Bandung")

    def _movements(self, **filters):
        return db.session.query(StockMovement).filter_by(**filters).all()

    def test_get_or_create_is_idempotent(self):
        first = stock_service.get_or_create(self.product.id, self.branch.id)
        second = stock_service.get_or_create(self.product.id, self.branch.id)

        self.assertEqual(first.id, second.id)
        self.assertEqual(second.quantity, 0)
        self.assertEqual(second.minimum_stock, 0)
        self.assertEqual(db.session.query(Stock).count(), 1)
        self.assertEqual(db.session.query(StockMovement).count(), 0)

    def test_add_stock_increments_and_records_inbound_movement(self):
        stock = stock_service.add_stock(self.product.id, self.branch.id, 25, notes="Delivery", actor_user_id=3)

        self.assertEqual(stock.quantity, 25)
        movements = self._movements(product_id=self.product.id)
        self.assertEqual(len(movements), 1)
        movement = movements[0]
        self.assertEqual(movement.type, "in")
        self.assertEqual(movement.to_branch_id, self.branch.id)
        self.assertIsNone(movement.from_branch_id)
        self.assertEqual(movement.quantity, 25)
        self.assertEqual(movement.created_by, 3)
        self.assertRegex(movement.reference_number, r"^STK-\d{8}-[0-9A-F]{6}$")

    def test_add_stock_rejects_non_positive_quantity(self):
        for bad in (0, -5, "1.5", 2.5, True):
            with self.assertRaises(ValidationError):
                stock_service.add_stock(self.product.id, self.branch.id, bad)
        self.assertEqual(db.session.query(Stock).count(), 0)

    def test_add_stock_rejects_unknown_movement_type(self):
        with self.assertRaises(ValidationError):
            stock_service.add_stock(self.product.id, self.branch.id, 5, type="gift")

    def test_unknown_product_or_branch_is_not_found(self):
        with self.assertRaises(NotFoundError):
            stock_service.add_stock(9999, self.branch.id, 5)
        with self.assertRaises(NotFoundError):
            stock_service.reduce_stock(self.product.id, 9999, 5)

    def test_reduce_stock_records_outbound_movement(self):
        self.seed(self.product, self.branch, 10)

        stock = stock_service.reduce_stock(self.product.id, self.branch.id, 4, type="out")

        self.assertEqual(stock.quantity, 6)
        outbound = self._movements(from_branch_id=self.branch.id)
        self.assertEqual(len(outbound), 1)
        self.assertEqual(outbound[0].quantity, 4)
        self.assertIsNone(outbound[0].to_branch_id)

    def test_insufficient_stock_leaves_everything_unchanged(self):
        self.seed(self.product, self.branch, 100)
        before = db.session.query(StockMovement).count()

        with self.assertRaises(InsufficientStockError) as ctx:
            stock_service.reduce_stock(self.product.id, self.branch.id, 200)

        err = ctx.exception
        self.assertEqual(err.product_id, self.product.id)
        self.assertEqual(err.product_name, "Mineral Water")
        self.assertEqual(err.requested, 200)
        self.assertEqual(err.available, 100)
        self.assertIn("Requested: 200, Available: 100", err.message)
        self.assertEqual(self.quantity(self.product, self.branch), 100)
        self.assertEqual(db.session.query(StockMovement).count(), before)

    def test_reduce_on_missing_row_reports_zero_available(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            stock_service.reduce_stock(self.product.id, self.branch.id, 1)
        self.assertEqual(ctx.exception.available, 0)
        self.assertEqual(db.session.query(Stock).count(), 0)

    def test_transfer_conserves_total_in_one_movement(self):
        self.seed(self.product, self.branch, 30)

        result = stock_service.transfer_stock(
            self.product.id, self.branch.id, self.other_branch.id, 12, notes="Rebalance"
        )

        self.assertEqual(result["from_stock"].quantity, 18)
        self.assertEqual(result["to_stock"].quantity, 12)
        transfers = self._movements(type="transfer")
        self.assertEqual(len(transfers), 1)
        self.assertEqual(transfers[0].from_branch_id, self.branch.id)
        self.assertEqual(transfers[0].to_branch_id, self.other_branch.id)
        self.assertEqual(
            self.quantity(self.product, self.branch) + self.quantity(self.product, self.other_branch),
            30,
        )

    def test_transfer_with_insufficient_source_changes_nothing(self):
        self.seed(self.product, self.branch, 5)

        with self.assertRaises(InsufficientStockError):
            stock_service.transfer_stock(self.product.id, self.branch.id, self.other_branch.id, 6)

        self.assertEqual(self.quantity(self.product, self.branch), 5)
        self.assertEqual(self.quantity(self.product, self.other_branch), 0)
        self.assertEqual(self._movements(type="transfer"), [])

    def test_transfer_to_same_branch_is_rejected(self):
        self.seed(self.product, self.branch, 5)
        with self.assertRaises(ValidationError):
            stock_service.transfer_stock(self.product.id, self.branch.id, self.branch.id, 1)

    def test_stock_opname_adjusts_only_differing_lines(self):
        water = self.product
        rice = self.make_product("P-002", "Rice 5kg")
        oil = self.make_product("P-003", "Cooking Oil")
        self.seed(water, self.branch, 50)
        self.seed(rice, self.branch, 20)
        self.seed(oil, self.branch, 8)

        adjustments = stock_service.stock_opname(self.branch.id, [
            {"product_id": water.id, "physical_quantity": 47},
            {"product_id": rice.id, "physical_quantity": 20},
            {"product_id": oil.id, "physical_quantity": 11},
        ])

        self.assertEqual([a["product_id"] for a in adjustments], [water.id, oil.id])
        shrink, surplus = adjustments
        self.assertEqual(shrink["system_quantity"], 50)
        self.assertEqual(shrink["difference"], -3)
        self.assertEqual(surplus["difference"], 3)
        self.assertEqual(shrink["opname_reference"], surplus["opname_reference"])
        self.assertRegex(shrink["opname_reference"], r"^MOV-\d{8}-\d{4}$")

        shrink_mv = db.session.query(StockMovement).filter_by(reference_number=shrink["reference_number"]).one()
        self.assertEqual(shrink_mv.type, "adjustment")
        self.assertEqual(shrink_mv.quantity, 3)
        self.assertEqual(shrink_mv.from_branch_id, self.branch.id)
        self.assertIsNone(shrink_mv.to_branch_id)
        self.assertIn("System (50) vs Physical (47)", shrink_mv.notes)

        surplus_mv = db.session.query(StockMovement).filter_by(reference_number=surplus["reference_number"]).one()
        self.assertEqual(surplus_mv.to_branch_id, self.branch.id)
        self.assertIsNone(surplus_mv.from_branch_id)

        self.assertEqual(self.quantity(water, self.branch), 47)
        self.assertEqual(self.quantity(rice, self.branch), 20)
        self.assertEqual(self.quantity(oil, self.branch), 11)

    def test_stock_opname_matching_count_is_a_no_op(self):
        self.seed(self.product, self.branch, 40)
        before = db.session.query(StockMovement).count()

        adjustments = stock_service.stock_opname(
            self.branch.id, [{"product_id": self.product.id, "physical_quantity": 40}]
        )

        self.assertEqual(adjustments, [])
        self.assertEqual(db.session.query(StockMovement).count(), before)

    def test_stock_opname_rejects_negative_count_before_writing(self):
        self.seed(self.product, self.branch, 10)
        other = self.make_product("P-002", "Rice 5kg")
        self.seed(other, self.branch, 10)

        with self.assertRaises(ValidationError):
            stock_service.stock_opname(self.branch.id, [
                {"product_id": self.product.id, "physical_quantity": 3},
                {"product_id": other.id, "physical_quantity": -1},
            ])
        self.assertEqual(self.quantity(self.product, self.branch), 10)

    def test_low_stock_alerts_ordered_by_quantity(self):
        rice = self.make_product("P-002", "Rice 5kg")
        oil = self.make_product("P-003", "Cooking Oil")
        stock_service.initialize_stock(self.product.id, self.branch.id, quantity=4, minimum_stock=5)
        stock_service.initialize_stock(rice.id, self.branch.id, quantity=1, minimum_stock=2)
        stock_service.initialize_stock(oil.id, self.branch.id, quantity=50, minimum_stock=5)
        stock_service.initialize_stock(rice.id, self.other_branch.id, quantity=0, minimum_stock=0)

        alerts = stock_service.get_low_stock_alerts()
        self.assertEqual([(s.product_id, s.quantity) for s in alerts], [(rice.id, 0), (rice.id, 1), (self.product.id, 4)])

        scoped = stock_service.get_low_stock_alerts(self.branch.id)
        self.assertEqual([s.product_id for s in scoped], [rice.id, self.product.id])
        self.assertTrue(all(s.is_low for s in scoped))

    def test_initialize_stock_twice_is_duplicate(self):
        stock = stock_service.initialize_stock(self.product.id, self.branch.id, quantity=12, minimum_stock=3)
        self.assertEqual(stock.minimum_stock, 3)
        self.assertEqual(self._movements(to_branch_id=self.branch.id)[0].notes, "Initial stock")

        with self.assertRaises(DuplicateError):
            stock_service.initialize_stock(self.product.id, self.branch.id, quantity=1)

    def test_set_minimum_stock_and_get_stock(self):
        with self.assertRaises(NotFoundError):
            stock_service.get_stock(self.product.id, self.branch.id)

        stock_service.set_minimum_stock(self.product.id, self.branch.id, 8)

        stock = stock_service.get_stock(self.product.id, self.branch.id)
        self.assertEqual((stock.quantity, stock.minimum_stock), (0, 8))
        self.assertTrue(stock.is_low)
        self.assertEqual(stock_service.get_ledger_quantity(self.product.id, self.branch.id), 0)
        with self.assertRaises(ValidationError):
            stock_service.set_minimum_stock(self.product.id, self.branch.id, -1)

    def test_set_quantity_is_audited_as_adjustment(self):
        self.seed(self.product, self.branch, 10)

        stock = stock_service.set_quantity(self.product.id, self.branch.id, 7)

        self.assertEqual(stock.quantity, 7)
        adjustments = self._movements(type="adjustment")
        self.assertEqual(len(adjustments), 1)
        self.assertEqual(adjustments[0].from_branch_id, self.branch.id)
        self.assertEqual(adjustments[0].quantity, 3)

    def test_by_branch_and_by_product_ordering(self):
        rice = self.make_product("P-002", "Rice 5kg")
        self.seed(self.product, self.branch, 30)
        self.seed(rice, self.branch, 5)
        self.seed(self.product, self.other_branch, 60)

        by_branch = stock_service.get_by_branch(self.branch.id)
        self.assertEqual([s.quantity for s in by_branch], [5, 30])

        by_product = stock_service.get_by_product(self.product.id)
        self.assertEqual([s.quantity for s in by_product], [60, 30])

    def test_list_movements_matches_either_side_of_a_transfer(self):
        self.seed(self.product, self.branch, 10)
        stock_service.transfer_stock(self.product.id, self.branch.id, self.other_branch.id, 4)

        at_destination = stock_service.list_movements(branch_id=self.other_branch.id)
        self.assertEqual([m.type for m in at_destination], ["transfer"])
        self.assertEqual(len(stock_service.list_movements(branch_id=self.branch.id)), 2)

    def test_random_operation_sequence_never_goes_negative_and_reconciles(self):
        rng = random.Random(20260115)
        branches = [self.branch, self.other_branch]

        for _ in range(60):
            op = rng.choice(["add", "reduce", "transfer"])
            qty = rng.randint(1, 15)
            src, dst = rng.sample(branches, 2)
            try:
                if op == "add":
                    stock_service.add_stock(self.product.id, src.id, qty)
                elif op == "reduce":
                    stock_service.reduce_stock(self.product.id, src.id, qty)
                else:
                    stock_service.transfer_stock(self.product.id, src.id, dst.id, qty)
            except InsufficientStockError:
                pass

            for b in branches:
                self.assertGreaterEqual(self.quantity(self.product, b), 0)

        for b in branches:
            result = stock_service.reconcile(self.product.id, b.id)
            self.assertTrue(result["balanced"], result)


if __name__ == "__main__":
    unittest.main()
