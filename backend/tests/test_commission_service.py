import unittest
from decimal import Decimal

from salesdist.errors import BusinessError, DuplicateError, NotFoundError, ValidationError
from salesdist.services import commission_service, sales_transaction_service

from support import ServiceTestCase


class CommissionTests(ServiceTestCase):
    def setUp(self):
        super().setUp()
        self.seed(self.product, self.branch, 50)

    def _sale(self, quantity=2, price=100000, discount=10000):
        request = self.transaction_request(
            [{"product_id": self.product.id, "quantity": quantity, "price": price}],
            discount=discount,
        )
        return sales_transaction_service.create(request)

    def test_calculate_commission_rounds_half_up_to_whole_units(self):
        self.assertEqual(commission_service.calculate_commission(240000, 2), Decimal("4800.00"))
        # 12345 * 2% = 246.90
        self.assertEqual(commission_service.calculate_commission(12345, "2.00"), Decimal("247.00"))
        # 125 * 2% = 2.50
        self.assertEqual(commission_service.calculate_commission(125, 2), Decimal("3.00"))
        with self.assertRaises(ValidationError):
            commission_service.calculate_commission(100, 101)

    def test_commission_requires_approved_transaction(self):
        txn = self._sale()
        with self.assertRaises(BusinessError):
            commission_service.record_for_transaction(txn.id)
        with self.assertRaises(NotFoundError):
            commission_service.record_for_transaction(9999)

    def test_record_uses_default_percentage_once_per_transaction(self):
        txn = self._sale()
        sales_transaction_service.approve(txn.id, approver_user_id=1)

        commission = commission_service.record_for_transaction(txn.id)

        self.assertEqual(commission.sales_id, 7)
        self.assertEqual(commission.transaction_amount, Decimal("190000.00"))
        self.assertEqual(commission.commission_percentage, Decimal("2.00"))
        self.assertEqual(commission.commission_amount, Decimal("3800.00"))
        self.assertEqual(commission.status, "pending")

        with self.assertRaises(DuplicateError):
            commission_service.record_for_transaction(txn.id, percentage=5)

    def test_commission_payout_flow(self):
        txn = self._sale()
        sales_transaction_service.approve(txn.id)
        commission = commission_service.record_for_transaction(txn.id, percentage="3.5")

        approved = commission_service.approve_commission(commission.id)
        self.assertEqual(approved.status, "approved")

        paid = commission_service.mark_paid(commission.id)
        self.assertEqual(paid.status, "paid")
        self.assertIsNotNone(paid.paid_at)

        with self.assertRaises(BusinessError):
            commission_service.mark_paid(commission.id)
        with self.assertRaises(BusinessError):
            commission_service.approve_commission(commission.id)

        self.assertEqual(commission_service.get_by_id(commission.id).status, "paid")
        with self.assertRaises(NotFoundError):
            commission_service.get_by_id(9999)

        self.assertEqual([c.id for c in commission_service.list_commissions(sales_id=7, status="paid")], [commission.id])
        self.assertEqual(commission_service.list_commissions(status="pending"), [])


if __name__ == "__main__":
    unittest.main()
