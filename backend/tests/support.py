"""Shared base class for the service test suites."""

import unittest

from salesdist import create_app
from salesdist.extensions import db
from salesdist.models import Branch, Product
from salesdist.services import stock_service
from salesdist.validation import TransactionRequest


class ServiceTestCase(unittest.TestCase):
    """In-memory database per test class, emptied before every test."""

    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "DB_RETRY_BACKOFF": 0,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        self.branch = self.make_branch("JKT", "Jakarta")
        self.product = self.make_product("P-001", "Mineral Water", 100000)

    def tearDown(self):
        db.session.rollback()

    def make_branch(self, code, name=None):
        branch = Branch(code=code, name=name or code)
        db.session.add(branch)
        db.session.commit()
        return branch

    def make_product(self, code, name=None, price=0):
        product = Product(code=code, name=name or code, price=price)
        db.session.add(product)
        db.session.commit()
        return product

    def seed(self, product, branch, quantity):
        return stock_service.add_stock(product.id, branch.id, quantity, notes="Seed stock")

    def quantity(self, product, branch):
        return stock_service.get_quantity(product.id, branch.id)

    def transaction_request(self, items, **overrides):
        data = {
            "branch_id": self.branch.id,
            "sales_id": 7,
            "items": items,
        }
        data.update(overrides)
        return TransactionRequest.from_dict(data)
