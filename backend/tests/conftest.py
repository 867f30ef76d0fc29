"""
Pytest fixtures for salesdist backend tests.

Provides an in-memory database, a test client and small branch/product
factories.
"""

import pytest

from salesdist import create_app
from salesdist.extensions import db
from salesdist.models import Branch, Product
from salesdist.services import stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(code="JKT", name="Jakarta")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(code="BDG", name="Bandung")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(code="P-001", name="Mineral Water", price=100000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def stocked(branch, product):
    """100 units of `product` at `branch`."""
    stock_service.add_stock(product.id, branch.id, 100, notes="Seed stock")
    return {"branch_id": branch.id, "product_id": product.id}
