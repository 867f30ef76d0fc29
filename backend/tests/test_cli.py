from salesdist.extensions import db
from salesdist.models import StockMovement
from salesdist.services import stock_service


def test_catalog_and_low_stock_commands(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["catalog", "add-branch", "--code", "SBY", "--name", "Surabaya"])
    assert result.exit_code == 0, result.output
    assert "Branch created" in result.output

    result = runner.invoke(args=["catalog", "add-product", "--code", "P-9", "--name", "Tea", "--price", "4500"])
    assert result.exit_code == 0, result.output

    duplicate = runner.invoke(args=["catalog", "add-branch", "--code", "SBY", "--name", "Again"])
    assert duplicate.exit_code != 0

    result = runner.invoke(args=["stock", "low"])
    assert "No stock at or below minimum." in result.output


def test_reconcile_command_reports_imbalance(app, stocked):
    runner = app.test_cli_runner()
    args = ["stock", "reconcile", "--product-id", str(stocked["product_id"]), "--branch-id", str(stocked["branch_id"])]

    balanced = runner.invoke(args=args)
    assert balanced.exit_code == 0, balanced.output
    assert "PASS" in balanced.output

    # A movement written outside the ledger breaks the balance.
    db.session.add(StockMovement(
        reference_number="STK-20260101-ABCDEF",
        product_id=stocked["product_id"],
        to_branch_id=stocked["branch_id"],
        type="in",
        quantity=3,
    ))
    db.session.commit()

    unbalanced = runner.invoke(args=args)
    assert unbalanced.exit_code == 1
    assert "difference=-3" in unbalanced.output
    assert stock_service.reconcile(stocked["product_id"], stocked["branch_id"])["balanced"] is False


def test_refs_commands(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["refs", "next", "--prefix", "TRX", "--date", "2026-01-15"])
    second = runner.invoke(args=["refs", "next", "--prefix", "TRX", "--date", "2026-01-15"])
    assert first.output.strip() == "TRX-20260115-0001"
    assert second.output.strip() == "TRX-20260115-0002"

    parsed = runner.invoke(args=["refs", "parse", "VST-20260115-0007"])
    assert parsed.output.strip() == "prefix=VST date=2026-01-15 suffix=0007"

    bad = runner.invoke(args=["refs", "parse", "nonsense"])
    assert bad.exit_code != 0


def test_refs_next_rejects_malformed_date(app, db_session):
    result = app.test_cli_runner().invoke(args=["refs", "next", "--prefix", "VST", "--date", "2026-13-01"])
    assert result.exit_code != 0
    assert "Invalid date" in result.output
