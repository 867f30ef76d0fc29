# Overview: Flask API routes for sales transactions; parses input and returns JSON responses.

"""Sales transaction API routes"""

from flask import Blueprint, jsonify, request

from ..services import sales_transaction_service
from ..validation import TransactionRequest
from .responses import actor_id, error_response, flag_arg, json_body


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
def create_transaction_route():
    """
    Create a pending transaction and reduce stock.

    Request body:
    {
        "branch_id": int,
        "sales_id": int,
        "items": [{"product_id": int, "quantity": int, "price": num, "discount": num?}],
        "payment_method": "cash" | "transfer" | "credit" (optional),
        "discount": num (optional),
        "tax": num (optional) | "tax_rate": num (optional),
        "transaction_number": str (optional),
        "customer_name" / "customer_phone" / "customer_address" / "notes": str (optional),
        "latitude" / "longitude": num (optional)
    }
    """
    try:
        payload = TransactionRequest.from_dict(json_body())
        txn = sales_transaction_service.create(payload, actor_user_id=actor_id())
        return jsonify({"transaction": txn.to_dict()}), 201

    except Exception as e:
        return error_response(e, "Failed to create transaction")


@transactions_bp.get("")
def list_transactions_route():
    """
    Query params: branch_id, sales_id, status, start_date, end_date,
    include_deleted, page, per_page
    """
    try:
        result = sales_transaction_service.list_transactions(
            branch_id=request.args.get("branch_id", type=int),
            sales_id=request.args.get("sales_id", type=int),
            status=request.args.get("status") or None,
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            include_deleted=flag_arg("include_deleted"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200

    except Exception as e:
        return error_response(e, "Failed to list transactions")


@transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        txn = sales_transaction_service.get_by_id(
            transaction_id, include_deleted=flag_arg("include_deleted")
        )
        return jsonify({"transaction": txn.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to load transaction")


@transactions_bp.post("/<int:transaction_id>/approve")
def approve_transaction_route(transaction_id: int):
    try:
        txn = sales_transaction_service.approve(transaction_id, approver_user_id=actor_id())
        return jsonify({"transaction": txn.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to approve transaction")


@transactions_bp.post("/<int:transaction_id>/cancel")
def cancel_transaction_route(transaction_id: int):
    """
    Request body (optional):
    {
        "reason": str
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        txn = sales_transaction_service.cancel(
            transaction_id,
            reason=data.get("reason"),
            actor_user_id=actor_id(),
        )
        return jsonify({"transaction": txn.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to cancel transaction")


@transactions_bp.delete("/<int:transaction_id>")
def delete_transaction_route(transaction_id: int):
    try:
        txn = sales_transaction_service.soft_delete(transaction_id, actor_user_id=actor_id())
        return jsonify({"transaction": txn.to_dict(include_items=False)}), 200

    except Exception as e:
        return error_response(e, "Failed to delete transaction")


@transactions_bp.get("/summary/<int:sales_id>")
def sales_summary_route(sales_id: int):
    try:
        summary = sales_transaction_service.get_sales_summary(
            sales_id,
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
        )
        return jsonify({
            "sales_id": summary["sales_id"],
            "total_transactions": summary["total_transactions"],
            "total_sales": str(summary["total_sales"]),
            "average_transaction": str(summary["average_transaction"]),
        }), 200

    except Exception as e:
        return error_response(e, "Failed to build sales summary")


@transactions_bp.get("/sales/<int:sales_id>")
def transactions_by_sales_route(sales_id: int):
    try:
        txns = sales_transaction_service.get_by_sales(
            sales_id,
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            include_deleted=flag_arg("include_deleted"),
        )
        return jsonify({
            "items": [t.to_dict(include_items=False) for t in txns],
            "count": len(txns),
        }), 200

    except Exception as e:
        return error_response(e, "Failed to list transactions")
