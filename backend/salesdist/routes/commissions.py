# Overview: Flask API routes for commissions; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..services import commission_service
from ..validation import coerce_int
from .responses import error_response, json_body


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


@commissions_bp.get("")
def list_commissions_route():
    try:
        commissions = commission_service.list_commissions(
            sales_id=request.args.get("sales_id", type=int),
            status=request.args.get("status") or None,
        )
        return jsonify({"items": [c.to_dict() for c in commissions], "count": len(commissions)}), 200

    except Exception as e:
        return error_response(e, "Failed to list commissions")


@commissions_bp.post("")
def record_commission_route():
    """
    Request body:
    {
        "transaction_id": int,
        "percentage": num (optional, defaults to COMMISSION_PERCENTAGE),
        "notes": str (optional)
    }
    """
    try:
        data = json_body()
        commission = commission_service.record_for_transaction(
            coerce_int(data["transaction_id"], "transaction_id"),
            percentage=data.get("percentage"),
            notes=data.get("notes"),
        )
        return jsonify({"commission": commission.to_dict()}), 201

    except Exception as e:
        return error_response(e, "Failed to record commission")


@commissions_bp.post("/<int:commission_id>/approve")
def approve_commission_route(commission_id: int):
    try:
        commission = commission_service.approve_commission(commission_id)
        return jsonify({"commission": commission.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to approve commission")


@commissions_bp.post("/<int:commission_id>/pay")
def pay_commission_route(commission_id: int):
    try:
        commission = commission_service.mark_paid(commission_id)
        return jsonify({"commission": commission.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to mark commission paid")
