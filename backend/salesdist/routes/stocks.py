# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

"""Stock ledger API routes"""

from flask import Blueprint, jsonify, request

from ..services import stock_service
from ..validation import coerce_int
from .responses import actor_id, error_response, json_body


stocks_bp = Blueprint("stocks", __name__, url_prefix="/api/stocks")


@stocks_bp.get("")
def list_stocks_route():
    """
    Stock rows for one branch (lowest first) or one product (highest first).

    Query params:
    - branch_id: int
    - product_id: int
    """
    try:
        branch_id = request.args.get("branch_id", type=int)
        product_id = request.args.get("product_id", type=int)

        if branch_id is None and product_id is None:
            return jsonify({"error": "branch_id or product_id required"}), 400

        if branch_id is not None and product_id is not None:
            stocks = [stock_service.get_stock(product_id, branch_id)]
        elif branch_id is not None:
            stocks = stock_service.get_by_branch(branch_id)
        else:
            stocks = stock_service.get_by_product(product_id)

        return jsonify({"items": [s.to_dict() for s in stocks], "count": len(stocks)}), 200

    except Exception as e:
        return error_response(e, "Failed to list stock")


@stocks_bp.get("/low")
def low_stock_route():
    try:
        stocks = stock_service.get_low_stock_alerts(request.args.get("branch_id", type=int))
        return jsonify({"items": [s.to_dict() for s in stocks], "count": len(stocks)}), 200

    except Exception as e:
        return error_response(e, "Failed to load low stock alerts")


@stocks_bp.get("/movements")
def list_movements_route():
    try:
        movements = stock_service.list_movements(
            product_id=request.args.get("product_id", type=int),
            branch_id=request.args.get("branch_id", type=int),
            movement_type=request.args.get("type") or None,
            limit=max(1, min(request.args.get("limit", 200, type=int), 1000)),
        )
        return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)}), 200

    except Exception as e:
        return error_response(e, "Failed to list stock movements")


@stocks_bp.get("/reconcile")
def reconcile_route():
    try:
        result = stock_service.reconcile(
            coerce_int(request.args.get("product_id"), "product_id"),
            coerce_int(request.args.get("branch_id"), "branch_id"),
        )
        return jsonify(result), 200

    except Exception as e:
        return error_response(e, "Failed to reconcile stock")


@stocks_bp.post("/add")
def add_stock_route():
    """
    Receive stock into a branch.

    Request body:
    {
        "product_id": int,
        "branch_id": int,
        "quantity": int,
        "type": str (optional, default "in"),
        "notes": str (optional)
    }
    """
    try:
        data = json_body()
        stock = stock_service.add_stock(
            product_id=coerce_int(data["product_id"], "product_id"),
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            quantity=data["quantity"],
            type=data.get("type") or "in",
            notes=data.get("notes"),
            actor_user_id=actor_id(),
        )
        return jsonify({"stock": stock.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to add stock")


@stocks_bp.post("/reduce")
def reduce_stock_route():
    try:
        data = json_body()
        stock = stock_service.reduce_stock(
            product_id=coerce_int(data["product_id"], "product_id"),
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            quantity=data["quantity"],
            type=data.get("type") or "out",
            notes=data.get("notes"),
            actor_user_id=actor_id(),
        )
        return jsonify({"stock": stock.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to reduce stock")


@stocks_bp.post("/transfer")
def transfer_stock_route():
    """
    Request body:
    {
        "product_id": int,
        "from_branch_id": int,
        "to_branch_id": int,
        "quantity": int,
        "notes": str (optional)
    }
    """
    try:
        data = json_body()
        result = stock_service.transfer_stock(
            product_id=coerce_int(data["product_id"], "product_id"),
            from_branch_id=coerce_int(data["from_branch_id"], "from_branch_id"),
            to_branch_id=coerce_int(data["to_branch_id"], "to_branch_id"),
            quantity=data["quantity"],
            notes=data.get("notes"),
            actor_user_id=actor_id(),
        )
        return jsonify({
            "from_stock": result["from_stock"].to_dict(),
            "to_stock": result["to_stock"].to_dict(),
        }), 200

    except Exception as e:
        return error_response(e, "Failed to transfer stock")


@stocks_bp.post("/opname")
def stock_opname_route():
    """
    Physical count for one branch.

    Request body:
    {
        "branch_id": int,
        "lines": [{"product_id": int, "physical_quantity": int}, ...]
    }
    """
    try:
        data = json_body()
        lines = data.get("lines")
        if not isinstance(lines, list):
            return jsonify({"error": "lines must be a list"}), 400

        adjustments = stock_service.stock_opname(
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            lines=lines,
            actor_user_id=actor_id(),
        )
        return jsonify({"adjustments": adjustments, "count": len(adjustments)}), 200

    except Exception as e:
        return error_response(e, "Failed to run stock opname")


@stocks_bp.put("/quantity")
def set_quantity_route():
    try:
        data = json_body()
        stock = stock_service.set_quantity(
            product_id=coerce_int(data["product_id"], "product_id"),
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            quantity=data["quantity"],
            notes=data.get("notes"),
            actor_user_id=actor_id(),
        )
        return jsonify({"stock": stock.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to set stock quantity")


@stocks_bp.post("/initialize")
def initialize_stock_route():
    try:
        data = json_body()
        stock = stock_service.initialize_stock(
            product_id=coerce_int(data["product_id"], "product_id"),
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            quantity=data.get("quantity", 0),
            minimum_stock=data.get("minimum_stock", 0),
            actor_user_id=actor_id(),
        )
        return jsonify({"stock": stock.to_dict()}), 201

    except Exception as e:
        return error_response(e, "Failed to initialize stock")


@stocks_bp.put("/minimum")
def set_minimum_route():
    try:
        data = json_body()
        stock = stock_service.set_minimum_stock(
            product_id=coerce_int(data["product_id"], "product_id"),
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            minimum_stock=data["minimum_stock"],
        )
        return jsonify({"stock": stock.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to set minimum stock")
