# Overview: Flask API routes for field visits; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..services import visit_service
from ..validation import VisitRequest
from .responses import actor_id, error_response, flag_arg, json_body


visits_bp = Blueprint("visits", __name__, url_prefix="/api/visits")


@visits_bp.post("")
def create_visit_route():
    try:
        payload = VisitRequest.from_dict(json_body())
        visit = visit_service.create(payload, actor_user_id=actor_id())
        return jsonify({"visit": visit.to_dict()}), 201

    except Exception as e:
        return error_response(e, "Failed to create visit")


@visits_bp.get("")
def list_visits_route():
    try:
        result = visit_service.list_visits(
            branch_id=request.args.get("branch_id", type=int),
            sales_id=request.args.get("sales_id", type=int),
            status=request.args.get("status") or None,
            visit_type=request.args.get("visit_type") or None,
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            include_deleted=flag_arg("include_deleted"),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", type=int),
        )
        return jsonify(result), 200

    except Exception as e:
        return error_response(e, "Failed to list visits")


@visits_bp.get("/statistics")
def visit_statistics_route():
    try:
        stats = visit_service.get_statistics(
            branch_id=request.args.get("branch_id", type=int),
            sales_id=request.args.get("sales_id", type=int),
        )
        return jsonify(stats), 200

    except Exception as e:
        return error_response(e, "Failed to build visit statistics")


@visits_bp.get("/locations")
def visit_locations_route():
    try:
        visits = visit_service.get_with_locations(
            branch_id=request.args.get("branch_id", type=int),
            sales_id=request.args.get("sales_id", type=int),
            on_date=request.args.get("date"),
        )
        return jsonify({"items": [v.to_dict() for v in visits], "count": len(visits)}), 200

    except Exception as e:
        return error_response(e, "Failed to load visit locations")


@visits_bp.get("/<int:visit_id>")
def get_visit_route(visit_id: int):
    try:
        visit = visit_service.get_by_id(visit_id, include_deleted=flag_arg("include_deleted"))
        return jsonify({"visit": visit.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to load visit")


@visits_bp.post("/<int:visit_id>/approve")
def approve_visit_route(visit_id: int):
    try:
        visit = visit_service.approve(visit_id, approver_user_id=actor_id())
        return jsonify({"visit": visit.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to approve visit")


@visits_bp.post("/<int:visit_id>/reject")
def reject_visit_route(visit_id: int):
    """
    Request body:
    {
        "reason": str
    }
    """
    try:
        data = json_body()
        visit = visit_service.reject(visit_id, rejecter_user_id=actor_id(), reason=data.get("reason"))
        return jsonify({"visit": visit.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to reject visit")


@visits_bp.delete("/<int:visit_id>")
def delete_visit_route(visit_id: int):
    try:
        visit = visit_service.soft_delete(visit_id, actor_user_id=actor_id())
        return jsonify({"visit": visit.to_dict()}), 200

    except Exception as e:
        return error_response(e, "Failed to delete visit")
