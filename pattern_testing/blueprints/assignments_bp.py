"""
Test assignments blueprint.

Endpoints:
    POST  /api/v1/pattern-testing/assignments                    tester requests a pattern
    GET   /api/v1/pattern-testing/assignments/mine?user_id=      tester view, grouped by status
    GET   /api/v1/pattern-testing/creator/assignments?user_id=   creator view, grouped by status
    GET   /api/v1/pattern-testing/assignments/<id>
    POST  /api/v1/pattern-testing/assignments/<id>/accept
    POST  /api/v1/pattern-testing/assignments/<id>/start         {user_id, progress?}
    POST  /api/v1/pattern-testing/assignments/<id>/cancel        {user_id, reason?}
    POST  /api/v1/pattern-testing/assignments/<id>/progress      {user_id, progress}
    PATCH /api/v1/pattern-testing/assignments/<id>               {deadline?, progress?}
    POST  /api/v1/pattern-testing/assignments/<id>/complete      final review + rewards
"""

import logging

from flask import Blueprint, jsonify, request

from pattern_testing.blueprints import (
    API_PREFIX,
    int_value,
    json_body,
    register_error_handlers,
    require_fields,
    text_value,
)
from pattern_testing.services import assignment_lifecycle as lifecycle
from pattern_testing.utils.errors import E, api_error

logger = logging.getLogger(__name__)

assignments_bp = Blueprint("assignments", __name__, url_prefix=API_PREFIX)
register_error_handlers(assignments_bp)


@assignments_bp.route("/assignments", methods=["POST"])
def request_assignment():
    data = json_body()
    user_id, err = int_value(data, "user_id")
    if err:
        return err
    pattern_id, err = int_value(data, "pattern_id")
    if err:
        return err

    assignment = lifecycle.request_assignment(user_id, pattern_id)
    return jsonify({
        "success": True,
        "assignment": assignment.to_dict(),
        "message": "Successfully applied to test this pattern",
    }), 201


@assignments_bp.route("/assignments/mine", methods=["GET"])
def my_assignments():
    user_id, err = int_value(request.args, "user_id")
    if err:
        return err
    return jsonify({"success": True, "assignments": lifecycle.tester_assignments(user_id)})


@assignments_bp.route("/creator/assignments", methods=["GET"])
def creator_assignments():
    user_id, err = int_value(request.args, "user_id")
    if err:
        return err
    return jsonify({"success": True, "assignments": lifecycle.creator_assignments(user_id)})


@assignments_bp.route("/assignments/<int:assignment_id>", methods=["GET"])
def get_assignment(assignment_id):
    return jsonify(lifecycle.get_assignment(assignment_id).to_dict())


# ── Named transitions ─────────────────────────────────────────────────────────


@assignments_bp.route("/assignments/<int:assignment_id>/accept", methods=["POST"])
def accept_assignment(assignment_id):
    user_id, err = int_value(json_body(), "user_id")
    if err:
        return err
    assignment = lifecycle.accept_assignment(assignment_id, user_id)
    return jsonify({"success": True, "assignment": assignment.to_dict()})


@assignments_bp.route("/assignments/<int:assignment_id>/start", methods=["POST"])
def start_assignment(assignment_id):
    data = json_body()
    user_id, err = int_value(data, "user_id")
    if err:
        return err
    progress, err = int_value(data, "progress", required=False)
    if err:
        return err
    assignment = lifecycle.start_assignment(assignment_id, user_id, progress=progress or 0)
    return jsonify({"success": True, "assignment": assignment.to_dict()})


@assignments_bp.route("/assignments/<int:assignment_id>/cancel", methods=["POST"])
def cancel_assignment(assignment_id):
    data = json_body()
    user_id, err = int_value(data, "user_id")
    if err:
        return err
    assignment = lifecycle.cancel_assignment(assignment_id, user_id, reason=data.get("reason"))
    return jsonify({"success": True, "assignment": assignment.to_dict()})


@assignments_bp.route("/assignments/<int:assignment_id>/progress", methods=["POST"])
def update_progress(assignment_id):
    data = json_body()
    user_id, err = int_value(data, "user_id")
    if err:
        return err
    progress, err = int_value(data, "progress")
    if err:
        return err
    assignment = lifecycle.update_progress(assignment_id, user_id, progress)
    return jsonify({"success": True, "assignment": assignment.to_dict()})


@assignments_bp.route("/assignments/<int:assignment_id>", methods=["PATCH"])
def patch_assignment(assignment_id):
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a non-empty JSON object")
    if "progress" in data:
        progress, err = int_value(data, "progress")
        if err:
            return err
        data = {**data, "progress": progress}
    assignment = lifecycle.update_assignment(assignment_id, data)
    return jsonify(assignment.to_dict())


# ── Completion ────────────────────────────────────────────────────────────────


@assignments_bp.route("/assignments/<int:assignment_id>/complete", methods=["POST"])
def complete_assignment(assignment_id):
    data = json_body()
    err = require_fields(data, "user_id", "rating", "clarity", "accuracy", "difficulty", "message")
    if err:
        return err

    difficulty, err = text_value(data, "difficulty", required=True)
    if err:
        return err
    review = {
        "message": str(data["message"]),
        "difficulty": difficulty,
        "images": data.get("images"),
    }
    user_id, err = int_value(data, "user_id")
    if err:
        return err
    for field in ("rating", "clarity", "accuracy"):
        review[field], err = int_value(data, field)
        if err:
            return err

    result = lifecycle.complete_assignment(assignment_id, review, user_id=user_id)
    granted = result["rewards"]
    return jsonify({
        "success": True,
        "assignment": result["assignment"].to_dict(),
        "rewards": granted,
        "message": (
            f"Test completed! You earned {granted['coins']} coins, "
            f"{granted['points']} points, and {granted['xp']} XP!"
        ),
    })
