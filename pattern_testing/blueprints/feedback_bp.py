"""
Tester ↔ creator feedback blueprint.

Endpoints:
    POST /api/v1/pattern-testing/assignments/<id>/feedback            tester posts
    GET  /api/v1/pattern-testing/assignments/<id>/feedback?user_id=   conversation
    POST /api/v1/pattern-testing/feedback/<id>/respond                creator replies
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
from pattern_testing.services import feedback_channel

logger = logging.getLogger(__name__)

feedback_bp = Blueprint("feedback", __name__, url_prefix=API_PREFIX)
register_error_handlers(feedback_bp)


@feedback_bp.route("/assignments/<int:assignment_id>/feedback", methods=["POST"])
def post_feedback(assignment_id):
    data = json_body()
    err = require_fields(data, "user_id", "type", "message")
    if err:
        return err
    user_id, err = int_value(data, "user_id")
    if err:
        return err

    difficulty, err = text_value(data, "difficulty")
    if err:
        return err

    scores = {}
    for field in ("rating", "clarity", "accuracy"):
        scores[field], err = int_value(data, field, required=False)
        if err:
            return err

    entry = feedback_channel.post_feedback(
        assignment_id,
        type=str(data["type"]),
        message=str(data["message"]),
        images=data.get("images"),
        difficulty=difficulty,
        user_id=user_id,
        **scores,
    )
    return jsonify({
        "success": True,
        "feedback": entry.to_dict(),
        "message": "Feedback submitted successfully",
    }), 201


@feedback_bp.route("/assignments/<int:assignment_id>/feedback", methods=["GET"])
def list_feedback(assignment_id):
    user_id, err = int_value(request.args, "user_id")
    if err:
        return err
    return jsonify({
        "success": True,
        "feedback": feedback_channel.list_conversation(assignment_id, user_id),
    })


@feedback_bp.route("/feedback/<int:feedback_id>/respond", methods=["POST"])
def respond(feedback_id):
    data = json_body()
    err = require_fields(data, "user_id", "response")
    if err:
        return err
    user_id, err = int_value(data, "user_id")
    if err:
        return err

    entry = feedback_channel.respond_to_feedback(feedback_id, str(data["response"]), user_id=user_id)
    return jsonify({
        "success": True,
        "feedback": entry.to_dict(),
        "message": "Response submitted successfully",
    })
