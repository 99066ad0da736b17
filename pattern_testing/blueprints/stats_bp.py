"""
Tester stats, pattern metrics and analytics blueprint.

Endpoints:
    GET /api/v1/pattern-testing/stats/mine?user_id=
    GET /api/v1/pattern-testing/stats/leaderboard?limit=
    GET /api/v1/pattern-testing/patterns/<id>/metrics?user_id=   creator or admin
    GET /api/v1/pattern-testing/admin/analytics?user_id=         admin
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from pattern_testing.blueprints import API_PREFIX, int_value, register_error_handlers
from pattern_testing.services import pattern_metrics, rewards
from pattern_testing.utils.errors import E, api_error

logger = logging.getLogger(__name__)

stats_bp = Blueprint("stats", __name__, url_prefix=API_PREFIX)
register_error_handlers(stats_bp)

MAX_LEADERBOARD_LIMIT = 100


@stats_bp.route("/stats/mine", methods=["GET"])
def my_stats():
    user_id, err = int_value(request.args, "user_id")
    if err:
        return err
    stats = rewards.get_or_create_tester_stats(user_id)
    return jsonify({"success": True, "stats": stats.to_dict()})


@stats_bp.route("/stats/leaderboard", methods=["GET"])
def leaderboard():
    limit, err = int_value(request.args, "limit", required=False)
    if err:
        return err
    if limit is None:
        limit = current_app.config.get("LEADERBOARD_DEFAULT_LIMIT", 10)
    if not 1 <= limit <= MAX_LEADERBOARD_LIMIT:
        return api_error(E.VALIDATION_INVALID, f"limit must be between 1 and {MAX_LEADERBOARD_LIMIT}")
    return jsonify({"success": True, "leaderboard": rewards.leaderboard(limit)})


@stats_bp.route("/patterns/<int:pattern_id>/metrics", methods=["GET"])
def pattern_metrics_view(pattern_id):
    user_id, err = int_value(request.args, "user_id")
    if err:
        return err
    metrics = pattern_metrics.get_or_compute_pattern_metrics(pattern_id, user_id)
    return jsonify({"success": True, "metrics": metrics.to_dict()})


@stats_bp.route("/admin/analytics", methods=["GET"])
def admin_analytics():
    user_id, err = int_value(request.args, "user_id")
    if err:
        return err
    return jsonify({"success": True, **pattern_metrics.admin_dashboard(user_id)})
