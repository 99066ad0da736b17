"""
Pattern testing applications blueprint.

Endpoints:
    POST /api/v1/pattern-testing/applications                          submit
    GET  /api/v1/pattern-testing/applications/mine?user_id=            own application
    GET  /api/v1/pattern-testing/admin/applications?status=            list (paginated)
    POST /api/v1/pattern-testing/admin/applications/<id>/approve       {admin_id}
    POST /api/v1/pattern-testing/admin/applications/<id>/disapprove    {admin_id}
"""

import logging

from flask import Blueprint, jsonify, request

from pattern_testing.blueprints import (
    API_PREFIX,
    int_value,
    json_body,
    paginate_list,
    register_error_handlers,
    require_fields,
    text_value,
)
from pattern_testing.services import application_intake

logger = logging.getLogger(__name__)

applications_bp = Blueprint("applications", __name__, url_prefix=API_PREFIX)
register_error_handlers(applications_bp)


@applications_bp.route("/applications", methods=["POST"])
def submit_application():
    data = json_body()
    err = require_fields(data, "user_id", "why_testing", "experience_level", "availability")
    if err:
        return err
    user_id, err = int_value(data, "user_id")
    if err:
        return err
    comments, err = text_value(data, "comments")
    if err:
        return err

    application = application_intake.submit_application(
        user_id=user_id,
        why_testing=str(data["why_testing"]),
        experience_level=str(data["experience_level"]),
        availability=str(data["availability"]),
        comments=comments,
    )
    return jsonify({
        "message": "Application submitted successfully. Pending admin review.",
        "application": application.to_dict(),
    }), 201


@applications_bp.route("/applications/mine", methods=["GET"])
def my_application():
    user_id, err = int_value(request.args, "user_id")
    if err:
        return err
    application = application_intake.find_application_by_user(user_id)
    return jsonify({"application": application.to_dict() if application else None})


@applications_bp.route("/admin/applications", methods=["GET"])
def list_applications():
    status = request.args.get("status") or None
    applications = application_intake.list_applications(status=status)
    page, total = paginate_list(applications)
    return jsonify({
        "applications": [a.to_dict() for a in page],
        "total": total,
    })


def _review(application_id, decision):
    data = json_body()
    admin_id, err = int_value(data, "admin_id")
    if err:
        return err
    if decision == "approved":
        application = application_intake.approve_application(application_id, admin_id)
    else:
        application = application_intake.disapprove_application(application_id, admin_id)
    return jsonify({
        "message": f"Application {decision} successfully",
        "application": application.to_dict(),
    })


@applications_bp.route("/admin/applications/<int:application_id>/approve", methods=["POST"])
def approve_application(application_id):
    return _review(application_id, "approved")


@applications_bp.route("/admin/applications/<int:application_id>/disapprove", methods=["POST"])
def disapprove_application(application_id):
    return _review(application_id, "disapproved")
