"""
Application types blueprint.

Endpoints:
    GET    /api/v1/application-types?includeNonDefault=
    GET    /api/v1/application-types/category/<category>
    POST   /api/v1/application-types
    POST   /api/v1/application-types/<id>/flag
    DELETE /api/v1/application-types/<id>/flag
    POST   /api/v1/application-types/promote            (admin)
    POST   /api/v1/application-types/process-flagged    (admin)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from immitracker.blueprints import bool_arg, json_body
from immitracker.middleware.permission_required import current_user_id, require_admin, require_user
from immitracker.services.application_type_service import ApplicationTypeService
from immitracker.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

application_type_bp = Blueprint("application_type", __name__, url_prefix="/api/v1/application-types")

register_error_handlers(application_type_bp, logger)


@application_type_bp.route("", methods=["GET"])
def list_application_types():
    types = ApplicationTypeService().list_application_types(
        include_non_default=bool_arg("includeNonDefault"),
    )
    return jsonify(types), 200


@application_type_bp.route("/category/<category>", methods=["GET"])
def list_by_category(category):
    return jsonify(ApplicationTypeService().list_by_category(category)), 200


@application_type_bp.route("", methods=["POST"])
def create_application_type():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    app_type = ApplicationTypeService().create_or_reuse(
        data.get("name") or "",
        data.get("category") or "",
        description=data.get("description"),
        user_id=current_user_id(),
    )
    return jsonify(app_type.to_dict()), 201


@application_type_bp.route("/<type_id>/flag", methods=["POST"])
@require_user
def flag_application_type(type_id):
    app_type = ApplicationTypeService().flag(type_id, current_user_id())
    return jsonify(app_type.to_dict()), 200


@application_type_bp.route("/<type_id>/flag", methods=["DELETE"])
@require_user
def unflag_application_type(type_id):
    app_type = ApplicationTypeService().unflag(type_id, current_user_id())
    return jsonify(app_type.to_dict()), 200


@application_type_bp.route("/promote", methods=["POST"])
@require_admin
def promote_application_types():
    threshold = request.args.get("threshold", type=int)
    promoted = ApplicationTypeService().promote_popular(threshold)
    return jsonify({"success": True, "promoted": promoted}), 200


@application_type_bp.route("/process-flagged", methods=["POST"])
@require_admin
def process_flagged_application_types():
    demoted = ApplicationTypeService().process_flagged()
    return jsonify({"success": True, "demoted": demoted}), 200
