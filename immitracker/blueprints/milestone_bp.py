"""
Milestones blueprint.

Endpoint groups:
  Milestone lists      GET    /api/v1/milestones/<program_type>[/<sub_type>]
                       POST   /api/v1/milestones/custom
                       PUT    /api/v1/milestones/<id>/order
                       DELETE /api/v1/milestones/<id>
                       POST   /api/v1/milestones/initialize                 (admin)
  Templates            GET    /api/v1/milestone-templates
                       GET    /api/v1/milestone-templates/all
                       GET    /api/v1/milestone-templates/categories
                       POST   /api/v1/milestone-templates
                       POST   /api/v1/milestone-templates/<id>/flag
                       DELETE /api/v1/milestone-templates/<id>/flag
  Template admin       PUT    /api/v1/milestone-templates/<id>/approve      (admin)
                       GET    /api/v1/milestone-templates/popular           (admin)
                       POST   /api/v1/milestone-templates/promote           (admin)
                       POST   /api/v1/milestone-templates/process-flagged   (admin)
                       GET    /api/v1/milestone-templates/duplicates        (admin)
                       POST   /api/v1/milestone-templates/normalize         (admin)

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from immitracker.blueprints import bool_arg, json_body
from immitracker.middleware.permission_required import current_user_id, require_admin, require_user
from immitracker.services import milestone_merge
from immitracker.services.milestone_service import MilestoneService
from immitracker.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

milestone_bp = Blueprint("milestone", __name__, url_prefix="/api/v1")

register_error_handlers(milestone_bp, logger)


def _body_or_400():
    data = json_body()
    if data is None:
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


# ═════════════════════════════════════════════════════════════════════════
# Milestone lists
# ═════════════════════════════════════════════════════════════════════════


@milestone_bp.route("/milestones/<program_type>", methods=["GET"])
@milestone_bp.route("/milestones/<program_type>/<sub_type>", methods=["GET"])
def list_milestones(program_type, sub_type=None):
    return jsonify(MilestoneService().list_milestones(program_type, sub_type)), 200


@milestone_bp.route("/milestones/custom", methods=["POST"])
def add_custom_milestone():
    data, err = _body_or_400()
    if err:
        return err
    milestone = MilestoneService().add_custom_milestone(
        data.get("name") or "",
        data.get("programType"),
        data.get("programSubType"),
        description=data.get("description"),
        user_id=current_user_id(),
    )
    return jsonify(milestone.to_dict()), 201


@milestone_bp.route("/milestones/<milestone_id>/order", methods=["PUT"])
def update_milestone_order(milestone_id):
    data, err = _body_or_400()
    if err:
        return err
    if "order" not in data:
        return api_error(E.VALIDATION_REQUIRED, "order is required")
    milestone = MilestoneService().update_milestone_order(milestone_id, data["order"])
    return jsonify(milestone.to_dict()), 200


@milestone_bp.route("/milestones/<milestone_id>", methods=["DELETE"])
def delete_milestone(milestone_id):
    MilestoneService().delete_milestone(milestone_id)
    return "", 204


@milestone_bp.route("/milestones/initialize", methods=["POST"])
@require_admin
def initialize_milestones():
    """Seed default milestone lists from the bundled program catalog."""
    results = MilestoneService().seed_all_programs()
    return jsonify({"success": True, "programs": results}), 200


# ═════════════════════════════════════════════════════════════════════════
# Templates
# ═════════════════════════════════════════════════════════════════════════


@milestone_bp.route("/milestone-templates", methods=["GET"])
def list_templates():
    program_type = request.args.get("programType", "")
    if not program_type.strip():
        return api_error(E.VALIDATION_REQUIRED, "programType is required")
    templates = MilestoneService().list_templates(
        program_type,
        request.args.get("subType"),
        include_unapproved=bool_arg("includeUnapproved"),
    )
    return jsonify(templates), 200


@milestone_bp.route("/milestone-templates/all", methods=["GET"])
def list_all_templates():
    templates = MilestoneService().list_all_unique_templates(
        include_unapproved=bool_arg("includeUnapproved"),
    )
    return jsonify(templates), 200


@milestone_bp.route("/milestone-templates/categories", methods=["GET"])
def list_templates_by_category():
    grouped = MilestoneService().list_templates_by_category(
        request.args.get("programType"),
        request.args.get("subType"),
    )
    return jsonify(grouped), 200


@milestone_bp.route("/milestone-templates", methods=["POST"])
def create_template():
    data, err = _body_or_400()
    if err:
        return err
    template = MilestoneService().create_or_reuse_template(
        data.get("name") or "",
        data.get("programType"),
        data.get("programSubType"),
        description=data.get("description"),
        user_id=current_user_id(),
    )
    return jsonify(template.to_dict()), 201


@milestone_bp.route("/milestone-templates/<template_id>/flag", methods=["POST"])
@require_user
def flag_template(template_id):
    template = MilestoneService().flag_template(template_id, current_user_id())
    return jsonify(template.to_dict()), 200


@milestone_bp.route("/milestone-templates/<template_id>/flag", methods=["DELETE"])
@require_user
def unflag_template(template_id):
    template = MilestoneService().unflag_template(template_id, current_user_id())
    return jsonify(template.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Template administration
# ═════════════════════════════════════════════════════════════════════════


@milestone_bp.route("/milestone-templates/<template_id>/approve", methods=["PUT"])
@require_admin
def approve_template(template_id):
    template = MilestoneService().approve_template(template_id)
    return jsonify(template.to_dict()), 200


@milestone_bp.route("/milestone-templates/popular", methods=["GET"])
@require_admin
def popular_templates():
    threshold = request.args.get("threshold", type=int)
    return jsonify(MilestoneService().get_popular_templates(threshold)), 200


@milestone_bp.route("/milestone-templates/promote", methods=["POST"])
@require_admin
def promote_templates():
    threshold = request.args.get("threshold", type=int)
    promoted = MilestoneService().promote_popular_templates(threshold)
    return jsonify({"success": True, "promoted": promoted}), 200


@milestone_bp.route("/milestone-templates/process-flagged", methods=["POST"])
@require_admin
def process_flagged_templates():
    demoted = MilestoneService().process_flagged_templates()
    return jsonify({"success": True, "demoted": demoted}), 200


@milestone_bp.route("/milestone-templates/duplicates", methods=["GET"])
@require_admin
def similar_templates():
    threshold = request.args.get("threshold", type=float)
    if threshold is not None and not 0.0 <= threshold <= 1.0:
        return api_error(E.VALIDATION_INVALID, "threshold must be between 0 and 1")
    return jsonify(milestone_merge.find_similar_templates(threshold)), 200


@milestone_bp.route("/milestone-templates/normalize", methods=["POST"])
@require_admin
def normalize_templates():
    result = milestone_merge.run_normalization(merge=bool_arg("merge"))
    return jsonify({
        "success": not result["failed_groups"],
        "updatedCount": result["updated_count"],
        "duplicateGroups": result["duplicate_groups"],
        "mergedGroups": result["merged_groups"],
        "failedGroups": result["failed_groups"],
        "merges": result["merges"],
    }), 200
