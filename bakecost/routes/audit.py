from flask import Blueprint, request, jsonify
from ..audit import audit_entries

audit_blueprint = Blueprint('audit', __name__)


@audit_blueprint.route('/audit-log', methods=['GET'])
def audit_log():
    entries = audit_entries(
        action=request.args.get('action') or None,
        target_type=request.args.get('target_type') or None,
        page=max(request.args.get('page', 1, type=int), 1),
    )
    return jsonify([entry.to_dict() for entry in entries])
