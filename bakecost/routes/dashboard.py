from flask import Blueprint, jsonify, current_app
from ..costing import dashboard_stats

dashboard_blueprint = Blueprint('dashboard', __name__)


@dashboard_blueprint.route('/dashboard/stats', methods=['GET'])
def stats():
    return jsonify(dashboard_stats(current_app.extensions['settings_cache'].get()))
