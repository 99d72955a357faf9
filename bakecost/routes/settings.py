from flask import Blueprint, jsonify, current_app
from ..models import db
from ..records import pick
from ..audit import log_audit
from .utils import request_json

settings_blueprint = Blueprint('settings', __name__)


@settings_blueprint.route('/settings', methods=['GET'])
def get_settings():
    return jsonify(current_app.extensions['settings_cache'].get())

@settings_blueprint.route('/settings/profit-margin', methods=['PUT'])
def update_profit_margin():
    data = request_json()
    settings = current_app.extensions['settings_cache'].update(
        pick(data, 'profitMarginLow', 'profit_margin_low', default=None),
        pick(data, 'profitMarginHigh', 'profit_margin_high', default=None),
    )

    log_audit("UPDATE", "Settings",
              details=f"Profit margin thresholds {settings['profitMarginLow']} / {settings['profitMarginHigh']}")
    db.session.commit()
    return jsonify(settings)
