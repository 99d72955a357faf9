from flask import Blueprint, jsonify, current_app
from flask_babel import gettext as _
from ..models import db
from ..records import clean_packaging
from ..excel import import_workbook
from ..audit import log_audit
from .. import storage
from .utils import request_json, list_filters, reorder_items, uploaded_file, send_workbook

packaging_blueprint = Blueprint('packaging', __name__)

# ----------------------------
# Packaging Management
# ----------------------------
@packaging_blueprint.route('/packaging', methods=['GET'])
def list_packaging():
    # Packaging is grouped by its type; ?category= filters on it
    search, packaging_type = list_filters()
    return jsonify([item.to_dict() for item in storage.packaging.list(search, packaging_type)])

@packaging_blueprint.route('/packaging/<int:packaging_id>', methods=['GET'])
def get_packaging(packaging_id):
    return jsonify(storage.packaging.get_or_raise(packaging_id).to_dict())

@packaging_blueprint.route('/packaging', methods=['POST'])
def create_packaging():
    packaging = storage.packaging.create(clean_packaging(request_json()))

    log_audit("CREATE", "Packaging", packaging.id, f"Created packaging {packaging.name}")
    db.session.commit()
    return jsonify(packaging.to_dict()), 201

@packaging_blueprint.route('/packaging/<int:packaging_id>', methods=['PUT'])
def update_packaging(packaging_id):
    packaging = storage.packaging.update(packaging_id, clean_packaging(request_json(), partial=True))

    log_audit("UPDATE", "Packaging", packaging.id, f"Updated packaging {packaging.name}")
    db.session.commit()
    return jsonify(packaging.to_dict())

@packaging_blueprint.route('/packaging/<int:packaging_id>', methods=['DELETE'])
def delete_packaging(packaging_id):
    name = storage.packaging.get_or_raise(packaging_id).name
    storage.packaging.delete(packaging_id)

    log_audit("DELETE", "Packaging", packaging_id, f"Deleted packaging {name}")
    db.session.commit()
    return jsonify({'message': _('Packaging deleted')})

@packaging_blueprint.route('/packaging/reorder', methods=['POST'])
def reorder_packaging():
    storage.packaging.reorder(reorder_items())
    return jsonify({'message': _('Order saved')})

# ----------------------------
# Excel
# ----------------------------
@packaging_blueprint.route('/packaging/export', methods=['GET'])
def export_packaging():
    return send_workbook('packaging')

@packaging_blueprint.route('/packaging/import', methods=['POST'])
def import_packaging():
    file = uploaded_file()
    try:
        result = import_workbook('packaging', file)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Packaging import failed: {e}")
        return jsonify({'message': _('Import failed, please check the file format')}), 400

    log_audit("IMPORT", "Packaging", details=f"{result['imported']} new, {result['updated']} updated")
    db.session.commit()
    result['message'] = _('Import finished: %(imported)s new, %(updated)s updated',
                          imported=result['imported'], updated=result['updated'])
    return jsonify(result)
