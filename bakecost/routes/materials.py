from flask import Blueprint, request, jsonify, current_app
from flask_babel import gettext as _
from ..models import db
from ..records import clean_material
from ..excel import import_workbook
from ..audit import log_audit, audit_entries
from .. import storage
from .utils import request_json, list_filters, reorder_items, uploaded_file, send_workbook, changed_columns

materials_blueprint = Blueprint('materials', __name__)

# ----------------------------
# Materials Management
# ----------------------------
@materials_blueprint.route('/materials', methods=['GET'])
def list_materials():
    search, category = list_filters()
    return jsonify([material.to_dict() for material in storage.materials.list(search, category)])

@materials_blueprint.route('/materials/<int:material_id>', methods=['GET'])
def get_material(material_id):
    return jsonify(storage.materials.get_or_raise(material_id).to_dict())

@materials_blueprint.route('/materials', methods=['POST'])
def create_material():
    fields = clean_material(request_json())
    material = storage.materials.create(fields)

    log_audit("CREATE", "Material", material.id, f"Created material {material.name}")
    db.session.commit()
    return jsonify(material.to_dict()), 201

@materials_blueprint.route('/materials/<int:material_id>', methods=['PUT'])
def update_material(material_id):
    fields = clean_material(request_json(), partial=True)
    changed = changed_columns(storage.materials.get_or_raise(material_id), fields)
    material = storage.materials.update(material_id, fields)

    # Field-level history of a material is kept in the audit log
    log_audit("UPDATE", "Material", material.id, f"Changed: {', '.join(changed) or 'nothing'}")
    db.session.commit()
    return jsonify(material.to_dict())

@materials_blueprint.route('/materials/<int:material_id>', methods=['DELETE'])
def delete_material(material_id):
    name = storage.materials.get_or_raise(material_id).name
    storage.materials.delete(material_id)

    log_audit("DELETE", "Material", material_id, f"Deleted material {name}")
    db.session.commit()
    return jsonify({'message': _('Material deleted')})

@materials_blueprint.route('/materials/reorder', methods=['POST'])
def reorder_materials():
    storage.materials.reorder(reorder_items())
    return jsonify({'message': _('Order saved')})

@materials_blueprint.route('/materials/<int:material_id>/history', methods=['GET'])
def material_history(material_id):
    entries = audit_entries(target_type='Material', target_id=material_id,
                            page=max(request.args.get('page', 1, type=int), 1))
    return jsonify([entry.to_dict() for entry in entries])

# ----------------------------
# Excel
# ----------------------------
@materials_blueprint.route('/materials/export', methods=['GET'])
def export_materials():
    return send_workbook('materials')

@materials_blueprint.route('/materials/import', methods=['POST'])
def import_materials():
    file = uploaded_file()
    try:
        result = import_workbook('materials', file)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Material import failed: {e}")
        return jsonify({'message': _('Import failed, please check the file format')}), 400

    log_audit("IMPORT", "Material", details=f"{result['imported']} new, {result['updated']} updated")
    db.session.commit()
    result['message'] = _('Import finished: %(imported)s new, %(updated)s updated',
                          imported=result['imported'], updated=result['updated'])
    return jsonify(result)
