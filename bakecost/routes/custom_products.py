from flask import Blueprint, jsonify, current_app
from flask_babel import gettext as _
from ..models import db
from ..records import clean_product, clean_item_rows, clean_packaging_rows
from ..costing import resolve_custom_product, resolve_all_custom_products
from ..excel import import_workbook
from ..audit import log_audit
from .. import storage
from .utils import request_json, list_filters, reorder_items, uploaded_file, send_workbook

custom_products_blueprint = Blueprint('custom_products', __name__)


def _children(data, drop_non_positive):
    children = {}
    if 'items' in data:
        children['items'] = clean_item_rows(data['items'], drop_non_positive)
    if 'packaging' in data:
        children['packaging_links'] = clean_packaging_rows(data['packaging'], drop_non_positive)
    return children

# ----------------------------
# Custom Products (gift boxes and assortments built from products)
# ----------------------------
@custom_products_blueprint.route('/custom-products', methods=['GET'])
def list_custom_products():
    search, category = list_filters()
    return jsonify(resolve_all_custom_products(search, category))

@custom_products_blueprint.route('/custom-products/<int:custom_product_id>', methods=['GET'])
def get_custom_product(custom_product_id):
    return jsonify(resolve_custom_product(custom_product_id))

@custom_products_blueprint.route('/custom-products', methods=['POST'])
def create_custom_product():
    data = request_json()
    fields = clean_product(data)
    custom_product = storage.custom_products.create(fields, _children(data, drop_non_positive=True))

    log_audit("CREATE", "CustomProduct", custom_product.id, f"Created custom product {custom_product.name}")
    db.session.commit()
    return jsonify(resolve_custom_product(custom_product.id)), 201

@custom_products_blueprint.route('/custom-products/<int:custom_product_id>', methods=['PUT'])
def update_custom_product(custom_product_id):
    data = request_json()
    fields = clean_product(data, partial=True)
    custom_product = storage.custom_products.update(custom_product_id, fields,
                                                    _children(data, drop_non_positive=False))

    log_audit("UPDATE", "CustomProduct", custom_product.id, f"Updated custom product {custom_product.name}")
    db.session.commit()
    return jsonify(resolve_custom_product(custom_product.id))

@custom_products_blueprint.route('/custom-products/<int:custom_product_id>', methods=['DELETE'])
def delete_custom_product(custom_product_id):
    name = storage.custom_products.get_or_raise(custom_product_id).name
    storage.custom_products.delete(custom_product_id)

    log_audit("DELETE", "CustomProduct", custom_product_id, f"Deleted custom product {name}")
    db.session.commit()
    return jsonify({'message': _('Custom product deleted')})

@custom_products_blueprint.route('/custom-products/reorder', methods=['POST'])
def reorder_custom_products():
    storage.custom_products.reorder(reorder_items())
    return jsonify({'message': _('Order saved')})

# ----------------------------
# Excel
# ----------------------------
@custom_products_blueprint.route('/custom-products/export', methods=['GET'])
def export_custom_products():
    return send_workbook('customProducts')

@custom_products_blueprint.route('/custom-products/import', methods=['POST'])
def import_custom_products():
    file = uploaded_file()
    try:
        result = import_workbook('customProducts', file)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Custom product import failed: {e}")
        return jsonify({'message': _('Import failed, please check the file format')}), 400

    log_audit("IMPORT", "CustomProduct", details=f"{result['imported']} new, {result['updated']} updated")
    db.session.commit()
    result['message'] = _('Import finished: %(imported)s new, %(updated)s updated',
                          imported=result['imported'], updated=result['updated'])
    return jsonify(result)
