from flask import Blueprint, jsonify, current_app
from flask_babel import gettext as _
from ..models import db
from ..records import clean_product, clean_recipe_link_rows, clean_packaging_rows
from ..costing import resolve_product, resolve_all_products
from ..excel import import_workbook
from ..audit import log_audit
from .. import storage
from .utils import request_json, list_filters, reorder_items, uploaded_file, send_workbook

products_blueprint = Blueprint('products', __name__)


def _settings():
    return current_app.extensions['settings_cache'].get()


def _children(data, drop_non_positive):
    children = {}
    if 'recipes' in data:
        children['recipe_links'] = clean_recipe_link_rows(data['recipes'], drop_non_positive)
    if 'packaging' in data:
        children['packaging_links'] = clean_packaging_rows(data['packaging'], drop_non_positive)
    return children

# ----------------------------
# Products Management
# ----------------------------
@products_blueprint.route('/products', methods=['GET'])
def list_products():
    search, category = list_filters()
    return jsonify(resolve_all_products(search, category, settings=_settings()))

@products_blueprint.route('/products/<int:product_id>', methods=['GET'])
def get_product(product_id):
    return jsonify(resolve_product(product_id, settings=_settings()))

@products_blueprint.route('/products', methods=['POST'])
def create_product():
    data = request_json()
    fields = clean_product(data)
    product = storage.products.create(fields, _children(data, drop_non_positive=True))

    log_audit("CREATE", "Product", product.id, f"Created product {product.name}")
    db.session.commit()
    return jsonify(resolve_product(product.id, settings=_settings())), 201

@products_blueprint.route('/products/<int:product_id>', methods=['PUT'])
def update_product(product_id):
    data = request_json()
    fields = clean_product(data, partial=True)
    product = storage.products.update(product_id, fields, _children(data, drop_non_positive=False))

    log_audit("UPDATE", "Product", product.id, f"Updated product {product.name}")
    db.session.commit()
    return jsonify(resolve_product(product.id, settings=_settings()))

@products_blueprint.route('/products/<int:product_id>', methods=['DELETE'])
def delete_product(product_id):
    name = storage.products.get_or_raise(product_id).name
    storage.products.delete(product_id)

    log_audit("DELETE", "Product", product_id, f"Deleted product {name}")
    db.session.commit()
    return jsonify({'message': _('Product deleted')})

@products_blueprint.route('/products/reorder', methods=['POST'])
def reorder_products():
    storage.products.reorder(reorder_items())
    return jsonify({'message': _('Order saved')})

# ----------------------------
# Excel
# ----------------------------
@products_blueprint.route('/products/export', methods=['GET'])
def export_products():
    return send_workbook('products')

@products_blueprint.route('/products/import', methods=['POST'])
def import_products():
    file = uploaded_file()
    try:
        result = import_workbook('products', file)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Product import failed: {e}")
        return jsonify({'message': _('Import failed, please check the file format')}), 400

    log_audit("IMPORT", "Product", details=f"{result['imported']} new, {result['updated']} updated")
    db.session.commit()
    result['message'] = _('Import finished: %(imported)s new, %(updated)s updated',
                          imported=result['imported'], updated=result['updated'])
    return jsonify(result)
