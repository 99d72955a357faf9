from flask import Blueprint, request, jsonify
from flask_babel import gettext as _
from ..models import db, Category, Material, Recipe, Packaging, Product, CustomProduct, ValidationError
from ..records import parse_name, parse_int
from ..audit import log_audit
from .. import storage
from .utils import request_json

categories_blueprint = Blueprint('categories', __name__)

# Entity column holding the category name, per category type
CATEGORY_COLUMNS = {
    'material': (Material, 'category'),
    'recipe': (Recipe, 'category'),
    'product': (Product, 'category'),
    'custom_product': (CustomProduct, 'category'),
    'packaging': (Packaging, 'type'),
}


def _category_type(value):
    if value not in CATEGORY_COLUMNS:
        raise ValidationError(_('Unknown category type: %(type)s', type=value))
    return value

# ----------------------------
# Categories Management
# ----------------------------
@categories_blueprint.route('/categories', methods=['GET'])
def list_categories():
    current_type = request.args.get('type')
    if current_type:
        _category_type(current_type)
    return jsonify([category.to_dict() for category in storage.categories.list(category=current_type)])

@categories_blueprint.route('/categories', methods=['POST'])
def create_category():
    data = request_json()
    name = parse_name(data.get('name'))
    type_val = _category_type(data.get('type') or request.args.get('type', 'material'))

    if Category.query.filter_by(name=name, type=type_val).first():
        raise ValidationError(_('Category %(name)s already exists', name=name))

    fields = {'name': name, 'type': type_val}
    if data.get('color'):
        fields['color'] = data['color']
    if data.get('sortOrder') is not None:
        fields['sort_order'] = parse_int(data['sortOrder'], 'sortOrder')
    category = storage.categories.create(fields)

    log_audit("CREATE", "Category", category.id, f"Created {type_val} category {name}")
    db.session.commit()
    return jsonify(category.to_dict()), 201

@categories_blueprint.route('/categories/<int:category_id>', methods=['PUT'])
def update_category(category_id):
    category = storage.categories.get_or_raise(category_id)
    data = request_json()
    fields = {}
    if 'name' in data:
        fields['name'] = parse_name(data.get('name'))
        clash = Category.query.filter(Category.name == fields['name'], Category.type == category.type,
                                      Category.id != category.id).first()
        if clash:
            raise ValidationError(_('Category %(name)s already exists', name=fields['name']))
    if data.get('color'):
        fields['color'] = data['color']

    old_name = category.name
    model, column = CATEGORY_COLUMNS[category.type]
    category = storage.categories.update(category_id, fields)

    renamed = 0
    if category.name != old_name:
        # Entities store the category by name, so a rename is carried over to all of them
        renamed = model.query.filter(getattr(model, column) == old_name) \
            .update({column: category.name}, synchronize_session=False)
        log_audit("UPDATE", "Category", category.id,
                  f"Renamed {category.type} category {old_name} to {category.name} ({renamed} entities)")
    db.session.commit()
    return jsonify(dict(category.to_dict(), renamedEntities=renamed))

@categories_blueprint.route('/categories/<int:category_id>', methods=['DELETE'])
def delete_category(category_id):
    category = storage.categories.get_or_raise(category_id)
    name, type_val = category.name, category.type
    storage.categories.delete(category_id)

    log_audit("DELETE", "Category", category_id, f"Deleted {type_val} category {name}")
    db.session.commit()
    return jsonify({'message': _('Category deleted')})
