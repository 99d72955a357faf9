from flask import Blueprint, jsonify, current_app
from flask_babel import gettext as _
from ..models import db
from ..records import clean_recipe, clean_ingredient_rows
from ..costing import resolve_recipe, resolve_all_recipes
from ..excel import import_workbook
from ..audit import log_audit
from .. import storage
from .utils import request_json, list_filters, reorder_items, uploaded_file, send_workbook

recipes_blueprint = Blueprint('recipes', __name__)

# ----------------------------
# Recipes Management
# ----------------------------
@recipes_blueprint.route('/recipes', methods=['GET'])
def list_recipes():
    search, category = list_filters()
    return jsonify(resolve_all_recipes(search, category))

@recipes_blueprint.route('/recipes/<int:recipe_id>', methods=['GET'])
def get_recipe(recipe_id):
    return jsonify(resolve_recipe(recipe_id))

@recipes_blueprint.route('/recipes', methods=['POST'])
def create_recipe():
    data = request_json()
    fields = clean_recipe(data)
    ingredients = clean_ingredient_rows(data.get('ingredients'))
    recipe = storage.recipes.create(fields, {'ingredients': ingredients})

    log_audit("CREATE", "Recipe", recipe.id, f"Created recipe {recipe.name} with {len(ingredients)} ingredients")
    db.session.commit()
    return jsonify(resolve_recipe(recipe.id)), 201

@recipes_blueprint.route('/recipes/<int:recipe_id>', methods=['PUT'])
def update_recipe(recipe_id):
    data = request_json()
    fields = clean_recipe(data, partial=True)
    children = None
    if 'ingredients' in data:
        children = {'ingredients': clean_ingredient_rows(data['ingredients'], drop_non_positive=False)}
    recipe = storage.recipes.update(recipe_id, fields, children)

    log_audit("UPDATE", "Recipe", recipe.id, f"Updated recipe {recipe.name}")
    db.session.commit()
    return jsonify(resolve_recipe(recipe.id))

@recipes_blueprint.route('/recipes/<int:recipe_id>', methods=['DELETE'])
def delete_recipe(recipe_id):
    name = storage.recipes.get_or_raise(recipe_id).name
    storage.recipes.delete(recipe_id)

    log_audit("DELETE", "Recipe", recipe_id, f"Deleted recipe {name}")
    db.session.commit()
    return jsonify({'message': _('Recipe deleted')})

@recipes_blueprint.route('/recipes/reorder', methods=['POST'])
def reorder_recipes():
    storage.recipes.reorder(reorder_items())
    return jsonify({'message': _('Order saved')})

# ----------------------------
# Excel
# ----------------------------
@recipes_blueprint.route('/recipes/export', methods=['GET'])
def export_recipes():
    return send_workbook('recipes')

@recipes_blueprint.route('/recipes/import', methods=['POST'])
def import_recipes():
    file = uploaded_file()
    try:
        result = import_workbook('recipes', file)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Recipe import failed: {e}")
        return jsonify({'message': _('Import failed, please check the file format')}), 400

    log_audit("IMPORT", "Recipe", details=f"{result['imported']} new, {result['updated']} updated")
    db.session.commit()
    result['message'] = _('Import finished: %(imported)s new, %(updated)s updated',
                          imported=result['imported'], updated=result['updated'])
    return jsonify(result)
