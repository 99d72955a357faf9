from flask import Blueprint, request, jsonify
from flask_babel import gettext as _
from ..models import db, ValidationError
from ..records import clean_nutrition, pick
from ..costing import recipe_nutrition
from ..audit import log_audit
from .. import storage

nutrition_blueprint = Blueprint('nutrition', __name__)

# ----------------------------
# Nutrition facts (per 100g of a material)
# ----------------------------
@nutrition_blueprint.route('/nutrition', methods=['GET'])
def list_nutrition():
    entries = []
    for facts in storage.nutrition.list(request.args.get('search') or None, request.args.get('category') or None):
        entry = facts.material.to_dict()
        entry['nutritionFacts'] = facts.to_dict()
        entries.append(entry)
    return jsonify(entries)

@nutrition_blueprint.route('/nutrition', methods=['POST'])
def save_nutrition():
    """Create or replace the nutrition facts of one material."""
    data = request.get_json(silent=True) or {}
    material_id = pick(data, 'materialId', 'material_id', default=None)
    try:
        material = storage.materials.get(int(material_id))
    except (TypeError, ValueError):
        material = None
    if material is None:
        raise ValidationError(_('Unknown %(field)s: %(value)s', field='materialId', value=material_id))

    fields = clean_nutrition(data)
    existing = storage.nutrition.get_by_material(material.id)
    if existing is not None:
        facts = storage.nutrition.update(existing.id, fields)
        status = 200
    else:
        fields['material_id'] = material.id
        facts = storage.nutrition.create(fields)
        status = 201

    log_audit("UPDATE" if status == 200 else "CREATE", "NutritionFacts", facts.id,
              f"Nutrition facts for {material.name}")
    db.session.commit()
    return jsonify(facts.to_dict()), status

@nutrition_blueprint.route('/nutrition/<int:facts_id>', methods=['PUT'])
def update_nutrition(facts_id):
    facts = storage.nutrition.update(facts_id, clean_nutrition(request.get_json(silent=True) or {}))

    log_audit("UPDATE", "NutritionFacts", facts.id, f"Nutrition facts for {facts.material.name}")
    db.session.commit()
    return jsonify(facts.to_dict())

@nutrition_blueprint.route('/nutrition/<int:facts_id>', methods=['DELETE'])
def delete_nutrition(facts_id):
    storage.nutrition.delete(facts_id)

    log_audit("DELETE", "NutritionFacts", facts_id)
    db.session.commit()
    return jsonify({'message': _('Nutrition facts deleted')})

# ----------------------------
# Recipe nutrition
# ----------------------------
@nutrition_blueprint.route('/nutrition/recipes', methods=['GET'])
def list_recipe_nutrition():
    return jsonify([recipe_nutrition(recipe.id) for recipe in storage.recipes.list()])

@nutrition_blueprint.route('/nutrition/recipes/<int:recipe_id>', methods=['GET'])
def get_recipe_nutrition(recipe_id):
    return jsonify(recipe_nutrition(recipe_id))
