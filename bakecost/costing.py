from decimal import Decimal, InvalidOperation
from flask import current_app
from .models import db, NotFoundError, Material, Recipe, Product, CustomProduct, NUTRIENT_FIELDS
from .settings import margin_status
from . import storage

ZERO = Decimal('0')
HUNDRED = Decimal('100')


def to_decimal(value, field=None):
    """
    Parse a stored numeric field for cost arithmetic.

    Missing, unparseable or non-finite values become 0 and are logged, so one
    bad price degrades a single contribution instead of every ancestor total.
    """
    if isinstance(value, Decimal) and value.is_finite():
        return value
    try:
        if value is None or isinstance(value, bool):
            raise InvalidOperation
        number = Decimal(str(value))
        if not number.is_finite():
            raise InvalidOperation
        return number
    except (InvalidOperation, ValueError):
        current_app.logger.warning(f"Treating unparseable {field or 'number'} {value!r} as 0")
        return ZERO


def _divide(numerator, denominator):
    return numerator / denominator if denominator > 0 else ZERO


# ----------------------------
# Recipes
# ----------------------------
def recipe_view(recipe, memo):
    key = ('recipe', recipe.id)
    if key in memo:
        return memo[key]

    total_cost = ZERO
    ingredients = []
    for ingredient in recipe.ingredients:
        material = ingredient.material
        quantity = to_decimal(ingredient.quantity, 'ingredient quantity')
        line_cost = ZERO
        if material is None:
            current_app.logger.warning(
                f"Recipe '{recipe.name}' references missing material {ingredient.material_id}")
        elif quantity > 0:
            line_cost = quantity * to_decimal(material.price_per_gram, f"price of '{material.name}'")
        total_cost += line_cost

        row = ingredient.to_dict()
        row['material'] = material.to_dict() if material else None
        row['cost'] = line_cost
        ingredients.append(row)

    portions = to_decimal(recipe.total_portions, 'total portions')
    weight = to_decimal(recipe.total_weight, 'total weight')

    view = recipe.to_dict()
    view.update({
        'ingredients': ingredients,
        'totalCost': total_cost,
        'costPerPortion': _divide(total_cost, portions),
        'costPerGram': _divide(total_cost, weight),
    })
    memo[key] = view
    return view


def resolve_recipe(recipe_id, memo=None):
    memo = {} if memo is None else memo
    recipe = db.session.get(Recipe, recipe_id)
    if recipe is None:
        raise NotFoundError('Recipe', recipe_id)
    return recipe_view(recipe, memo)


def resolve_all_recipes(search=None, category=None):
    memo = {}
    return [recipe_view(recipe, memo) for recipe in storage.recipes.list(search, category)]


# ----------------------------
# Products
# ----------------------------
def _packaging_lines(links, owner_name):
    total = ZERO
    lines = []
    for link in links:
        packaging = link.packaging
        quantity = to_decimal(link.quantity, 'packaging quantity')
        line_cost = ZERO
        if packaging is None:
            current_app.logger.warning(f"'{owner_name}' references missing packaging {link.packaging_id}")
        elif quantity > 0:
            line_cost = quantity * to_decimal(packaging.unit_cost, f"unit cost of '{packaging.name}'")
        total += line_cost

        row = link.to_dict()
        row['packaging'] = packaging.to_dict() if packaging else None
        row['cost'] = line_cost
        lines.append(row)
    return total, lines


def _pricing(view, ingredient_cost, packaging_cost, selling_price, fee_percentage):
    """Fill in the cost / fee / profit block shared by products and custom products."""
    total_cost = ingredient_cost + packaging_cost
    management_fee = total_cost * fee_percentage / HUNDRED
    adjusted_cost = total_cost + management_fee
    profit = selling_price - adjusted_cost
    view.update({
        'packagingCost': packaging_cost,
        'totalCost': total_cost,
        'managementFee': management_fee,
        'adjustedCost': adjusted_cost,
        'profit': profit,
        'profitMargin': profit / selling_price * HUNDRED if selling_price > 0 else ZERO,
    })
    return view


def product_view(product, memo, settings=None):
    key = ('product', product.id)
    if key in memo:
        view = memo[key]
    else:
        recipe_cost = ZERO
        recipes = []
        for link in product.recipe_links:
            recipe = link.recipe
            quantity = to_decimal(link.quantity, 'recipe quantity')
            line_cost = ZERO
            embedded = None
            if recipe is None:
                current_app.logger.warning(f"Product '{product.name}' references missing recipe {link.recipe_id}")
            else:
                embedded = recipe_view(recipe, memo)
                if quantity > 0:
                    unit_cost = embedded['costPerPortion'] if link.unit == 'portions' else embedded['costPerGram']
                    line_cost = unit_cost * quantity
            recipe_cost += line_cost

            row = link.to_dict()
            row['recipe'] = embedded
            row['cost'] = line_cost
            recipes.append(row)

        packaging_cost, packaging = _packaging_lines(product.packaging_links, product.name)

        view = product.to_dict()
        view.update({'recipes': recipes, 'packaging': packaging, 'recipeCost': recipe_cost})
        _pricing(view, recipe_cost, packaging_cost,
                 to_decimal(product.selling_price, 'selling price'),
                 to_decimal(product.management_fee_percentage, 'management fee percentage'))
        memo[key] = view

    if settings is not None:
        view['marginStatus'] = margin_status(view['profitMargin'], settings)
    return view


def resolve_product(product_id, memo=None, settings=None):
    memo = {} if memo is None else memo
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError('Product', product_id)
    return product_view(product, memo, settings)


def resolve_all_products(search=None, category=None, settings=None):
    memo = {}
    return [product_view(product, memo, settings) for product in storage.products.list(search, category)]


# ----------------------------
# Custom products
# ----------------------------
def custom_product_view(custom_product, memo):
    key = ('custom_product', custom_product.id)
    if key in memo:
        return memo[key]

    products_cost = ZERO
    items = []
    for item in custom_product.items:
        product = item.product
        quantity = to_decimal(item.quantity, 'item quantity')
        line_cost = ZERO
        embedded = None
        if product is None:
            current_app.logger.warning(
                f"Custom product '{custom_product.name}' references missing product {item.product_id}")
        else:
            embedded = product_view(product, memo)
            if quantity > 0:
                line_cost = embedded['adjustedCost'] * quantity
        products_cost += line_cost

        row = item.to_dict()
        row['product'] = embedded
        row['cost'] = line_cost
        items.append(row)

    packaging_cost, packaging = _packaging_lines(custom_product.packaging_links, custom_product.name)

    view = custom_product.to_dict()
    view.update({'items': items, 'packaging': packaging, 'productsCost': products_cost})
    _pricing(view, products_cost, packaging_cost,
             to_decimal(custom_product.selling_price, 'selling price'),
             to_decimal(custom_product.management_fee_percentage, 'management fee percentage'))
    memo[key] = view
    return view


def resolve_custom_product(custom_product_id, memo=None):
    memo = {} if memo is None else memo
    custom_product = db.session.get(CustomProduct, custom_product_id)
    if custom_product is None:
        raise NotFoundError('CustomProduct', custom_product_id)
    return custom_product_view(custom_product, memo)


def resolve_all_custom_products(search=None, category=None):
    memo = {}
    return [custom_product_view(custom_product, memo)
            for custom_product in storage.custom_products.list(search, category)]


# ----------------------------
# Nutrition and dashboard
# ----------------------------
def recipe_nutrition(recipe_id):
    """
    Per-portion nutrition of a recipe from its ingredients' facts (per 100g).

    Ingredients without nutrition facts are listed in ``missingNutrition`` and
    contribute nothing.
    """
    recipe = db.session.get(Recipe, recipe_id)
    if recipe is None:
        raise NotFoundError('Recipe', recipe_id)

    totals = {wire: ZERO for wire in NUTRIENT_FIELDS}
    missing = []
    for ingredient in recipe.ingredients:
        material = ingredient.material
        if material is None:
            continue
        facts = material.nutrition_facts
        if facts is None:
            missing.append(material.name)
            continue
        quantity = to_decimal(ingredient.quantity, 'ingredient quantity')
        if quantity <= 0:
            continue
        for wire, column in NUTRIENT_FIELDS.items():
            value = getattr(facts, column)
            if value is not None:
                totals[wire] += to_decimal(value, wire) * quantity / HUNDRED

    portions = to_decimal(recipe.total_portions, 'total portions')
    weight = to_decimal(recipe.total_weight, 'total weight')
    return {
        'recipeId': recipe.id,
        'recipeName': recipe.name,
        'totalPortions': recipe.total_portions,
        'portionWeight': _divide(weight, portions),
        'perPortion': {wire: _divide(total, portions) for wire, total in totals.items()},
        'per100g': {wire: _divide(total * HUNDRED, weight) for wire, total in totals.items()},
        'missingNutrition': missing,
    }


def dashboard_stats(settings):
    products = resolve_all_products(settings=settings)
    margins = [view['profitMargin'] for view in products]
    return {
        'materialsCount': Material.query.count(),
        'recipesCount': Recipe.query.count(),
        'productsCount': len(products),
        'customProductsCount': CustomProduct.query.count(),
        'averageProfitMargin': sum(margins, ZERO) / len(margins) if margins else ZERO,
        'lowMarginProducts': sum(1 for view in products if view['marginStatus'] == 'low'),
    }
