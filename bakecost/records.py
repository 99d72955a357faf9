"""
Field cleaning for catalogue records.

Incoming JSON (API bodies, snapshot records, spreadsheet rows) uses the
camelCase wire names produced by ``to_dict()``.  The helpers here turn such a
mapping into column keyword arguments for the models, validating as they go.
Every failure raises ``ValidationError`` with a translated message.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from flask import current_app
from flask_babel import gettext as _
from .models import (
    db, Material, Recipe, RecipeIngredient, Packaging, Product, ProductRecipe, CustomProductItem, NutritionFacts,
    ValidationError, NUTRIENT_FIELDS
)

DEFAULT_CATEGORY = 'General'
RECIPE_UNITS = ('portions', 'grams')

_MISSING = object()


def pick(data, *keys, default=_MISSING):
    """Return the first key present in ``data`` (camelCase first, then snake_case)."""
    for key in keys:
        if key in data:
            return data[key]
    return default


MAX_INTEGER = 2 ** 31 - 1


def column_limit(attribute):
    """Smallest magnitude a ``Numeric(precision, scale)`` column can no longer hold."""
    column_type = attribute.property.columns[0].type
    return Decimal(10) ** (column_type.precision - column_type.scale)


def parse_decimal(value, field, column=None):
    """
    Parse ``value`` as a finite Decimal.

    With ``column`` (a model attribute of a Numeric column) the integer part
    must also fit the column's precision.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(_('%(field)s must be a number', field=field))
    try:
        if isinstance(value, float):
            number = Decimal(str(value))
        else:
            number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(_('%(field)s must be a number', field=field))
    if not number.is_finite():
        raise ValidationError(_('%(field)s must be a number', field=field))
    if column is not None and abs(number) >= column_limit(column):
        raise ValidationError(_('%(field)s is too large', field=field))
    return number


def parse_int(value, field):
    number = parse_decimal(value, field)
    if number != number.to_integral_value():
        raise ValidationError(_('%(field)s must be a whole number', field=field))
    if abs(number) > MAX_INTEGER:
        raise ValidationError(_('%(field)s is too large', field=field))
    return int(number)


def parse_name(value, field='name'):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(_('%(field)s is required', field=field))
    return value.strip()


def _optional_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_decimal(value, field, column=None):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_decimal(value, field, column)


def _optional_datetime(value):
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).replace(tzinfo=None)
    except ValueError:
        current_app.logger.warning(f"Ignoring unparseable purchase time: {value!r}")
        return None


def _common(data, fields, partial):
    """name / category / sortOrder shared by every catalogue kind"""
    name = pick(data, 'name')
    if name is not _MISSING or not partial:
        fields['name'] = parse_name(None if name is _MISSING else name)
    sort_order = pick(data, 'sortOrder', 'sort_order')
    if sort_order is not _MISSING and sort_order is not None:
        fields['sort_order'] = parse_int(sort_order, 'sortOrder')


def _category(data, fields, partial, column='category'):
    category = pick(data, 'category', column)
    if category is _MISSING:
        if not partial:
            fields[column] = DEFAULT_CATEGORY
        return
    fields[column] = _optional_text(category) or DEFAULT_CATEGORY


def clean_material(data, partial=False):
    fields = {}
    _common(data, fields, partial)
    _category(data, fields, partial)

    for wire, column in (('purchaseAmount', 'purchase_amount'), ('purchaseWeight', 'purchase_weight'),
                         ('managementFeeRate', 'management_fee_rate')):
        value = pick(data, wire, column)
        if value is not _MISSING:
            fields[column] = _optional_decimal(value, wire, getattr(Material, column))
            if fields[column] is not None and fields[column] < 0:
                raise ValidationError(_('%(field)s cannot be negative', field=wire))

    price = pick(data, 'pricePerGram', 'price_per_gram')
    if price is _MISSING or price is None or price == '':
        derived = derive_price_per_gram(fields.get('purchase_amount'), fields.get('purchase_weight'),
                                        fields.get('management_fee_rate'))
        if derived is not None:
            if derived >= column_limit(Material.price_per_gram):
                raise ValidationError(_('%(field)s is too large', field='pricePerGram'))
            fields['price_per_gram'] = derived
        elif not partial:
            raise ValidationError(_('%(field)s is required', field='pricePerGram'))
    else:
        fields['price_per_gram'] = parse_decimal(price, 'pricePerGram', Material.price_per_gram)
        if fields['price_per_gram'] < 0:
            raise ValidationError(_('%(field)s cannot be negative', field='pricePerGram'))

    for wire, column in (('notes', 'notes'), ('purchaseLocation', 'purchase_location')):
        value = pick(data, wire, column)
        if value is not _MISSING:
            fields[column] = _optional_text(value)
    purchase_time = pick(data, 'purchaseTime', 'purchase_time')
    if purchase_time is not _MISSING:
        fields['purchase_time'] = _optional_datetime(purchase_time)
    return fields


def derive_price_per_gram(amount, weight, fee_rate=None):
    """Price per gram from a purchase: amount / weight, plus the management fee rate."""
    if amount is None or weight is None or weight <= 0:
        return None
    price = amount / weight
    if fee_rate:
        price = price * (1 + fee_rate / 100)
    return price


def clean_packaging(data, partial=False):
    fields = {}
    _common(data, fields, partial)
    _category(data, fields, partial, column='type')

    unit_cost = pick(data, 'unitCost', 'unit_cost')
    if unit_cost is not _MISSING or not partial:
        fields['unit_cost'] = parse_decimal(None if unit_cost is _MISSING else unit_cost, 'unitCost',
                                           Packaging.unit_cost)
        if fields['unit_cost'] < 0:
            raise ValidationError(_('%(field)s cannot be negative', field='unitCost'))

    notes = pick(data, 'notes')
    if notes is not _MISSING:
        fields['notes'] = _optional_text(notes)
    return fields


def clean_recipe(data, partial=False):
    fields = {}
    _common(data, fields, partial)
    _category(data, fields, partial)

    portions = pick(data, 'totalPortions', 'total_portions')
    if portions is not _MISSING or not partial:
        fields['total_portions'] = parse_int(None if portions is _MISSING else portions, 'totalPortions')
        if fields['total_portions'] < 1:
            raise ValidationError(_('Total portions must be at least 1'))

    weight = pick(data, 'totalWeight', 'total_weight')
    if weight is not _MISSING or not partial:
        fields['total_weight'] = parse_decimal(None if weight is _MISSING else weight, 'totalWeight',
                                              Recipe.total_weight)
        if fields['total_weight'] <= 0:
            raise ValidationError(_('Total weight must be greater than 0'))

    description = pick(data, 'description')
    if description is not _MISSING:
        fields['description'] = _optional_text(description)
    return fields


def clean_product(data, partial=False):
    """Also used for custom products, which share the same columns."""
    fields = {}
    _common(data, fields, partial)
    _category(data, fields, partial)

    price = pick(data, 'sellingPrice', 'selling_price')
    if price is not _MISSING or not partial:
        fields['selling_price'] = parse_decimal(None if price is _MISSING else price, 'sellingPrice',
                                               Product.selling_price)
        if fields['selling_price'] < 0:
            raise ValidationError(_('%(field)s cannot be negative', field='sellingPrice'))

    fee = pick(data, 'managementFeePercentage', 'management_fee_percentage')
    if fee is _MISSING or fee is None or fee == '':
        if not partial:
            fields['management_fee_percentage'] = Decimal(
                current_app.config.get('DEFAULT_MANAGEMENT_FEE_PERCENTAGE', '3.00'))
    else:
        fields['management_fee_percentage'] = parse_decimal(fee, 'managementFeePercentage',
                                                           Product.management_fee_percentage)
        if not 0 <= fields['management_fee_percentage'] <= 100:
            raise ValidationError(_('Management fee must be between 0 and 100'))

    description = pick(data, 'description')
    if description is not _MISSING:
        fields['description'] = _optional_text(description)
    return fields


def clean_nutrition(data):
    fields = {}
    for wire, column in NUTRIENT_FIELDS.items():
        value = pick(data, wire, column, default=None)
        number = _optional_decimal(value, wire, getattr(NutritionFacts, column))
        if number is not None and number < 0:
            raise ValidationError(_('%(field)s cannot be negative', field=wire))
        fields[column] = number
    return fields


# ----------------------------
# Child rows submitted by id (API bodies)
# ----------------------------
def _require(model, entity_id, field):
    try:
        entity = db.session.get(model, int(entity_id))
    except (TypeError, ValueError):
        entity = None
    if entity is None:
        raise ValidationError(_('Unknown %(field)s: %(value)s', field=field, value=entity_id))
    return entity.id


def clean_ingredient_rows(rows, drop_non_positive=True):
    cleaned = []
    for row in rows or []:
        quantity = parse_decimal(pick(row, 'quantity', default=None), 'quantity', RecipeIngredient.quantity)
        if drop_non_positive and quantity <= 0:
            continue
        cleaned.append({
            'material_id': _require(Material, pick(row, 'materialId', 'material_id', default=None), 'materialId'),
            'quantity': quantity,
        })
    return cleaned


def clean_recipe_link_rows(rows, drop_non_positive=True):
    cleaned = []
    for row in rows or []:
        quantity = parse_decimal(pick(row, 'quantity', default=None), 'quantity', ProductRecipe.quantity)
        if drop_non_positive and quantity <= 0:
            continue
        unit = pick(row, 'unit', default='portions') or 'portions'
        if unit not in RECIPE_UNITS:
            raise ValidationError(_('Unit must be portions or grams'))
        cleaned.append({
            'recipe_id': _require(Recipe, pick(row, 'recipeId', 'recipe_id', default=None), 'recipeId'),
            'quantity': quantity,
            'unit': unit,
        })
    return cleaned


def clean_packaging_rows(rows, drop_non_positive=True):
    cleaned = []
    for row in rows or []:
        quantity = parse_int(pick(row, 'quantity', default=None), 'quantity')
        if drop_non_positive and quantity <= 0:
            continue
        cleaned.append({
            'packaging_id': _require(Packaging, pick(row, 'packagingId', 'packaging_id', default=None), 'packagingId'),
            'quantity': quantity,
        })
    return cleaned


def clean_item_rows(rows, drop_non_positive=True):
    cleaned = []
    for row in rows or []:
        quantity = parse_decimal(pick(row, 'quantity', default=None), 'quantity', CustomProductItem.quantity)
        if drop_non_positive and quantity <= 0:
            continue
        cleaned.append({
            'product_id': _require(Product, pick(row, 'productId', 'product_id', default=None), 'productId'),
            'quantity': quantity,
        })
    return cleaned
