from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Custom exceptions
class NotFoundError(Exception):
    """Raised when a requested id does not exist in storage"""

    def __init__(self, kind, entity_id):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id

class ValidationError(Exception):
    """Raised when incoming data fails write-time validation"""
    pass

class UnresolvedReferenceError(Exception):
    """Raised when a name in a snapshot record matches no restored entity"""

    def __init__(self, kind, name):
        super().__init__(f"unresolved {kind} reference '{name}'")
        self.kind = kind
        self.name = name

class MalformedRecordError(Exception):
    """Raised when a single snapshot or import record cannot be restored"""

    def __init__(self, kind, name, reason):
        super().__init__(f"malformed {kind} record '{name}': {reason}")
        self.kind = kind
        self.name = name
        self.reason = reason

class CorruptSnapshotError(Exception):
    """Raised when a snapshot cannot be parsed at all; nothing is written"""
    pass

class RestoreBusyError(Exception):
    """Raised when a restore is requested while another one is running"""
    pass


def _iso(value):
    return value.isoformat() if value else None


class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='material')  # 'material', 'recipe', 'product', 'custom_product', 'packaging'
    color = db.Column(db.String(20), nullable=False, default='#6B7280')
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    __table_args__ = (db.UniqueConstraint('name', 'type'),)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'color': self.color,
            'sortOrder': self.sort_order
        }


class Material(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=False, index=True)
    price_per_gram = db.Column(db.Numeric(10, 4), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # Optional purchase details; price_per_gram can be derived from them
    purchase_amount = db.Column(db.Numeric(10, 2), nullable=True)
    purchase_weight = db.Column(db.Numeric(10, 2), nullable=True)  # grams
    management_fee_rate = db.Column(db.Numeric(5, 2), nullable=True)  # percent
    purchase_time = db.Column(db.DateTime, nullable=True)
    purchase_location = db.Column(db.String(200), nullable=True)

    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    nutrition_facts = db.relationship('NutritionFacts', backref='material', uselist=False, cascade='all, delete')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'pricePerGram': self.price_per_gram,
            'notes': self.notes,
            'purchaseAmount': self.purchase_amount,
            'purchaseWeight': self.purchase_weight,
            'managementFeeRate': self.management_fee_rate,
            'purchaseTime': _iso(self.purchase_time),
            'purchaseLocation': self.purchase_location,
            'sortOrder': self.sort_order,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at)
        }


class Recipe(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=False, index=True)
    total_portions = db.Column(db.Integer, nullable=False)
    total_weight = db.Column(db.Numeric(10, 2), nullable=False)  # grams
    description = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    ingredients = db.relationship('RecipeIngredient', backref='recipe', lazy=True,
                                  cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'totalPortions': self.total_portions,
            'totalWeight': self.total_weight,
            'description': self.description,
            'sortOrder': self.sort_order,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at)
        }


class RecipeIngredient(db.Model):
    __tablename__ = 'recipe_ingredient'

    id = db.Column(db.Integer, primary_key=True)
    recipe_id = db.Column(db.Integer, db.ForeignKey('recipe.id', ondelete='CASCADE'), nullable=False, index=True)
    material_id = db.Column(db.Integer, db.ForeignKey('material.id', ondelete='CASCADE'), nullable=False, index=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)  # grams

    material = db.relationship('Material', backref=db.backref('recipe_links', cascade='save-update, merge, delete'))

    def to_dict(self):
        return {
            'id': self.id,
            'recipeId': self.recipe_id,
            'materialId': self.material_id,
            'quantity': self.quantity
        }


class Packaging(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    type = db.Column(db.String(100), nullable=False)
    unit_cost = db.Column(db.Numeric(10, 2), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'unitCost': self.unit_cost,
            'notes': self.notes,
            'sortOrder': self.sort_order,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at)
        }


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=False, index=True)
    selling_price = db.Column(db.Numeric(10, 2), nullable=False)
    management_fee_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=3)
    description = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    recipe_links = db.relationship('ProductRecipe', backref='product', lazy=True,
                                   cascade='all, delete-orphan')
    packaging_links = db.relationship('ProductPackaging', backref='product', lazy=True,
                                      cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'sellingPrice': self.selling_price,
            'managementFeePercentage': self.management_fee_percentage,
            'description': self.description,
            'sortOrder': self.sort_order,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at)
        }


class ProductRecipe(db.Model):
    __tablename__ = 'product_recipe'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    recipe_id = db.Column(db.Integer, db.ForeignKey('recipe.id', ondelete='CASCADE'), nullable=False, index=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    unit = db.Column(db.String(20), nullable=False, default='portions')  # 'portions' or 'grams'

    recipe = db.relationship('Recipe', backref=db.backref('product_links', cascade='save-update, merge, delete'))

    def to_dict(self):
        return {
            'id': self.id,
            'productId': self.product_id,
            'recipeId': self.recipe_id,
            'quantity': self.quantity,
            'unit': self.unit
        }


class ProductPackaging(db.Model):
    __tablename__ = 'product_packaging'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    packaging_id = db.Column(db.Integer, db.ForeignKey('packaging.id', ondelete='CASCADE'), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    packaging = db.relationship('Packaging', backref=db.backref('product_links', cascade='save-update, merge, delete'))

    def to_dict(self):
        return {
            'id': self.id,
            'productId': self.product_id,
            'packagingId': self.packaging_id,
            'quantity': self.quantity
        }


class CustomProduct(db.Model):
    __tablename__ = 'custom_product'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=False, index=True)
    selling_price = db.Column(db.Numeric(10, 2), nullable=False)
    management_fee_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=3)
    description = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    items = db.relationship('CustomProductItem', backref='custom_product', lazy=True,
                            cascade='all, delete-orphan')
    packaging_links = db.relationship('CustomProductPackaging', backref='custom_product', lazy=True,
                                      cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'sellingPrice': self.selling_price,
            'managementFeePercentage': self.management_fee_percentage,
            'description': self.description,
            'sortOrder': self.sort_order,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at)
        }


class CustomProductItem(db.Model):
    __tablename__ = 'custom_product_item'

    id = db.Column(db.Integer, primary_key=True)
    custom_product_id = db.Column(db.Integer, db.ForeignKey('custom_product.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    quantity = db.Column(db.Numeric(10, 2), nullable=False)

    product = db.relationship('Product', backref=db.backref('custom_product_links', cascade='save-update, merge, delete'))

    def to_dict(self):
        return {
            'id': self.id,
            'customProductId': self.custom_product_id,
            'productId': self.product_id,
            'quantity': self.quantity
        }


class CustomProductPackaging(db.Model):
    __tablename__ = 'custom_product_packaging'

    id = db.Column(db.Integer, primary_key=True)
    custom_product_id = db.Column(db.Integer, db.ForeignKey('custom_product.id', ondelete='CASCADE'), nullable=False, index=True)
    packaging_id = db.Column(db.Integer, db.ForeignKey('packaging.id', ondelete='CASCADE'), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    packaging = db.relationship('Packaging', backref=db.backref('custom_product_links', cascade='save-update, merge, delete'))

    def to_dict(self):
        return {
            'id': self.id,
            'customProductId': self.custom_product_id,
            'packagingId': self.packaging_id,
            'quantity': self.quantity
        }


NUTRIENT_FIELDS = {
    # wire name -> column name, all values per 100g (sodium in mg)
    'calories': 'calories',
    'protein': 'protein',
    'fat': 'fat',
    'saturatedFat': 'saturated_fat',
    'transFat': 'trans_fat',
    'carbohydrates': 'carbohydrates',
    'sugar': 'sugar',
    'sodium': 'sodium',
}


class NutritionFacts(db.Model):
    __tablename__ = 'nutrition_facts'

    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(db.Integer, db.ForeignKey('material.id', ondelete='CASCADE'), nullable=False, unique=True)
    calories = db.Column(db.Numeric(8, 2), nullable=True)
    protein = db.Column(db.Numeric(8, 2), nullable=True)
    fat = db.Column(db.Numeric(8, 2), nullable=True)
    saturated_fat = db.Column(db.Numeric(8, 2), nullable=True)
    trans_fat = db.Column(db.Numeric(8, 2), nullable=True)
    carbohydrates = db.Column(db.Numeric(8, 2), nullable=True)
    sugar = db.Column(db.Numeric(8, 2), nullable=True)
    sodium = db.Column(db.Numeric(8, 2), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    def to_dict(self):
        data = {
            'id': self.id,
            'materialId': self.material_id,
        }
        for wire_name, column in NUTRIENT_FIELDS.items():
            data[wire_name] = getattr(self, column)
        data['createdAt'] = _iso(self.created_at)
        data['updatedAt'] = _iso(self.updated_at)
        return data


class UserSettings(db.Model):
    __tablename__ = 'user_settings'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), nullable=False, unique=True)
    profit_margin_low = db.Column(db.Numeric(5, 2), nullable=False, default=20)
    profit_margin_high = db.Column(db.Numeric(5, 2), nullable=False, default=40)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    def to_dict(self):
        return {
            'username': self.username,
            'profitMarginLow': self.profit_margin_low,
            'profitMarginHigh': self.profit_margin_high
        }


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=datetime.now, nullable=False)
    action = db.Column(db.String(50), nullable=False)
    target_type = db.Column(db.String(50), nullable=False)
    target_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            'action': self.action,
            'targetType': self.target_type,
            'targetId': self.target_id,
            'details': self.details
        }
