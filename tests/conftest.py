import pytest
from decimal import Decimal

from bakecost import create_app
from bakecost.config import TestingConfig
from bakecost.models import db
from bakecost import storage


@pytest.fixture
def app(tmp_path):
    app = create_app(
        TestingConfig,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'bakecost-test.db'}",
        BACKUP_DIR=str(tmp_path / 'backups'),
        DAILY_BACKUP_TRACKER=str(tmp_path / 'daily-backup-tracker.json'),
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def make_material(name="Flour", price_per_gram="0.02", category="Dry goods"):
    return storage.materials.create({
        'name': name,
        'category': category,
        'price_per_gram': Decimal(price_per_gram),
    })


def make_packaging(name="Box", unit_cost="5", packaging_type="Box"):
    return storage.packaging.create({
        'name': name,
        'type': packaging_type,
        'unit_cost': Decimal(unit_cost),
    })


def make_recipe(name="Dough", ingredients=(), portions=4, weight="400", category="Bread"):
    """``ingredients`` is a sequence of ``(material, quantity)``."""
    return storage.recipes.create(
        {'name': name, 'category': category, 'total_portions': portions, 'total_weight': Decimal(weight)},
        {'ingredients': [{'material_id': material.id, 'quantity': Decimal(str(quantity))}
                         for material, quantity in ingredients]},
    )


def make_product(name="Loaf", selling_price="100", fee="10", recipes=(), packaging=(), category="Bread"):
    """``recipes`` is a sequence of ``(recipe, quantity, unit)``, ``packaging`` of ``(packaging, quantity)``."""
    return storage.products.create(
        {'name': name, 'category': category, 'selling_price': Decimal(selling_price),
         'management_fee_percentage': Decimal(fee)},
        {
            'recipe_links': [{'recipe_id': recipe.id, 'quantity': Decimal(str(quantity)), 'unit': unit}
                             for recipe, quantity, unit in recipes],
            'packaging_links': [{'packaging_id': item.id, 'quantity': quantity} for item, quantity in packaging],
        },
    )


def make_custom_product(name="Gift box", selling_price="300", fee="0", items=(), packaging=()):
    """``items`` is a sequence of ``(product, quantity)``."""
    return storage.custom_products.create(
        {'name': name, 'category': 'Gifts', 'selling_price': Decimal(selling_price),
         'management_fee_percentage': Decimal(fee)},
        {
            'items': [{'product_id': product.id, 'quantity': Decimal(str(quantity))} for product, quantity in items],
            'packaging_links': [{'packaging_id': item.id, 'quantity': quantity} for item, quantity in packaging],
        },
    )


def snapshot(**sections):
    return {'version': '1.0', 'timestamp': '2025-01-05T00:00:00+00:00', 'description': 'test', 'data': sections}
