from datetime import datetime
from flask import current_app
from .models import (
    db, NotFoundError, Category, Material, Recipe, RecipeIngredient, Packaging, Product, ProductRecipe,
    ProductPackaging, CustomProduct, CustomProductItem, CustomProductPackaging, NutritionFacts
)


class Repository:
    """
    Persistence for one catalogue entity kind.

    ``children`` maps a relationship attribute on the owner to the child model
    it holds; a child list passed to ``create``/``update`` replaces every
    existing row of that relationship.  Each mutating call is its own unit of
    work: it commits on success and rolls back before re-raising on failure.
    """

    def __init__(self, model, kind, children=None, category_column='category'):
        self.model = model
        self.kind = kind
        self.children = children or {}
        self.category_column = category_column

    def list(self, search=None, category=None):
        query = self.model.query
        if search:
            query = query.filter(self.model.name.ilike(f"%{search}%"))
        if category:
            query = query.filter(getattr(self.model, self.category_column) == category)
        return query.order_by(self.model.sort_order.asc(), self.model.updated_at.desc()).all()

    def get(self, entity_id):
        return db.session.get(self.model, entity_id)

    def get_or_raise(self, entity_id):
        entity = self.get(entity_id)
        if entity is None:
            raise NotFoundError(self.kind, entity_id)
        return entity

    def get_by_name(self, name):
        return self.model.query.filter_by(name=name).order_by(self.model.id.asc()).first()

    def create(self, fields, children=None):
        try:
            entity = self.model(**fields)
            self._replace_children(entity, children)
            db.session.add(entity)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return entity

    def update(self, entity_id, fields, children=None):
        entity = self.get_or_raise(entity_id)
        try:
            for column, value in fields.items():
                setattr(entity, column, value)
            self._replace_children(entity, children)
            entity.updated_at = datetime.now()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return entity

    def delete(self, entity_id):
        entity = self.get_or_raise(entity_id)
        try:
            db.session.delete(entity)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.info(f"Deleted {self.kind} {entity_id}")

    def reorder(self, items):
        """Apply ``[{id, sortOrder}]``; unknown ids abort the whole reorder."""
        try:
            for item in items:
                entity = self.get_or_raise(int(item['id']))
                entity.sort_order = int(item['sortOrder'])
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    def _replace_children(self, entity, children):
        if not children:
            return
        for relation, rows in children.items():
            if rows is None:
                continue
            child_model = self.children[relation]
            setattr(entity, relation, [child_model(**row) for row in rows])


class NutritionRepository(Repository):
    """Nutrition facts are keyed by their owning material rather than by name."""

    def __init__(self):
        super().__init__(NutritionFacts, 'NutritionFacts')

    def list(self, search=None, category=None):
        query = NutritionFacts.query.join(Material, NutritionFacts.material_id == Material.id)
        if search:
            query = query.filter(Material.name.ilike(f"%{search}%"))
        if category:
            query = query.filter(Material.category == category)
        return query.order_by(Material.sort_order.asc(), Material.name.asc()).all()

    def get_by_material(self, material_id):
        return NutritionFacts.query.filter_by(material_id=material_id).first()

    def get_by_name(self, name):
        material = materials.get_by_name(name)
        return self.get_by_material(material.id) if material else None


categories = Repository(Category, 'Category', category_column='type')
materials = Repository(Material, 'Material')
packaging = Repository(Packaging, 'Packaging', category_column='type')
recipes = Repository(Recipe, 'Recipe', children={'ingredients': RecipeIngredient})
products = Repository(Product, 'Product', children={
    'recipe_links': ProductRecipe,
    'packaging_links': ProductPackaging,
})
custom_products = Repository(CustomProduct, 'CustomProduct', children={
    'items': CustomProductItem,
    'packaging_links': CustomProductPackaging,
})
nutrition = NutritionRepository()
