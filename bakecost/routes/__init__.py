from .materials import materials_blueprint
from .recipes import recipes_blueprint
from .packaging import packaging_blueprint
from .products import products_blueprint
from .custom_products import custom_products_blueprint
from .nutrition import nutrition_blueprint
from .categories import categories_blueprint
from .settings import settings_blueprint
from .dashboard import dashboard_blueprint
from .backup import backup_blueprint
from .audit import audit_blueprint
