from bakecost import create_app
from bakecost.models import db
from sqlalchemy import text

app = create_app()

def add_indexes():
    print("Starting database index optimization...")

    indexes = [
        # List ordering (sort_order asc, updated_at desc) on every catalogue table
        "CREATE INDEX IF NOT EXISTS idx_material_order ON material (sort_order, updated_at);",
        "CREATE INDEX IF NOT EXISTS idx_recipe_order ON recipe (sort_order, updated_at);",
        "CREATE INDEX IF NOT EXISTS idx_packaging_order ON packaging (sort_order, updated_at);",
        "CREATE INDEX IF NOT EXISTS idx_product_order ON product (sort_order, updated_at);",
        "CREATE INDEX IF NOT EXISTS idx_custom_product_order ON custom_product (sort_order, updated_at);",

        # Packaging is filtered by type
        "CREATE INDEX IF NOT EXISTS idx_packaging_type ON packaging (type);",

        # Audit log browsing and per-material history
        "CREATE INDEX IF NOT EXISTS idx_audit_log_target ON audit_log (target_type, target_id, timestamp);",
        "CREATE INDEX IF NOT EXISTS idx_audit_log_action_ts ON audit_log (action, timestamp);"
    ]

    with app.app_context():
        for sql in indexes:
            try:
                print(f"Executing: {sql}")
                db.session.execute(text(sql))
                db.session.commit()
                print("  -> Success")
            except Exception as e:
                db.session.rollback()
                print(f"  -> Skipped/Failed: {e}")

    print("Index optimization complete.")

if __name__ == "__main__":
    add_indexes()
