"""
Tests for the HTTP API.

Covers:
  - Material CRUD, price derivation and change history
  - Recipe, product and custom product endpoints returning derived costs
  - Validation errors (400) and missing entities (404)
  - Settings thresholds, categories and the dashboard
  - Backup files and restore uploads (400 for corrupt files, 409 while busy)
  - The audit log
"""

import io
import json
from decimal import Decimal

import pytest

from bakecost.models import Material, Product, AuditLog
from tests.conftest import make_material, make_recipe, make_product, snapshot


# ===========================================================================
# Materials
# ===========================================================================


class TestMaterials:
    def test_create_and_get(self, client):
        resp = client.post("/api/materials", json={"name": "Flour", "category": "Dry goods", "pricePerGram": "0.02"})
        assert resp.status_code == 201
        material_id = resp.get_json()["id"]

        resp = client.get(f"/api/materials/{material_id}")

        assert resp.status_code == 200
        assert resp.get_json()["name"] == "Flour"
        assert Decimal(resp.get_json()["pricePerGram"]) == Decimal("0.02")

    def test_price_derived_from_purchase(self, client):
        resp = client.post("/api/materials", json={
            "name": "Butter", "category": "Dairy",
            "purchaseAmount": "100", "purchaseWeight": "1000", "managementFeeRate": "10",
        })

        assert resp.status_code == 201
        assert Decimal(resp.get_json()["pricePerGram"]) == Decimal("0.11")

    @pytest.mark.parametrize("body", [
        {"category": "Dry goods", "pricePerGram": "0.02"},
        {"name": "Flour", "category": "Dry goods", "pricePerGram": "cheap"},
        {"name": "Flour", "category": "Dry goods", "pricePerGram": "-1"},
        {"name": "Flour", "category": "Dry goods"},
        {"name": "Flour", "category": "Dry goods", "pricePerGram": "1e400"},
        {"name": "Flour", "category": "Dry goods", "purchaseAmount": "99999999", "purchaseWeight": "0.01"},
    ])
    def test_invalid_bodies_are_rejected(self, client, body):
        resp = client.post("/api/materials", json=body)

        assert resp.status_code == 400
        assert resp.get_json()["message"]
        assert Material.query.count() == 0

    def test_search_filter(self, app, client):
        make_material("Flour")
        make_material("Butter", category="Dairy")

        names = [m["name"] for m in client.get("/api/materials?search=flo").get_json()]
        by_category = [m["name"] for m in client.get("/api/materials?category=Dairy").get_json()]

        assert names == ["Flour"]
        assert by_category == ["Butter"]

    def test_update_is_recorded_in_history(self, app, client):
        flour = make_material("Flour", "0.02")

        resp = client.put(f"/api/materials/{flour.id}", json={"pricePerGram": "0.03"})
        history = client.get(f"/api/materials/{flour.id}/history").get_json()

        assert resp.status_code == 200
        assert Decimal(resp.get_json()["pricePerGram"]) == Decimal("0.03")
        assert history[0]["details"] == "Changed: price_per_gram"

    def test_history_page_below_one_is_the_first_page(self, app, client):
        flour = make_material("Flour", "0.02")
        client.put(f"/api/materials/{flour.id}", json={"pricePerGram": "0.03"})

        resp = client.get(f"/api/materials/{flour.id}/history?page=0")

        assert resp.status_code == 200
        assert len(resp.get_json()) == 1

    def test_delete_then_404(self, app, client):
        flour = make_material("Flour")

        assert client.delete(f"/api/materials/{flour.id}").status_code == 200
        assert client.get(f"/api/materials/{flour.id}").status_code == 404
        assert client.delete(f"/api/materials/{flour.id}").status_code == 404

    def test_reorder(self, app, client):
        first = make_material("A")
        second = make_material("B")

        resp = client.post("/api/materials/reorder", json=[
            {"id": first.id, "sortOrder": 2}, {"id": second.id, "sortOrder": 1},
        ])

        assert resp.status_code == 200
        assert [m["name"] for m in client.get("/api/materials").get_json()] == ["B", "A"]


# ===========================================================================
# Recipes, products, custom products
# ===========================================================================


class TestRecipes:
    def test_create_returns_costs(self, app, client):
        flour = make_material("Flour", "0.02")

        resp = client.post("/api/recipes", json={
            "name": "Dough", "category": "Bread", "totalPortions": 4, "totalWeight": 400,
            "ingredients": [{"materialId": flour.id, "quantity": 1000}, {"materialId": flour.id, "quantity": 0}],
        })

        assert resp.status_code == 201
        body = resp.get_json()
        assert Decimal(body["totalCost"]) == Decimal("20")
        assert Decimal(body["costPerPortion"]) == Decimal("5")
        assert len(body["ingredients"]) == 1

    @pytest.mark.parametrize("body", [
        {"name": "Dough", "totalPortions": 0, "totalWeight": 400},
        {"name": "Dough", "totalPortions": 4, "totalWeight": 0},
        {"name": "Dough", "totalPortions": 4, "totalWeight": 400, "ingredients": [{"materialId": 999, "quantity": 1}]},
    ])
    def test_invalid_recipes(self, client, body):
        assert client.post("/api/recipes", json=body).status_code == 400

    def test_missing_recipe(self, client):
        resp = client.get("/api/recipes/42")

        assert resp.status_code == 404
        assert "Recipe" in resp.get_json()["message"]


class TestProducts:
    def test_product_costs_and_margin_status(self, app, client):
        flour = make_material("Flour", "0.02")
        recipe = make_recipe("Dough", [(flour, 1000)], portions=1, weight="100")

        resp = client.post("/api/products", json={
            "name": "Loaf", "category": "Bread", "sellingPrice": "100", "managementFeePercentage": "10",
            "recipes": [{"recipeId": recipe.id, "quantity": 2, "unit": "portions"}],
        })

        assert resp.status_code == 201
        body = resp.get_json()
        assert Decimal(body["adjustedCost"]) == Decimal("44")
        assert Decimal(body["profitMargin"]) == Decimal("56")
        assert body["marginStatus"] == "high"

    def test_default_management_fee(self, client):
        resp = client.post("/api/products", json={"name": "Empty", "category": "Bread", "sellingPrice": "10"})

        assert Decimal(resp.get_json()["managementFeePercentage"]) == Decimal("3")

    def test_unknown_unit_rejected(self, app, client):
        flour = make_material("Flour", "0.02")
        recipe = make_recipe("Dough", [(flour, 1000)])

        resp = client.post("/api/products", json={
            "name": "Loaf", "sellingPrice": "100", "recipes": [{"recipeId": recipe.id, "quantity": 1, "unit": "kg"}],
        })

        assert resp.status_code == 400

    def test_custom_product(self, app, client):
        flour = make_material("Flour", "0.02")
        recipe = make_recipe("Dough", [(flour, 1000)], portions=1, weight="100")
        loaf = make_product("Loaf", selling_price="100", fee="10", recipes=[(recipe, 2, "portions")])

        resp = client.post("/api/custom-products", json={
            "name": "Gift box", "category": "Gifts", "sellingPrice": "200", "managementFeePercentage": "0",
            "items": [{"productId": loaf.id, "quantity": 3}],
        })

        assert resp.status_code == 201
        assert Decimal(resp.get_json()["adjustedCost"]) == Decimal("132")


# ===========================================================================
# Nutrition, settings, categories, dashboard
# ===========================================================================


class TestNutrition:
    def test_upsert_by_material(self, app, client):
        flour = make_material("Flour")

        first = client.post("/api/nutrition", json={"materialId": flour.id, "calories": 364})
        second = client.post("/api/nutrition", json={"materialId": flour.id, "calories": 360})

        assert first.status_code == 201
        assert second.status_code == 200
        listed = client.get("/api/nutrition").get_json()
        assert len(listed) == 1
        assert Decimal(listed[0]["nutritionFacts"]["calories"]) == Decimal("360")

    def test_unknown_material(self, client):
        assert client.post("/api/nutrition", json={"materialId": 5, "calories": 1}).status_code == 400


class TestSettings:
    def test_defaults(self, client):
        body = client.get("/api/settings").get_json()

        assert Decimal(body["profitMarginLow"]) == Decimal("20")
        assert Decimal(body["profitMarginHigh"]) == Decimal("40")

    def test_update_changes_margin_status(self, app, client):
        flour = make_material("Flour", "0.02")
        recipe = make_recipe("Dough", [(flour, 1000)], portions=1, weight="100")
        product = make_product("Loaf", selling_price="100", fee="10", recipes=[(recipe, 2, "portions")])

        resp = client.put("/api/settings/profit-margin", json={"profitMarginLow": 60, "profitMarginHigh": 80})

        assert resp.status_code == 200
        assert client.get(f"/api/products/{product.id}").get_json()["marginStatus"] == "low"

    @pytest.mark.parametrize("body", [
        {"profitMarginLow": 50, "profitMarginHigh": 10},
        {"profitMarginLow": -1, "profitMarginHigh": 10},
        {"profitMarginLow": 10, "profitMarginHigh": 101},
        {"profitMarginLow": "abc", "profitMarginHigh": 10},
    ])
    def test_invalid_thresholds(self, client, body):
        assert client.put("/api/settings/profit-margin", json=body).status_code == 400


class TestCategories:
    def test_duplicate_rejected(self, client):
        assert client.post("/api/categories", json={"name": "Dairy", "type": "material"}).status_code == 201
        assert client.post("/api/categories", json={"name": "Dairy", "type": "material"}).status_code == 400

    def test_rename_carries_over_to_entities(self, app, client):
        make_material("Butter", category="Dairy")
        category_id = client.post("/api/categories", json={"name": "Dairy", "type": "material"}).get_json()["id"]

        resp = client.put(f"/api/categories/{category_id}", json={"name": "Milk products"})

        assert resp.get_json()["renamedEntities"] == 1
        assert client.get("/api/materials").get_json()[0]["category"] == "Milk products"

    def test_non_numeric_sort_order(self, client):
        resp = client.post("/api/categories", json={"name": "Dairy", "type": "material", "sortOrder": "first"})

        assert resp.status_code == 400

    def test_unknown_type(self, client):
        assert client.get("/api/categories?type=spaceship").status_code == 400


class TestDashboard:
    def test_stats(self, app, client):
        flour = make_material("Flour", "0.02")
        recipe = make_recipe("Dough", [(flour, 1000)], portions=1, weight="100")
        make_product("Thin", selling_price="22", fee="0", recipes=[(recipe, 1, "portions")])

        body = client.get("/api/dashboard/stats").get_json()

        assert body["materialsCount"] == 1
        assert body["productsCount"] == 1
        assert body["lowMarginProducts"] == 1


# ===========================================================================
# Backup and restore
# ===========================================================================


class TestBackups:
    def test_create_list_download_delete(self, app, client):
        make_material("Flour", "0.02")

        created = client.post("/api/backup/create", json={"description": "before holidays"})
        assert created.status_code == 201
        filename = created.get_json()["filename"]

        listed = client.get("/api/backup/list").get_json()
        assert listed[0]["filename"] == filename
        assert listed[0]["description"] == "before holidays"

        downloaded = client.get(f"/api/backup/download/{filename}")
        assert downloaded.status_code == 200
        assert json.loads(downloaded.data)["data"]["materials"][0]["name"] == "Flour"

        assert client.delete(f"/api/backup/{filename}").status_code == 200
        assert client.get("/api/backup/list").get_json() == []

    def test_old_backups_are_pruned(self, app, client):
        app.config["MAX_BACKUP_FILES"] = 2

        for _ in range(4):
            assert client.post("/api/backup/create", json={}).status_code == 201

        assert len(client.get("/api/backup/list").get_json()) == 2

    def test_invalid_filename(self, client):
        assert client.get("/api/backup/download/notes.txt").status_code == 400

    def test_missing_backup(self, client):
        assert client.get("/api/backup/download/backup-2020-01-01-00-00-00.json").status_code == 404

    def test_snapshot_download(self, app, client):
        make_material("Flour", "0.02")

        resp = client.get("/api/backup")

        assert resp.status_code == 200
        assert json.loads(resp.data)["statistics"]["materialsCount"] == 1


class TestRestoreEndpoint:
    def _upload(self, client, raw):
        return client.post("/api/backup/restore", data={"backupFile": (io.BytesIO(raw), "snapshot.json")},
                           content_type="multipart/form-data")

    def test_upload_restores(self, app, client):
        raw = json.dumps(snapshot(materials=[{"name": "Flour", "category": "Dry goods", "pricePerGram": "0.02"}]))

        resp = self._upload(client, raw.encode("utf-8"))

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["restoredCount"] == 1
        assert body["failures"] == []
        assert Material.query.one().name == "Flour"

    def test_restore_from_server_backup(self, app, client):
        make_material("Flour", "0.02")
        filename = client.post("/api/backup/create", json={}).get_json()["filename"]
        client.put(f"/api/materials/{Material.query.one().id}", json={"pricePerGram": "0.5"})

        resp = client.post("/api/backup/restore", json={"backupPath": filename})

        assert resp.status_code == 200
        assert Decimal(client.get("/api/materials").get_json()[0]["pricePerGram"]) == Decimal("0.02")

    def test_corrupt_upload(self, app, client):
        resp = self._upload(client, b"{this is not json")

        assert resp.status_code == 400
        assert Material.query.count() == 0

    def test_busy(self, app, client):
        lock = app.extensions["restore_lock"]
        lock.acquire()
        try:
            resp = self._upload(client, json.dumps(snapshot()).encode("utf-8"))
        finally:
            lock.release()

        assert resp.status_code == 409

    def test_missing_file(self, client):
        assert client.post("/api/backup/restore", json={}).status_code == 400


# ===========================================================================
# Audit log
# ===========================================================================


class TestAuditLog:
    def test_writes_are_audited(self, client):
        client.post("/api/materials", json={"name": "Flour", "category": "Dry goods", "pricePerGram": "0.02"})
        client.post("/api/products", json={"name": "Loaf", "category": "Bread", "sellingPrice": "10"})

        entries = client.get("/api/audit-log").get_json()
        only_products = client.get("/api/audit-log?target_type=Product").get_json()

        assert [entry["action"] for entry in entries] == ["CREATE", "CREATE"]
        assert entries[0]["targetType"] == "Product"
        assert len(only_products) == 1
        assert AuditLog.query.count() == 2

    def test_failed_write_leaves_no_entry(self, client):
        client.post("/api/products", json={"name": "", "sellingPrice": "10"})

        assert client.get("/api/audit-log").get_json() == []
        assert Product.query.count() == 0


class TestDailyBackup:
    def test_runs_once_per_business_day(self, app):
        from bakecost.backup import is_first_backup_today, list_backups, schedule_daily_backup

        assert is_first_backup_today()

        thread = schedule_daily_backup(app)
        thread.join(timeout=30)

        assert not is_first_backup_today()
        assert schedule_daily_backup(app) is None
        assert len(list_backups()) == 1
