"""
Tests for spreadsheet export and import.

Covers:
  - Export of every section to a readable workbook
  - Import by name (new rows created, existing rows updated)
  - "Name:qty" reference lists, skipped non-positive quantities and unknown names
  - Rows missing required columns
"""

import io
from decimal import Decimal

import pandas as pd
import pytest

from bakecost.costing import resolve_product
from bakecost.excel import SHEETS, export_workbook, import_workbook, format_references
from bakecost.models import Material, Recipe, Product, Packaging
from tests.conftest import make_material, make_packaging, make_recipe, make_product


def workbook(rows):
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name="Sheet1", index=False)
    output.seek(0)
    return output


class TestFormatReferences:
    def test_skips_non_positive_and_marks_grams(self):
        rows = [
            {"recipe": {"name": "Dough"}, "quantity": Decimal("2.000"), "unit": "portions"},
            {"recipe": {"name": "Cream"}, "quantity": Decimal("0"), "unit": "portions"},
            {"recipe": {"name": "Glaze"}, "quantity": Decimal("12.5"), "unit": "grams"},
            {"recipe": None, "quantity": Decimal("1"), "unit": "portions"},
        ]

        assert format_references(rows, "recipe", with_unit=True) == "Dough:2,Glaze:12.5:grams"


class TestExport:
    @pytest.mark.parametrize("section", list(SHEETS))
    def test_every_section_exports(self, app, section):
        flour = make_material("Flour", "0.02")
        recipe = make_recipe("Dough", [(flour, 1000)], portions=1, weight="100")
        make_product("Loaf", recipes=[(recipe, 2, "portions")])

        output, filename = export_workbook(section)
        df = pd.read_excel(output, engine="openpyxl")

        assert filename.endswith(".xlsx")
        assert list(df.columns) == [header for header, _field in SHEETS[section]["columns"]]

    def test_recipe_ingredients_written_as_pairs(self, app):
        flour = make_material("Flour", "0.02")
        butter = make_material("Butter", "0.3")
        make_recipe("Dough", [(flour, 1000), (butter, 250)])

        df = pd.read_excel(export_workbook("recipes")[0], engine="openpyxl")

        assert df.loc[0, "原料清單"] == "Flour:1000,Butter:250"
        assert df.loc[0, "總成本"] == pytest.approx(95)


class TestImport:
    def test_materials_created_and_updated(self, app):
        make_material("Flour", "0.05")
        file = workbook([
            {"原料名稱": "Flour", "分類": "Dry goods", "每克單價": 0.02},
            {"原料名稱": "Sugar", "分類": "Dry goods", "每克單價": 0.04},
        ])

        result = import_workbook("materials", file)

        assert result["imported"] == 1
        assert result["updated"] == 1
        assert Material.query.count() == 2
        assert Material.query.filter_by(name="Flour").one().price_per_gram == Decimal("0.02")

    def test_rows_missing_required_columns_are_skipped(self, app):
        file = workbook([
            {"原料名稱": "Flour", "分類": "Dry goods", "每克單價": 0.02},
            {"原料名稱": None, "分類": "Dry goods", "每克單價": 0.03},
            {"原料名稱": "Salt", "分類": None, "每克單價": 0.01},
        ])

        result = import_workbook("materials", file)

        assert result["imported"] == 1
        assert result["skipped"] == 2

    def test_recipe_references(self, app):
        make_material("Flour", "0.02")
        make_material("Sugar", "0.05")
        file = workbook([{"配方名稱": "Dough", "分類": "Bread", "份量": 4, "總重量": 400,
                          "原料清單": "Flour:1000，Sugar:0,Ghost:5", "總成本": 12345}])

        result = import_workbook("recipes", file)

        recipe = Recipe.query.one()
        assert result["imported"] == 1
        assert [ingredient.material.name for ingredient in recipe.ingredients] == ["Flour"]
        assert [reference["name"] for reference in result["droppedReferences"]] == ["Ghost"]

    def test_recipe_defaults(self, app):
        result = import_workbook("recipes", workbook([{"配方名稱": "Plain", "分類": "Bread"}]))

        recipe = Recipe.query.one()
        assert result["imported"] == 1
        assert recipe.total_portions == 1
        assert recipe.total_weight == Decimal("100")

    def test_products_default_to_portions(self, app):
        flour = make_material("Flour", "0.02")
        make_recipe("Dough", [(flour, 1000)], portions=1, weight="100")
        make_packaging("Box", "5")
        file = workbook([{"商品名稱": "Loaf", "分類": "Bread", "售價": 100, "管理費(%)": 10,
                          "配方清單": "Dough:2", "包裝清單": "Box:1"}])

        import_workbook("products", file)

        view = resolve_product(Product.query.one().id)
        assert view["recipes"][0]["unit"] == "portions"
        assert view["adjustedCost"] == Decimal("49.5")

    def test_packaging_requires_unit_cost(self, app):
        file = workbook([
            {"包裝名稱": "Box", "類型": "Box", "單位成本": 5},
            {"包裝名稱": "Bag", "類型": "Bag", "單位成本": None},
        ])

        result = import_workbook("packaging", file)

        assert result["skipped"] == 1
        assert Packaging.query.one().name == "Box"

    def test_export_then_import_updates_in_place(self, app):
        flour = make_material("Flour", "0.02")
        recipe = make_recipe("Dough", [(flour, 1000)], portions=1, weight="100")
        make_product("Loaf", selling_price="100", fee="10", recipes=[(recipe, 2, "portions")])

        output, _filename = export_workbook("products")
        result = import_workbook("products", output)

        assert result["updated"] == 1
        assert result["imported"] == 0
        assert Product.query.count() == 1
        assert resolve_product(Product.query.one().id)["adjustedCost"] == Decimal("44")

    def test_upload_through_api(self, app, client):
        file = workbook([{"原料名稱": "Flour", "分類": "Dry goods", "每克單價": 0.02}])

        resp = client.post("/api/materials/import", data={"file": (file, "materials.xlsx")},
                           content_type="multipart/form-data")

        assert resp.status_code == 200
        assert resp.get_json()["imported"] == 1

    def test_unreadable_upload(self, client):
        resp = client.post("/api/materials/import", data={"file": (io.BytesIO(b"not a workbook"), "x.xlsx")},
                           content_type="multipart/form-data")

        assert resp.status_code == 400
