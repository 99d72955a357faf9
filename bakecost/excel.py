import io
from datetime import date
from decimal import Decimal
import pandas as pd
from flask import current_app
from .costing import resolve_all_recipes, resolve_all_products, resolve_all_custom_products
from .restore import Lookups, RESOLVERS, upsert_record
from . import storage

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

# Sheet layouts: (column header, wire field).  Reference lists are written as "Name:qty,Name:qty".
SHEETS = {
    'materials': {
        'title': '原料清單',
        'columns': [
            ('原料名稱', 'name'), ('分類', 'category'), ('每克單價', 'pricePerGram'), ('備註', 'notes'),
            ('購入金額', 'purchaseAmount'), ('購入重量', 'purchaseWeight'), ('管理費率', 'managementFeeRate'),
            ('購入時間', 'purchaseTime'), ('購入地點', 'purchaseLocation'),
        ],
        'required': ['name', 'category'],
    },
    'recipes': {
        'title': '配方清單',
        'columns': [
            ('配方名稱', 'name'), ('分類', 'category'), ('份量', 'totalPortions'), ('總重量', 'totalWeight'),
            ('原料清單', 'ingredients'), ('製作步驟', 'description'),
            ('總成本', 'totalCost'), ('每份成本', 'costPerPortion'), ('每公克成本', 'costPerGram'),
        ],
        'required': ['name', 'category'],
        'defaults': {'totalPortions': 1, 'totalWeight': 100},
    },
    'packaging': {
        'title': '包裝材料清單',
        'columns': [('包裝名稱', 'name'), ('類型', 'type'), ('單位成本', 'unitCost'), ('備註', 'notes')],
        'required': ['name', 'type', 'unitCost'],
    },
    'products': {
        'title': '商品清單',
        'columns': [
            ('商品名稱', 'name'), ('分類', 'category'), ('售價', 'sellingPrice'),
            ('管理費(%)', 'managementFeePercentage'), ('配方清單', 'recipes'), ('包裝清單', 'packaging'),
            ('商品描述', 'description'), ('原成本', 'totalCost'), ('管理費', 'managementFee'),
            ('攤提後成本', 'adjustedCost'), ('利潤', 'profit'), ('利潤率(%)', 'profitMargin'),
        ],
        'required': ['name', 'category', 'sellingPrice'],
    },
    'customProducts': {
        'title': '客製商品',
        'columns': [
            ('客製商品名稱', 'name'), ('分類', 'category'), ('售價', 'sellingPrice'),
            ('管理費(%)', 'managementFeePercentage'), ('產品清單', 'items'), ('包裝清單', 'packaging'),
            ('商品描述', 'description'), ('原成本', 'totalCost'), ('管理費', 'managementFee'),
            ('攤提後成本', 'adjustedCost'), ('利潤', 'profit'), ('利潤率(%)', 'profitMargin'),
        ],
        'required': ['name', 'category', 'sellingPrice'],
    },
}

FILENAMES = {
    'materials': 'materials',
    'recipes': 'recipes',
    'packaging': 'packaging',
    'products': 'products',
    'customProducts': 'custom-products',
}


def format_quantity(quantity):
    quantity = Decimal(str(quantity))
    return format(quantity.normalize(), 'f') if quantity == quantity.to_integral_value() else str(quantity)


def format_references(rows, target_key, with_unit=False):
    """Serialise child rows with quantity > 0 as ``Name:qty,Name:qty``."""
    pairs = []
    for row in rows:
        target = row.get(target_key)
        if target is None or Decimal(str(row['quantity'])) <= 0:
            continue
        pair = f"{target['name']}:{format_quantity(row['quantity'])}"
        if with_unit and row.get('unit') == 'grams':
            pair += ':grams'
        pairs.append(pair)
    return ','.join(pairs)


# ----------------------------
# Export
# ----------------------------
def _cell(value):
    if isinstance(value, Decimal):
        return float(value)
    return '' if value is None else value


def _export_rows(section):
    if section == 'materials':
        return [material.to_dict() for material in storage.materials.list()]
    if section == 'packaging':
        return [item.to_dict() for item in storage.packaging.list()]
    if section == 'recipes':
        return [dict(view, ingredients=format_references(view['ingredients'], 'material'))
                for view in resolve_all_recipes()]
    if section == 'products':
        views = resolve_all_products()
        return [dict(view, recipes=format_references(view['recipes'], 'recipe', with_unit=True),
                     packaging=format_references(view['packaging'], 'packaging'))
                for view in views]
    views = resolve_all_custom_products()
    return [dict(view, items=format_references(view['items'], 'product'),
                 packaging=format_references(view['packaging'], 'packaging'))
            for view in views]


def export_workbook(section):
    """Build an .xlsx for ``section``. Returns ``(buffer, download filename)``."""
    sheet = SHEETS[section]
    rows = [{header: _cell(view.get(field)) for header, field in sheet['columns']}
            for view in _export_rows(section)]
    df = pd.DataFrame(rows, columns=[header for header, _field in sheet['columns']])

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        df.to_excel(writer, sheet_name=sheet['title'], index=False)
    output.seek(0)
    return output, f"{FILENAMES[section]}-{date.today().isoformat()}.xlsx"


# ----------------------------
# Import
# ----------------------------
def _row_record(row, sheet):
    record = {}
    for header, field in sheet['columns']:
        if header not in row.index or pd.isna(row[header]):
            continue
        value = row[header]
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        elif isinstance(value, pd.Timestamp):
            value = value.isoformat()
        elif hasattr(value, 'item'):
            # numpy scalars
            value = value.item()
        record[field] = value
    return record


def import_workbook(section, file):
    """
    Upsert every row of the first sheet of ``file`` by name.

    Rows missing a required column or failing validation are skipped; child
    references with quantity <= 0 are ignored and unknown names are dropped.
    """
    sheet = SHEETS[section]
    df = pd.read_excel(file, sheet_name=0, engine='openpyxl')

    lookups = Lookups.from_storage()
    result = {'imported': 0, 'updated': 0, 'skipped': 0, 'droppedReferences': []}
    derived = {'totalCost', 'costPerPortion', 'costPerGram', 'managementFee', 'adjustedCost', 'profit',
               'profitMargin'}

    for index, row in df.iterrows():
        record = {field: value for field, value in _row_record(row, sheet).items() if field not in derived}
        if any(field not in record for field in sheet['required']):
            result['skipped'] += 1
            continue
        for field, default in sheet.get('defaults', {}).items():
            record.setdefault(field, default)
        if isinstance(record['name'], (int, float)):
            record['name'] = str(record['name'])

        try:
            fields, children, dropped = RESOLVERS[section](record, lookups, keep_non_positive=False)
            _entity, created = upsert_record(section, fields, children)
        except Exception as e:
            current_app.logger.error(f"Failed to import spreadsheet row {index + 2}: {e}")
            result['skipped'] += 1
            continue

        result['imported' if created else 'updated'] += 1
        result['droppedReferences'].extend(dropped)

    current_app.logger.info(
        f"Imported {section}: {result['imported']} new, {result['updated']} updated, {result['skipped']} skipped")
    return result
