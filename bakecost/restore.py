"""
Reconciling restore of a backup snapshot.

Records are matched to existing rows by name, never by the ids stored in the
snapshot, so a snapshot taken on one database can be replayed onto another
and replaying the same snapshot twice leaves the same state behind.  Levels
are restored in dependency order (materials and packaging first, custom
products last) and every record is its own unit of work: a bad record is
rolled back, logged and counted, and the loop moves on.
"""
import json
import re
from functools import partial
from flask import current_app
from flask_babel import gettext as _
from .models import (
    db, RecipeIngredient, ProductRecipe, CustomProductItem, ValidationError, UnresolvedReferenceError,
    MalformedRecordError, CorruptSnapshotError, RestoreBusyError, NUTRIENT_FIELDS
)
from .records import (
    pick, parse_decimal, parse_int, parse_name, clean_material, clean_packaging, clean_recipe, clean_product,
    clean_nutrition
)
from .audit import log_audit
from . import storage

SUPPORTED_VERSIONS = ('1.0',)

# Restore order; each level may only reference levels restored before it
SECTIONS = ('materials', 'packaging', 'recipes', 'nutritionFacts', 'products', 'customProducts')

SECTION_KINDS = {
    'materials': 'Material',
    'packaging': 'Packaging',
    'recipes': 'Recipe',
    'nutritionFacts': 'NutritionFacts',
    'products': 'Product',
    'customProducts': 'CustomProduct',
}

SECTION_STATES = {
    'materials': 'RestoringMaterials',
    'packaging': 'RestoringPackaging',
    'recipes': 'RestoringRecipes',
    'nutritionFacts': 'RestoringNutrition',
    'products': 'RestoringProducts',
    'customProducts': 'RestoringCustomProducts',
}

SECTION_ALIASES = {'nutrition': 'nutritionFacts'}

UNIT_ALIASES = {
    None: 'portions', '': 'portions', 'portions': 'portions', 'portion': 'portions', '份': 'portions',
    'grams': 'grams', 'gram': 'grams', 'g': 'grams', '克': 'grams',
}

_LIST_SEPARATOR = re.compile(r'[,，]')


# ----------------------------
# Reading the snapshot
# ----------------------------
def parse_snapshot(raw):
    """
    Decode a snapshot and return its data section with every entity key present.

    Accepts bytes (UTF-8, with or without BOM), text, or an already decoded
    dict.  Both the current shape (``{"version", "data": {...}}``) and the
    legacy flat shape (entity lists at the top level) are understood.

    Raises:
        CorruptSnapshotError: when nothing can be restored from ``raw``.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode('utf-8-sig')
        except UnicodeDecodeError as e:
            raise CorruptSnapshotError(f"not UTF-8 text: {e}")
    if isinstance(raw, str):
        try:
            snapshot = json.loads(raw.lstrip('\ufeff'))
        except ValueError as e:
            raise CorruptSnapshotError(f"malformed JSON: {e}")
    else:
        snapshot = raw

    if not isinstance(snapshot, dict):
        raise CorruptSnapshotError("top level is not a JSON object")

    version = snapshot.get('version')
    if version is not None and str(version) not in SUPPORTED_VERSIONS:
        current_app.logger.warning(f"Restoring snapshot with unknown version {version}")

    if 'data' in snapshot:
        data = snapshot['data']
        if not isinstance(data, dict):
            raise CorruptSnapshotError("'data' is not a JSON object")
    else:
        data = snapshot
        known = set(SECTIONS) | set(SECTION_ALIASES)
        if not known.intersection(data):
            raise CorruptSnapshotError("missing 'data' section")

    sections = {}
    for key, value in data.items():
        section = SECTION_ALIASES.get(key, key)
        if section not in SECTIONS or value is None:
            continue
        if not isinstance(value, list):
            raise CorruptSnapshotError(f"'{key}' is not a list")
        sections.setdefault(section, []).extend(value)
    return {section: sections.get(section, []) for section in SECTIONS}


# ----------------------------
# Name lookups (pass 1)
# ----------------------------
class Lookups:
    """
    Name-based indexes used to resolve references.

    ``ids`` maps ``name -> stored id`` per section and is rebuilt from storage
    after each level is restored.  ``source_names`` maps the ids found in the
    snapshot itself to names, so legacy references by id can be translated.
    """

    REPOSITORIES = {
        'materials': storage.materials,
        'packaging': storage.packaging,
        'recipes': storage.recipes,
        'products': storage.products,
        'customProducts': storage.custom_products,
    }

    def __init__(self, data=None):
        self.ids = {section: {} for section in self.REPOSITORIES}
        self.source_names = {section: {} for section in self.REPOSITORIES}
        for section in self.source_names:
            for record in (data or {}).get(section, []):
                if isinstance(record, dict) and record.get('id') is not None and isinstance(record.get('name'), str):
                    self.source_names[section][str(record['id'])] = record['name'].strip()

    @classmethod
    def from_storage(cls, data=None):
        lookups = cls(data)
        for section in cls.REPOSITORIES:
            lookups.refresh(section)
        return lookups

    def refresh(self, section):
        model = self.REPOSITORIES[section].model
        names = {}
        for entity_id, name in db.session.query(model.id, model.name).order_by(model.id.asc()):
            names.setdefault(name, entity_id)
        self.ids[section] = names

    def id_for(self, section, name):
        return self.ids[section].get(name.strip()) if name else None

    def source_name(self, section, source_id):
        if source_id is None:
            return None
        return self.source_names[section].get(str(source_id))


# ----------------------------
# Record resolvers (pass 2)
# ----------------------------
def _split_pair(text, with_unit):
    """Parse ``Name:qty`` (or ``Name:qty:unit``) into a reference entry."""
    parts = [part.strip() for part in text.replace('：', ':').split(':')]
    entry = {'name': None, 'source_id': None, 'quantity': None, 'unit': None, 'raw': text}
    if len(parts) < 2:
        return entry
    if with_unit and len(parts) >= 3 and parts[-1].lower() in UNIT_ALIASES:
        entry['unit'] = parts[-1].lower()
        parts = parts[:-1]
    entry['name'] = ':'.join(parts[:-1]).strip() or None
    entry['quantity'] = parts[-1]
    return entry


def reference_entries(value, ref_key, with_unit=False):
    """Normalise the shapes a reference list may take into a list of entries."""
    if value is None:
        return []
    if isinstance(value, str):
        value = _LIST_SEPARATOR.split(value)
    if not isinstance(value, list):
        raise ValidationError(_('%(field)s must be a list', field=ref_key))

    entries = []
    for item in value:
        if isinstance(item, str):
            if item.strip():
                entries.append(_split_pair(item, with_unit))
            continue
        if not isinstance(item, dict):
            entries.append({'name': None, 'source_id': None, 'quantity': None, 'unit': None, 'raw': item})
            continue
        target = item.get(ref_key)
        if isinstance(target, dict):
            name = target.get('name')
        else:
            name = target if isinstance(target, str) else None
        if not name:
            name = pick(item, f'{ref_key}Name', f'{ref_key}_name', default=None)
        entries.append({
            'name': name.strip() if isinstance(name, str) else None,
            'source_id': pick(item, f'{ref_key}Id', f'{ref_key}_id', default=None),
            'quantity': item.get('quantity'),
            'unit': item.get('unit'),
            'raw': item,
        })
    return entries


def _resolve_references(entries, section, lookups, owner, dropped, quantity_parser,
                        keep_non_positive=True, with_unit=False):
    kind = SECTION_KINDS[section]
    rows = []
    for entry in entries:
        name = entry['name'] or lookups.source_name(section, entry['source_id'])
        try:
            if not name:
                raise UnresolvedReferenceError(kind, entry['source_id'] if entry['source_id'] is not None else entry['raw'])
            target_id = lookups.id_for(section, name)
            if target_id is None:
                raise UnresolvedReferenceError(kind, name)
            quantity = quantity_parser(entry['quantity'], 'quantity')
            row = {'id': target_id, 'quantity': quantity}
            if with_unit:
                unit = entry['unit']
                unit = UNIT_ALIASES.get(unit.lower() if isinstance(unit, str) else unit)
                if unit is None:
                    raise ValidationError(_('Unit must be portions or grams'))
                row['unit'] = unit
        except (UnresolvedReferenceError, ValidationError) as e:
            dropped.append({'kind': kind, 'name': name, 'owner': owner, 'reason': str(e)})
            continue
        if quantity <= 0 and not keep_non_positive:
            continue
        rows.append(row)
    return rows


def _fields(kind, cleaner, record):
    name = record.get('name')
    try:
        return cleaner(record)
    except ValidationError as e:
        raise MalformedRecordError(kind, name, str(e))


def resolve_material_record(record, lookups, keep_non_positive=True):
    return _fields('Material', clean_material, record), {}, []


def resolve_packaging_record(record, lookups, keep_non_positive=True):
    return _fields('Packaging', clean_packaging, record), {}, []


def resolve_recipe_record(record, lookups, keep_non_positive=True):
    """Return ``(fields, children, dropped)`` for a recipe record."""
    fields = _fields('Recipe', clean_recipe, record)
    dropped = []
    try:
        entries = reference_entries(record.get('ingredients'), 'material')
    except ValidationError as e:
        raise MalformedRecordError('Recipe', fields['name'], str(e))
    rows = _resolve_references(entries, 'materials', lookups, fields['name'], dropped,
                               partial(parse_decimal, column=RecipeIngredient.quantity),
                               keep_non_positive)
    children = {'ingredients': [{'material_id': row['id'], 'quantity': row['quantity']} for row in rows]}
    return fields, children, dropped


def resolve_product_record(record, lookups, keep_non_positive=True):
    """Return ``(fields, children, dropped)`` for a product record."""
    fields = _fields('Product', clean_product, record)
    dropped = []
    try:
        recipe_entries = reference_entries(record.get('recipes'), 'recipe', with_unit=True)
        packaging_entries = reference_entries(record.get('packaging'), 'packaging')
    except ValidationError as e:
        raise MalformedRecordError('Product', fields['name'], str(e))
    recipe_rows = _resolve_references(recipe_entries, 'recipes', lookups, fields['name'], dropped,
                                      partial(parse_decimal, column=ProductRecipe.quantity),
                                      keep_non_positive, with_unit=True)
    packaging_rows = _resolve_references(packaging_entries, 'packaging', lookups, fields['name'], dropped,
                                         parse_int, keep_non_positive)
    children = {
        'recipe_links': [{'recipe_id': row['id'], 'quantity': row['quantity'], 'unit': row['unit']}
                         for row in recipe_rows],
        'packaging_links': [{'packaging_id': row['id'], 'quantity': row['quantity']} for row in packaging_rows],
    }
    return fields, children, dropped


def resolve_custom_product_record(record, lookups, keep_non_positive=True):
    """Return ``(fields, children, dropped)`` for a custom product record."""
    fields = _fields('CustomProduct', clean_product, record)
    dropped = []
    try:
        item_entries = reference_entries(record.get('items'), 'product')
        packaging_entries = reference_entries(record.get('packaging'), 'packaging')
    except ValidationError as e:
        raise MalformedRecordError('CustomProduct', fields['name'], str(e))
    item_rows = _resolve_references(item_entries, 'products', lookups, fields['name'], dropped,
                                    partial(parse_decimal, column=CustomProductItem.quantity),
                                    keep_non_positive)
    packaging_rows = _resolve_references(packaging_entries, 'packaging', lookups, fields['name'], dropped,
                                         parse_int, keep_non_positive)
    children = {
        'items': [{'product_id': row['id'], 'quantity': row['quantity']} for row in item_rows],
        'packaging_links': [{'packaging_id': row['id'], 'quantity': row['quantity']} for row in packaging_rows],
    }
    return fields, children, dropped


def _nutrient_values(record):
    """Nutrition values either embedded under ``nutritionFacts`` or inline in the record."""
    embedded = record.get('nutritionFacts')
    if isinstance(embedded, dict):
        return embedded
    if any(key in record for key in NUTRIENT_FIELDS):
        return record
    return None


def resolve_nutrition_record(record, lookups, keep_non_positive=True):
    """
    Return ``(fields, children, dropped)`` for nutrition facts.

    The owning material is named by the record itself when it is material
    shaped (``{"name", "nutritionFacts": {...}}``), or by ``material`` /
    ``materialName`` / ``materialId`` otherwise.
    """
    values = _nutrient_values(record)
    material = record.get('material')
    if isinstance(material, dict):
        name = material.get('name')
    elif isinstance(material, str):
        name = material
    else:
        name = pick(record, 'materialName', 'material_name', default=None)
    if not name:
        if isinstance(record.get('nutritionFacts'), dict):
            name = record.get('name')
        else:
            name = lookups.source_name('materials', pick(record, 'materialId', 'material_id', default=None))

    try:
        name = parse_name(name, 'material')
    except ValidationError as e:
        raise MalformedRecordError('NutritionFacts', name, str(e))
    if values is None:
        raise MalformedRecordError('NutritionFacts', name, 'no nutrition values')

    material_id = lookups.id_for('materials', name)
    if material_id is None:
        raise MalformedRecordError('NutritionFacts', name, str(UnresolvedReferenceError('Material', name)))

    try:
        fields = clean_nutrition(values)
    except ValidationError as e:
        raise MalformedRecordError('NutritionFacts', name, str(e))
    fields['material_id'] = material_id
    return fields, {}, []


RESOLVERS = {
    'materials': resolve_material_record,
    'packaging': resolve_packaging_record,
    'recipes': resolve_recipe_record,
    'nutritionFacts': resolve_nutrition_record,
    'products': resolve_product_record,
    'customProducts': resolve_custom_product_record,
}


# ----------------------------
# Upserts
# ----------------------------
def upsert_record(section, fields, children=None):
    """Create or update by name. Returns ``(entity, created)``."""
    repository = Lookups.REPOSITORIES[section]
    existing = repository.get_by_name(fields['name'])
    if existing is not None:
        return repository.update(existing.id, fields, children), False
    return repository.create(fields, children), True


def upsert_nutrition(fields):
    existing = storage.nutrition.get_by_material(fields['material_id'])
    if existing is not None:
        return storage.nutrition.update(existing.id, fields), False
    return storage.nutrition.create(fields), True


# ----------------------------
# Pipeline
# ----------------------------
class RestoreResult:
    def __init__(self):
        self.restored = {section: 0 for section in SECTIONS}
        self.total = {section: 0 for section in SECTIONS}
        self.failures = []
        self.dropped_references = []

    @property
    def restored_count(self):
        return sum(self.restored.values())

    @property
    def total_count(self):
        return sum(self.total.values())

    def summary(self):
        return f"restored {self.restored_count} of {self.total_count} records"

    def to_dict(self):
        return {
            'restored': dict(self.restored),
            'total': dict(self.total),
            'restoredCount': self.restored_count,
            'totalCount': self.total_count,
            'failures': list(self.failures),
            'droppedReferences': list(self.dropped_references),
        }


class RestorePipeline:
    """
    One restore invocation.

    State moves Idle -> ReadingSnapshot -> Restoring<Level>... -> Done; only a
    failure while reading the snapshot aborts, and it does so before anything
    is written.
    """

    def __init__(self, data=None):
        self.state = 'Idle'
        self.data = data
        self.result = RestoreResult()
        self.lookups = None

    def _transition(self, state):
        current_app.logger.info(f"Restore state {self.state} -> {state}")
        self.state = state

    def load(self, raw):
        self._transition('ReadingSnapshot')
        self.data = parse_snapshot(raw)
        return self

    def run(self):
        if self.state == 'Idle':
            self.load(self.data if self.data is not None else {})

        self.lookups = Lookups.from_storage(self.data)
        for section in SECTIONS:
            self._transition(SECTION_STATES[section])
            for record in self.data.get(section, []):
                if section == 'nutritionFacts' and isinstance(record, dict) and _nutrient_values(record) is None:
                    # Materials exported without nutrition facts carry nothing to restore
                    continue
                self.result.total[section] += 1
                self._restore_record(section, record)
            if section in self.lookups.ids:
                self.lookups.refresh(section)

        self._transition('Done')
        current_app.logger.info(f"Restore finished: {self.result.summary()}")
        return self.result

    def _restore_record(self, section, record):
        kind = SECTION_KINDS[section]
        name = record.get('name') if isinstance(record, dict) else None
        try:
            if not isinstance(record, dict):
                raise MalformedRecordError(kind, name, 'record is not a JSON object')
            fields, children, dropped = RESOLVERS[section](record, self.lookups)
            for reference in dropped:
                current_app.logger.warning(
                    f"Dropped {reference['kind']} reference '{reference['name']}' from {kind} "
                    f"'{reference['owner']}': {reference['reason']}")
            if section == 'nutritionFacts':
                upsert_nutrition(fields)
            else:
                upsert_record(section, fields, children)
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Failed to restore {kind} '{name}': {e}")
            self.result.failures.append({'kind': kind, 'name': name, 'reason': str(e)})
            return
        self.result.restored[section] += 1
        self.result.dropped_references.extend(dropped)


def restore_snapshot(raw, source=None):
    """
    Restore ``raw`` under the application's restore lock.

    Raises:
        RestoreBusyError: another restore is running.
        CorruptSnapshotError: the snapshot could not be read; nothing was written.
    """
    app = current_app._get_current_object()
    lock = app.extensions['restore_lock']
    if not lock.acquire(blocking=False):
        raise RestoreBusyError()
    try:
        pipeline = RestorePipeline()
        try:
            pipeline.load(raw)
        except CorruptSnapshotError as e:
            log_audit("RESTORE_ERROR", "System", details=f"Failed to parse backup file: {e}")
            db.session.commit()
            raise
        result = pipeline.run()
        app.extensions['settings_cache'].invalidate()

        details = result.summary()
        if source:
            details = f"{details} from {source}"
        log_audit("RESTORE", "System", details=details)
        db.session.commit()
        return result
    finally:
        lock.release()
