import glob
import json
import os
import re
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from flask import current_app
from flask_babel import gettext as _
from .models import db, Material, NutritionFacts, ValidationError
from .costing import resolve_all_recipes, resolve_all_products, resolve_all_custom_products
from .audit import log_audit
from . import storage

SNAPSHOT_VERSION = '1.0'
BACKUP_NAME_PATTERN = re.compile(r'^backup-[0-9A-Za-z_\-]+\.json$')


def json_default(value):
    """JSON encoder hook for the values ``to_dict()`` and the cost views produce."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps_snapshot(snapshot):
    return json.dumps(snapshot, indent=4, ensure_ascii=False, default=json_default)


def build_snapshot(description=''):
    """Collect every catalogue entity, with derived costs, into one snapshot dict."""
    materials = [material.to_dict() for material in storage.materials.list()]
    packaging = [item.to_dict() for item in storage.packaging.list()]
    recipes = resolve_all_recipes()
    products = resolve_all_products()
    custom_products = resolve_all_custom_products()

    # Nutrition travels as materials with their facts embedded, keyed by material name
    nutrition_facts = []
    for facts in NutritionFacts.query.join(Material).order_by(Material.name.asc()).all():
        entry = facts.material.to_dict()
        entry['nutritionFacts'] = facts.to_dict()
        nutrition_facts.append(entry)

    return {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'version': SNAPSHOT_VERSION,
        'description': description,
        'data': {
            'materials': materials,
            'recipes': recipes,
            'packaging': packaging,
            'products': products,
            'customProducts': custom_products,
            'nutritionFacts': nutrition_facts,
        },
        'statistics': {
            'materialsCount': len(materials),
            'recipesCount': len(recipes),
            'packagingCount': len(packaging),
            'productsCount': len(products),
            'customProductsCount': len(custom_products),
            'nutritionFactsCount': len(nutrition_facts),
        }
    }


# ----------------------------
# Backup files
# ----------------------------
def _backup_dir():
    backup_dir = current_app.config['BACKUP_DIR']
    os.makedirs(backup_dir, exist_ok=True)
    return backup_dir


def create_backup(description=''):
    """Write a snapshot to ``BACKUP_DIR`` and return the file path."""
    backup_dir = _backup_dir()
    stamp = datetime.now().strftime('%Y-%m-%d-%H-%M-%S')
    path = os.path.join(backup_dir, f"backup-{stamp}.json")
    suffix = 1
    while os.path.exists(path):
        path = os.path.join(backup_dir, f"backup-{stamp}-{suffix}.json")
        suffix += 1

    snapshot = build_snapshot(description)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(dumps_snapshot(snapshot))

    stats = snapshot['statistics']
    current_app.logger.info(
        f"Backup created: {os.path.basename(path)} ({stats['materialsCount']} materials, "
        f"{stats['recipesCount']} recipes, {stats['productsCount']} products)")
    return path


def _backup_files():
    files = glob.glob(os.path.join(_backup_dir(), 'backup-*.json'))
    return sorted(files, key=lambda path: (os.path.getmtime(path), os.path.basename(path)), reverse=True)


def clean_old_backups():
    """Keep the newest ``MAX_BACKUP_FILES`` backups; returns the removed file names."""
    keep = current_app.config.get('MAX_BACKUP_FILES', 10)
    removed = []
    for path in _backup_files()[keep:]:
        try:
            os.remove(path)
            removed.append(os.path.basename(path))
        except OSError as e:
            current_app.logger.error(f"Failed to remove old backup {path}: {e}")
    if removed:
        current_app.logger.info(f"Removed {len(removed)} old backup(s)")
    return removed


def list_backups():
    backups = []
    for path in _backup_files():
        stat = os.stat(path)
        info = {
            'filename': os.path.basename(path),
            'size': stat.st_size,
            'timestamp': datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
            'description': '',
        }
        try:
            with open(path, encoding='utf-8-sig') as f:
                snapshot = json.load(f)
            if isinstance(snapshot, dict):
                info['timestamp'] = snapshot.get('timestamp') or info['timestamp']
                info['description'] = snapshot.get('description') or ''
        except (OSError, ValueError) as e:
            current_app.logger.warning(f"Could not read backup metadata from {info['filename']}: {e}")
        backups.append(info)
    return backups


def backup_path_for(filename):
    """Map a backup file name to its path, rejecting anything outside ``BACKUP_DIR``."""
    if not filename or not BACKUP_NAME_PATTERN.match(filename):
        raise ValidationError(_('Invalid backup file name'))
    return os.path.join(_backup_dir(), filename)


# ----------------------------
# Daily automatic backup
# ----------------------------
def _business_date():
    offset = timedelta(hours=current_app.config.get('BACKUP_UTC_OFFSET_HOURS', 8))
    return (datetime.now(timezone.utc) + offset).strftime('%Y-%m-%d')


def _read_tracker():
    tracker = current_app.config['DAILY_BACKUP_TRACKER']
    try:
        with open(tracker, encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        current_app.logger.warning(f"Ignoring unreadable daily backup tracker: {e}")
        return {}


def is_first_backup_today():
    return _read_tracker().get('lastBackupDate') != _business_date()


def mark_backup_done():
    tracker = current_app.config['DAILY_BACKUP_TRACKER']
    tracker_dir = os.path.dirname(tracker)
    if tracker_dir:
        os.makedirs(tracker_dir, exist_ok=True)
    with open(tracker, 'w', encoding='utf-8') as f:
        json.dump({'lastBackupDate': _business_date(), 'timestamp': datetime.now(timezone.utc).isoformat()}, f)


def _run_daily_backup(app):
    with app.app_context():
        try:
            path = create_backup(_('Daily automatic backup'))
            clean_old_backups()
            log_audit("BACKUP", "System", details=f"Daily backup {os.path.basename(path)}")
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Daily backup failed: {e}")


def schedule_daily_backup(app):
    """
    Start the day's automatic backup on the first request of the business day.

    Returns the started thread, or None when today's backup already ran.
    """
    lock = app.extensions.setdefault('daily_backup_lock', threading.Lock())
    with lock:
        if not is_first_backup_today():
            return None
        mark_backup_done()
    app.logger.info("First request of the day, starting automatic backup")
    thread = threading.Thread(target=_run_daily_backup, args=(app,), daemon=True)
    thread.start()
    return thread
