#!/usr/bin/env python3
"""Verify that a backup file can be restored and that its references resolve by name."""

import sys
from datetime import datetime

from bakecost import create_app
from bakecost.config import TestingConfig
from bakecost.models import CorruptSnapshotError, ValidationError
from bakecost.restore import parse_snapshot, reference_entries, SECTIONS

# section -> [(reference list key, referenced section, key of the embedded reference)]
REFERENCES = {
    'recipes': [('ingredients', 'materials', 'material')],
    'products': [('recipes', 'recipes', 'recipe'), ('packaging', 'packaging', 'packaging')],
    'customProducts': [('items', 'products', 'product'), ('packaging', 'packaging', 'packaging')],
}


def check_backup(filename):
    """Print a report for one backup file; returns True when every reference resolves."""

    print(f"\n{'='*60}")
    print("Bakecost Backup Verification Report")
    print(f"{'='*60}")
    print(f"File: {filename}")
    print(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"{'='*60}\n")

    try:
        with open(filename, 'rb') as f:
            data = parse_snapshot(f.read())
    except FileNotFoundError:
        print(f"Error: File '{filename}' not found")
        return False
    except CorruptSnapshotError as e:
        print(f"Error: {e}")
        return False

    print("Record counts:")
    print("-" * 40)
    for section in SECTIONS:
        print(f"  {section:20s}: {len(data[section]):5d} records")

    names = {section: {record.get('name') for record in data[section] if isinstance(record, dict)}
             for section in SECTIONS}
    source_names = {section: {str(record.get('id')): record.get('name') for record in data[section]
                              if isinstance(record, dict)}
                    for section in SECTIONS}

    print("\nUnresolved references:")
    print("-" * 40)
    unresolved = 0
    for section, checks in REFERENCES.items():
        for record in data[section]:
            if not isinstance(record, dict):
                continue
            for list_key, target_section, ref_key in checks:
                try:
                    entries = reference_entries(record.get(list_key), ref_key, with_unit=(ref_key == 'recipe'))
                except ValidationError as e:
                    unresolved += 1
                    print(f"  {section}/{record.get('name')}: {e}")
                    continue
                for entry in entries:
                    name = entry['name'] or source_names[target_section].get(str(entry['source_id']))
                    if name not in names[target_section]:
                        unresolved += 1
                        print(f"  {section}/{record.get('name')}: {ref_key} '{name}' not in backup")
    if not unresolved:
        print("  none")

    print("\n" + "="*60)
    if unresolved:
        print(f"{unresolved} reference(s) will be dropped unless they already exist in the database")
    else:
        print("BACKUP VALIDATION PASSED")
    print("="*60)
    return unresolved == 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/check_backup.py <backup_file.json>")
        print("\nExample:")
        print("  python scripts/check_backup.py backups/backup-2025-01-05-08-00-00.json")
        sys.exit(1)

    app = create_app(TestingConfig)
    with app.app_context():
        success = check_backup(sys.argv[1])
    sys.exit(0 if success else 1)
