import io
import os
from datetime import datetime
from flask import Blueprint, request, jsonify, send_file, current_app
from flask_babel import gettext as _
from ..models import db, NotFoundError, ValidationError
from ..backup import (
    build_snapshot, dumps_snapshot, create_backup, clean_old_backups, list_backups, backup_path_for
)
from ..restore import restore_snapshot
from ..audit import log_audit

backup_blueprint = Blueprint('backup', __name__)


def _existing_backup(filename):
    path = backup_path_for(filename)
    if not os.path.isfile(path):
        raise NotFoundError('Backup', filename)
    return path

# ----------------------------
# Backups
# ----------------------------
@backup_blueprint.route('/backup', methods=['GET'])
def download_snapshot():
    """Download a fresh snapshot without keeping a copy on the server"""
    snapshot = build_snapshot(request.args.get('description', ''))
    output = io.BytesIO(dumps_snapshot(snapshot).encode('utf-8'))

    log_audit("BACKUP", "System", details=f"Downloaded snapshot ({sum(snapshot['statistics'].values())} records)")
    db.session.commit()
    return send_file(
        output,
        mimetype='application/json',
        as_attachment=True,
        download_name=f"bakecost-backup-{datetime.now().strftime('%Y-%m-%d')}.json"
    )

@backup_blueprint.route('/backup/create', methods=['POST'])
def create():
    data = request.get_json(silent=True) or {}
    description = data.get('description') or _('Manual backup')
    try:
        path = create_backup(description)
        clean_old_backups()
    except OSError as e:
        current_app.logger.error(f"Backup failed: {e}")
        return jsonify({'message': _('Backup failed')}), 500

    filename = os.path.basename(path)
    log_audit("BACKUP", "System", details=f"Created backup {filename}")
    db.session.commit()
    return jsonify({'message': _('Backup created'), 'filename': filename}), 201

@backup_blueprint.route('/backup/list', methods=['GET'])
def list_all():
    return jsonify(list_backups())

@backup_blueprint.route('/backup/download/<filename>', methods=['GET'])
def download(filename):
    path = _existing_backup(filename)
    return send_file(path, mimetype='application/json', as_attachment=True, download_name=filename)

@backup_blueprint.route('/backup/<filename>', methods=['DELETE'])
def delete(filename):
    path = _existing_backup(filename)
    os.remove(path)

    log_audit("DELETE", "Backup", details=f"Deleted backup {filename}")
    db.session.commit()
    return jsonify({'message': _('Backup deleted')})

# ----------------------------
# Restore
# ----------------------------
@backup_blueprint.route('/backup/restore', methods=['POST'])
def restore():
    file = request.files.get('backupFile')
    if file and file.filename:
        raw = file.read()
        source = file.filename
    else:
        data = request.get_json(silent=True) or {}
        filename = data.get('backupPath') or request.form.get('backupPath')
        if not filename:
            raise ValidationError(_('Please choose a backup file'))
        # Only names inside the backup directory are accepted
        path = _existing_backup(os.path.basename(filename))
        with open(path, 'rb') as f:
            raw = f.read()
        source = os.path.basename(path)

    result = restore_snapshot(raw, source=source)
    response = result.to_dict()
    response['message'] = _('Restore finished: %(restored)s of %(total)s records restored',
                            restored=result.restored_count, total=result.total_count)
    return jsonify(response)
