from flask import request, send_file, current_app
from flask_babel import gettext as _
from ..models import ValidationError
from ..excel import export_workbook, XLSX_MIMETYPE


def request_json():
    """The JSON body of the current request; anything but an object is a validation error."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(_('Request body must be a JSON object'))
    return data


def list_filters():
    return request.args.get('search') or None, request.args.get('category') or None


def reorder_items():
    data = request.get_json(silent=True)
    items = data.get('items') if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ValidationError(_('Reorder expects a list of {id, sortOrder}'))
    for item in items:
        if not isinstance(item, dict) or 'id' not in item or 'sortOrder' not in item:
            raise ValidationError(_('Reorder expects a list of {id, sortOrder}'))
    return items


def uploaded_file(field='file'):
    file = request.files.get(field)
    if not file or not file.filename:
        raise ValidationError(_('Please choose a file to upload'))
    return file


def send_workbook(section):
    output, filename = export_workbook(section)
    current_app.logger.info(f"Exported {section} to {filename}")
    return send_file(output, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


def changed_columns(entity, fields):
    return sorted(column for column, value in fields.items() if getattr(entity, column) != value)
