from flask import current_app
from .models import db, AuditLog


def log_audit(action, target_type, target_id=None, details=None):
    """Stage an audit row in the current session; the caller's commit persists it."""
    try:
        log = AuditLog(
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details
        )
        db.session.add(log)
    except Exception as e:
        # Audit logging must not interrupt the main operation
        current_app.logger.error(f"Failed to write audit log for {action} {target_type}: {e}")


def audit_entries(action=None, target_type=None, target_id=None, page=1, per_page=50):
    query = AuditLog.query
    if action:
        query = query.filter_by(action=action)
    if target_type:
        query = query.filter_by(target_type=target_type)
    if target_id is not None:
        query = query.filter_by(target_id=target_id)
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()) \
        .offset((page - 1) * per_page).limit(per_page).all()
