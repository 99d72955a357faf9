import threading
from decimal import Decimal, InvalidOperation
from flask_babel import gettext as _
from .models import db, UserSettings, ValidationError


class SettingsCache:
    """
    Lazily loaded view of the persisted user settings.

    The cache is owned by the application (``app.extensions['settings_cache']``)
    and is dropped explicitly by whoever writes settings or restores a snapshot.
    """

    def __init__(self, app):
        self.app = app
        self._lock = threading.Lock()
        self._values = None

    def _load(self):
        username = self.app.config.get('SETTINGS_USERNAME', 'admin')
        row = UserSettings.query.filter_by(username=username).first()
        if row is None:
            return {
                'profitMarginLow': Decimal(self.app.config.get('DEFAULT_PROFIT_MARGIN_LOW', '20.00')),
                'profitMarginHigh': Decimal(self.app.config.get('DEFAULT_PROFIT_MARGIN_HIGH', '40.00')),
            }
        return {
            'profitMarginLow': Decimal(row.profit_margin_low),
            'profitMarginHigh': Decimal(row.profit_margin_high),
        }

    def get(self):
        with self._lock:
            if self._values is None:
                self._values = self._load()
            return dict(self._values)

    def invalidate(self):
        with self._lock:
            self._values = None
        self.app.logger.debug("Settings cache invalidated")

    def update(self, low, high):
        low = _parse_threshold(low, 'profitMarginLow')
        high = _parse_threshold(high, 'profitMarginHigh')
        if low > high:
            raise ValidationError(_('Low margin threshold cannot exceed the high threshold'))

        username = self.app.config.get('SETTINGS_USERNAME', 'admin')
        row = UserSettings.query.filter_by(username=username).first()
        if row is None:
            row = UserSettings(username=username)
            db.session.add(row)
        row.profit_margin_low = low
        row.profit_margin_high = high
        db.session.commit()

        self.invalidate()
        return self.get()


def _parse_threshold(value, field):
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(_('%(field)s must be a number', field=field))
    if not number.is_finite() or number < 0 or number > 100:
        raise ValidationError(_('%(field)s must be between 0 and 100', field=field))
    return number


def margin_status(profit_margin, settings):
    """Classify a profit margin against the configured thresholds."""
    if profit_margin < settings['profitMarginLow']:
        return 'low'
    if profit_margin >= settings['profitMarginHigh']:
        return 'high'
    return 'normal'
