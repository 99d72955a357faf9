import threading
from flask import Flask, request, session, jsonify, has_request_context
from flask_babel import Babel, gettext as _
from .models import db, NotFoundError, ValidationError, CorruptSnapshotError, RestoreBusyError
from .settings import SettingsCache


def get_locale():
    if not has_request_context():
        return None
    selected_locale = request.args.get('lang', session.get('lang'))
    if selected_locale:
        return selected_locale
    return request.accept_languages.best_match(['en', 'zh_TW'])


def create_app(config_object=None, **overrides):
    app = Flask(__name__)

    # Load configurations
    if config_object is None:
        from .config import Config
        config_object = Config
    app.config.from_object(config_object)
    app.config.update(overrides)

    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    @app.before_request
    def before_request():
        """Capture language parameter and save to session for persistence across requests"""
        if 'lang' in request.args:
            session['lang'] = request.args.get('lang')

    @app.before_request
    def daily_backup_check():
        if app.config.get('DAILY_BACKUP_ENABLED'):
            from .backup import schedule_daily_backup
            schedule_daily_backup(app)

    Babel(app, locale_selector=get_locale)

    # Initialize database
    db.init_app(app)

    app.extensions['settings_cache'] = SettingsCache(app)
    app.extensions['restore_lock'] = threading.Lock()

    # ----------------------------
    # Error handlers
    # ----------------------------
    @app.errorhandler(NotFoundError)
    def handle_not_found(error):
        return jsonify({'message': _('%(kind)s not found', kind=error.kind)}), 404

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return jsonify({'message': str(error)}), 400

    @app.errorhandler(CorruptSnapshotError)
    def handle_corrupt_snapshot(error):
        app.logger.error(f"Rejected backup file: {error}")
        return jsonify({'message': _('Invalid backup file: %(reason)s', reason=str(error))}), 400

    @app.errorhandler(RestoreBusyError)
    def handle_restore_busy(error):
        return jsonify({'message': _('A restore is already in progress')}), 409

    # Register blueprints
    from .routes import (
        materials_blueprint, recipes_blueprint, packaging_blueprint, products_blueprint,
        custom_products_blueprint, nutrition_blueprint, categories_blueprint,
        settings_blueprint, dashboard_blueprint, backup_blueprint, audit_blueprint
    )
    app.register_blueprint(materials_blueprint, url_prefix='/api')
    app.register_blueprint(recipes_blueprint, url_prefix='/api')
    app.register_blueprint(packaging_blueprint, url_prefix='/api')
    app.register_blueprint(products_blueprint, url_prefix='/api')
    app.register_blueprint(custom_products_blueprint, url_prefix='/api')
    app.register_blueprint(nutrition_blueprint, url_prefix='/api')
    app.register_blueprint(categories_blueprint, url_prefix='/api')
    app.register_blueprint(settings_blueprint, url_prefix='/api')
    app.register_blueprint(dashboard_blueprint, url_prefix='/api')
    app.register_blueprint(backup_blueprint, url_prefix='/api')
    app.register_blueprint(audit_blueprint, url_prefix='/api')

    with app.app_context():
        db.create_all()

    return app
