import os


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///bakecost.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Secret key for session management (language selection is kept in the session)
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')

    BABEL_DEFAULT_LOCALE = 'zh_TW'
    BABEL_SUPPORTED_LOCALES = ['en', 'zh_TW']
    BABEL_TRANSLATION_DIRECTORIES = '../translations'

    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB max upload size

    BACKUP_DIR = os.getenv('BACKUP_DIR', os.path.join(os.getcwd(), 'backups'))
    MAX_BACKUP_FILES = int(os.getenv('MAX_BACKUP_FILES', '10'))
    DAILY_BACKUP_ENABLED = os.getenv('DAILY_BACKUP_ENABLED', 'true').lower() == 'true'
    DAILY_BACKUP_TRACKER = os.getenv('DAILY_BACKUP_TRACKER', os.path.join(os.getcwd(), 'daily-backup-tracker.json'))
    # The business day rolls over at midnight Taiwan time
    BACKUP_UTC_OFFSET_HOURS = int(os.getenv('BACKUP_UTC_OFFSET_HOURS', '8'))

    DEFAULT_MANAGEMENT_FEE_PERCENTAGE = os.getenv('DEFAULT_MANAGEMENT_FEE_PERCENTAGE', '3.00')
    DEFAULT_PROFIT_MARGIN_LOW = '20.00'
    DEFAULT_PROFIT_MARGIN_HIGH = '40.00'
    SETTINGS_USERNAME = os.getenv('SETTINGS_USERNAME', 'admin')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    DAILY_BACKUP_ENABLED = False
    BABEL_DEFAULT_LOCALE = 'en'
    LOG_LEVEL = 'DEBUG'
