"""
Application configuration settings.
"""
import os

BASE_DIR = os.environ.get('BPI_BASE_DIR', '/var/lib/bulk-installer')


class Config:
    """Base configuration."""
    # Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev')

    # Admin token expected in X-Admin-Token; empty disables the check
    ADMIN_TOKEN = os.environ.get('BPI_ADMIN_TOKEN', '')

    # CORS settings
    CORS_ORIGINS = [origin for origin in os.environ.get('BPI_CORS_ORIGINS', '').split(',') if origin]

    # File paths
    PLUGINS_DIR = os.environ.get('BPI_PLUGINS_DIR', os.path.join(BASE_DIR, 'plugins'))
    BACKUP_DIR = os.environ.get('BPI_BACKUP_DIR', os.path.join(BASE_DIR, 'backups'))
    STATE_DIR = os.environ.get('BPI_STATE_DIR', os.path.join(BASE_DIR, 'state'))
    ACTIVITY_LOG_PATH = os.environ.get('BPI_ACTIVITY_LOG_PATH', os.path.join(STATE_DIR, 'activity_log.json'))

    # Version of the host application, checked against plugin requirements
    HOST_VERSION = os.environ.get('BPI_HOST_VERSION', '1.0.0')

    # Upload settings
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB of JSON task data


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = True
    TESTING = True
    ADMIN_TOKEN = ''
    # Use temporary directories for testing
    PLUGINS_DIR = '/tmp/bpi_test/plugins'
    BACKUP_DIR = '/tmp/bpi_test/backups'
    STATE_DIR = '/tmp/bpi_test/state'
    ACTIVITY_LOG_PATH = '/tmp/bpi_test/state/activity_log.json'


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False


# Map environment names to config classes
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
