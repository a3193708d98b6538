import os


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///fossapp.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = False
    MAX_CONTENT_LENGTH = 100 * 1024 * 1024

    # Google Drive (service account)
    GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv('GOOGLE_SERVICE_ACCOUNT_FILE', '')
    GOOGLE_DRIVE_SHARED_DRIVE_ID = os.getenv('GOOGLE_DRIVE_SHARED_DRIVE_ID', '')
    GOOGLE_DRIVE_PROJECTS_FOLDER_ID = os.getenv('GOOGLE_DRIVE_PROJECTS_FOLDER_ID', '')
    GOOGLE_DRIVE_ARCHIVE_FOLDER_ID = os.getenv('GOOGLE_DRIVE_ARCHIVE_FOLDER_ID', '')
    GOOGLE_DRIVE_TILES_FOLDER_ID = os.getenv('GOOGLE_DRIVE_TILES_FOLDER_ID', '')

    # Autodesk Platform Services
    APS_CLIENT_ID = os.getenv('APS_CLIENT_ID', '')
    APS_CLIENT_SECRET = os.getenv('APS_CLIENT_SECRET', '')
    APS_REGION = os.getenv('APS_REGION', 'EMEA')
    APS_DA_NICKNAME = os.getenv('APS_DA_NICKNAME', 'fossapp')
    APS_DA_ACTIVITY = os.getenv('APS_DA_ACTIVITY', 'fossappTileAct2')
    APS_PROJECT_TEMPLATE = os.getenv('APS_PROJECT_TEMPLATE', '')

    # DWG viewer
    VIEWER_BUCKET = os.getenv('VIEWER_BUCKET', 'fossapp-tile-viewer')
    VIEWER_POLL_INTERVAL = float(os.getenv('VIEWER_POLL_INTERVAL', '2'))
    VIEWER_POLL_MAX_ATTEMPTS = int(os.getenv('VIEWER_POLL_MAX_ATTEMPTS', '60'))
    VIEWER_CACHE_TTL = int(os.getenv('VIEWER_CACHE_TTL', str(24 * 60 * 60)))

    # Tile generation
    TILE_JOB_TTL = int(os.getenv('TILE_JOB_TTL', '300'))
    DA_POLL_INTERVAL = float(os.getenv('DA_POLL_INTERVAL', '2'))
    DA_MAX_POLL_ATTEMPTS = int(os.getenv('DA_MAX_POLL_ATTEMPTS', '240'))


class DevConfig(BaseConfig):
    DEBUG = True
    ENV = 'development'


class TestConfig(BaseConfig):
    TESTING = True
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    GOOGLE_SERVICE_ACCOUNT_FILE = ''
    APS_CLIENT_ID = ''
    APS_CLIENT_SECRET = ''
    VIEWER_POLL_INTERVAL = 0
    DA_POLL_INTERVAL = 0


class ProdConfig(BaseConfig):
    DEBUG = False
    ENV = 'production'
    SESSION_COOKIE_SECURE = True
