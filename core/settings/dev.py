"""
Development settings
"""
from .base import *
import dj_database_url

DEBUG = True

ALLOWED_HOSTS = ['*']

# Database (SQLite unless DATABASE_URL points elsewhere)
DATABASES = {
    'default': dj_database_url.config(
        default=os.getenv('DATABASE_URL', f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
        conn_max_age=0,
    )
}

CORS_ALLOW_ALL_ORIGINS = True
