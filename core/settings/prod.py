"""
Production settings
"""
from .base import *
import dj_database_url

DEBUG = False

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '').split(',') if os.getenv('ALLOWED_HOSTS') else []

# Database
DATABASES = {
    'default': dj_database_url.config(
        default=os.getenv('DATABASE_URL'),
        conn_max_age=600,
        conn_health_checks=True,
    )
}

# Security settings
SECURE_SSL_REDIRECT = os.getenv('SECURE_SSL_REDIRECT', 'False') == 'True'
SESSION_COOKIE_SECURE = True
CSRF_COOKIE_SECURE = True
SECURE_BROWSER_XSS_FILTER = True
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = 'DENY'

# Cookie settings for production
COOKIE_SECURE = True  # Only send cookies over HTTPS in production
COOKIE_SAMESITE = 'Lax'  # Can be 'Strict' or 'None' (requires Secure=True)

# CORS
CORS_ALLOWED_ORIGINS = os.getenv('CORS_ALLOWED_ORIGINS', '').split(',') if os.getenv('CORS_ALLOWED_ORIGINS') else []

# Ticket storage
# Managed databases drop idle connections, so allow a longer retry window
STORAGE_RETRY_ATTEMPTS = int(os.getenv('STORAGE_RETRY_ATTEMPTS', '5'))
STORAGE_RETRY_MIN_WAIT = float(os.getenv('STORAGE_RETRY_MIN_WAIT', '0.2'))
STORAGE_RETRY_MAX_WAIT = float(os.getenv('STORAGE_RETRY_MAX_WAIT', '5'))

# Rendered ticket artifacts must live on a volume shared by every worker
MEDIA_ROOT = os.getenv('MEDIA_ROOT', '/var/lib/ticketing/media')
MEDIA_URL = os.getenv('MEDIA_URL', MEDIA_URL)
TICKET_ARTIFACT_DIR = os.getenv('TICKET_ARTIFACT_DIR', TICKET_ARTIFACT_DIR)
