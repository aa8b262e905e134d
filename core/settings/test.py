"""
Test settings
"""
import os
import tempfile

from .base import *

DEBUG = False

ALLOWED_HOSTS = ['testserver', 'localhost']

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        # File-backed so threads in TransactionTestCase share one database
        'TEST': {
            'NAME': os.path.join(tempfile.mkdtemp(prefix='ticketing-test-db-'), 'test.sqlite3'),
        },
        'OPTIONS': {
            'timeout': 20,
        },
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

MEDIA_ROOT = tempfile.mkdtemp(prefix='ticketing-test-media-')

STORAGE_RETRY_MIN_WAIT = 0
STORAGE_RETRY_MAX_WAIT = 0

ENABLE_TOKEN_CLEANUP_SCHEDULER = False
