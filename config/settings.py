import json
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-only-insecure-key')
DEBUG = os.environ.get('DJANGO_DEBUG', '0') == '1'
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',')

INSTALLED_APPS = [
    'catalog_sync',
]

MIDDLEWARE = []

ROOT_URLCONF = 'config.urls'

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'catalog_sync.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/1')
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']

# ---------------------------------------------------------------------------
# Vendor feed
# ---------------------------------------------------------------------------

FEED_API_URL = os.environ.get('FEED_API_URL', 'https://www.goldensneakers.net/api/assortment/')
FEED_API_TOKEN = os.environ.get('FEED_API_TOKEN', '')
FEED_API_PARAMS = json.loads(os.environ.get('FEED_API_PARAMS', '{}'))
FEED_TIMEOUT = _env_int('FEED_TIMEOUT', 60)

PRICE_MARKUP_PERCENTAGE = _env_float('PRICE_MARKUP_PERCENTAGE', 25)
PRICE_VAT_PERCENTAGE = _env_float('PRICE_VAT_PERCENTAGE', 22)
PRICE_ROUNDING = os.environ.get('PRICE_ROUNDING', 'whole')  # whole | half | none

# ---------------------------------------------------------------------------
# WooCommerce catalog
# ---------------------------------------------------------------------------

CATALOG_API_URL = os.environ.get('CATALOG_API_URL', 'https://shop.example.com/wp-json/wc/v3')
CATALOG_CONSUMER_KEY = os.environ.get('CATALOG_CONSUMER_KEY', '')
CATALOG_CONSUMER_SECRET = os.environ.get('CATALOG_CONSUMER_SECRET', '')
CATALOG_TIMEOUT = _env_int('CATALOG_TIMEOUT', 120)
CATALOG_BATCH_SIZE = _env_int('CATALOG_BATCH_SIZE', 100)
CATALOG_CATEGORY_NAME = os.environ.get('CATALOG_CATEGORY_NAME', 'Sneakers')
BRAND_CATEGORY_SLUG_SUFFIX = os.environ.get('BRAND_CATEGORY_SLUG_SUFFIX', '-originali')
SIZE_ATTRIBUTE_SLUG = os.environ.get('SIZE_ATTRIBUTE_SLUG', 'taglia')
BRAND_ATTRIBUTE_SLUG = os.environ.get('BRAND_ATTRIBUTE_SLUG', 'marca')
STORE_NAME = os.environ.get('STORE_NAME', 'ResellPiacenza')
SHORT_DESCRIPTION_TEMPLATE = os.environ.get(
    'SHORT_DESCRIPTION_TEMPLATE', '{brand_name} {product_name} - originali su {store_name}.'
)
LONG_DESCRIPTION_TEMPLATE = os.environ.get(
    'LONG_DESCRIPTION_TEMPLATE', '<p>{product_name} ({sku}) di {brand_name}, 100% originali.</p>'
)
IMAGE_MAP_PATH = os.environ.get('IMAGE_MAP_PATH', str(BASE_DIR / 'image-map.json'))
SYNC_CLAIM_LEASE_SECONDS = _env_int('SYNC_CLAIM_LEASE_SECONDS', 900)

WEBHOOK_SECRET = os.environ.get('WEBHOOK_SECRET', '')

# ---------------------------------------------------------------------------
# Remote client
# ---------------------------------------------------------------------------

REMOTE_MAX_RETRIES = _env_int('REMOTE_MAX_RETRIES', 3)
REMOTE_RATE_LIMIT = _env_int('REMOTE_RATE_LIMIT', 0)  # requests per second, 0 disables

MARKET_API_URL = os.environ.get('MARKET_API_URL', 'https://api.kicks.dev/v3')
MARKET_API_KEY = os.environ.get('MARKET_API_KEY', '')
MARKET_MARKUP_PERCENTAGE = _env_float('MARKET_MARKUP_PERCENTAGE', 25)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {
            'format': '[%(asctime)s][%(levelname)s] %(name)s: %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'default',
        },
    },
    'loggers': {
        'catalog_sync': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': True,
        },
    },
}
