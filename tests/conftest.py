import pytest

FEED_URL = 'https://feed.example.com/api/products'
CATALOG_URL = 'https://shop.example.com/wp-json/wc/v3'
MARKET_URL = 'https://market.example.com/v3'


@pytest.fixture(autouse=True)
def override_settings(settings, tmp_path):
    settings.FEED_API_URL = FEED_URL
    settings.FEED_API_TOKEN = 'feed-token'
    settings.FEED_API_PARAMS = {}
    settings.CATALOG_API_URL = CATALOG_URL
    settings.CATALOG_CONSUMER_KEY = 'ck_test'
    settings.CATALOG_CONSUMER_SECRET = 'cs_test'
    settings.CATALOG_BATCH_SIZE = 100
    settings.MARKET_API_URL = MARKET_URL
    settings.MARKET_API_KEY = 'market-key'
    settings.WEBHOOK_SECRET = 'whsec-test'
    settings.IMAGE_MAP_PATH = str(tmp_path / 'image_map.json')
    settings.REMOTE_RATE_LIMIT = 0
    settings.REMOTE_MAX_RETRIES = 3
