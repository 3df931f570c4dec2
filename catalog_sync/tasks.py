import logging

from celery import shared_task

from .feed_sync import FeedSyncEngine
from .platform_sync import PlatformSyncEngine
from .price_sync import PriceSyncEngine

logger = logging.getLogger(__name__)


@shared_task(bind=True, name='catalog_sync.sync_feed')
def sync_feed_task(self, dry_run=False):
    """
    Reconcile the store with the vendor feed.

    Fetch failures and database errors are reported in the returned dict
    (success=False) and the transaction is rolled back; the task itself
    only raises on errors outside the engine.
    """
    result = FeedSyncEngine.from_settings().sync(dry_run=dry_run)
    if not result['success']:
        logger.error("Feed sync task finished with error: %s", result['error'])
    return result


@shared_task(bind=True, name='catalog_sync.sync_platform')
def sync_platform_task(self, dry_run=False, limit=None):
    """
    Push pending products to WooCommerce.

    Products that fail stay pending and are picked up again by the next
    run once their claim is released.
    """
    result = PlatformSyncEngine.from_settings().sync(dry_run=dry_run, limit=limit)
    if not result['success']:
        logger.error("Platform sync task finished with error: %s", result['error'])
    elif result['stats']['errors']:
        logger.warning("Platform sync task finished with %d errors.", result['stats']['errors'])
    return result


@shared_task(bind=True, name='catalog_sync.sync_prices')
def sync_prices_task(self, dry_run=False, limit=None):
    """
    Reprice active variations from market data.

    Repriced products are flagged pending, so the next platform run
    pushes the new prices.
    """
    result = PriceSyncEngine.from_settings().sync(dry_run=dry_run, limit=limit)
    if result['stats']['errors']:
        logger.warning("Price sync task finished with %d errors.", result['stats']['errors'])
    return result
