from decimal import Decimal
from unittest.mock import patch

import pytest
import responses as responses_lib
from django.db import DatabaseError
from django.utils import timezone

from catalog_sync.feed_sync import FeedFetchError, FeedSyncEngine
from catalog_sync.models import Product, ProductVariation, SyncLog
from catalog_sync.store import CatalogStore

FEED_URL = 'https://feed.example.com/api/products'


def feed_record(sku='AB-100', name='Air Runner', sizes=None, **extra):
    record = {
        'id': 1,
        'sku': sku,
        'name': name,
        'brand_name': 'Nike',
        'image_full_url': f'https://cdn.example.com/{sku}.jpg',
        'sizes': sizes if sizes is not None else [
            {'size_us': '9', 'size_eu': '42', 'offer_price': 80, 'available_quantity': 2},
        ],
    }
    record.update(extra)
    return record


def mock_feed(records, status=200):
    responses_lib.add(responses_lib.GET, FEED_URL, json=records, status=status)


def run_sync(**kwargs):
    return FeedSyncEngine.from_settings().sync(**kwargs)


# ---------------------------------------------------------------------------
# New products
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestNewProducts:
    @responses_lib.activate
    def test_new_sku_creates_product_and_variation(self):
        mock_feed([feed_record()])

        result = run_sync()

        assert result['success'] is True
        assert result['stats']['products_new'] == 1
        assert result['stats']['variations_created'] == 1

        product = Product.objects.get(sku='AB-100')
        assert product.status == Product.STATUS_ACTIVE
        assert product.source == Product.SOURCE_FEED
        assert product.sync_pending is True
        assert product.feed_signature

        variation = product.variations.get()
        assert variation.sku == 'AB-100-42'
        assert variation.offer_price == Decimal('80')
        # 80 * 1.25 * 1.22 = 122
        assert variation.retail_price == Decimal('122')
        assert variation.stock_quantity == 2
        assert variation.active is True

    @responses_lib.activate
    def test_create_is_logged(self):
        mock_feed([feed_record()])

        run_sync()

        log = SyncLog.objects.get(action=SyncLog.ACTION_CREATE)
        assert log.sync_type == SyncLog.TYPE_FEED_TO_DB
        assert log.source == 'feed'
        assert log.sku == 'AB-100'

    @responses_lib.activate
    def test_feed_token_is_sent(self):
        mock_feed([])

        run_sync()

        assert responses_lib.calls[0].request.headers['Authorization'] == 'Bearer feed-token'

    @responses_lib.activate
    def test_invalid_and_duplicate_records_are_skipped(self):
        mock_feed([
            feed_record(),
            feed_record(name='Duplicate'),
            {'name': 'No SKU'},
            {'sku': 'NO-NAME'},
        ])

        result = run_sync()

        assert result['stats']['products_new'] == 1
        assert result['stats']['records_skipped'] == 2
        assert Product.objects.get().name == 'Air Runner'


# ---------------------------------------------------------------------------
# Idempotence and updates
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestUpdates:
    @responses_lib.activate
    def test_second_run_with_same_feed_changes_nothing(self):
        mock_feed([feed_record()])
        run_sync()
        Product.objects.update(sync_pending=False)
        log_count = SyncLog.objects.count()

        result = run_sync()

        assert result['stats']['products_unchanged'] == 1
        assert result['stats']['products_updated'] == 0
        assert SyncLog.objects.count() == log_count
        assert Product.objects.get().sync_pending is False

    @responses_lib.activate
    def test_changed_price_updates_variation_and_flags_pending(self):
        mock_feed([feed_record()])
        run_sync()
        Product.objects.update(sync_pending=False, sync_claimed_at=timezone.now())

        responses_lib.replace(responses_lib.GET, FEED_URL, json=[feed_record(sizes=[
            {'size_us': '9', 'size_eu': '42', 'offer_price': 100, 'available_quantity': 2},
        ])])
        result = run_sync()

        assert result['stats']['products_updated'] == 1
        assert result['stats']['variations_updated'] == 1
        product = Product.objects.get()
        assert product.sync_pending is True
        assert product.sync_claimed_at is None
        assert product.variations.get().retail_price == Decimal('153')

    @responses_lib.activate
    def test_dropped_size_is_deactivated(self):
        mock_feed([feed_record(sizes=[
            {'size_eu': '42', 'offer_price': 80, 'available_quantity': 2},
            {'size_eu': '43', 'offer_price': 80, 'available_quantity': 1},
        ])])
        run_sync()

        responses_lib.replace(responses_lib.GET, FEED_URL, json=[feed_record(sizes=[
            {'size_eu': '42', 'offer_price': 80, 'available_quantity': 2},
        ])])
        result = run_sync()

        assert result['stats']['variations_deactivated'] == 1
        dropped = ProductVariation.objects.get(sku='AB-100-43')
        assert dropped.active is False
        assert dropped.stock_quantity == 0


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestRemoval:
    @responses_lib.activate
    def test_missing_sku_is_deactivated_with_zero_stock(self):
        mock_feed([feed_record()])
        run_sync()

        responses_lib.replace(responses_lib.GET, FEED_URL, json=[])
        result = run_sync()

        assert result['stats']['products_removed'] == 1
        product = Product.objects.get(sku='AB-100')
        assert product.status == Product.STATUS_INACTIVE
        assert product.sync_pending is True
        variation = product.variations.get()
        assert variation.stock_quantity == 0
        assert variation.active is False

        log = SyncLog.objects.get(action=SyncLog.ACTION_DELETE)
        assert log.changes == {'reason': 'not_in_feed'}
        assert log.sku == 'AB-100'

    @responses_lib.activate
    def test_removal_happens_once(self):
        mock_feed([feed_record()])
        run_sync()
        responses_lib.replace(responses_lib.GET, FEED_URL, json=[])
        run_sync()

        result = run_sync()

        assert result['stats']['products_removed'] == 0
        assert SyncLog.objects.filter(action=SyncLog.ACTION_DELETE).count() == 1

    @responses_lib.activate
    def test_manual_products_are_never_removed(self):
        Product.objects.create(sku='MAN-1', name='Manual', source=Product.SOURCE_MANUAL)
        mock_feed([])

        run_sync()

        assert Product.objects.get(sku='MAN-1').status == Product.STATUS_ACTIVE

    @responses_lib.activate
    def test_reappearing_product_is_reactivated(self):
        mock_feed([feed_record()])
        run_sync()
        responses_lib.replace(responses_lib.GET, FEED_URL, json=[])
        run_sync()

        responses_lib.replace(responses_lib.GET, FEED_URL, json=[feed_record()])
        result = run_sync()

        assert result['stats']['products_updated'] == 1
        product = Product.objects.get()
        assert product.status == Product.STATUS_ACTIVE
        variation = product.variations.get()
        assert variation.active is True
        assert variation.stock_quantity == 2


# ---------------------------------------------------------------------------
# Failures and dry runs
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestFailures:
    @responses_lib.activate
    def test_failure_mid_run_rolls_back_everything(self):
        mock_feed([feed_record(), feed_record(sku='CD-200')])

        with patch.object(CatalogStore, 'sync_variations', side_effect=DatabaseError('disk full')):
            result = run_sync()

        assert result['success'] is False
        assert 'disk full' in result['error']
        assert Product.objects.count() == 0
        assert ProductVariation.objects.count() == 0
        error_log = SyncLog.objects.get()
        assert error_log.action == SyncLog.ACTION_ERROR
        assert error_log.entity_type == SyncLog.ENTITY_BATCH

    @responses_lib.activate
    def test_feed_outage_reports_failure(self):
        for _ in range(3):
            responses_lib.add(responses_lib.GET, FEED_URL, status=503)

        with patch('catalog_sync.http_client.time.sleep'):
            result = run_sync()

        assert result['success'] is False
        assert Product.objects.count() == 0

    @responses_lib.activate
    def test_non_list_feed_is_rejected(self):
        mock_feed({'error': 'maintenance'})

        with pytest.raises(FeedFetchError):
            FeedSyncEngine.from_settings().fetch_feed()

    @responses_lib.activate
    def test_dry_run_writes_nothing(self):
        mock_feed([feed_record()])

        result = run_sync(dry_run=True)

        assert result['success'] is True
        assert result['stats']['products_new'] == 1
        assert Product.objects.count() == 0
        assert SyncLog.objects.count() == 0

    def test_unknown_rounding_is_rejected(self, settings):
        settings.PRICE_ROUNDING = 'ceil'
        with pytest.raises(ValueError):
            FeedSyncEngine.from_settings()
