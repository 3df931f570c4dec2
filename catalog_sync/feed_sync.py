import logging
import time
from functools import partial
from typing import Optional

from django.conf import settings
from django.utils import timezone

from .http_client import RemoteClient
from .models import Product, SyncLog
from .store import CatalogStore
from .transformer import (
    ROUNDING_TYPES,
    FeedRecord,
    calculate_retail_price,
    dedupe_records,
    parse_record,
)

logger = logging.getLogger(__name__)


class FeedFetchError(RuntimeError):
    """The vendor feed could not be fetched or decoded; the run cannot proceed."""


def feed_client_from_settings() -> RemoteClient:
    return RemoteClient(
        settings.FEED_API_URL,
        token=settings.FEED_API_TOKEN,
        timeout=settings.FEED_TIMEOUT,
        max_retries=settings.REMOTE_MAX_RETRIES,
    )


class FeedSyncEngine:
    """
    Makes the store agree with the current vendor feed snapshot.

    A run fetches the full feed, creates products it has never seen,
    updates those whose signature changed, and deactivates feed products
    that are no longer listed. All writes of one run share a single
    transaction: either the whole diff lands or none of it does.
    """

    def __init__(self, store: CatalogStore, client: RemoteClient, *,
                 markup_percentage=25, vat_percentage=22, rounding: str = 'whole',
                 params: Optional[dict] = None):
        if rounding not in ROUNDING_TYPES:
            raise ValueError(f"Unknown rounding type {rounding!r}; expected one of {ROUNDING_TYPES}.")
        self._store = store
        self._client = client
        self._params = params or {}
        self._price_for = partial(
            calculate_retail_price,
            markup_percentage=markup_percentage,
            vat_percentage=vat_percentage,
            rounding=rounding,
        )
        self.stats = self._empty_stats()

    @classmethod
    def from_settings(cls, store: Optional[CatalogStore] = None) -> 'FeedSyncEngine':
        return cls(
            store or CatalogStore(),
            feed_client_from_settings(),
            markup_percentage=settings.PRICE_MARKUP_PERCENTAGE,
            vat_percentage=settings.PRICE_VAT_PERCENTAGE,
            rounding=settings.PRICE_ROUNDING,
            params=settings.FEED_API_PARAMS,
        )

    @staticmethod
    def _empty_stats() -> dict:
        return {
            'products_new': 0,
            'products_updated': 0,
            'products_removed': 0,
            'products_unchanged': 0,
            'records_skipped': 0,
            'variations_created': 0,
            'variations_updated': 0,
            'variations_deactivated': 0,
        }

    def fetch_feed(self) -> list:
        result = self._client.call('GET', query=self._params)
        if not result.ok:
            raise FeedFetchError(f"Failed to fetch feed: {result.error}")
        if result.status_code != 200:
            raise FeedFetchError(f"Feed returned HTTP {result.status_code}")
        if not isinstance(result.data, list):
            raise FeedFetchError(f"Feed returned {type(result.data).__name__}, expected a list")
        return result.data

    def sync(self, dry_run: bool = False) -> dict:
        logger.info("Starting feed → database sync%s.", " (dry run)" if dry_run else "")
        self.stats = self._empty_stats()
        started = time.monotonic()

        try:
            records = self.fetch_feed()
            logger.info("Received %d records from feed.", len(records))
            if dry_run:
                self._reconcile(records, dry_run=True)
            else:
                with self._store.atomic():
                    self._reconcile(records, dry_run=False)
        except Exception as exc:
            logger.error("Feed sync failed, no changes applied: %s", exc)
            if not dry_run:
                self._store.log(
                    SyncLog.TYPE_FEED_TO_DB, SyncLog.ACTION_ERROR,
                    entity_type=SyncLog.ENTITY_BATCH, message=str(exc),
                )
            return {'success': False, 'error': str(exc), 'stats': dict(self.stats)}

        duration = round(time.monotonic() - started, 2)
        logger.info(
            "Feed sync complete in %.2fs. products: new=%d, updated=%d, removed=%d, unchanged=%d, "
            "skipped=%d; variations: created=%d, updated=%d, deactivated=%d.",
            duration,
            self.stats['products_new'], self.stats['products_updated'],
            self.stats['products_removed'], self.stats['products_unchanged'],
            self.stats['records_skipped'], self.stats['variations_created'],
            self.stats['variations_updated'], self.stats['variations_deactivated'],
        )
        return {'success': True, 'stats': dict(self.stats), 'duration': duration}

    def _reconcile(self, raw_records: list, dry_run: bool):
        now = timezone.now()
        existing = self._store.products_by_sku()
        logger.info("Found %d products in database.", len(existing))
        seen = set()

        for raw in dedupe_records(raw_records):
            record = parse_record(raw)
            if record is None:
                self.stats['records_skipped'] += 1
                continue
            seen.add(record.sku)
            self._process_record(record, existing.get(record.sku), now, dry_run)

        self._remove_missing(existing, seen, now, dry_run)

    def _process_record(self, record: FeedRecord, product: Optional[Product], now, dry_run: bool):
        if product is None:
            self.stats['products_new'] += 1
            logger.debug("+ NEW: %s", record.sku)
            if dry_run:
                return
            product = self._store.create_product(record, now)
            self._apply_variations(product, record)
            self._store.log(
                SyncLog.TYPE_FEED_TO_DB, SyncLog.ACTION_CREATE,
                entity_id=product.pk, sku=product.sku,
                changes={'name': record.name, 'brand_name': record.brand_name},
                message='Product created from feed',
            )
            return

        reactivated = product.status != Product.STATUS_ACTIVE
        signature_changed = product.feed_signature != record.signature
        if not signature_changed and not reactivated:
            self.stats['products_unchanged'] += 1
            return

        self.stats['products_updated'] += 1
        logger.debug("~ UPDATED: %s%s", record.sku, " (reactivated)" if reactivated else "")
        if dry_run:
            return
        self._store.update_product(product, record, now)
        self._apply_variations(product, record)
        self._store.log(
            SyncLog.TYPE_FEED_TO_DB, SyncLog.ACTION_UPDATE,
            entity_id=product.pk, sku=product.sku,
            changes={'signature_changed': signature_changed, 'reactivated': reactivated},
            message='Product updated from feed',
        )

    def _apply_variations(self, product: Product, record: FeedRecord):
        counts = self._store.sync_variations(product, record.sizes, self._price_for)
        self._add_variation_counts(counts)

    def _add_variation_counts(self, counts: dict):
        self.stats['variations_created'] += counts['created']
        self.stats['variations_updated'] += counts['updated']
        self.stats['variations_deactivated'] += counts['deactivated']

    def _remove_missing(self, existing: dict, seen: set, now, dry_run: bool):
        for sku, product in existing.items():
            if sku in seen or product.source != Product.SOURCE_FEED:
                continue
            if product.status != Product.STATUS_ACTIVE:
                continue
            self.stats['products_removed'] += 1
            logger.debug("- REMOVED: %s", sku)
            if dry_run:
                continue
            self._add_variation_counts(self._store.deactivate_product(product, now))
            self._store.log(
                SyncLog.TYPE_FEED_TO_DB, SyncLog.ACTION_DELETE,
                entity_id=product.pk, sku=sku,
                changes={'reason': 'not_in_feed'},
                message='Product removed from feed - marked inactive and out of stock',
            )
