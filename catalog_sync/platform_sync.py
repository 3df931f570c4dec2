import json
import logging
import os
import time
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.utils.text import slugify

from .models import Product, ProductVariation, SyncLog
from .platform import (
    MAX_BATCH_SIZE,
    BatchRequest,
    CatalogClient,
    ProductAttribute,
    ProductPayload,
    VariationAttribute,
    VariationPayload,
)
from .store import CatalogStore, HydratedProduct
from .transformer import size_sort_key

logger = logging.getLogger(__name__)

_UNRESOLVED = object()


def load_image_map(path) -> dict:
    """Read the sku -> {media_id, url, uploaded_at} map written by the media uploader."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read image map %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Image map %s is not an object – ignoring.", path)
        return {}
    logger.debug("Loaded image map with %d images.", len(data))
    return data


def render_template(template: str, values: dict) -> str:
    for key, value in values.items():
        template = template.replace('{' + key + '}', str(value))
    return template


def format_price(price: Decimal) -> str:
    return format(Decimal(price).normalize(), 'f')


def _pair(items: list, results: list):
    """Yield (item, result) by position; result is None when the response is short."""
    for index, item in enumerate(items):
        yield item, results[index] if index < len(results) else None


class PlatformSyncEngine:
    """
    Pushes pending store products to the WooCommerce catalog in batches.

    Products without a mapping are created, mapped ones are updated; every
    success then syncs the product's variations and clears its pending
    flag. Each batch is applied on its own, so an interrupted run leaves
    finished batches in place and the rest pending.
    """

    def __init__(self, store: CatalogStore, catalog: CatalogClient, *,
                 batch_size: int = MAX_BATCH_SIZE,
                 category_name: str = 'Sneakers',
                 brand_category_suffix: str = '-originali',
                 size_attribute_slug: str = 'taglia',
                 brand_attribute_slug: str = 'marca',
                 store_name: str = '',
                 short_description_template: str = '',
                 long_description_template: str = '',
                 image_map: Optional[dict] = None,
                 claim_lease_seconds: int = 900):
        self._store = store
        self._catalog = catalog
        self._batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self._category_name = category_name
        self._brand_category_suffix = brand_category_suffix
        self._size_attribute_slug = size_attribute_slug
        self._brand_attribute_slug = brand_attribute_slug
        self._store_name = store_name
        self._short_description_template = short_description_template
        self._long_description_template = long_description_template
        self._image_map = image_map or {}
        self._claim_lease_seconds = claim_lease_seconds

        self._category_cache: dict[str, Optional[int]] = {}
        self._size_attribute_id = _UNRESOLVED
        self._claim_token = None
        self.stats = self._empty_stats()

    @classmethod
    def from_settings(cls, store: Optional[CatalogStore] = None) -> 'PlatformSyncEngine':
        return cls(
            store or CatalogStore(),
            CatalogClient.from_settings(),
            batch_size=settings.CATALOG_BATCH_SIZE,
            category_name=settings.CATALOG_CATEGORY_NAME,
            brand_category_suffix=settings.BRAND_CATEGORY_SLUG_SUFFIX,
            size_attribute_slug=settings.SIZE_ATTRIBUTE_SLUG,
            brand_attribute_slug=settings.BRAND_ATTRIBUTE_SLUG,
            store_name=settings.STORE_NAME,
            short_description_template=settings.SHORT_DESCRIPTION_TEMPLATE,
            long_description_template=settings.LONG_DESCRIPTION_TEMPLATE,
            image_map=load_image_map(settings.IMAGE_MAP_PATH),
            claim_lease_seconds=settings.SYNC_CLAIM_LEASE_SECONDS,
        )

    @staticmethod
    def _empty_stats() -> dict:
        return {
            'products_created': 0,
            'products_updated': 0,
            'products_skipped': 0,
            'variations_created': 0,
            'variations_updated': 0,
            'batch_requests': 0,
            'errors': 0,
        }

    def sync(self, dry_run: bool = False, limit: Optional[int] = None) -> dict:
        logger.info("Starting database → WooCommerce sync%s.", " (dry run)" if dry_run else "")
        self.stats = self._empty_stats()
        started = time.monotonic()
        product_ids = []

        try:
            if dry_run:
                product_ids = self._store.pending_product_ids(limit, self._claim_lease_seconds)
            else:
                product_ids, self._claim_token = self._store.claim_pending(limit, self._claim_lease_seconds)
            logger.info("Found %d products to sync.", len(product_ids))

            batches = [
                product_ids[i:i + self._batch_size]
                for i in range(0, len(product_ids), self._batch_size)
            ]
            for number, batch in enumerate(batches, start=1):
                logger.info("Processing batch %d/%d (%d products)...", number, len(batches), len(batch))
                self._process_batch(batch, dry_run)
        except Exception as exc:
            logger.error("WooCommerce sync failed: %s", exc)
            return {'success': False, 'error': str(exc), 'stats': dict(self.stats)}
        finally:
            if not dry_run and product_ids:
                # Anything still claimed failed in this run; let the next run retry it.
                self._store.release_claims(product_ids, self._claim_token)

        duration = round(time.monotonic() - started, 2)
        logger.info(
            "WooCommerce sync complete in %.2fs. products: created=%d, updated=%d, skipped=%d; "
            "variations: created=%d, updated=%d; batch requests=%d, errors=%d.",
            duration,
            self.stats['products_created'], self.stats['products_updated'],
            self.stats['products_skipped'], self.stats['variations_created'],
            self.stats['variations_updated'], self.stats['batch_requests'], self.stats['errors'],
        )
        return {'success': True, 'stats': dict(self.stats), 'duration': duration}

    # -----------------------------------------------------------------------
    # Products
    # -----------------------------------------------------------------------

    def _process_batch(self, product_ids: list[int], dry_run: bool):
        hydrated_products = []
        for product_id in product_ids:
            hydrated = self._store.hydrate(product_id)
            if hydrated is None:
                self.stats['products_skipped'] += 1
                continue
            hydrated_products.append(hydrated)

        if dry_run:
            creates = sum(1 for h in hydrated_products if h.wc_map is None)
            updates = len(hydrated_products) - creates
            logger.info("[DRY RUN] Would create %d and update %d products.", creates, updates)
            self.stats['products_created'] += creates
            self.stats['products_updated'] += updates
            return

        to_create, to_update = [], []
        for hydrated in hydrated_products:
            payload = self.build_product_payload(hydrated)
            if hydrated.wc_map is None:
                to_create.append((hydrated, payload))
            else:
                payload.id = hydrated.wc_map.remote_id
                to_update.append((hydrated, payload))

        request = BatchRequest(
            create=[payload for _, payload in to_create],
            update=[payload for _, payload in to_update],
        )
        if request.empty:
            return

        response = self._catalog.batch_products(request)
        self.stats['batch_requests'] += 1
        if response is None:
            self.stats['errors'] += len(to_create) + len(to_update)
            logger.error("Product batch request failed; %d products stay pending.", len(to_create) + len(to_update))
            return

        for (hydrated, payload), result in _pair(to_create, response.create):
            if result is None or not result.succeeded:
                self._record_failure('create', hydrated, payload, result)
                continue
            hydrated.wc_map = self._store.save_product_map(hydrated.product, result.remote_id)
            self.stats['products_created'] += 1
            self._finish_product(hydrated, result.remote_id, SyncLog.ACTION_CREATE, payload)

        for (hydrated, payload), result in _pair(to_update, response.update):
            if result is None or not result.succeeded:
                self._record_failure('update', hydrated, payload, result)
                continue
            self.stats['products_updated'] += 1
            self._finish_product(hydrated, result.remote_id, SyncLog.ACTION_UPDATE, payload)

    def _record_failure(self, action: str, hydrated: HydratedProduct, payload: ProductPayload, result):
        self.stats['errors'] += 1
        error = result.error if result is not None else 'missing from batch response'
        logger.error(
            "Failed to %s product %s: %s. Payload: %s",
            action, hydrated.product.sku, error, json.dumps(payload.to_json(), default=str),
        )

    def _finish_product(self, hydrated: HydratedProduct, remote_id: int, action: str, payload: ProductPayload):
        product = hydrated.product
        verb = 'created' if action == SyncLog.ACTION_CREATE else 'updated'

        if not self.sync_variations(hydrated, remote_id):
            self.stats['errors'] += 1
            self._store.log(
                SyncLog.TYPE_DB_TO_WOO, SyncLog.ACTION_ERROR,
                entity_id=product.pk, remote_id=remote_id, sku=product.sku,
                message=f'Product {verb} but variation sync failed; left pending',
            )
            return

        if not self._store.mark_synced(product.pk, self._claim_token):
            logger.info("SKU %s changed during the push – leaving it pending.", product.sku)
        self._store.log(
            SyncLog.TYPE_DB_TO_WOO, action,
            entity_id=product.pk, remote_id=remote_id, sku=product.sku,
            changes=payload.to_json(),
            message=f'Product {verb} in WooCommerce',
        )
        logger.debug("SKU %s %s (remote id %s).", product.sku, verb, remote_id)

    def build_product_payload(self, hydrated: HydratedProduct) -> ProductPayload:
        product = hydrated.product

        categories = []
        main_category = self._category_id(self._category_name, slugify(self._category_name))
        if main_category:
            categories.append(main_category)
        if product.brand_name:
            brand_slug = slugify(product.brand_name) + self._brand_category_suffix
            brand_category = self._category_id(product.brand_name, brand_slug)
            if brand_category:
                categories.append(brand_category)

        values = {
            'product_name': product.name,
            'brand_name': product.brand_name or '',
            'sku': product.sku,
            'store_name': self._store_name,
        }
        return ProductPayload(
            name=product.name,
            sku=product.sku,
            status='publish' if product.status == Product.STATUS_ACTIVE else 'draft',
            short_description=render_template(self._short_description_template, values),
            description=render_template(self._long_description_template, values),
            categories=categories,
            attributes=self._build_attributes(hydrated.variations, product.brand_name),
            image_id=self._image_id(product.sku),
        )

    def _build_attributes(self, variations: list[ProductVariation], brand: Optional[str]) -> list[ProductAttribute]:
        sizes = sorted({v.size_label for v in variations}, key=size_sort_key)
        attributes = [
            ProductAttribute(
                name=f'pa_{self._size_attribute_slug}', options=sizes, position=0, variation=True,
            ),
        ]
        if brand:
            attributes.append(ProductAttribute(
                name=f'pa_{self._brand_attribute_slug}', options=[brand], position=1, variation=False,
            ))
        return attributes

    def _image_id(self, sku: str) -> Optional[int]:
        entry = self._image_map.get(sku)
        if not isinstance(entry, dict) or not entry.get('media_id'):
            return None
        try:
            return int(entry['media_id'])
        except (TypeError, ValueError):
            logger.warning("Invalid media id %r for SKU %s in image map.", entry['media_id'], sku)
            return None

    def _category_id(self, name: str, slug: str) -> Optional[int]:
        if slug not in self._category_cache:
            category_id = self._catalog.ensure_category(name, slug)
            if category_id is None:
                # Not cached, so a later product retries the lookup.
                return None
            self._category_cache[slug] = category_id
        return self._category_cache[slug]

    def _size_attribute(self) -> Optional[int]:
        if self._size_attribute_id is _UNRESOLVED:
            self._size_attribute_id = self._catalog.attribute_id(self._size_attribute_slug)
        return self._size_attribute_id

    # -----------------------------------------------------------------------
    # Variations
    # -----------------------------------------------------------------------

    def build_variation_payload(self, variation: ProductVariation) -> VariationPayload:
        return VariationPayload(
            sku=variation.sku,
            regular_price=format_price(variation.retail_price),
            stock_quantity=variation.stock_quantity if variation.active else 0,
            attributes=[VariationAttribute(
                option=variation.size_label,
                id=self._size_attribute(),
                name=f'pa_{self._size_attribute_slug}',
            )],
        )

    def sync_variations(self, hydrated: HydratedProduct, remote_product_id: int) -> bool:
        """
        Create or update the product's variations on the platform.

        Variations found remotely by SKU are updated, and mapped if they
        were not yet; the rest are created. Nothing is deleted remotely.
        Returns False when the listing or the batch call failed, or any
        item did not succeed.
        """
        if not hydrated.variations:
            return True

        remote_ids = self._catalog.variations_by_sku(remote_product_id)
        if remote_ids is None:
            return False

        to_create, to_update = [], []
        for variation in hydrated.variations:
            payload = self.build_variation_payload(variation)
            remote_id = remote_ids.get(variation.sku)
            if remote_id is None:
                to_create.append((variation, payload))
                continue
            payload.id = remote_id
            mapping = hydrated.variation_map(variation)
            if mapping is None:
                logger.info("Variation %s exists remotely but is unmapped – mapping it.", variation.sku)
            to_update.append((variation, payload))

        request = BatchRequest(
            create=[payload for _, payload in to_create],
            update=[payload for _, payload in to_update],
        )
        response = self._catalog.batch_variations(remote_product_id, request)
        if response is None:
            logger.error("Variation batch failed for remote product %s.", remote_product_id)
            return False

        ok = True
        for (variation, payload), result in _pair(to_create, response.create):
            if result is None or not result.succeeded:
                ok = False
                logger.error("Failed to create variation %s: %s", variation.sku, result.error if result else 'missing')
                continue
            self._store.save_variation_map(variation, result.remote_id, remote_product_id)
            self.stats['variations_created'] += 1

        for (variation, payload), result in _pair(to_update, response.update):
            if result is None or not result.succeeded:
                ok = False
                logger.error("Failed to update variation %s: %s", variation.sku, result.error if result else 'missing')
                continue
            mapping = hydrated.variation_map(variation)
            if mapping is None or mapping.remote_id != result.remote_id:
                self._store.save_variation_map(variation, result.remote_id, remote_product_id)
            self.stats['variations_updated'] += 1

        return ok
