import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from django.db import DEFAULT_DB_ALIAS, transaction
from django.db.models import Prefetch, Q
from django.utils import timezone

from .models import Product, ProductVariation, SyncLog, WcProductMap, WcVariationMap
from .transformer import FeedRecord, FeedSize, size_sort_key, variation_sku

logger = logging.getLogger(__name__)

_LOG_SOURCES = {
    SyncLog.TYPE_FEED_TO_DB: 'feed',
    SyncLog.TYPE_DB_TO_WOO: 'woocommerce',
    SyncLog.TYPE_WEBHOOK: 'webhook',
    SyncLog.TYPE_MARKET_TO_DB: 'market',
}


@dataclass
class HydratedProduct:
    product: Product
    variations: list[ProductVariation] = field(default_factory=list)
    wc_map: Optional[WcProductMap] = None
    variation_maps: dict[int, WcVariationMap] = field(default_factory=dict)

    def variation_map(self, variation: ProductVariation) -> Optional[WcVariationMap]:
        return self.variation_maps.get(variation.pk)


class CatalogStore:
    """
    The authoritative product store.

    Every write the engines and the webhook handler make goes through this
    object, which is bound to one database alias.
    """

    def __init__(self, using: str = DEFAULT_DB_ALIAS):
        self.using = using

    def atomic(self):
        return transaction.atomic(using=self.using)

    def _products(self):
        return Product.objects.using(self.using)

    def _variations(self):
        return ProductVariation.objects.using(self.using)

    # -----------------------------------------------------------------------
    # Feed side
    # -----------------------------------------------------------------------

    def products_by_sku(self) -> dict[str, Product]:
        return {p.sku: p for p in self._products().all()}

    def create_product(self, record: FeedRecord, now: datetime) -> Product:
        product = Product(
            sku=record.sku,
            name=record.name,
            brand_name=record.brand_name,
            image_url=record.image_full_url,
            size_mapper_name=record.size_mapper_name,
            feed_id=record.feed_id,
            feed_signature=record.signature,
            source=Product.SOURCE_FEED,
            status=Product.STATUS_ACTIVE,
            last_feed_sync=now,
            sync_pending=True,
        )
        product.save(using=self.using)
        return product

    def update_product(self, product: Product, record: FeedRecord, now: datetime) -> Product:
        product.name = record.name
        product.brand_name = record.brand_name
        product.image_url = record.image_full_url
        product.size_mapper_name = record.size_mapper_name
        product.feed_signature = record.signature
        if record.feed_id is not None:
            product.feed_id = record.feed_id
        product.status = Product.STATUS_ACTIVE
        product.last_feed_sync = now
        self._flag_pending(product)
        product.save(using=self.using)
        return product

    def deactivate_product(self, product: Product, now: datetime) -> dict:
        """Mark a product inactive and zero every one of its variations."""
        product.status = Product.STATUS_INACTIVE
        product.last_feed_sync = now
        self._flag_pending(product)
        product.save(using=self.using)
        return self.sync_variations(product, [], price_for=None)

    @staticmethod
    def _flag_pending(product: Product):
        # Dropping the claim keeps a product that changes mid-push pending.
        product.sync_pending = True
        product.sync_claimed_at = None

    def sync_variations(self, product: Product, sizes: list[FeedSize],
                        price_for: Optional[Callable]) -> dict:
        """
        Make the product's variations match `sizes`.

        Each size is upserted by variation SKU (reactivating it if needed);
        active variations whose SKU is absent are deactivated with stock 0.
        """
        stats = {'created': 0, 'updated': 0, 'deactivated': 0}
        existing = {v.sku: v for v in self._variations().filter(product=product)}
        seen = set()

        for size in sizes:
            sku = variation_sku(product.sku, size)
            seen.add(sku)
            values = {
                'size_us': size.size_us,
                'size_eu': size.size_eu,
                'size_uk': size.size_uk,
                'offer_price': size.offer_price,
                'retail_price': price_for(size.offer_price),
                'stock_quantity': size.available_quantity,
                'barcode': size.barcode,
                'active': True,
            }
            variation = existing.get(sku)
            if variation is None:
                variation = ProductVariation(product=product, sku=sku, **values)
                variation.save(using=self.using)
                existing[sku] = variation
                stats['created'] += 1
            else:
                for name, value in values.items():
                    setattr(variation, name, value)
                variation.save(using=self.using)
                stats['updated'] += 1

        for sku, variation in existing.items():
            if sku in seen or (not variation.active and variation.stock_quantity == 0):
                continue
            variation.active = False
            variation.stock_quantity = 0
            variation.save(using=self.using, update_fields=['active', 'stock_quantity', 'updated_at'])
            stats['deactivated'] += 1

        return stats

    # -----------------------------------------------------------------------
    # Platform side
    # -----------------------------------------------------------------------

    def _pending_queryset(self, now: datetime, lease_seconds: int):
        stale = now - timedelta(seconds=lease_seconds)
        return (
            self._products()
            .filter(sync_pending=True)
            .filter(Q(sync_claimed_at__isnull=True) | Q(sync_claimed_at__lt=stale))
            .order_by('updated_at', 'id')
        )

    def pending_product_ids(self, limit: Optional[int] = None, lease_seconds: int = 0) -> list[int]:
        """Pending product ids without claiming them (used by dry runs)."""
        qs = self._pending_queryset(timezone.now(), lease_seconds)
        if limit:
            qs = qs[:limit]
        return list(qs.values_list('id', flat=True))

    def claim_pending(self, limit: Optional[int] = None, lease_seconds: int = 900):
        """
        Claim up to `limit` pending products for one platform run.

        Returns (ids, token). Rows claimed by another run less than
        `lease_seconds` ago are skipped, so two concurrent runs never push
        the same product unless a lease has expired.
        """
        now = timezone.now()
        with self.atomic():
            qs = self._pending_queryset(now, lease_seconds).select_for_update(skip_locked=True)
            if limit:
                qs = qs[:limit]
            ids = list(qs.values_list('id', flat=True))
            self._products().filter(pk__in=ids).update(sync_claimed_at=now)
        return ids, now

    def release_claims(self, product_ids, token: datetime) -> int:
        return self._products().filter(pk__in=list(product_ids), sync_claimed_at=token).update(
            sync_claimed_at=None,
        )

    def mark_synced(self, product_id: int, token: Optional[datetime]) -> bool:
        """Clear the pending flag, but only if this run still holds the claim."""
        return bool(self._products().filter(pk=product_id, sync_claimed_at=token).update(
            sync_pending=False,
            sync_claimed_at=None,
            last_platform_sync=timezone.now(),
        ))

    def hydrate(self, product_id: int) -> Optional[HydratedProduct]:
        """
        Load a product with its mapping and the variations worth pushing:
        all active ones plus inactive ones already known remotely, so their
        zeroed stock reaches the platform.
        """
        product = self._products().filter(pk=product_id).first()
        if product is None:
            return None

        variations = list(
            self._variations()
            .filter(product=product)
            .filter(Q(active=True) | Q(wc_map__isnull=False))
        )
        variations.sort(key=lambda v: size_sort_key(v.size_label))

        variation_maps = {
            m.variation_id: m
            for m in WcVariationMap.objects.using(self.using).filter(variation__in=variations)
        }
        return HydratedProduct(
            product=product,
            variations=variations,
            wc_map=WcProductMap.objects.using(self.using).filter(product=product).first(),
            variation_maps=variation_maps,
        )

    def save_product_map(self, product: Product, remote_id: int, remote_type: str = 'variable') -> WcProductMap:
        mapping, _ = WcProductMap.objects.using(self.using).update_or_create(
            product=product,
            defaults={'remote_id': remote_id, 'remote_type': remote_type},
        )
        return mapping

    def save_variation_map(self, variation: ProductVariation, remote_id: int,
                           remote_parent_id: int) -> WcVariationMap:
        mapping, _ = WcVariationMap.objects.using(self.using).update_or_create(
            variation=variation,
            defaults={'remote_id': remote_id, 'remote_parent_id': remote_parent_id},
        )
        return mapping

    # -----------------------------------------------------------------------
    # Webhook side
    # -----------------------------------------------------------------------

    def product_by_sku(self, sku: str) -> Optional[Product]:
        return self._products().filter(sku=sku).first()

    def product_by_remote_id(self, remote_id: int) -> Optional[Product]:
        return self._products().filter(wc_map__remote_id=remote_id).first()

    def variation_by_remote_id(self, remote_id: int) -> Optional[ProductVariation]:
        return self._variations().select_related('product').filter(wc_map__remote_id=remote_id).first()

    def set_status(self, product: Product, status: str):
        product.status = status
        product.last_platform_sync = timezone.now()
        product.save(using=self.using, update_fields=['status', 'last_platform_sync', 'updated_at'])

    def set_stock(self, variation: ProductVariation, quantity: int):
        variation.stock_quantity = quantity
        variation.save(using=self.using, update_fields=['stock_quantity', 'updated_at'])

    def delete_maps(self, product: Product) -> int:
        WcVariationMap.objects.using(self.using).filter(variation__product=product).delete()
        deleted, _ = WcProductMap.objects.using(self.using).filter(product=product).delete()
        return deleted

    # -----------------------------------------------------------------------
    # Market side
    # -----------------------------------------------------------------------

    def priceable_products(self, limit: Optional[int] = None) -> list[Product]:
        """Active products in id order, each with its active variations prefetched."""
        queryset = (
            self._products()
            .filter(status=Product.STATUS_ACTIVE)
            .order_by('pk')
            .prefetch_related(Prefetch(
                'variations',
                queryset=self._variations().filter(active=True),
                to_attr='active_variations',
            ))
        )
        if limit:
            queryset = queryset[:limit]
        return list(queryset)

    def set_retail_price(self, variation: ProductVariation, price: Decimal):
        variation.retail_price = price
        variation.save(using=self.using, update_fields=['retail_price', 'updated_at'])

    def flag_pending(self, product: Product):
        self._flag_pending(product)
        product.save(using=self.using, update_fields=['sync_pending', 'sync_claimed_at', 'updated_at'])

    # -----------------------------------------------------------------------
    # Audit log
    # -----------------------------------------------------------------------

    def log(self, sync_type: str, action: str, *, entity_type: str = SyncLog.ENTITY_PRODUCT,
            entity_id: Optional[int] = None, remote_id: Optional[int] = None,
            sku: Optional[str] = None, changes: Optional[dict] = None,
            message: Optional[str] = None) -> SyncLog:
        return SyncLog.objects.using(self.using).create(
            sync_type=sync_type,
            entity_type=entity_type,
            action=action,
            entity_id=entity_id,
            remote_id=remote_id,
            sku=sku,
            changes=changes,
            source=_LOG_SOURCES.get(sync_type),
            message=message,
        )
