import logging
import time
from functools import partial
from typing import Optional

from django.conf import settings

from .market import MarketClient, variant_prices
from .models import Product, SyncLog
from .store import CatalogStore
from .transformer import ROUNDING_TYPES, calculate_retail_price

logger = logging.getLogger(__name__)


class PriceSyncEngine:
    """
    Reprices active variations from current market data.

    For every active product the market is asked for its variants; each
    active variation whose size has a market price gets
    market * (1 + markup%), rounded. Variations whose price moves are
    saved and their product is flagged for the next platform run. Each
    product is written in its own transaction, so one failure does not
    undo the others.
    """

    def __init__(self, store: CatalogStore, market: MarketClient, *,
                 markup_percentage=25, rounding: str = 'whole'):
        if rounding not in ROUNDING_TYPES:
            raise ValueError(f"Unknown rounding type {rounding!r}; expected one of {ROUNDING_TYPES}.")
        self._store = store
        self._market = market
        # Market prices already include VAT.
        self._price_for = partial(
            calculate_retail_price,
            markup_percentage=markup_percentage,
            vat_percentage=0,
            rounding=rounding,
        )
        self.stats = self._empty_stats()

    @classmethod
    def from_settings(cls, store: Optional[CatalogStore] = None) -> 'PriceSyncEngine':
        return cls(
            store or CatalogStore(),
            MarketClient.from_settings(),
            markup_percentage=settings.MARKET_MARKUP_PERCENTAGE,
            rounding=settings.PRICE_ROUNDING,
        )

    @staticmethod
    def _empty_stats() -> dict:
        return {
            'products_checked': 0,
            'products_not_found': 0,
            'products_repriced': 0,
            'variations_updated': 0,
            'variations_unchanged': 0,
            'variations_skipped': 0,
            'errors': 0,
        }

    def sync(self, dry_run: bool = False, limit: Optional[int] = None) -> dict:
        logger.info("Starting market → database price sync%s.", " (dry run)" if dry_run else "")
        self.stats = self._empty_stats()
        started = time.monotonic()

        products = self._store.priceable_products(limit)
        logger.info("Checking market prices for %d products.", len(products))

        for product in products:
            self.stats['products_checked'] += 1
            try:
                if dry_run:
                    self._reprice(product, dry_run=True)
                else:
                    with self._store.atomic():
                        self._reprice(product, dry_run=False)
            except Exception as exc:
                self.stats['errors'] += 1
                logger.error("Repricing %s failed: %s", product.sku, exc)
                if not dry_run:
                    self._store.log(
                        SyncLog.TYPE_MARKET_TO_DB, SyncLog.ACTION_ERROR,
                        entity_id=product.pk, sku=product.sku, message=str(exc),
                    )

        duration = round(time.monotonic() - started, 2)
        logger.info(
            "Price sync complete in %.2fs. products: checked=%d, not found=%d, repriced=%d; "
            "variations: updated=%d, unchanged=%d, skipped=%d; errors=%d.",
            duration,
            self.stats['products_checked'], self.stats['products_not_found'],
            self.stats['products_repriced'], self.stats['variations_updated'],
            self.stats['variations_unchanged'], self.stats['variations_skipped'],
            self.stats['errors'],
        )
        return {'success': True, 'stats': dict(self.stats), 'duration': duration}

    def market_prices(self, sku: str) -> Optional[dict]:
        """EU size -> market price for `sku`, or None when the market has no such product."""
        found = self._market.find_product(sku)
        if found is None:
            return None
        variants = found.get('variants')
        if not isinstance(variants, list):
            variants = self._market.variants(found['id']) if found.get('id') else []
        return variant_prices(variants)

    def _reprice(self, product: Product, dry_run: bool):
        prices = self.market_prices(product.sku)
        if prices is None:
            self.stats['products_not_found'] += 1
            return

        changes = {}
        for variation in product.active_variations:
            market_price = prices.get(variation.size_label)
            if market_price is None:
                logger.debug("No market price for %s size %s.", product.sku, variation.size_label)
                self.stats['variations_skipped'] += 1
                continue

            new_price = self._price_for(market_price)
            if new_price == variation.retail_price:
                self.stats['variations_unchanged'] += 1
                continue

            logger.info(
                "Price update %s: %s → %s (market %s).",
                variation.sku, variation.retail_price, new_price, market_price,
            )
            changes[variation.sku] = {'from': str(variation.retail_price), 'to': str(new_price)}
            self.stats['variations_updated'] += 1
            if not dry_run:
                self._store.set_retail_price(variation, new_price)

        if not changes:
            return
        self.stats['products_repriced'] += 1
        if dry_run:
            return
        self._store.flag_pending(product)
        self._store.log(
            SyncLog.TYPE_MARKET_TO_DB, SyncLog.ACTION_UPDATE,
            entity_id=product.pk, sku=product.sku, changes=changes,
            message='Retail prices updated from market data',
        )
