import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.conf import settings

from .http_client import RemoteClient

logger = logging.getLogger(__name__)

_EU_PREFIX = re.compile(r'^EU\s*', re.IGNORECASE)
_EU_IN_TITLE = re.compile(r'EU\s+([\d.]+)', re.IGNORECASE)


def _variant_size(variant: dict) -> Optional[str]:
    size = variant.get('size_eu') or variant.get('size')
    if size is None:
        # Titles look like "Men's US 10 / Women's US 11.5 / UK 9 / EU 44 / JP 28"
        match = _EU_IN_TITLE.search(variant.get('title') or '')
        size = match.group(1) if match else None
    if size is None:
        return None
    return _EU_PREFIX.sub('', str(size).strip())


def _variant_price(variant: dict) -> Optional[Decimal]:
    for key in ('lowest_ask', 'price', 'amount'):
        if variant.get(key) is not None:
            try:
                return Decimal(str(variant[key]))
            except InvalidOperation:
                return None
    return None


def variant_prices(variants: list) -> dict[str, Decimal]:
    """Map EU size -> market price; variants without a size or a positive price are dropped."""
    prices = {}
    for variant in variants or []:
        if not isinstance(variant, dict):
            continue
        size = _variant_size(variant)
        price = _variant_price(variant)
        if size and price is not None and price > 0:
            prices[size] = price
    return prices


class MarketClient:
    """Read-only StockX market data lookups."""

    def __init__(self, client: RemoteClient):
        self._client = client

    @classmethod
    def from_settings(cls) -> 'MarketClient':
        return cls(RemoteClient(
            settings.MARKET_API_URL,
            token=settings.MARKET_API_KEY,
            max_retries=settings.REMOTE_MAX_RETRIES,
            rate_limit=settings.REMOTE_RATE_LIMIT,
        ))

    def get_product(self, identifier: str):
        return self._client.call('GET', f'stockx/products/{identifier}', expect_not_found=True)

    def search(self, query: str, limit: int = 10) -> list:
        data = self._client.request('GET', 'stockx/products', query={'query': query, 'limit': limit})
        if isinstance(data, dict):
            data = data.get('data')
        return data if isinstance(data, list) else []

    def variants(self, product_id: str, market: str = 'US') -> list:
        data = self._client.request('GET', f'stockx/products/{product_id}/variants', query={'market': market})
        if isinstance(data, dict):
            data = data.get('data')
        return data if isinstance(data, list) else []

    def find_product(self, sku: str) -> Optional[dict]:
        """
        Look a product up by SKU: direct fetch first, search only when the
        direct fetch says the product does not exist. Other failures are
        returned as None without searching.
        """
        result = self.get_product(sku)
        if result.ok:
            data = result.data
            if isinstance(data, dict) and isinstance(data.get('data'), dict):
                data = data['data']
            return data if isinstance(data, dict) else None
        if not result.not_found:
            logger.warning("Market lookup for %s failed: %s", sku, result.error)
            return None

        logger.debug("No direct market match for %s – searching.", sku)
        candidates = [c for c in self.search(sku) if isinstance(c, dict)]
        if not candidates:
            logger.info("No market product found for %s.", sku)
            return None
        for candidate in candidates:
            if candidate.get('sku') == sku:
                return candidate
        return candidates[0]
