"""
WooCommerce REST catalog: typed request/response structures and a thin
client over RemoteClient for the endpoints the platform sync needs.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from django.conf import settings

from .http_client import RemoteClient

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
VARIATIONS_PER_PAGE = 100


@dataclass
class ProductAttribute:
    name: str
    options: list[str]
    position: int = 0
    visible: bool = True
    variation: bool = False

    def to_json(self) -> dict:
        return {
            'name': self.name,
            'position': self.position,
            'visible': self.visible,
            'variation': self.variation,
            'options': list(self.options),
        }


@dataclass
class VariationAttribute:
    option: str
    id: Optional[int] = None
    name: Optional[str] = None

    def to_json(self) -> dict:
        data = {'option': self.option}
        if self.id:
            data['id'] = self.id
        elif self.name:
            data['name'] = self.name
        return data


@dataclass
class ProductPayload:
    name: str
    sku: str
    status: str
    short_description: str = ''
    description: str = ''
    categories: list[int] = field(default_factory=list)
    attributes: list[ProductAttribute] = field(default_factory=list)
    image_id: Optional[int] = None
    id: Optional[int] = None
    type: str = 'variable'

    def to_json(self) -> dict:
        data = {
            'name': self.name,
            'type': self.type,
            'sku': self.sku,
            'status': self.status,
            'catalog_visibility': 'visible',
            'short_description': self.short_description,
            'description': self.description,
            'categories': [{'id': c} for c in self.categories],
            'manage_stock': False,
            'attributes': [a.to_json() for a in self.attributes],
        }
        if self.image_id:
            data['images'] = [{'id': self.image_id}]
        if self.id is not None:
            data['id'] = self.id
        return data


@dataclass
class VariationPayload:
    sku: str
    regular_price: str
    stock_quantity: int
    attributes: list[VariationAttribute] = field(default_factory=list)
    id: Optional[int] = None

    @property
    def stock_status(self) -> str:
        return 'instock' if self.stock_quantity > 0 else 'outofstock'

    def to_json(self) -> dict:
        data = {
            'sku': self.sku,
            'regular_price': self.regular_price,
            'stock_quantity': self.stock_quantity,
            'stock_status': self.stock_status,
            'manage_stock': True,
            'attributes': [a.to_json() for a in self.attributes],
        }
        if self.id is not None:
            data['id'] = self.id
        return data


@dataclass
class BatchRequest:
    create: list = field(default_factory=list)
    update: list = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.create and not self.update

    def to_json(self) -> dict:
        data = {}
        if self.create:
            data['create'] = [p.to_json() for p in self.create]
        if self.update:
            data['update'] = [p.to_json() for p in self.update]
        return data


@dataclass
class BatchItemResult:
    remote_id: Optional[int]
    error: Any = None

    @property
    def succeeded(self) -> bool:
        return bool(self.remote_id) and self.error is None

    @classmethod
    def from_json(cls, item) -> 'BatchItemResult':
        if not isinstance(item, dict):
            return cls(remote_id=None, error={'message': f'Unexpected batch item {item!r}'})
        try:
            remote_id = int(item['id']) if item.get('id') else None
        except (TypeError, ValueError):
            remote_id = None
        return cls(remote_id=remote_id, error=item.get('error'))


@dataclass
class BatchResponse:
    create: list[BatchItemResult] = field(default_factory=list)
    update: list[BatchItemResult] = field(default_factory=list)

    @classmethod
    def from_json(cls, data) -> Optional['BatchResponse']:
        if not isinstance(data, dict):
            logger.error("Unexpected batch response: %r", data)
            return None
        return cls(
            create=[BatchItemResult.from_json(i) for i in data.get('create') or []],
            update=[BatchItemResult.from_json(i) for i in data.get('update') or []],
        )


class CatalogClient:
    def __init__(self, client: RemoteClient):
        self._client = client

    @classmethod
    def from_settings(cls) -> 'CatalogClient':
        return cls(RemoteClient(
            settings.CATALOG_API_URL,
            auth=(settings.CATALOG_CONSUMER_KEY, settings.CATALOG_CONSUMER_SECRET),
            timeout=settings.CATALOG_TIMEOUT,
            max_retries=settings.REMOTE_MAX_RETRIES,
            rate_limit=settings.REMOTE_RATE_LIMIT,
        ))

    def batch_products(self, request: BatchRequest) -> Optional[BatchResponse]:
        data = self._client.request('POST', 'products/batch', body=request.to_json())
        return BatchResponse.from_json(data) if data is not None else None

    def batch_variations(self, product_id: int, request: BatchRequest) -> Optional[BatchResponse]:
        data = self._client.request('POST', f'products/{product_id}/variations/batch', body=request.to_json())
        return BatchResponse.from_json(data) if data is not None else None

    def variations_by_sku(self, product_id: int) -> Optional[dict[str, int]]:
        """
        Remote variation ids of a product keyed by SKU, following pagination.

        Returns None if any page fails, so callers never mistake a partial
        listing for "these SKUs do not exist".
        """
        existing = {}
        page = 1
        while True:
            rows = self._client.request(
                'GET', f'products/{product_id}/variations',
                query={'per_page': VARIATIONS_PER_PAGE, 'page': page},
            )
            if not isinstance(rows, list):
                logger.error("Could not list variations of remote product %s (page %d).", product_id, page)
                return None
            for row in rows:
                if isinstance(row, dict) and row.get('sku') and row.get('id'):
                    existing[row['sku']] = int(row['id'])
            if len(rows) < VARIATIONS_PER_PAGE:
                return existing
            page += 1

    def ensure_category(self, name: str, slug: str) -> Optional[int]:
        """Return the id of the category with `slug`, creating it if absent."""
        rows = self._client.request('GET', 'products/categories', query={'slug': slug})
        if not isinstance(rows, list):
            logger.error("Could not look up category %s.", slug)
            return None
        if rows:
            category_id = _row_id(rows[0])
            if category_id is None:
                logger.error("Unexpected category row for %s: %r", slug, rows[0])
            return category_id

        created = self._client.request('POST', 'products/categories', body={'name': name, 'slug': slug})
        category_id = _row_id(created)
        if category_id is None:
            logger.error("Could not create category %s.", slug)
            return None
        logger.info("Created category %s (id %s).", slug, category_id)
        return category_id

    def attribute_id(self, slug: str) -> Optional[int]:
        rows = self._client.request('GET', 'products/attributes')
        if not isinstance(rows, list):
            logger.warning("Could not fetch product attributes.")
            return None
        for row in rows:
            if not isinstance(row, dict) or row.get('slug') not in (slug, f'pa_{slug}'):
                continue
            attribute_id = _row_id(row)
            if attribute_id is not None:
                return attribute_id
        logger.warning("Attribute %s not found on the platform.", slug)
        return None


def _row_id(row) -> Optional[int]:
    if not isinstance(row, dict) or not row.get('id'):
        return None
    try:
        return int(row['id'])
    except (TypeError, ValueError):
        return None
