import base64
import hashlib
import hmac
import logging
from typing import Optional

from .models import Product, SyncLog
from .store import CatalogStore

logger = logging.getLogger(__name__)

SUPPORTED_TOPICS = (
    'product.created',
    'product.updated',
    'product.deleted',
    'product.restored',
)


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a WooCommerce delivery: base64(HMAC-SHA256(secret, raw body))."""
    if not secret or not signature:
        return False
    digest = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).digest()
    expected = base64.b64encode(digest)
    # Compare bytes: str comparison raises TypeError on non-ASCII input.
    return hmac.compare_digest(expected, signature.strip().encode('utf-8'))


def _parse_quantity(value) -> Optional[int]:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return None


class WebhookHandler:
    """
    Applies WooCommerce product events straight to the store.

    Every event runs in one transaction together with its SyncLog row.
    These writes never flag products for platform sync, so an event does
    not bounce back to the platform.
    """

    def __init__(self, store: CatalogStore):
        self._store = store

    def handle(self, topic: str, payload: dict) -> dict:
        logger.info("Webhook received: %s", topic)
        if topic not in SUPPORTED_TOPICS:
            logger.warning("Unsupported webhook topic: %s", topic)
            return {'success': False, 'error': 'Unsupported topic'}
        if not isinstance(payload, dict) or not payload.get('id'):
            logger.error("Invalid webhook payload: missing ID")
            return {'success': False, 'error': 'Missing resource ID'}

        handler = getattr(self, '_' + topic.replace('.', '_'))
        try:
            with self._store.atomic():
                message = handler(int(payload['id']), payload)
        except Exception as exc:
            logger.error("Webhook %s for remote id %s failed: %s", topic, payload.get('id'), exc)
            return {'success': False, 'error': str(exc)}
        return {'success': True, 'message': message}

    def _skip(self, remote_id: int, sku: Optional[str], message: str) -> str:
        logger.debug("%s (remote id %s).", message, remote_id)
        self._store.log(
            SyncLog.TYPE_WEBHOOK, SyncLog.ACTION_SKIP,
            remote_id=remote_id, sku=sku, message=message,
        )
        return message

    def _product_created(self, remote_id: int, payload: dict) -> str:
        sku = payload.get('sku') or None
        if self._store.product_by_remote_id(remote_id) is not None:
            return self._skip(remote_id, sku, 'Product already mapped')

        product = self._store.product_by_sku(sku) if sku else None
        if product is None:
            return self._skip(remote_id, sku, 'No local product for created WooCommerce product')

        self._store.save_product_map(product, remote_id, payload.get('type') or 'variable')
        logger.info("Mapped existing product %s to WooCommerce id %s.", sku, remote_id)
        self._store.log(
            SyncLog.TYPE_WEBHOOK, SyncLog.ACTION_CREATE,
            entity_id=product.pk, remote_id=remote_id, sku=sku,
            changes={'mapped_remote_id': remote_id},
            message='Existing product mapped via webhook',
        )
        return 'Product mapped'

    def _product_updated(self, remote_id: int, payload: dict) -> str:
        if payload.get('parent_id'):
            return self._variation_updated(remote_id, payload)

        sku = payload.get('sku') or None
        product = self._store.product_by_remote_id(remote_id)
        if product is None and sku:
            product = self._store.product_by_sku(sku)
            if product is not None:
                self._store.save_product_map(product, remote_id, payload.get('type') or 'variable')
                logger.info("Created mapping for SKU %s.", sku)
        if product is None:
            return self._skip(remote_id, sku, 'No local product for updated WooCommerce product')

        status = Product.STATUS_ACTIVE if payload.get('status', 'publish') == 'publish' else Product.STATUS_INACTIVE
        changes = {}
        if product.status != status:
            changes['status'] = {'from': product.status, 'to': status}
        self._store.set_status(product, status)

        self._store.log(
            SyncLog.TYPE_WEBHOOK, SyncLog.ACTION_UPDATE,
            entity_id=product.pk, remote_id=remote_id, sku=product.sku,
            changes=changes, message='Product updated via webhook',
        )
        return 'Product updated'

    def _variation_updated(self, remote_id: int, payload: dict) -> str:
        variation = self._store.variation_by_remote_id(remote_id)
        if variation is None:
            return self._skip(remote_id, payload.get('sku') or None, 'No local variation for updated WooCommerce variation')

        quantity = _parse_quantity(payload.get('stock_quantity'))
        changes = {}
        if quantity is not None and quantity != variation.stock_quantity:
            changes['stock_quantity'] = {'from': variation.stock_quantity, 'to': quantity}
            self._store.set_stock(variation, quantity)

        self._store.log(
            SyncLog.TYPE_WEBHOOK, SyncLog.ACTION_UPDATE,
            entity_type=SyncLog.ENTITY_VARIATION,
            entity_id=variation.pk, remote_id=remote_id, sku=variation.sku,
            changes=changes, message='Variation stock updated via webhook',
        )
        return 'Variation updated'

    def _product_deleted(self, remote_id: int, payload: dict) -> str:
        product = self._store.product_by_remote_id(remote_id)
        if product is None:
            return self._skip(remote_id, payload.get('sku') or None, 'No local product for deleted WooCommerce product')

        self._store.set_status(product, Product.STATUS_INACTIVE)
        self._store.sync_variations(product, [], price_for=None)
        self._store.delete_maps(product)

        self._store.log(
            SyncLog.TYPE_WEBHOOK, SyncLog.ACTION_DELETE,
            entity_id=product.pk, remote_id=remote_id, sku=product.sku,
            message='Product deleted via webhook',
        )
        logger.info("Product %s marked inactive after remote deletion.", product.sku)
        return 'Product deactivated'

    def _product_restored(self, remote_id: int, payload: dict) -> str:
        sku = payload.get('sku') or None
        product = self._store.product_by_sku(sku) if sku else None
        if product is None:
            return self._skip(remote_id, sku, 'No local product for restored WooCommerce product')

        self._store.set_status(product, Product.STATUS_ACTIVE)
        self._store.save_product_map(product, remote_id, payload.get('type') or 'variable')

        self._store.log(
            SyncLog.TYPE_WEBHOOK, SyncLog.ACTION_UPDATE,
            entity_id=product.pk, remote_id=remote_id, sku=sku,
            changes={'status': 'restored'}, message='Product restored via webhook',
        )
        logger.info("Product %s restored.", sku)
        return 'Product restored'
