import hashlib
import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MARKUP_PERCENTAGE = 25
DEFAULT_VAT_PERCENTAGE = 22

ROUNDING_WHOLE = 'whole'
ROUNDING_HALF = 'half'
ROUNDING_NONE = 'none'
ROUNDING_TYPES = (ROUNDING_WHOLE, ROUNDING_HALF, ROUNDING_NONE)

_ONE = Decimal('1')
_CENT = Decimal('0.01')


@dataclass(frozen=True)
class FeedSize:
    size_us: Optional[str]
    size_eu: Optional[str]
    size_uk: Optional[str]
    offer_price: Decimal
    available_quantity: int
    barcode: Optional[str] = None

    @property
    def label(self) -> str:
        return self.size_eu or self.size_us or 'OS'


@dataclass
class FeedRecord:
    sku: str
    name: str
    brand_name: Optional[str] = None
    image_full_url: Optional[str] = None
    size_mapper_name: Optional[str] = None
    feed_id: Optional[int] = None
    sizes: list[FeedSize] = field(default_factory=list)
    signature: str = ''


def variation_sku(parent_sku: str, size: FeedSize) -> str:
    return f"{parent_sku}-{size.label}"


def _optional_str(value) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def _parse_stock_value(value) -> int:
    """Convert a stock value to int; non-numeric values count as 0."""
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        logger.warning("Non-numeric stock value %r – treating as 0.", value)
        return 0


def _parse_price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning("Non-numeric offer price %r – treating as 0.", value)
        return Decimal('0')
    if not price.is_finite() or price < 0:
        logger.warning("Invalid offer price %r – treating as 0.", value)
        return Decimal('0')
    return price


def _parse_feed_id(value) -> Optional[int]:
    try:
        feed_id = int(value)
    except (TypeError, ValueError):
        return None
    return feed_id if feed_id >= 0 else None


def parse_size(raw: dict) -> FeedSize:
    return FeedSize(
        size_us=_optional_str(raw.get('size_us')),
        size_eu=_optional_str(raw.get('size_eu')),
        size_uk=_optional_str(raw.get('size_uk')),
        offer_price=_parse_price(raw.get('offer_price', 0)),
        available_quantity=_parse_stock_value(raw.get('available_quantity', 0)),
        barcode=_optional_str(raw.get('barcode')),
    )


def parse_record(raw: dict) -> Optional[FeedRecord]:
    """
    Turn a raw feed dict into a FeedRecord.

    Returns None (and logs a warning) when the record has no SKU or no name;
    such records are skipped without failing the run.
    """
    if not isinstance(raw, dict):
        logger.warning("Skipping feed record of type %s.", type(raw).__name__)
        return None

    sku = raw.get('sku')
    if not sku:
        logger.warning("Skipping feed record without SKU (feed id %s).", raw.get('id'))
        return None
    if not raw.get('name'):
        logger.warning("Skipping SKU %s – name is missing.", sku)
        return None

    sizes = [parse_size(s) for s in (raw.get('sizes') or []) if isinstance(s, dict)]

    return FeedRecord(
        sku=str(sku),
        name=str(raw['name']),
        brand_name=_optional_str(raw.get('brand_name')),
        image_full_url=_optional_str(raw.get('image_full_url')),
        size_mapper_name=_optional_str(raw.get('size_mapper_name')),
        feed_id=_parse_feed_id(raw.get('id')),
        sizes=sizes,
        signature=compute_signature(raw),
    )


def size_sort_key(label: str):
    """Natural order for size labels: numeric sizes first, by value."""
    try:
        return (0, float(str(label).replace(',', '.')), '')
    except ValueError:
        return (1, 0.0, str(label))


def dedupe_records(raw_list: list[dict]) -> list[dict]:
    """Deduplicate feed records by SKU (first occurrence wins)."""
    seen_skus = set()
    result = []
    for item in raw_list:
        sku = item.get('sku') if isinstance(item, dict) else None
        if sku and sku in seen_skus:
            logger.warning("Duplicate SKU %s – keeping first occurrence, skipping duplicate.", sku)
            continue
        if sku:
            seen_skus.add(sku)
        # SKU-less records stay in so parse_record counts them as skipped.
        result.append(item)
    return result


def compute_signature(record: dict) -> str:
    """
    Fingerprint the material fields of a raw feed record.

    Only fields that affect the stored product or its variations take part;
    the vendor id and any timestamps do not.
    """
    material = {
        'name': record.get('name') or '',
        'brand_name': record.get('brand_name') or '',
        'image_full_url': record.get('image_full_url') or '',
        'size_mapper_name': record.get('size_mapper_name') or '',
        'sizes': [
            {
                'size_eu': size.get('size_eu') or '',
                'size_us': size.get('size_us') or '',
                'offer_price': size.get('offer_price', 0),
                'available_quantity': size.get('available_quantity', 0),
            }
            for size in (record.get('sizes') or [])
            if isinstance(size, dict)
        ],
    }
    serialized = json.dumps(material, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


def calculate_retail_price(
    offer_price,
    markup_percentage=DEFAULT_MARKUP_PERCENTAGE,
    vat_percentage=DEFAULT_VAT_PERCENTAGE,
    rounding: str = ROUNDING_WHOLE,
) -> Decimal:
    """
    Derive the selling price from a vendor offer price.

    offer * (1 + markup%) * (1 + vat%), then rounded per `rounding`:
    'whole' to an integer, 'half' to the nearest 0.5, 'none' to cents.
    Ties round half-up, so 152.5 becomes 153 under 'whole'.
    """
    offer = Decimal(str(offer_price))
    base = offer * (_ONE + Decimal(str(markup_percentage)) / 100)
    with_vat = base * (_ONE + Decimal(str(vat_percentage)) / 100)

    if rounding == ROUNDING_WHOLE:
        return with_vat.quantize(_ONE, rounding=ROUND_HALF_UP)
    if rounding == ROUNDING_HALF:
        return (with_vat * 2).quantize(_ONE, rounding=ROUND_HALF_UP) / 2
    if rounding == ROUNDING_NONE:
        return with_vat.quantize(_CENT, rounding=ROUND_HALF_UP)
    raise ValueError(f"Unknown rounding type {rounding!r}; expected one of {ROUNDING_TYPES}.")
