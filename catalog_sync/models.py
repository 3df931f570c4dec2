from django.db import models


class Product(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_INACTIVE = 'inactive'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_INACTIVE, 'Inactive'),
    ]

    SOURCE_FEED = 'feed'
    SOURCE_MANUAL = 'manual'
    SOURCE_WOOCOMMERCE = 'woocommerce'
    SOURCE_CHOICES = [
        (SOURCE_FEED, 'Feed'),
        (SOURCE_MANUAL, 'Manual'),
        (SOURCE_WOOCOMMERCE, 'WooCommerce'),
    ]

    sku = models.CharField(max_length=100, unique=True)
    name = models.CharField(max_length=500)
    brand_name = models.CharField(max_length=200, null=True, blank=True)
    image_url = models.CharField(max_length=1000, null=True, blank=True)
    size_mapper_name = models.CharField(max_length=100, null=True, blank=True)
    feed_id = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    feed_signature = models.CharField(max_length=64, null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default=SOURCE_FEED)

    sync_pending = models.BooleanField(default=True, db_index=True)
    sync_claimed_at = models.DateTimeField(null=True, blank=True)
    last_feed_sync = models.DateTimeField(null=True, blank=True)
    last_platform_sync = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.sku} ({self.status})"


class ProductVariation(models.Model):
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='variations')
    sku = models.CharField(max_length=120, unique=True)
    size_us = models.CharField(max_length=20, null=True, blank=True)
    size_eu = models.CharField(max_length=20, null=True, blank=True)
    size_uk = models.CharField(max_length=20, null=True, blank=True)
    offer_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    retail_price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    stock_quantity = models.IntegerField(default=0)
    barcode = models.CharField(max_length=50, null=True, blank=True)
    active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def parent_sku(self) -> str:
        return self.product.sku

    @property
    def size_label(self) -> str:
        return self.size_eu or self.size_us or 'OS'

    def __str__(self):
        return f"{self.sku} (stock={self.stock_quantity})"


class WcProductMap(models.Model):
    product = models.OneToOneField(Product, on_delete=models.CASCADE, related_name='wc_map')
    remote_id = models.BigIntegerField(unique=True)
    remote_type = models.CharField(max_length=20, default='variable')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"product {self.product_id} -> wc {self.remote_id}"


class WcVariationMap(models.Model):
    variation = models.OneToOneField(ProductVariation, on_delete=models.CASCADE, related_name='wc_map')
    remote_id = models.BigIntegerField(unique=True)
    remote_parent_id = models.BigIntegerField(db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"variation {self.variation_id} -> wc {self.remote_id}"


class SyncLog(models.Model):
    TYPE_FEED_TO_DB = 'feed_to_db'
    TYPE_DB_TO_WOO = 'db_to_woo'
    TYPE_WEBHOOK = 'webhook'
    TYPE_MARKET_TO_DB = 'market_to_db'
    TYPE_CHOICES = [
        (TYPE_FEED_TO_DB, 'Feed to database'),
        (TYPE_DB_TO_WOO, 'Database to WooCommerce'),
        (TYPE_WEBHOOK, 'Webhook'),
        (TYPE_MARKET_TO_DB, 'Market to database'),
    ]

    ENTITY_PRODUCT = 'product'
    ENTITY_VARIATION = 'variation'
    ENTITY_BATCH = 'batch'
    ENTITY_CHOICES = [
        (ENTITY_PRODUCT, 'Product'),
        (ENTITY_VARIATION, 'Variation'),
        (ENTITY_BATCH, 'Batch'),
    ]

    ACTION_CREATE = 'create'
    ACTION_UPDATE = 'update'
    ACTION_DELETE = 'delete'
    ACTION_SKIP = 'skip'
    ACTION_ERROR = 'error'
    ACTION_CHOICES = [
        (ACTION_CREATE, 'Create'),
        (ACTION_UPDATE, 'Update'),
        (ACTION_DELETE, 'Delete'),
        (ACTION_SKIP, 'Skip'),
        (ACTION_ERROR, 'Error'),
    ]

    sync_type = models.CharField(max_length=20, choices=TYPE_CHOICES, db_index=True)
    entity_type = models.CharField(max_length=20, choices=ENTITY_CHOICES)
    entity_id = models.BigIntegerField(null=True, blank=True)
    remote_id = models.BigIntegerField(null=True, blank=True)
    sku = models.CharField(max_length=120, null=True, blank=True, db_index=True)
    action = models.CharField(max_length=10, choices=ACTION_CHOICES, db_index=True)
    changes = models.JSONField(null=True, blank=True)
    source = models.CharField(max_length=50, null=True, blank=True)
    message = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['id']

    def __str__(self):
        return f"{self.sync_type}:{self.action} {self.sku or '-'}"
