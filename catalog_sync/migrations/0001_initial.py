import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sku', models.CharField(max_length=100, unique=True)),
                ('name', models.CharField(max_length=500)),
                ('brand_name', models.CharField(blank=True, max_length=200, null=True)),
                ('image_url', models.CharField(blank=True, max_length=1000, null=True)),
                ('size_mapper_name', models.CharField(blank=True, max_length=100, null=True)),
                ('feed_id', models.PositiveIntegerField(blank=True, db_index=True, null=True)),
                ('feed_signature', models.CharField(blank=True, max_length=64, null=True)),
                ('status', models.CharField(choices=[('active', 'Active'), ('inactive', 'Inactive')], db_index=True, default='active', max_length=10)),
                ('source', models.CharField(choices=[('feed', 'Feed'), ('manual', 'Manual'), ('woocommerce', 'WooCommerce')], default='feed', max_length=20)),
                ('sync_pending', models.BooleanField(db_index=True, default=True)),
                ('sync_claimed_at', models.DateTimeField(blank=True, null=True)),
                ('last_feed_sync', models.DateTimeField(blank=True, null=True)),
                ('last_platform_sync', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='ProductVariation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sku', models.CharField(max_length=120, unique=True)),
                ('size_us', models.CharField(blank=True, max_length=20, null=True)),
                ('size_eu', models.CharField(blank=True, max_length=20, null=True)),
                ('size_uk', models.CharField(blank=True, max_length=20, null=True)),
                ('offer_price', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('retail_price', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('stock_quantity', models.IntegerField(default=0)),
                ('barcode', models.CharField(blank=True, max_length=50, null=True)),
                ('active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='variations', to='catalog_sync.product')),
            ],
        ),
        migrations.CreateModel(
            name='WcProductMap',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('remote_id', models.BigIntegerField(unique=True)),
                ('remote_type', models.CharField(default='variable', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('product', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='wc_map', to='catalog_sync.product')),
            ],
        ),
        migrations.CreateModel(
            name='WcVariationMap',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('remote_id', models.BigIntegerField(unique=True)),
                ('remote_parent_id', models.BigIntegerField(db_index=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('variation', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='wc_map', to='catalog_sync.productvariation')),
            ],
        ),
        migrations.CreateModel(
            name='SyncLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sync_type', models.CharField(choices=[('feed_to_db', 'Feed to database'), ('db_to_woo', 'Database to WooCommerce'), ('webhook', 'Webhook'), ('market_to_db', 'Market to database')], db_index=True, max_length=20)),
                ('entity_type', models.CharField(choices=[('product', 'Product'), ('variation', 'Variation'), ('batch', 'Batch')], max_length=20)),
                ('entity_id', models.BigIntegerField(blank=True, null=True)),
                ('remote_id', models.BigIntegerField(blank=True, null=True)),
                ('sku', models.CharField(blank=True, db_index=True, max_length=120, null=True)),
                ('action', models.CharField(choices=[('create', 'Create'), ('update', 'Update'), ('delete', 'Delete'), ('skip', 'Skip'), ('error', 'Error')], db_index=True, max_length=10)),
                ('changes', models.JSONField(blank=True, null=True)),
                ('source', models.CharField(blank=True, max_length=50, null=True)),
                ('message', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                'ordering': ['id'],
            },
        ),
    ]
