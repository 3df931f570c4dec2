from django.urls import path

from catalog_sync.views import woocommerce_webhook

urlpatterns = [
    path('webhooks/woocommerce/', woocommerce_webhook, name='woocommerce-webhook'),
]
