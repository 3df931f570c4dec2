import json
import logging

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .store import CatalogStore
from .webhooks import SUPPORTED_TOPICS, WebhookHandler, verify_signature

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def woocommerce_webhook(request):
    body = request.body
    signature = request.headers.get('X-WC-Webhook-Signature')
    if not verify_signature(body, signature, settings.WEBHOOK_SECRET):
        logger.warning("Rejected webhook with invalid signature.")
        return JsonResponse({'success': False, 'error': 'Invalid signature'}, status=401)

    topic = request.headers.get('X-WC-Webhook-Topic', '')
    if topic not in SUPPORTED_TOPICS:
        logger.warning("Rejected webhook with unsupported topic %r.", topic)
        return JsonResponse({'success': False, 'error': 'Unsupported topic'}, status=400)

    try:
        payload = json.loads(body)
    except ValueError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON'}, status=400)

    result = WebhookHandler(CatalogStore()).handle(topic, payload)
    if result['success']:
        return JsonResponse(result)
    status = 400 if result.get('error') == 'Missing resource ID' else 500
    return JsonResponse(result, status=status)
