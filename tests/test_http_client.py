import base64
import json
import threading
import time
from unittest.mock import patch

import pytest
import requests
import responses as responses_lib

from catalog_sync.http_client import Outcome, RateLimiter, RemoteClient

BASE_URL = 'https://shop.example.com/wp-json/wc/v3'


# ---------------------------------------------------------------------------
# Successful calls
# ---------------------------------------------------------------------------

class TestSuccessfulCalls:
    @responses_lib.activate
    def test_returns_decoded_json(self):
        responses_lib.add(responses_lib.GET, f'{BASE_URL}/products', json=[{'id': 1}], status=200)
        client = RemoteClient(BASE_URL)
        assert client.request('GET', 'products') == [{'id': 1}]

    @responses_lib.activate
    def test_body_is_sent_as_json(self):
        responses_lib.add(responses_lib.POST, f'{BASE_URL}/products/batch', json={}, status=200)
        client = RemoteClient(BASE_URL)
        client.request('POST', 'products/batch', body={'create': [{'sku': 'AB-100'}]})

        assert json.loads(responses_lib.calls[0].request.body) == {'create': [{'sku': 'AB-100'}]}

    @responses_lib.activate
    def test_query_is_encoded(self):
        responses_lib.add(responses_lib.GET, f'{BASE_URL}/products/categories', json=[], status=200)
        client = RemoteClient(BASE_URL)
        client.request('GET', 'products/categories', query={'slug': 'sneakers'})

        assert responses_lib.calls[0].request.url == f'{BASE_URL}/products/categories?slug=sneakers'

    @responses_lib.activate
    def test_no_content_returns_empty_dict(self):
        responses_lib.add(responses_lib.DELETE, f'{BASE_URL}/products/7', status=204)
        client = RemoteClient(BASE_URL)
        result = client.call('DELETE', 'products/7')

        assert result.ok
        assert result.data == {}

    @responses_lib.activate
    def test_empty_path_uses_base_url(self):
        feed_url = 'https://feed.example.com/api/products'
        responses_lib.add(responses_lib.GET, feed_url, json=[], status=200)
        client = RemoteClient(feed_url)

        assert client.request('GET') == []
        assert responses_lib.calls[0].request.url == feed_url

    @responses_lib.activate
    def test_trailing_slash_in_base_url_does_not_duplicate(self):
        responses_lib.add(responses_lib.GET, f'{BASE_URL}/products', json=[], status=200)
        client = RemoteClient(BASE_URL + '/')
        client.request('GET', '/products')

        assert responses_lib.calls[0].request.url == f'{BASE_URL}/products'


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestAuthentication:
    @responses_lib.activate
    def test_bearer_token_header(self):
        responses_lib.add(responses_lib.GET, BASE_URL, json=[], status=200)
        RemoteClient(BASE_URL, token='feed-token').request('GET')

        assert responses_lib.calls[0].request.headers['Authorization'] == 'Bearer feed-token'

    @responses_lib.activate
    def test_basic_auth_header(self):
        responses_lib.add(responses_lib.GET, f'{BASE_URL}/products', json=[], status=200)
        RemoteClient(BASE_URL, auth=('ck_key', 'cs_secret')).request('GET', 'products')

        expected = 'Basic ' + base64.b64encode(b'ck_key:cs_secret').decode()
        assert responses_lib.calls[0].request.headers['Authorization'] == expected


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------

class TestRetries:
    @responses_lib.activate
    def test_two_server_errors_then_success(self):
        url = f'{BASE_URL}/products'
        responses_lib.add(responses_lib.GET, url, status=503)
        responses_lib.add(responses_lib.GET, url, status=503)
        responses_lib.add(responses_lib.GET, url, json=[{'id': 5}], status=200)

        with patch('catalog_sync.http_client.time.sleep') as mock_sleep:
            data = RemoteClient(BASE_URL).request('GET', 'products')

        assert data == [{'id': 5}]
        assert len(responses_lib.calls) == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @responses_lib.activate
    def test_exhausted_retries_return_none(self):
        url = f'{BASE_URL}/products'
        for _ in range(3):
            responses_lib.add(responses_lib.GET, url, status=503)

        with patch('catalog_sync.http_client.time.sleep') as mock_sleep:
            client = RemoteClient(BASE_URL)
            result = client.call('GET', 'products')
            assert client.request('GET', 'products') is None

        assert result.outcome is Outcome.FAILED
        assert result.status_code == 503
        # No sleep after the last attempt.
        assert [c.args[0] for c in mock_sleep.call_args_list][:2] == [1.0, 2.0]
        assert mock_sleep.call_count == 4

    @responses_lib.activate
    def test_retry_after_header_respected_on_429(self):
        url = f'{BASE_URL}/products'
        responses_lib.add(responses_lib.GET, url, status=429, headers={'Retry-After': '0'})
        responses_lib.add(responses_lib.GET, url, json=[], status=200)

        with patch('catalog_sync.http_client.time.sleep') as mock_sleep:
            assert RemoteClient(BASE_URL).request('GET', 'products') == []

        mock_sleep.assert_called_once_with(0.0)

    @responses_lib.activate
    def test_non_numeric_retry_after_falls_back_to_backoff(self):
        url = f'{BASE_URL}/products'
        responses_lib.add(responses_lib.GET, url, status=429, headers={'Retry-After': 'next-tuesday'})
        responses_lib.add(responses_lib.GET, url, json=[], status=200)

        with patch('catalog_sync.http_client.time.sleep') as mock_sleep:
            RemoteClient(BASE_URL).request('GET', 'products')

        mock_sleep.assert_called_once_with(1.0)

    @responses_lib.activate
    def test_network_error_is_retried(self):
        url = f'{BASE_URL}/products'
        responses_lib.add(responses_lib.GET, url, body=requests.ConnectionError('connection reset'))
        responses_lib.add(responses_lib.GET, url, json=[], status=200)

        with patch('catalog_sync.http_client.time.sleep'):
            assert RemoteClient(BASE_URL).request('GET', 'products') == []

        assert len(responses_lib.calls) == 2


# ---------------------------------------------------------------------------
# Terminal failures
# ---------------------------------------------------------------------------

class TestTerminalFailures:
    @pytest.mark.parametrize('status_code', [400, 401, 403, 422])
    @responses_lib.activate
    def test_client_error_is_not_retried(self, status_code):
        url = f'{BASE_URL}/products/batch'
        responses_lib.add(responses_lib.POST, url, json={'code': 'bad'}, status=status_code)

        with patch('catalog_sync.http_client.time.sleep') as mock_sleep:
            result = RemoteClient(BASE_URL).call('POST', 'products/batch', body={})

        assert result.outcome is Outcome.FAILED
        assert result.status_code == status_code
        assert len(responses_lib.calls) == 1
        mock_sleep.assert_not_called()

    @responses_lib.activate
    def test_expected_not_found(self):
        responses_lib.add(responses_lib.GET, f'{BASE_URL}/products/XX', json={}, status=404)
        result = RemoteClient(BASE_URL).call('GET', 'products/XX', expect_not_found=True)

        assert result.not_found
        assert not result.ok
        assert len(responses_lib.calls) == 1

    @responses_lib.activate
    def test_invalid_json_is_terminal(self):
        url = f'{BASE_URL}/products'
        responses_lib.add(responses_lib.GET, url, body='<html>oops</html>', status=200)

        with patch('catalog_sync.http_client.time.sleep') as mock_sleep:
            result = RemoteClient(BASE_URL).call('GET', 'products')

        assert result.outcome is Outcome.FAILED
        assert 'Invalid JSON' in result.error
        assert len(responses_lib.calls) == 1
        mock_sleep.assert_not_called()


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class TestRateLimiting:
    @responses_lib.activate
    def test_requests_within_window_are_immediate(self):
        url = f'{BASE_URL}/products'
        for _ in range(5):
            responses_lib.add(responses_lib.GET, url, json=[], status=200)

        client = RemoteClient(BASE_URL, rate_limit=5)
        start = time.monotonic()
        for _ in range(5):
            client.request('GET', 'products')
        elapsed = time.monotonic() - start

        assert elapsed < 0.5, f"First 5 requests should be near-instant, got {elapsed:.2f}s"

    @responses_lib.activate
    def test_request_over_limit_waits_for_new_window(self):
        url = f'{BASE_URL}/products'
        for _ in range(3):
            responses_lib.add(responses_lib.GET, url, json=[], status=200)

        client = RemoteClient(BASE_URL, rate_limit=2)
        client.request('GET', 'products')
        client.request('GET', 'products')

        start = time.monotonic()
        client.request('GET', 'products')
        elapsed = time.monotonic() - start

        assert elapsed >= 0.9, f"3rd request should wait ~1s for new window, got {elapsed:.2f}s"

    def test_concurrent_acquires_complete_without_errors(self):
        limiter = RateLimiter(rate=5)
        errors = []

        def acquire():
            try:
                limiter.acquire()
            except Exception as exc:
                errors.append(exc)

        with patch('catalog_sync.http_client.time.sleep'):
            threads = [threading.Thread(target=acquire) for _ in range(30)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert not errors
        assert limiter._tokens >= 0
