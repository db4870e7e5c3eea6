"""
Tests for the api proxy middleware: header rewriting, cookie namespacing and
relaying of backend responses.
"""
import unittest
from concurrent.futures import Future
from unittest.mock import Mock, call
import sys
import os
from urllib.parse import quote

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from api_proxy.features.proxy.data_adapter import (
    BackendError,
    BackendResponse,
    BackendTimeoutError,
    BackendUnavailableError,
    DataAdapter,
)
from api_proxy.features.proxy.middleware import ApiProxy
from api_proxy.features.proxy.sink import ClientRequest
from api_proxy.models.api_config import ApiNotConfiguredError


def encode_uri_component(value):
    return quote(value, safe="!*'()")


def resolved(backend_response, body=None):
    future = Future()
    future.set_result((backend_response, body))
    return future


def failed(error):
    future = Future()
    future.set_exception(error)
    return future


class TestApiProxyMiddleware(unittest.TestCase):
    """Behaviour of ApiProxy.handle with a stubbed data adapter."""

    def setUp(self):
        self.data_adapter = Mock(spec=DataAdapter)
        # Pending by default: the backend call never completes
        self.data_adapter.request.return_value = Future()
        self.proxy = ApiProxy(self.data_adapter)
        self.request_from_client = ClientRequest(path='/', headers={'host': 'any.host.name'})
        self.response_to_client = Mock(spec=['status', 'json', 'set_header'])

    def outgoing_options(self):
        self.data_adapter.request.assert_called_once()
        return self.data_adapter.request.call_args[0][1]

    def test_passes_through_status_code(self):
        self.data_adapter.request.return_value = resolved(BackendResponse(200, {}), {})

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.response_to_client.status.assert_called_once_with(200)

    def test_passes_through_body(self):
        body = {'what': 'ever'}
        self.data_adapter.request.return_value = resolved(BackendResponse(200, {}), body)

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.response_to_client.json.assert_called_once_with(body)

    def test_no_status_or_body_written_when_backend_sent_none(self):
        self.data_adapter.request.return_value = resolved(BackendResponse(headers={}), None)

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.response_to_client.status.assert_not_called()
        self.response_to_client.json.assert_not_called()
        self.response_to_client.set_header.assert_not_called()

    def test_passes_through_redirect_location(self):
        self.data_adapter.request.return_value = resolved(
            BackendResponse(302, {'location': '/login', 'content-type': 'text/html'})
        )

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.response_to_client.status.assert_called_once_with(302)
        self.response_to_client.set_header.assert_called_once_with('location', '/login')
        self.response_to_client.json.assert_not_called()

    def test_completion_future_resolves_after_writing(self):
        pending = Future()
        self.data_adapter.request.return_value = pending

        done = self.proxy.handle(self.request_from_client, self.response_to_client)
        self.assertFalse(done.done())
        self.response_to_client.status.assert_not_called()

        pending.set_result((BackendResponse(201, {}), {'id': 1}))
        self.assertIsNone(done.result(timeout=1))
        self.response_to_client.status.assert_called_once_with(201)
        self.response_to_client.json.assert_called_once_with({'id': 1})

    def test_passes_original_request_to_adapter(self):
        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.assertIs(self.data_adapter.request.call_args[0][0], self.request_from_client)

    def test_adds_x_forwarded_for_header(self):
        remote_address = '1.1.1.1'
        self.request_from_client.remote_addr = remote_address

        self.proxy.handle(self.request_from_client, self.response_to_client)

        outgoing_headers = self.outgoing_options()['headers']
        self.assertEqual(outgoing_headers['x-forwarded-for'], remote_address)

    def test_extends_existing_x_forwarded_for_header(self):
        existing_header_value = '9.9.9.9, 6.6.6.6'
        remote_address = '1.1.1.1'
        expected_header_value = '9.9.9.9, 6.6.6.6, 1.1.1.1'
        incoming_headers = {'X-Forwarded-For': existing_header_value}

        self.request_from_client.headers = incoming_headers
        self.request_from_client.remote_addr = remote_address

        self.proxy.handle(self.request_from_client, self.response_to_client)

        outgoing_headers = self.outgoing_options()['headers']
        self.assertEqual(outgoing_headers['x-forwarded-for'], expected_header_value)
        self.assertNotEqual(outgoing_headers['x-forwarded-for'], incoming_headers['X-Forwarded-For'])

    def test_does_not_pass_through_host_header(self):
        self.request_from_client.headers = {'Host': 'any.host.name', 'Accept': 'application/json'}

        self.proxy.handle(self.request_from_client, self.response_to_client)

        outgoing_headers = self.outgoing_options()['headers']
        self.assertNotIn('host', outgoing_headers)
        self.assertEqual(outgoing_headers['accept'], 'application/json')

    def test_forwards_api_name_path_method_and_body(self):
        self.request_from_client = ClientRequest(
            path='/billing/-/invoices/42',
            method='PUT',
            query_string='expand=lines',
            body=b'{"paid": true}',
        )

        self.proxy.handle(self.request_from_client, self.response_to_client)

        options = self.outgoing_options()
        self.assertEqual(options['api'], 'billing')
        self.assertEqual(options['path'], '/invoices/42')
        self.assertEqual(options['method'], 'PUT')
        self.assertEqual(options['query'], 'expand=lines')
        self.assertEqual(options['body'], b'{"paid": true}')

    def test_requests_are_independent(self):
        self.request_from_client.remote_addr = '1.1.1.1'
        self.proxy.handle(self.request_from_client, self.response_to_client)
        self.proxy.handle(self.request_from_client, self.response_to_client)

        first, second = self.data_adapter.request.call_args_list
        self.assertEqual(first[0][1]['headers']['x-forwarded-for'], '1.1.1.1')
        self.assertEqual(second[0][1]['headers']['x-forwarded-for'], '1.1.1.1')


class TestCookieForwarding(unittest.TestCase):

    def setUp(self):
        self.data_adapter = Mock(spec=DataAdapter)
        self.data_adapter.request.return_value = Future()
        self.proxy = ApiProxy(self.data_adapter)
        self.request_from_client = ClientRequest(path='/', headers={'host': 'any.host.name'})
        self.response_to_client = Mock(spec=['status', 'json', 'set_header'])

    def test_prefixes_cookies_for_default_api(self):
        cookies_returned_by_api = [
            'FooBar=SomeCookieData; path=/',
            'BarFoo=OtherCookieData; path=/',
        ]
        expected_encoded_cookies = [
            'default/-/FooBar=' + encode_uri_component('FooBar=SomeCookieData; path=/'),
            'default/-/BarFoo=' + encode_uri_component('BarFoo=OtherCookieData; path=/'),
        ]
        self.data_adapter.request.return_value = resolved(
            BackendResponse(headers={'set-cookie': cookies_returned_by_api})
        )

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.response_to_client.set_header.assert_called_once_with('set-cookie', expected_encoded_cookies)

    def test_prefixes_cookies_with_api_name(self):
        cookies_returned_by_api = ['FooBar=SomeCookieData; path=/']
        expected_encoded_cookies = [
            'apiName/-/FooBar=' + encode_uri_component('FooBar=SomeCookieData; path=/'),
        ]
        self.data_adapter.request.return_value = resolved(
            BackendResponse(headers={'set-cookie': cookies_returned_by_api})
        )
        self.request_from_client.path = '/apiName/-/'

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.response_to_client.set_header.assert_called_once_with('set-cookie', expected_encoded_cookies)

    def test_passes_client_cookies_to_the_matching_api(self):
        encoded_client_cookies = (
            'apiName/-/FooBar=' + encode_uri_component('FooBar=SomeCookieData; path=/')
            + '; '
            + 'otherApi/-/BarFoo=' + encode_uri_component('BarFoo=OtherCookieData; path=/')
        )
        self.request_from_client.headers = {'Cookie': encoded_client_cookies}

        self.request_from_client.path = '/apiName/-/'
        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.request_from_client.path = '/otherApi/-/'
        self.proxy.handle(self.request_from_client, self.response_to_client)

        first, second = self.data_adapter.request.call_args_list
        self.assertIs(first[0][0], self.request_from_client)
        self.assertEqual(first[0][1]['headers']['cookie'], ['FooBar=SomeCookieData; path=/'])
        self.assertEqual(second[0][1]['headers']['cookie'], ['BarFoo=OtherCookieData; path=/'])

    def test_passes_client_cookies_to_the_default_api(self):
        self.request_from_client.headers = {
            'cookie': 'default/-/FooBar=' + encode_uri_component('FooBar=SomeCookieData; path=/'),
        }

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.data_adapter.request.assert_called_once()
        outgoing_headers = self.data_adapter.request.call_args[0][1]['headers']
        self.assertEqual(outgoing_headers['cookie'], ['FooBar=SomeCookieData; path=/'])

    def test_single_set_cookie_string(self):
        self.data_adapter.request.return_value = resolved(
            BackendResponse(200, {'set-cookie': 'FooBar=SomeCookieData; path=/'})
        )
        self.request_from_client.path = '/apiName/-/'

        self.proxy.handle(self.request_from_client, self.response_to_client)

        self.response_to_client.set_header.assert_called_once_with(
            'set-cookie',
            ['apiName/-/FooBar=' + encode_uri_component('FooBar=SomeCookieData; path=/')],
        )

    def test_no_cookie_key_without_client_cookie(self):
        self.proxy.handle(self.request_from_client, self.response_to_client)

        outgoing_headers = self.data_adapter.request.call_args[0][1]['headers']
        self.assertNotIn('cookie', outgoing_headers)


class TestBackendErrors(unittest.TestCase):

    def setUp(self):
        self.data_adapter = Mock(spec=DataAdapter)
        self.proxy = ApiProxy(self.data_adapter)
        self.request_from_client = ClientRequest(path='/apiName/-/things')
        self.response_to_client = Mock(spec=['status', 'json', 'set_header'])

    def assert_error_written(self, error, status_code, title):
        self.data_adapter.request.return_value = failed(error)

        with self.assertLogs('api_proxy.features.proxy.middleware', level='ERROR'):
            done = self.proxy.handle(self.request_from_client, self.response_to_client)

        self.assertIsNone(done.result(timeout=1))
        self.response_to_client.status.assert_called_once_with(status_code)
        self.response_to_client.json.assert_called_once()
        payload = self.response_to_client.json.call_args[0][0]
        self.assertEqual(payload['error'], title)
        self.assertEqual(payload['message'], str(error))
        self.response_to_client.set_header.assert_not_called()

    def test_unknown_api(self):
        self.assert_error_written(ApiNotConfiguredError('apiName'), 404, 'Unknown api')

    def test_backend_unavailable(self):
        self.assert_error_written(BackendUnavailableError('down'), 503, 'Backend unavailable')

    def test_backend_timeout(self):
        self.assert_error_written(BackendTimeoutError('slow'), 504, 'Backend timeout')

    def test_backend_error(self):
        self.assert_error_written(BackendError('broken'), 502, 'Bad gateway')

    def test_unexpected_error_maps_to_bad_gateway(self):
        self.assert_error_written(RuntimeError('boom'), 502, 'Bad gateway')

    def test_adapter_raising_synchronously(self):
        self.data_adapter.request.side_effect = BackendUnavailableError('refused')

        with self.assertLogs('api_proxy.features.proxy.middleware', level='ERROR'):
            self.proxy.handle(self.request_from_client, self.response_to_client).result(timeout=1)

        self.assertEqual(self.response_to_client.mock_calls[0], call.status(503))

    def test_sink_failure_propagates_through_completion_future(self):
        self.data_adapter.request.return_value = resolved(BackendResponse(200, {}), {'a': 1})
        self.response_to_client.json.side_effect = ValueError('not serializable')

        done = self.proxy.handle(self.request_from_client, self.response_to_client)

        with self.assertRaises(ValueError):
            done.result(timeout=1)


if __name__ == '__main__':
    unittest.main()
