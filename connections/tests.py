"""
Tests for connection credentials, sync configuration and the remote API client.
HTTP is faked with a mocked requests.Session; backoff sleeps are patched out.
"""
import dataclasses
import json
from datetime import datetime, timezone as dt_timezone
from unittest import mock

import requests
from django.test import TestCase

from connections.config import ConfigurationError, RetryPolicy, SyncConfig
from connections.models import Connection, ConnectionStatus, Setting
from connections.services import RemoteApiClient, RemoteApiError


def _response(status, body=None, headers=None):
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body if body is not None else {}).encode("utf-8")
    resp.encoding = "utf-8"
    resp.headers.update(headers or {})
    return resp


def _make_connection(**kwargs):
    connection = Connection(
        name=kwargs.pop("name", "Test Tenant"),
        base_url=kwargs.pop("base_url", "https://api.example.com"),
        client_id=kwargs.pop("client_id", "client-1"),
    )
    connection.set_client_secret(kwargs.pop("client_secret", "s3cret"))
    connection.save()
    return connection


class ConnectionModelTests(TestCase):
    def test_secret_is_encrypted_at_rest(self):
        connection = _make_connection(client_secret="very-secret")
        connection.refresh_from_db()
        self.assertNotIn("very-secret", connection.client_secret_encrypted)
        self.assertEqual(connection.get_client_secret(), "very-secret")

    def test_configured_status_after_credentials_set(self):
        connection = _make_connection()
        self.assertTrue(connection.is_configured())
        self.assertEqual(connection.status, ConnectionStatus.CONFIGURED)

    def test_missing_secret_is_not_configured(self):
        connection = Connection.objects.create(base_url="https://api.example.com", client_id="c")
        self.assertFalse(connection.is_configured())
        self.assertEqual(connection.get_client_secret(), "")

    def test_mark_as_error_then_success(self):
        connection = _make_connection()
        connection.mark_as_error("Remote API error: 401")
        connection.refresh_from_db()
        self.assertEqual(connection.status, ConnectionStatus.ERROR)
        self.assertEqual(connection.last_error, "Remote API error: 401")

        connection.mark_as_success()
        connection.refresh_from_db()
        self.assertEqual(connection.status, ConnectionStatus.CONNECTED)
        self.assertEqual(connection.last_error, "")
        self.assertIsNotNone(connection.last_success_at)


class SyncConfigTests(TestCase):
    def test_setting_rows_override_defaults(self):
        Setting.set_value("alerts", "failure_threshold", 5)
        Setting.set_value("features", "notifications", False)
        Setting.set_value("business_hours", "timezone", "America/New_York")

        config = SyncConfig.load()

        self.assertEqual(config.alerts.failure_threshold, 5)
        self.assertFalse(config.alerts.notifications_enabled)
        self.assertEqual(config.business_hours.timezone, "America/New_York")

    def test_explicit_overrides_win_over_setting_rows(self):
        Setting.set_value("sync", "max_retries", 4)
        config = SyncConfig.load({"sync": {"max_retries": 2}})
        self.assertEqual(config.retry.max_retries, 2)

    def test_resources_are_put_in_dependency_order(self):
        config = SyncConfig.load({"sync": {"resources": ["leases", "properties", "units"]}})
        self.assertEqual(config.resources, ("properties", "units", "leases"))

    def test_unknown_resource_rejected(self):
        with self.assertRaises(ConfigurationError):
            SyncConfig.load({"sync": {"resources": ["tenants"]}})

    def test_invalid_timezone_rejected(self):
        with self.assertRaises(ConfigurationError):
            SyncConfig.load({"business_hours": {"timezone": "Mars/Olympus_Mons"}})

    def test_recipients_accept_comma_separated_string(self):
        config = SyncConfig.load({"alerts": {"recipients": "a@example.com, b@example.com"}})
        self.assertEqual(config.alerts.recipients, ("a@example.com", "b@example.com"))

    def test_config_is_immutable(self):
        config = SyncConfig.load()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            config.incremental_days = 1

    def test_backoff_is_exponential_and_capped(self):
        policy = RetryPolicy(initial_backoff_seconds=1, backoff_multiplier=2, max_backoff_seconds=5)
        self.assertEqual(policy.backoff_for(1), 1)
        self.assertEqual(policy.backoff_for(2), 2)
        self.assertEqual(policy.backoff_for(3), 4)
        self.assertEqual(policy.backoff_for(4), 5)


@mock.patch("connections.services.time.sleep")
class RemoteApiClientTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()
        self.session = mock.Mock()
        self.policy = RetryPolicy(max_retries=1, initial_backoff_seconds=1, per_page=2)
        self.client = RemoteApiClient(self.connection, self.policy, session=self.session)

    def test_fetch_sends_pagination_and_modified_since(self, sleep):
        self.session.get.return_value = _response(200, {"data": [{"id": 1}]})
        since = datetime(2026, 1, 1, tzinfo=dt_timezone.utc)

        result = self.client.fetch_resource("work_orders", page=2, per_page=50, modified_since=since)

        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://api.example.com/v1/work-orders")
        self.assertEqual(
            kwargs["params"],
            {"page": 2, "per_page": 50, "modified_since": "2026-01-01T00:00:00+00:00"},
        )
        self.assertEqual(kwargs["auth"], ("client-1", "s3cret"))
        self.assertEqual(result["data"], [{"id": 1}])
        self.assertFalse(result["has_more"])

    def test_rate_limit_then_success_makes_two_requests(self, sleep):
        self.session.get.side_effect = [
            _response(429, {"error": "slow down"}, {"Retry-After": "3"}),
            _response(200, {"data": []}),
        ]
        result = self.client.fetch_resource("units")
        self.assertEqual(result["data"], [])
        self.assertEqual(self.session.get.call_count, 2)
        sleep.assert_called_once_with(3.0)

    def test_retry_after_is_capped(self, sleep):
        client = RemoteApiClient(
            self.connection, RetryPolicy(max_retries=1, max_backoff_seconds=10), session=self.session
        )
        self.session.get.side_effect = [
            _response(429, {}, {"Retry-After": "600"}),
            _response(200, {"data": []}),
        ]
        client.fetch_resource("units")
        sleep.assert_called_once_with(10.0)

    def test_server_errors_exhaust_retries(self, sleep):
        self.session.get.side_effect = [_response(500), _response(500)]
        with self.assertRaises(RemoteApiError) as ctx:
            self.client.fetch_resource("units")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(self.session.get.call_count, 2)

    def test_client_error_is_not_retried(self, sleep):
        self.session.get.return_value = _response(404, {"error": "not found"})
        with self.assertRaises(RemoteApiError) as ctx:
            self.client.fetch_resource("units")
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(self.session.get.call_count, 1)
        sleep.assert_not_called()

    def test_transport_error_is_retried(self, sleep):
        self.session.get.side_effect = [
            requests.ConnectionError("connection reset"),
            _response(200, {"data": [{"id": 7}]}),
        ]
        result = self.client.fetch_resource("properties")
        self.assertEqual(result["data"], [{"id": 7}])
        sleep.assert_called_once_with(1.0)

    def test_transport_error_exhausted_raises_remote_error(self, sleep):
        self.session.get.side_effect = requests.Timeout("timed out")
        with self.assertRaises(RemoteApiError):
            self.client.fetch_resource("properties")
        self.assertEqual(self.session.get.call_count, 2)

    def test_invalid_envelope_raises(self, sleep):
        self.session.get.return_value = _response(200, {"items": []})
        with self.assertRaises(RemoteApiError):
            self.client.fetch_resource("properties")

    def test_iter_pages_stops_on_short_page(self, sleep):
        self.session.get.side_effect = [
            _response(200, {"data": [{"id": 1}, {"id": 2}]}),
            _response(200, {"data": [{"id": 3}]}),
        ]
        pages = list(self.client.iter_pages("properties"))
        self.assertEqual([len(p["data"]) for p in pages], [2, 1])
        self.assertEqual(self.session.get.call_args_list[1].kwargs["params"]["page"], 2)

    def test_iter_pages_honours_meta_has_more(self, sleep):
        self.session.get.return_value = _response(
            200, {"data": [{"id": 1}, {"id": 2}], "meta": {"has_more": False}}
        )
        pages = list(self.client.iter_pages("properties"))
        self.assertEqual(len(pages), 1)

    def test_iter_pages_respects_max_pages(self, sleep):
        client = RemoteApiClient(
            self.connection, RetryPolicy(per_page=1, max_pages=3), session=self.session
        )
        self.session.get.return_value = _response(200, {"data": [{"id": 1}]})
        pages = list(client.iter_pages("properties"))
        self.assertEqual(len(pages), 3)

    def test_unknown_resource_type(self, sleep):
        with self.assertRaises(ValueError):
            self.client.fetch_resource("tenants")

    def test_test_connection_true_on_success(self, sleep):
        self.session.get.return_value = _response(200, {"data": []})
        self.assertTrue(self.client.test_connection())
        self.assertEqual(self.session.get.call_args.kwargs["params"]["per_page"], 1)

    def test_test_connection_false_on_failure(self, sleep):
        self.session.get.side_effect = [_response(503), _response(503)]
        self.assertFalse(self.client.test_connection())

    def test_test_connection_false_when_unconfigured(self, sleep):
        connection = Connection.objects.create(name="Empty")
        client = RemoteApiClient(connection, self.policy, session=self.session)
        self.assertFalse(client.test_connection())
        self.session.get.assert_not_called()

    def test_custom_credential_provider(self, sleep):
        provider = mock.Mock(return_value=("token-user", "token-pass"))
        client = RemoteApiClient(
            self.connection, self.policy, session=self.session, credential_provider=provider
        )
        self.session.get.return_value = _response(200, {"data": []})
        client.get_vendors()
        provider.assert_called_once_with(self.connection)
        self.assertEqual(self.session.get.call_args.kwargs["auth"], ("token-user", "token-pass"))
