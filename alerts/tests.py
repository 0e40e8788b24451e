from datetime import timedelta
from unittest import mock

import requests
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from alerts.models import SyncFailureAlert
from alerts.services import FailureEscalationService
from connections.config import AlertConfig
from connections.models import Connection
from ingestion.models import SyncRun


def _make_connection(name="Tenant"):
    connection = Connection(name=name, base_url="https://api.example.com", client_id="client")
    connection.set_client_secret("secret")
    connection.save()
    return connection


def _finished_run(connection, status=SyncRun.Status.FAILED, summary="properties: Remote API error: 500"):
    now = timezone.now()
    return SyncRun.objects.create(
        connection=connection,
        status=status,
        started_at=now,
        ended_at=now,
        error_summary=summary if status == SyncRun.Status.FAILED else "",
    )


class SyncFailureAlertModelTests(TestCase):
    def setUp(self):
        self.alert = SyncFailureAlert.objects.create(connection=_make_connection())

    def test_failure_details_are_bounded(self):
        for i in range(12):
            self.alert.record_failure({"error": f"failure {i}"})
        self.assertEqual(self.alert.consecutive_failures, 12)
        self.assertEqual(len(self.alert.failure_details), 10)
        self.assertEqual(self.alert.recent_failures(1)[0]["details"]["error"], "failure 11")

    def test_should_send_alert(self):
        now = timezone.now()
        self.alert.consecutive_failures = 2
        self.assertFalse(self.alert.should_send_alert(3, 60, now))
        self.alert.consecutive_failures = 3
        self.assertTrue(self.alert.should_send_alert(3, 60, now))

        self.alert.last_alert_sent_at = now - timedelta(minutes=30)
        self.assertFalse(self.alert.should_send_alert(3, 60, now))
        self.alert.last_alert_sent_at = now - timedelta(minutes=60)
        self.assertTrue(self.alert.should_send_alert(3, 60, now))

    def test_acknowledged_alert_is_silent_until_next_failure(self):
        self.alert.consecutive_failures = 5
        self.alert.acknowledge()
        self.assertFalse(self.alert.should_send_alert(3, 60))
        self.alert.record_failure({"error": "again"})
        self.assertFalse(self.alert.is_acknowledged)
        self.assertTrue(self.alert.should_send_alert(3, 60))


class FailureEscalationServiceTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()
        self.config = AlertConfig(failure_threshold=3, cooldown_minutes=60, recipients=("ops@example.com",))
        self.service = FailureEscalationService(self.config)

    def _fail(self, service=None):
        return (service or self.service).handle_sync_completed(_finished_run(self.connection))

    def test_threshold_and_cooldown(self):
        self.assertFalse(self._fail())
        self.assertFalse(self._fail())
        self.assertEqual(len(mail.outbox), 0)

        self.assertTrue(self._fail())
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, "[PMPulse] 3 Consecutive Sync Failures: Tenant")
        self.assertEqual(mail.outbox[0].to, ["ops@example.com"])
        self.assertIn("properties: Remote API error: 500", mail.outbox[0].body)

        self.assertFalse(self._fail())
        self.assertEqual(len(mail.outbox), 1)

        alert = SyncFailureAlert.objects.get(connection=self.connection)
        alert.last_alert_sent_at = timezone.now() - timedelta(minutes=61)
        alert.save(update_fields=["last_alert_sent_at"])

        self.assertTrue(self._fail())
        self.assertEqual(len(mail.outbox), 2)
        self.assertIn("5 Consecutive", mail.outbox[1].subject)

    def test_success_resets_counter_but_keeps_acknowledgment(self):
        for _ in range(3):
            self._fail()
        alert = SyncFailureAlert.objects.get(connection=self.connection)
        alert.acknowledge()

        self.service.handle_sync_completed(_finished_run(self.connection, SyncRun.Status.COMPLETED))

        alert.refresh_from_db()
        self.assertEqual(alert.consecutive_failures, 0)
        self.assertEqual(alert.failure_details, [])
        self.assertIsNotNone(alert.acknowledged_at)

    def test_success_without_history_creates_clean_alert_row(self):
        self.assertFalse(self.service.handle_sync_completed(_finished_run(self.connection, SyncRun.Status.COMPLETED)))
        alert = SyncFailureAlert.objects.get(connection=self.connection)
        self.assertEqual(alert.consecutive_failures, 0)
        self.assertIsNone(alert.last_alert_sent_at)
        self.assertFalse(alert.is_active)

    def test_non_terminal_run_is_ignored(self):
        run = SyncRun.objects.create(connection=self.connection)
        self.assertFalse(self.service.handle_sync_completed(run))
        self.assertFalse(SyncFailureAlert.objects.exists())

    def test_notifications_disabled(self):
        service = FailureEscalationService(AlertConfig(notifications_enabled=False, failure_threshold=1))
        self.assertFalse(self._fail(service))
        self.assertEqual(len(mail.outbox), 0)
        self.assertEqual(SyncFailureAlert.objects.get(connection=self.connection).consecutive_failures, 1)

    def test_notifier_error_leaves_alert_unsent(self):
        notifier = mock.Mock(side_effect=RuntimeError("smtp down"))
        service = FailureEscalationService(AlertConfig(failure_threshold=1), notifier=notifier)

        self.assertFalse(self._fail(service))
        self.assertIsNone(SyncFailureAlert.objects.get(connection=self.connection).last_alert_sent_at)

        notifier.side_effect = None
        notifier.return_value = True
        self.assertTrue(self._fail(service))
        self.assertEqual(notifier.call_count, 2)
        self.assertIsNotNone(SyncFailureAlert.objects.get(connection=self.connection).last_alert_sent_at)

    def test_recipients_fall_back_to_active_users(self):
        User = get_user_model()
        User.objects.create_user(username="pm", password="pw", email="pm@example.com")
        User.objects.create_user(username="noemail", password="pw", email="")
        User.objects.create_user(username="gone", password="pw", email="gone@example.com", is_active=False)
        service = FailureEscalationService(AlertConfig(failure_threshold=1))

        self.assertTrue(self._fail(service))
        self.assertEqual(mail.outbox[0].to, ["pm@example.com"])

    @mock.patch("alerts.notifications.requests.post")
    def test_webhook_delivery(self, post):
        service = FailureEscalationService(
            AlertConfig(failure_threshold=1, webhook_url="https://hooks.example.com/sync")
        )
        self.assertTrue(self._fail(service))
        payload = post.call_args.kwargs["json"]
        self.assertEqual(payload["event"], "sync.failure_threshold_reached")
        self.assertEqual(payload["connection_id"], self.connection.pk)
        self.assertEqual(payload["consecutive_failures"], 1)

    @mock.patch("alerts.notifications.requests.post", side_effect=requests.ConnectionError("refused"))
    def test_nothing_delivered_is_not_stamped(self, post):
        service = FailureEscalationService(
            AlertConfig(failure_threshold=1, webhook_url="https://hooks.example.com/sync")
        )
        self.assertFalse(self._fail(service))
        self.assertIsNone(SyncFailureAlert.objects.get(connection=self.connection).last_alert_sent_at)

    def test_alert_status_and_active_alerts(self):
        for _ in range(3):
            self._fail()
        status = self.service.get_alert_status(self.connection)
        self.assertTrue(status["is_active"])
        self.assertEqual(status["consecutive_failures"], 3)
        self.assertGreater(status["cooldown_remaining_minutes"], 0)
        self.assertEqual(len(status["recent_failures"]), 3)
        self.assertEqual(list(self.service.get_active_alerts().values_list("connection_id", flat=True)), [self.connection.pk])

        alert = SyncFailureAlert.objects.get(connection=self.connection)
        self.service.acknowledge_alert(alert)
        self.assertFalse(self.service.get_active_alerts().exists())
        self.assertEqual(self.service.cooldown_remaining(alert, now=timezone.now() + timedelta(hours=2)), 0)


@override_settings(REMOTE_SYNC={"alerts": {"recipients": "ops@example.com"}})
class SyncFailureAlertApiTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="ops", password="pw")
        self.api = APIClient()
        self.api.force_authenticate(self.user)
        self.failing = SyncFailureAlert.objects.create(connection=_make_connection("Failing"), consecutive_failures=4)
        self.quiet = SyncFailureAlert.objects.create(connection=_make_connection("Quiet"), consecutive_failures=1)

    def test_list_active_alerts(self):
        response = self.api.get("/api/sync/alerts/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([a["id"] for a in response.json()], [self.failing.pk])

    def test_list_all_alerts(self):
        response = self.api.get("/api/sync/alerts/", {"all": "true"})
        self.assertEqual(len(response.json()), 2)

    def test_acknowledge(self):
        response = self.api.post(f"/api/sync/alerts/{self.failing.pk}/acknowledge/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["acknowledged_by"], "ops")
        self.failing.refresh_from_db()
        self.assertEqual(self.failing.acknowledged_by, self.user)
        self.assertFalse(self.api.get("/api/sync/alerts/").json())
