"""
Tests for the ingestion pipeline: scheduling policy, resource tracking, record
mapping, orchestration, raw-event replay, Celery tasks, API and commands.
The remote API is replaced by FakeClient, which serves canned pages per resource.
"""
from datetime import date, datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest import mock
from zoneinfo import ZoneInfo

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.db import DataError, IntegrityError, transaction
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from alerts.models import SyncFailureAlert
from alerts.services import FailureEscalationService
from connections.config import AlertConfig, BusinessHoursConfig, SyncConfig
from connections.models import Connection, ConnectionStatus
from connections.services import RemoteApiError
from ingestion import mappers
from ingestion.models import RawEvent, SyncRun, SyncStateError
from ingestion.scheduling import SchedulingPolicy
from ingestion.services import STALE_RUN_MESSAGE, IngestionOrchestrator, RawEventReplayer, SyncAlreadyRunning
from ingestion.sync_status import acquire_sync_lock, release_sync_lock
from ingestion.tasks import REFUSED_MESSAGE, prune_sync_runs, replay_raw_events, run_scheduled_sync, run_sync
from ingestion.tracker import ResourceSyncTracker
from ingestion.upserts import update_unit_status_from_leases
from portfolio.models import Lease, Property, Unit, UnitStatus, Vendor, WorkOrder

LA = ZoneInfo("America/Los_Angeles")


class FakeClient:
    """Serves a list of pages per resource; an Exception in place of a page is raised."""

    def __init__(self, resources=None, configured=True):
        self.resources = resources or {}
        self.configured = configured
        self.calls = []

    def is_configured(self):
        return self.configured

    def iter_pages(self, resource_type, modified_since=None):
        self.calls.append((resource_type, modified_since))
        for page in self.resources.get(resource_type, []):
            if isinstance(page, Exception):
                raise page
            yield {"data": page, "page": 1, "per_page": 100, "has_more": False}


def _property(pid, **extra):
    item = {"property_id": pid, "property_name": f"Property {pid}", "property_city": "Portland"}
    item.update(extra)
    return item


def _unit(uid, pid, **extra):
    item = {"unit_id": uid, "property_id": pid, "unit_name": uid.upper(), "unit_status": "Occupied"}
    item.update(extra)
    return item


def _make_connection(name="Tenant"):
    connection = Connection(name=name, base_url="https://api.example.com", client_id="client")
    connection.set_client_secret("secret")
    connection.save()
    return connection


def _config(**sync):
    return SyncConfig.from_dict({"sync": sync})


class SchedulingPolicyTests(SimpleTestCase):
    def setUp(self):
        self.policy = SchedulingPolicy(BusinessHoursConfig())

    def _at(self, year, month, day, hour, minute):
        return datetime(year, month, day, hour, minute, tzinfo=LA)

    def test_weekday_business_hours(self):
        self.assertTrue(self.policy.is_business_hours(self._at(2026, 1, 6, 10, 0)))
        self.assertEqual(self.policy.get_sync_interval(self._at(2026, 1, 6, 10, 0)), 15)

    def test_window_edges(self):
        self.assertTrue(self.policy.is_business_hours(self._at(2026, 1, 6, 9, 0)))
        self.assertTrue(self.policy.is_business_hours(self._at(2026, 1, 6, 16, 59)))
        self.assertFalse(self.policy.is_business_hours(self._at(2026, 1, 6, 17, 0)))
        self.assertFalse(self.policy.is_business_hours(self._at(2026, 1, 6, 8, 59)))

    def test_evening_uses_off_hours_interval(self):
        evening = self._at(2026, 1, 6, 20, 0)
        self.assertFalse(self.policy.is_business_hours(evening))
        self.assertEqual(self.policy.get_sync_interval(evening), 60)

    def test_saturday_respects_weekdays_only(self):
        saturday = self._at(2026, 1, 10, 10, 0)
        self.assertFalse(self.policy.is_business_hours(saturday))
        weekend_policy = SchedulingPolicy(BusinessHoursConfig(weekdays_only=False))
        self.assertTrue(weekend_policy.is_business_hours(saturday))

    def test_disabled_means_always_business_hours(self):
        policy = SchedulingPolicy(BusinessHoursConfig(enabled=False))
        saturday_night = self._at(2026, 1, 10, 3, 0)
        self.assertTrue(policy.is_business_hours(saturday_night))
        self.assertEqual(policy.get_sync_interval(saturday_night), 15)

    def test_utc_input_is_converted_to_configured_zone(self):
        ten_am_pacific = datetime(2026, 1, 6, 18, 0, tzinfo=dt_timezone.utc)
        self.assertTrue(self.policy.is_business_hours(ten_am_pacific))

    def test_should_sync_now_hourly(self):
        self.assertTrue(self.policy.should_sync_now(self._at(2026, 1, 6, 20, 0)))
        self.assertFalse(self.policy.should_sync_now(self._at(2026, 1, 6, 20, 15)))

    def test_should_sync_now_quarter_hourly(self):
        for minute in (0, 15, 30, 45):
            self.assertTrue(self.policy.should_sync_now(self._at(2026, 1, 6, 10, minute)))
        self.assertFalse(self.policy.should_sync_now(self._at(2026, 1, 6, 10, 7)))

    def test_next_sync_time_is_strictly_after_now(self):
        self.assertEqual(self.policy.get_next_sync_time(self._at(2026, 1, 6, 10, 7)), self._at(2026, 1, 6, 10, 15))
        self.assertEqual(self.policy.get_next_sync_time(self._at(2026, 1, 6, 10, 15)), self._at(2026, 1, 6, 10, 30))

    def test_next_sync_time_rolls_into_next_hour(self):
        self.assertEqual(self.policy.get_next_sync_time(self._at(2026, 1, 6, 10, 50)), self._at(2026, 1, 6, 11, 0))
        self.assertEqual(self.policy.get_next_sync_time(self._at(2026, 1, 6, 20, 15)), self._at(2026, 1, 6, 21, 0))

    def test_next_sync_time_when_window_opens(self):
        self.assertEqual(self.policy.get_next_sync_time(self._at(2026, 1, 6, 8, 30)), self._at(2026, 1, 6, 9, 0))

    def test_full_sync_time(self):
        self.assertTrue(self.policy.is_full_sync_time(self._at(2026, 1, 6, 2, 0)))
        self.assertFalse(self.policy.is_full_sync_time(self._at(2026, 1, 6, 2, 1)))

    def test_get_configuration(self):
        config = self.policy.get_configuration(self._at(2026, 1, 6, 10, 7))
        self.assertEqual(config["business_hours"], "9:00 - 17:00")
        self.assertEqual(config["current_interval"], 15)
        self.assertTrue(config["is_business_hours"])
        self.assertEqual(config["current_mode"], "Business hours (every 15 minutes)")
        self.assertEqual(config["next_sync"], self._at(2026, 1, 6, 10, 15).isoformat())


class MapperTests(SimpleTestCase):
    def test_unit_status_vocabulary(self):
        self.assertEqual(mappers.map_unit_status("Rented"), UnitStatus.OCCUPIED)
        self.assertEqual(mappers.map_unit_status("available"), UnitStatus.VACANT)
        self.assertEqual(mappers.map_unit_status("Not Ready"), UnitStatus.NOT_READY)
        self.assertEqual(mappers.map_unit_status("something else"), UnitStatus.VACANT)
        self.assertEqual(mappers.map_unit_status(None), UnitStatus.VACANT)

    def test_work_order_vocabularies(self):
        self.assertEqual(mappers.map_work_order_status("Assigned"), "in_progress")
        self.assertEqual(mappers.map_work_order_status("Canceled"), "cancelled")
        self.assertEqual(mappers.map_work_order_priority("Urgent"), "high")
        self.assertEqual(mappers.map_work_order_priority("critical"), "emergency")

    def test_gl_account_aliases_in_order(self):
        self.assertEqual(mappers.extract_gl_account_number({"account": "6210 - Water"}), "6210")
        self.assertEqual(
            mappers.extract_gl_account_number({"gl_account_number": "7000", "account": "6210 - Water"}),
            "7000",
        )
        self.assertEqual(
            mappers.extract_gl_account_number({"account_number": "5100", "gl_account_number": "7000"}),
            "5100",
        )
        self.assertEqual(mappers.extract_gl_account_number({}), "")

    def test_parse_amount(self):
        self.assertEqual(mappers.parse_amount("$1,234.50"), Decimal("1234.50"))
        self.assertEqual(mappers.parse_amount(99), Decimal("99.00"))
        self.assertIsNone(mappers.parse_amount(""))
        with self.assertRaises(mappers.MappingError):
            mappers.parse_amount("n/a")

    def test_parse_dates(self):
        self.assertEqual(mappers.parse_date("2026-01-15").isoformat(), "2026-01-15")
        self.assertEqual(mappers.parse_date("01/15/2026").isoformat(), "2026-01-15")
        self.assertEqual(mappers.parse_date("2026-01-15T08:30:00Z").isoformat(), "2026-01-15")
        with self.assertRaises(mappers.MappingError):
            mappers.parse_date("someday")
        opened = mappers.parse_datetime("2026-01-15 08:30:00")
        self.assertEqual(opened.tzinfo, dt_timezone.utc)

    def test_property_name_fallbacks(self):
        record = mappers.map_property({"id": 5, "property_street": "1 Main St"})
        self.assertEqual(record.external_id, "5")
        self.assertEqual(record.fields["name"], "1 Main St")
        self.assertEqual(mappers.map_property({"id": 6}).fields["name"], "Unknown Property")

    def test_property_visibility(self):
        self.assertFalse(mappers.map_property(_property("p1", visibility="Hidden")).fields["is_active"])
        self.assertTrue(mappers.map_property(_property("p1")).fields["is_active"])

    def test_unit_reference_from_nested_object(self):
        record = mappers.map_unit({"unit_id": "u1", "property": {"id": 42}})
        self.assertEqual(record.references, {"property": "42"})

    def test_missing_external_id(self):
        with self.assertRaises(mappers.MappingError):
            mappers.map_unit({"unit_name": "1A"})
        with self.assertRaises(mappers.MappingError):
            mappers.map_unit("not an object")


class SyncRunModelTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()

    def test_lifecycle(self):
        run = SyncRun.objects.create(connection=self.connection)
        run.mark_as_running()
        self.assertIsNotNone(run.started_at)
        run.finalize(SyncRun.Status.COMPLETED)
        self.assertTrue(run.is_terminal)
        self.assertIsNotNone(run.ended_at)

    def test_terminal_run_is_immutable(self):
        run = SyncRun.objects.create(connection=self.connection)
        run.mark_as_running()
        run.finalize(SyncRun.Status.FAILED, "boom")
        with self.assertRaises(SyncStateError):
            run.finalize(SyncRun.Status.COMPLETED)
        with self.assertRaises(SyncStateError):
            run.mark_as_running()
        with self.assertRaises(SyncStateError):
            run.record_resource("units", {"created": 1}, [])

    def test_one_running_run_per_connection(self):
        SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.RUNNING)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.RUNNING)
        other = _make_connection("Other")
        SyncRun.objects.create(connection=other, status=SyncRun.Status.RUNNING)


class ResourceSyncTrackerTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()
        self.run = SyncRun.objects.create(connection=self.connection)
        self.run.mark_as_running()

    def test_finish_persists_metrics(self):
        tracker = ResourceSyncTracker(self.run, "units")
        tracker.record_created()
        tracker.record_created()
        tracker.record_updated()
        tracker.record_skipped("Missing related property")
        tracker.record_error("bad record", {"external_id": "u9"})

        metrics = tracker.finish()

        self.assertEqual(tracker.get_processed_count(), 3)
        self.run.refresh_from_db()
        stored = self.run.resource_metrics["units"]
        self.assertEqual(
            {k: stored[k] for k in ("created", "updated", "skipped", "errors")},
            {"created": 2, "updated": 1, "skipped": 1, "errors": 1},
        )
        self.assertIn("duration_ms", metrics)
        self.assertEqual(self.run.resource_errors["units"][0]["message"], "bad record")

    def test_processed_count_excludes_skipped_and_errors(self):
        tracker = ResourceSyncTracker(self.run, "units")
        tracker.record_created()
        tracker.record_updated()
        tracker.record_skipped("Missing related property")
        tracker.record_error("bad record")
        self.assertEqual(tracker.get_processed_count(), 2)

    def test_finish_twice_raises(self):
        tracker = ResourceSyncTracker(self.run, "units")
        tracker.finish()
        with self.assertRaises(SyncStateError):
            tracker.finish()

    def test_metrics_for_a_resource_are_written_once(self):
        ResourceSyncTracker(self.run, "units").finish()
        with self.assertRaises(SyncStateError):
            ResourceSyncTracker(self.run, "units").finish()

    def test_error_list_is_bounded(self):
        tracker = ResourceSyncTracker(self.run, "leases")
        for i in range(12):
            tracker.record_error(f"error {i}")
        tracker.finish()
        self.run.refresh_from_db()
        errors = self.run.resource_errors["leases"]
        self.assertEqual(len(errors), 10)
        self.assertEqual(errors[-1]["message"], "error 11")
        self.assertEqual(self.run.resource_metrics["leases"]["errors"], 12)

    def test_fatal_error_flag(self):
        tracker = ResourceSyncTracker(self.run, "units")
        tracker.record_error("row problem")
        self.assertFalse(tracker.has_fatal_error())
        tracker.record_error("Remote API error: 404", fatal=True)
        self.assertTrue(tracker.has_fatal_error())
        self.assertEqual(tracker.fatal_error, "Remote API error: 404")


class IngestionOrchestratorTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()
        self.escalation = mock.Mock()

    def _run(self, resources, mode=SyncRun.Mode.FULL, config=None):
        sync_run = SyncRun.objects.create(connection=self.connection, mode=mode)
        client = FakeClient(resources)
        orchestrator = IngestionOrchestrator(client, config or _config(), escalation_service=self.escalation)
        orchestrator.execute(sync_run)
        sync_run.refresh_from_db()
        return sync_run, client

    def test_second_run_reports_updates(self):
        resources = {
            "properties": [[_property("p1"), _property("p2")]],
            "units": [[_unit("u1", "p1")]],
        }
        first, _ = self._run(resources)
        second, _ = self._run(resources)

        self.assertEqual(first.resource_metrics["properties"]["created"], 2)
        self.assertEqual(second.resource_metrics["properties"]["created"], 0)
        self.assertEqual(second.resource_metrics["properties"]["updated"], 2)
        self.assertEqual(second.resource_metrics["units"]["updated"], 1)
        self.assertEqual(Property.objects.count(), 2)
        self.assertEqual(Unit.objects.get(external_id="u1").property.external_id, "p1")

    def test_local_fields_are_not_overwritten(self):
        self._run({"properties": [[_property("p1")]]})
        Property.objects.filter(external_id="p1").update(notes="Gate code 1234", latitude=Decimal("45.5"))

        self._run({"properties": [[_property("p1", property_name="Renamed")]]})

        prop = Property.objects.get(external_id="p1")
        self.assertEqual(prop.name, "Renamed")
        self.assertEqual(prop.notes, "Gate code 1234")
        self.assertEqual(prop.latitude, Decimal("45.5"))

    def test_unresolved_reference_is_skipped(self):
        run, _ = self._run({"units": [[_unit("u9", "missing")]]})

        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(run.resource_metrics["units"]["skipped"], 1)
        self.assertFalse(Unit.objects.exists())
        event = RawEvent.objects.get(external_id="u9")
        self.assertIsNone(event.processed_at)

    def test_one_bad_record_does_not_stop_the_page(self):
        units = [_unit(f"u{i}", "p1") for i in range(10)]
        units[4]["bedrooms"] = "lots"
        run, _ = self._run({"properties": [[_property("p1")]], "units": [units]})

        self.assertEqual(run.resource_metrics["units"]["created"], 9)
        self.assertEqual(run.resource_metrics["units"]["errors"], 1)
        self.assertEqual(Unit.objects.count(), 9)
        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(run.errors_count, 1)
        self.assertIn("units: Failed to process units u4", run.error_summary)

    def test_raw_event_written_for_every_item(self):
        units = [_unit("u1", "p1"), _unit("u2", "missing"), {"unit_name": "no id"}]
        self._run({"properties": [[_property("p1")]], "units": [units]})
        self.assertEqual(RawEvent.objects.filter(resource_type="units").count(), 3)
        self.assertEqual(RawEvent.objects.filter(resource_type="units", processed_at__isnull=False).count(), 1)

    def test_null_item_is_a_record_error(self):
        resources = {"properties": [[None, _property("p1")]], "units": [[_unit("u1", "p1")]]}
        run, _ = self._run(resources)

        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(run.resource_metrics["properties"]["created"], 1)
        self.assertEqual(run.resource_metrics["properties"]["errors"], 1)
        self.assertEqual(run.resource_metrics["units"]["created"], 1)
        self.assertTrue(Unit.objects.filter(external_id="u1").exists())
        events = RawEvent.objects.filter(resource_type="properties")
        self.assertEqual(events.count(), 2)
        self.assertEqual(events.get(external_id="").payload, {"value": None})

    def test_long_external_id_is_truncated_in_raw_event(self):
        long_id = "p" * 100
        run, _ = self._run({"properties": [[_property(long_id)]]})
        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(RawEvent.objects.get(resource_type="properties").external_id, long_id[:64])

    def test_raw_event_write_failure_is_a_record_error(self):
        real_create = RawEvent.objects.create

        def create(**kwargs):
            if kwargs["external_id"] == "p-bad":
                raise DataError("value too long for type character varying(64)")
            return real_create(**kwargs)

        with mock.patch.object(RawEvent.objects, "create", side_effect=create):
            run, _ = self._run({"properties": [[_property("p-bad"), _property("p2")]]})

        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(run.resource_metrics["properties"]["created"], 1)
        self.assertEqual(run.resource_metrics["properties"]["errors"], 1)
        self.assertIn("Failed to store raw properties p-bad", run.error_summary)
        self.assertFalse(Property.objects.filter(external_id="p-bad").exists())
        self.assertTrue(Property.objects.filter(external_id="p2").exists())

    def test_unit_status_follows_leases(self):
        units = [
            _unit("u1", "p1", unit_status="Vacant"),
            _unit("u2", "p1"),
            _unit("u3", "p1", unit_status="Not Ready"),
            _unit("u4", "p1"),
            _unit("u5", "p1", unit_status="Vacant"),
        ]
        leases = [
            {"lease_id": "l1", "unit_id": "u1", "start_date": "2020-01-01"},
            {"lease_id": "l2", "unit_id": "u2", "start_date": "2999-01-01"},
            {"lease_id": "l3", "unit_id": "u3", "start_date": "2020-01-01"},
            {"lease_id": "l4", "unit_id": "u4", "start_date": "2019-01-01", "end_date": "2020-12-31"},
            {"lease_id": "l5", "unit_id": "u5", "start_date": "2020-01-01", "end_date": "2999-12-31"},
        ]
        run, _ = self._run({"properties": [[_property("p1")]], "units": [units], "leases": [leases]})

        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(
            dict(Unit.objects.values_list("external_id", "status")),
            {
                "u1": UnitStatus.OCCUPIED,
                "u2": UnitStatus.VACANT,
                "u3": UnitStatus.NOT_READY,
                "u4": UnitStatus.VACANT,
                "u5": UnitStatus.OCCUPIED,
            },
        )

    def test_unit_status_untouched_when_leases_fail(self):
        resources = {
            "properties": [[_property("p1")]],
            "units": [[_unit("u1", "p1")]],
            "leases": [RemoteApiError("Remote API error: 500", status_code=500)],
        }
        run, _ = self._run(resources)
        self.assertEqual(run.status, SyncRun.Status.FAILED)
        self.assertEqual(Unit.objects.get(external_id="u1").status, UnitStatus.OCCUPIED)

    def test_stale_running_run_is_failed_and_escalated(self):
        stale = SyncRun.objects.create(
            connection=self.connection, status=SyncRun.Status.RUNNING,
            started_at=timezone.now() - timedelta(hours=3),
        )
        run, _ = self._run({"properties": [[_property("p1")]]})

        stale.refresh_from_db()
        self.assertEqual(stale.status, SyncRun.Status.FAILED)
        self.assertTrue(stale.error_summary.startswith(STALE_RUN_MESSAGE))
        self.assertIsNotNone(stale.ended_at)
        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        escalated = [c.args[0].pk for c in self.escalation.handle_sync_completed.call_args_list]
        self.assertEqual(escalated, [stale.pk, run.pk])

    def test_fatal_remote_error_aborts_resource_only(self):
        resources = {
            "properties": [[_property("p1")]],
            "units": [RemoteApiError("Remote API error: 404 - not found", status_code=404)],
            "vendors": [[{"vendor_id": "v1", "company_name": "Acme Plumbing"}]],
        }
        run, client = self._run(resources)

        self.assertEqual(run.status, SyncRun.Status.FAILED)
        self.assertTrue(run.error_summary.startswith("units: Remote API error: 404"))
        self.assertTrue(Vendor.objects.filter(external_id="v1").exists())
        self.assertEqual(
            [call[0] for call in client.calls],
            ["properties", "units", "vendors", "leases", "work_orders", "expenses"],
        )
        self.connection.refresh_from_db()
        self.assertEqual(self.connection.status, ConnectionStatus.ERROR)

    def test_fatal_error_after_first_page_keeps_progress(self):
        resources = {
            "properties": [[_property("p1")], RemoteApiError("Remote API error: 500 from properties after 2 attempts", 500)],
        }
        run, _ = self._run(resources)
        self.assertEqual(run.status, SyncRun.Status.FAILED)
        self.assertEqual(run.resource_metrics["properties"]["created"], 1)
        self.assertTrue(Property.objects.filter(external_id="p1").exists())

    def test_successful_run_marks_connection_connected(self):
        run, _ = self._run({"properties": [[_property("p1")]]})
        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(run.resources_synced, 1)
        self.assertEqual(run.error_summary, "")
        self.connection.refresh_from_db()
        self.assertEqual(self.connection.status, ConnectionStatus.CONNECTED)

    def test_escalation_called_once_per_run(self):
        run, _ = self._run({"properties": [[_property("p1")]]})
        self.escalation.handle_sync_completed.assert_called_once()
        self.assertEqual(self.escalation.handle_sync_completed.call_args.args[0].pk, run.pk)

    def test_escalation_failure_does_not_break_completion(self):
        self.escalation.handle_sync_completed.side_effect = RuntimeError("smtp down")
        run, _ = self._run({"properties": [[_property("p1")]]})
        self.assertEqual(run.status, SyncRun.Status.COMPLETED)

    def test_unexpected_error_fails_run(self):
        run, _ = self._run({"properties": [ValueError("decoder exploded")]})
        self.assertEqual(run.status, SyncRun.Status.FAILED)
        self.assertIn("Unexpected error: decoder exploded", run.error_summary)
        self.escalation.handle_sync_completed.assert_called_once()

    def test_configured_resources_only(self):
        _, client = self._run({}, config=_config(resources=["units", "properties"]))
        self.assertEqual([call[0] for call in client.calls], ["properties", "units"])

    def test_work_order_references(self):
        resources = {
            "properties": [[_property("p1")]],
            "units": [[_unit("u1", "p1")]],
            "work_orders": [[
                {"work_order_id": "w1", "property_id": "p1", "unit_id": "u1", "vendor_id": "ghost",
                 "vendor_name": "Ghost Co", "status": "Completed", "priority": "Urgent", "amount": "$200"},
                {"work_order_id": "w2", "property_id": "p1", "unit_id": "missing"},
            ]],
        }
        run, _ = self._run(resources)
        work_order = WorkOrder.objects.get(external_id="w1")
        self.assertIsNone(work_order.vendor)
        self.assertEqual(work_order.unit.external_id, "u1")
        self.assertEqual(work_order.status, "completed")
        self.assertEqual(work_order.priority, "high")
        self.assertEqual(work_order.amount, Decimal("200.00"))
        self.assertEqual(run.resource_metrics["work_orders"]["skipped"], 1)

    def test_process_resource_twice_is_refused(self):
        sync_run = SyncRun.objects.create(connection=self.connection)
        orchestrator = IngestionOrchestrator(FakeClient(), _config(), escalation_service=self.escalation)
        orchestrator.start_sync(sync_run)
        orchestrator.process_resource("properties")
        with self.assertRaises(SyncStateError):
            orchestrator.process_resource("properties")

    def test_processing_requires_started_run(self):
        orchestrator = IngestionOrchestrator(FakeClient(), _config(), escalation_service=self.escalation)
        with self.assertRaises(SyncStateError):
            orchestrator.process_resource("properties")

    def test_concurrent_run_is_refused(self):
        SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.RUNNING, started_at=timezone.now())
        pending = SyncRun.objects.create(connection=self.connection)
        orchestrator = IngestionOrchestrator(FakeClient(), _config(), escalation_service=self.escalation)
        with self.assertRaises(SyncAlreadyRunning):
            orchestrator.start_sync(pending)
        pending.refresh_from_db()
        self.assertEqual(pending.status, SyncRun.Status.PENDING)

    def test_start_requires_pending_run(self):
        done = SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.COMPLETED)
        orchestrator = IngestionOrchestrator(FakeClient(), _config(), escalation_service=self.escalation)
        with self.assertRaises(SyncStateError):
            orchestrator.start_sync(done)

    def test_incremental_window_starts_at_last_completed_run(self):
        last_start = timezone.now() - timedelta(hours=3)
        SyncRun.objects.create(
            connection=self.connection, status=SyncRun.Status.COMPLETED,
            started_at=last_start, ended_at=last_start + timedelta(minutes=2),
        )
        _, client = self._run({}, mode=SyncRun.Mode.INCREMENTAL)
        self.assertEqual(client.calls[0][1], last_start)

    def test_incremental_window_defaults_to_lookback(self):
        _, client = self._run({}, mode=SyncRun.Mode.INCREMENTAL)
        expected = timezone.now() - timedelta(days=7)
        self.assertLess(abs((client.calls[0][1] - expected).total_seconds()), 60)

    def test_full_run_has_no_window(self):
        _, client = self._run({}, mode=SyncRun.Mode.FULL)
        self.assertIsNone(client.calls[0][1])

    def test_get_summary_totals(self):
        run, _ = self._run({"properties": [[_property("p1"), _property("p2")]], "units": [[_unit("u1", "nope")]]})
        summary = run.get_summary()
        self.assertEqual(summary["totals"], {"created": 2, "updated": 0, "skipped": 1, "errors": 0})
        self.assertEqual(summary["status"], SyncRun.Status.COMPLETED)


class EscalationIntegrationTests(TestCase):
    def test_three_failed_runs_send_one_alert(self):
        connection = _make_connection()
        config = _config()
        escalation = FailureEscalationService(
            AlertConfig(failure_threshold=3, cooldown_minutes=60, recipients=("ops@example.com",))
        )
        for _ in range(3):
            run = SyncRun.objects.create(connection=connection)
            client = FakeClient({"properties": [RemoteApiError("Remote API error: 401 - unauthorized", 401)]})
            IngestionOrchestrator(client, config, escalation_service=escalation).execute(run)

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("3 Consecutive Sync Failures", mail.outbox[0].subject)
        self.assertEqual(SyncFailureAlert.objects.get(connection=connection).consecutive_failures, 3)


class UnitStatusFromLeasesTests(TestCase):
    def setUp(self):
        prop = Property.objects.create(external_id="p1", name="Property p1")
        self.unit = Unit.objects.create(external_id="u1", property=prop, unit_number="U1", status=UnitStatus.VACANT)
        Lease.objects.create(
            external_id="l1", unit=self.unit, start_date=date(2026, 1, 1), end_date=date(2026, 6, 30)
        )

    def _status_on(self, today):
        update_unit_status_from_leases(today)
        self.unit.refresh_from_db()
        return self.unit.status

    def test_lease_dates_are_inclusive(self):
        self.assertEqual(self._status_on(date(2025, 12, 31)), UnitStatus.VACANT)
        self.assertEqual(self._status_on(date(2026, 1, 1)), UnitStatus.OCCUPIED)
        self.assertEqual(self._status_on(date(2026, 6, 30)), UnitStatus.OCCUPIED)
        self.assertEqual(self._status_on(date(2026, 7, 1)), UnitStatus.VACANT)

    def test_returns_number_of_changed_units(self):
        self.assertEqual(update_unit_status_from_leases(date(2026, 3, 1)), 1)
        self.assertEqual(update_unit_status_from_leases(date(2026, 3, 1)), 0)

    def test_not_ready_unit_is_left_alone(self):
        Unit.objects.filter(pk=self.unit.pk).update(status=UnitStatus.NOT_READY)
        self.assertEqual(self._status_on(date(2026, 3, 1)), UnitStatus.NOT_READY)


class RawEventReplayTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()
        run = SyncRun.objects.create(connection=self.connection)
        orchestrator = IngestionOrchestrator(
            FakeClient({"units": [[_unit("u1", "p1"), _unit("u2", "p1")]]}),
            _config(resources=["units"]),
            escalation_service=mock.Mock(),
        )
        orchestrator.execute(run)

    def test_replay_applies_events_once_reference_exists(self):
        Property.objects.create(external_id="p1", name="Late Property")
        result = RawEventReplayer().replay_batch(limit=10)

        self.assertEqual(result["processed"], 2)
        self.assertFalse(result["has_more"])
        self.assertEqual(Unit.objects.count(), 2)
        self.assertFalse(RawEvent.objects.unprocessed().exists())

    def test_batches_are_bounded(self):
        first = RawEventReplayer().replay_batch(limit=1)
        self.assertTrue(first["has_more"])
        self.assertEqual(first["skipped"], 1)

        second = RawEventReplayer().replay_batch(limit=1, after_id=first["last_id"])
        self.assertFalse(second["has_more"])
        self.assertGreater(second["last_id"], first["last_id"])

    @mock.patch("ingestion.tasks.replay_raw_events.delay")
    def test_task_reenqueues_while_more_remain(self, delay):
        result = replay_raw_events(limit=1)
        delay.assert_called_once_with(limit=1, after_id=result["last_id"], resource_type=None)

    @mock.patch("ingestion.tasks.replay_raw_events.delay")
    def test_task_stops_when_done(self, delay):
        replay_raw_events(limit=10)
        delay.assert_not_called()


@override_settings(REMOTE_SYNC={})
class SyncTaskTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()
        self.remote = FakeClient({"properties": [[_property("p1")]]})
        patcher = mock.patch("ingestion.tasks.RemoteApiClient", return_value=self.remote)
        patcher.start()
        self.addCleanup(patcher.stop)

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_scheduled_sync_on_boundary(self, delay):
        ten_am_pacific = datetime(2026, 1, 6, 18, 0, tzinfo=dt_timezone.utc)
        with mock.patch("ingestion.tasks.timezone.now", return_value=ten_am_pacific):
            result = run_scheduled_sync()
        self.assertEqual(len(result["queued"]), 1)
        run = SyncRun.objects.get(pk=result["queued"][0])
        self.assertEqual(run.mode, SyncRun.Mode.INCREMENTAL)
        self.assertEqual(run.trigger, SyncRun.Trigger.SCHEDULED)
        delay.assert_called_once_with(run.pk)

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_scheduled_sync_skips_connection_with_open_run(self, delay):
        ten_am_pacific = datetime(2026, 1, 6, 18, 0, tzinfo=dt_timezone.utc)
        with mock.patch("ingestion.tasks.timezone.now", return_value=ten_am_pacific):
            pending = SyncRun.objects.create(connection=self.connection)
            result = run_scheduled_sync()
        self.assertEqual(result["queued"], [])
        delay.assert_not_called()
        self.assertEqual(list(SyncRun.objects.values_list("pk", flat=True)), [pending.pk])

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_scheduled_sync_ignores_lost_pending_run(self, delay):
        ten_am_pacific = datetime(2026, 1, 6, 18, 0, tzinfo=dt_timezone.utc)
        with mock.patch("ingestion.tasks.timezone.now", return_value=ten_am_pacific):
            lost = SyncRun.objects.create(connection=self.connection)
            SyncRun.objects.filter(pk=lost.pk).update(created_at=ten_am_pacific - timedelta(hours=3))
            result = run_scheduled_sync()
        self.assertEqual(len(result["queued"]), 1)
        delay.assert_called_once_with(result["queued"][0])

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_scheduled_sync_off_boundary(self, delay):
        off_boundary = datetime(2026, 1, 6, 18, 7, tzinfo=dt_timezone.utc)
        with mock.patch("ingestion.tasks.timezone.now", return_value=off_boundary):
            result = run_scheduled_sync()
        self.assertIn("skipped", result)
        delay.assert_not_called()
        self.assertFalse(SyncRun.objects.exists())

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_scheduled_full_sync_at_night(self, delay):
        two_am_pacific = datetime(2026, 1, 6, 10, 0, tzinfo=dt_timezone.utc)
        with mock.patch("ingestion.tasks.timezone.now", return_value=two_am_pacific):
            result = run_scheduled_sync()
        self.assertEqual(result["mode"], SyncRun.Mode.FULL)

    def test_run_sync_completes_and_releases_lock(self):
        run = SyncRun.objects.create(connection=self.connection)
        result = run_sync(run.pk)
        run.refresh_from_db()
        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        self.assertEqual(result["totals"]["created"], 1)
        self.assertTrue(acquire_sync_lock(self.connection.pk))
        release_sync_lock(self.connection.pk)

    def test_run_sync_recovers_from_stale_run(self):
        stale = SyncRun.objects.create(
            connection=self.connection, status=SyncRun.Status.RUNNING,
            started_at=timezone.now() - timedelta(hours=3),
        )
        run = SyncRun.objects.create(connection=self.connection)

        run_sync(run.pk)

        stale.refresh_from_db()
        run.refresh_from_db()
        self.assertEqual(stale.status, SyncRun.Status.FAILED)
        self.assertTrue(stale.error_summary.startswith(STALE_RUN_MESSAGE))
        self.assertEqual(run.status, SyncRun.Status.COMPLETED)
        alert = SyncFailureAlert.objects.get(connection=self.connection)
        self.assertEqual(alert.consecutive_failures, 0)

    def test_run_sync_refused_while_locked(self):
        run = SyncRun.objects.create(connection=self.connection)
        acquire_sync_lock(self.connection.pk)
        self.addCleanup(release_sync_lock, self.connection.pk)

        result = run_sync(run.pk)

        self.assertIn("skipped", result)
        run.refresh_from_db()
        self.assertEqual(run.status, SyncRun.Status.FAILED)
        self.assertEqual(run.error_summary, REFUSED_MESSAGE)
        self.assertFalse(SyncFailureAlert.objects.exists())

    def test_run_sync_unconfigured_connection_fails(self):
        self.remote.configured = False
        run = SyncRun.objects.create(connection=self.connection)
        result = run_sync(run.pk)
        run.refresh_from_db()
        self.assertEqual(result["error"], "Connection is not configured")
        self.assertEqual(run.status, SyncRun.Status.FAILED)
        self.assertEqual(SyncFailureAlert.objects.get(connection=self.connection).consecutive_failures, 1)

    def test_run_sync_missing_run(self):
        self.assertEqual(run_sync(999999), {"error": "Sync run not found"})

    def test_prune_removes_old_terminal_runs_with_raw_events(self):
        old = SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.COMPLETED)
        RawEvent.objects.create(sync_run=old, resource_type="properties", external_id="p1", payload={})
        stuck = SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.PENDING)
        recent = SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.FAILED)
        SyncRun.objects.filter(pk__in=[old.pk, stuck.pk]).update(created_at=timezone.now() - timedelta(days=120))

        result = prune_sync_runs(days=90)

        self.assertEqual(result["deleted"], 1)
        self.assertFalse(RawEvent.objects.exists())
        self.assertEqual(set(SyncRun.objects.values_list("pk", flat=True)), {stuck.pk, recent.pk})

    def test_sync_remote_command(self):
        out = StringIO()
        call_command("sync_remote", "--mode", "full", stdout=out)
        self.assertIn("Completed: 1 created", out.getvalue())
        self.assertEqual(SyncRun.objects.get().trigger, SyncRun.Trigger.COMMAND)

    def test_show_sync_schedule_command(self):
        out = StringIO()
        call_command("show_sync_schedule", stdout=out)
        self.assertIn("timezone: America/Los_Angeles", out.getvalue())


@override_settings(REMOTE_SYNC={})
class SyncApiTests(TestCase):
    def setUp(self):
        self.connection = _make_connection()
        self.user = get_user_model().objects.create_user(username="ops", password="pw", email="ops@example.com")
        self.api = APIClient()
        self.api.force_authenticate(self.user)

    def test_health_requires_authentication(self):
        response = APIClient().get("/api/sync/health/")
        self.assertIn(response.status_code, (401, 403))

    def test_health(self):
        run = SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.COMPLETED)
        response = self.api.get("/api/sync/health/")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertIn("next_sync", body["schedule"])
        self.assertEqual(body["connections"][0]["last_run"]["id"], run.pk)
        self.assertEqual(body["connections"][0]["alert"]["consecutive_failures"], 0)

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_trigger_queues_run(self, delay):
        response = self.api.post("/api/sync/trigger/", {"mode": "full"}, format="json")
        self.assertEqual(response.status_code, 202)
        run = SyncRun.objects.get(pk=response.json()["id"])
        self.assertEqual(run.mode, SyncRun.Mode.FULL)
        self.assertEqual(run.trigger, SyncRun.Trigger.API)
        delay.assert_called_once_with(run.pk)

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_trigger_conflict_while_running(self, delay):
        SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.RUNNING, started_at=timezone.now())
        response = self.api.post("/api/sync/trigger/", {}, format="json")
        self.assertEqual(response.status_code, 409)
        delay.assert_not_called()

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_trigger_conflict_while_pending(self, delay):
        SyncRun.objects.create(connection=self.connection)
        response = self.api.post("/api/sync/trigger/", {}, format="json")
        self.assertEqual(response.status_code, 409)
        delay.assert_not_called()

    @mock.patch("ingestion.tasks.run_sync.delay")
    def test_trigger_allowed_past_stale_run(self, delay):
        SyncRun.objects.create(
            connection=self.connection, status=SyncRun.Status.RUNNING,
            started_at=timezone.now() - timedelta(hours=3),
        )
        response = self.api.post("/api/sync/trigger/", {}, format="json")
        self.assertEqual(response.status_code, 202)
        delay.assert_called_once_with(response.json()["id"])

    def test_trigger_rejects_bad_mode(self):
        response = self.api.post("/api/sync/trigger/", {"mode": "sideways"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_history(self):
        SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.FAILED)
        SyncRun.objects.create(connection=self.connection, status=SyncRun.Status.COMPLETED)
        response = self.api.get("/api/sync/runs/", {"status": "failed"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 1)
        self.assertEqual(response.json()[0]["status"], "failed")
