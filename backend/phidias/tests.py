from __future__ import annotations

import itertools
import json
import os
from datetime import date, datetime, timedelta, timezone as dt_timezone
from types import SimpleNamespace
from unittest import mock

import redis
import requests
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from academic.levels import ELEMENTARY, HIGH_SCHOOL
from academic.models import SchoolYear, Trimester
from discipline.models import Infraction
from students.models import Student

from .client import ExternalRecord, PhidiasClient, PollResponse, StudentRef
from .locks import SyncAlreadyRunning, _redis_lock, sync_lock, sync_lock_key
from .mapping import DIAGNOSIS_OBSERVATION, extract_fields, infraction_hash, map_to_infraction
from .models import SeguimientoConfig, SyncRun
from .progress import SyncPhase
from .reconciliation import reconcile
from .sync import PhidiasSyncService


def epoch(*args) -> int:
    return int(datetime(*args, tzinfo=dt_timezone.utc).timestamp())


def record_payload(
    record_id,
    *,
    occurred=None,
    last_edit=None,
    description="3. Uso del celular en clase",
    detail="Usó el celular durante la evaluación",
    diagnosis="No",
):
    return {
        "id": record_id,
        "person": 4021,
        "authorFirstname": "Marta",
        "authorLastname": "Díaz",
        "timestamp": epoch(2025, 9, 10, 13, 0),
        "last_edit": last_edit if last_edit is not None else epoch(2025, 9, 10, 13, 0),
        "items": [
            {"itemName": "Fecha ", "itemvalue": occurred if occurred is not None else epoch(2025, 9, 10, 12, 0)},
            {"itemName": "Falta según Manual de Convivencia", "itemvalue": description},
            {"itemName": "Descripción de la falta", "itemvalue": detail},
            {"itemName": "Acciones Reparadoras", "itemvalue": "Diálogo con el estudiante"},
            {"itemName": "Estudiante con diagnóstico?", "itemvalue": diagnosis},
        ],
    }


def poll_payload(*records):
    return {"id": 651, "name": "Seguimiento Tipo I", "year": {"name": "2025-2026"}, "records": list(records)}


def http_response(status_code=200, payload=None, headers=None, reason="OK"):
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason
    response._content = json.dumps(payload if payload is not None else {}).encode("utf-8")
    response.headers.update(headers or {})
    return response


class FakeSession:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": headers, "timeout": timeout})
        return self.handler(params)


def make_client(handler, **kwargs) -> PhidiasClient:
    sleeps = kwargs.pop("sleeps", [])
    options = {
        "base_url": "https://phidias.test/",
        "api_token": "secret-token",
        "session": FakeSession(handler),
        "sleep": sleeps.append,
        "clock": itertools.count(0, 100).__next__,
    }
    options.update(kwargs)
    return PhidiasClient(**options)


class PhidiasClientTest(SimpleTestCase):
    def test_fetch_builds_request(self):
        client = make_client(lambda params: http_response(payload=poll_payload(record_payload(1))))

        result = client.fetch("4021", 651)

        self.assertTrue(result.success)
        self.assertEqual(result.data.year_name, "2025-2026")
        self.assertEqual(len(result.data.records), 1)
        call = client.session.calls[0]
        self.assertEqual(call["url"], "https://phidias.test/rest/1/polls")
        self.assertEqual(call["params"], {"poll": 651, "person": "4021"})
        self.assertEqual(call["headers"]["Authorization"], "Bearer secret-token")
        self.assertEqual(call["timeout"], 30)

    def test_rate_limit_retries_with_exponential_backoff(self):
        responses = iter([http_response(429), http_response(429), http_response(payload=poll_payload())])
        sleeps = []
        client = make_client(lambda params: next(responses), sleeps=sleeps)

        result = client.fetch("1", 651)

        self.assertTrue(result.success)
        self.assertEqual(sleeps, [1.0, 2.0])
        self.assertEqual(len(client.session.calls), 3)

    def test_rate_limit_exhausted_slows_down(self):
        sleeps = []
        client = make_client(
            lambda params: http_response(429, headers={"Retry-After": "30"}), sleeps=sleeps, max_retries=2
        )

        result = client.fetch("1", 651)

        self.assertFalse(result.success)
        self.assertTrue(result.rate_limited)
        self.assertEqual(result.retry_after, 30)
        self.assertEqual(len(client.session.calls), 3)
        self.assertEqual(client.current_interval, 2.0)

    def test_success_recovers_interval(self):
        responses = iter([http_response(429), http_response(payload=poll_payload())])
        client = make_client(lambda params: next(responses), max_retries=0)

        self.assertFalse(client.fetch("1", 651).success)
        self.assertEqual(client.current_interval, 2.0)
        self.assertTrue(client.fetch("1", 651).success)
        self.assertAlmostEqual(client.current_interval, 1.8)

    def test_http_error_is_not_retried(self):
        client = make_client(lambda params: http_response(500, reason="Internal Server Error"))

        result = client.fetch("1", 651)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "HTTP 500: Internal Server Error")
        self.assertEqual(len(client.session.calls), 1)

    def test_network_error_is_retried(self):
        outcomes = iter([requests.ConnectionError("reset"), http_response(payload=poll_payload())])

        def handler(params):
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        sleeps = []
        client = make_client(handler, sleeps=sleeps)
        self.assertTrue(client.fetch("1", 651).success)
        self.assertEqual(sleeps, [1.0])

    def test_requests_are_spaced_by_min_interval(self):
        sleeps = []
        client = make_client(
            lambda params: http_response(payload=poll_payload()), sleeps=sleeps, clock=lambda: 10.0
        )
        client.fetch("1", 651)
        client.fetch("2", 651)
        self.assertEqual(sleeps, [1.0])

    def test_invalid_json(self):
        def handler(params):
            response = http_response()
            response._content = b"<html>"
            return response

        result = make_client(handler).fetch("1", 651)
        self.assertFalse(result.success)
        self.assertIn("JSON", result.error)

    def test_process_batch_isolates_failures(self):
        def handler(params):
            if params["person"] == "bad":
                raise ValueError("respuesta corrupta")
            return http_response(payload=poll_payload(record_payload(int(params["person"]))))

        students = [StudentRef(id=index, external_id=str(index)) for index in range(1, 7)]
        students.insert(3, StudentRef(id=99, external_id="bad"))
        progress = []
        client = make_client(handler, batch_size=3)

        results = client.process_batch(students, [651], on_progress=lambda done, total: progress.append((done, total)))

        self.assertEqual(len(results), 7)
        failed = [item for item in results if not item.result.success]
        self.assertEqual([item.student_id for item in failed], [99])
        self.assertEqual(failed[0].result.error, "respuesta corrupta")
        self.assertEqual(progress, [(3, 7), (6, 7), (7, 7)])

    def test_process_batch_ignores_progress_errors(self):
        client = make_client(lambda params: http_response(payload=poll_payload()), batch_size=2)

        def explode(done, total):
            raise RuntimeError("observador caído")

        with self.assertLogs("phidias.client", level="ERROR"):
            results = client.process_batch([StudentRef(1, "1"), StudentRef(2, "2"), StudentRef(3, "3")], [651], explode)
        self.assertEqual(len(results), 3)

    def test_missing_configuration(self):
        client = make_client(lambda params: http_response(), api_token="  ")
        result = client.test_connection()
        self.assertFalse(result.success)
        self.assertIn("PHIDIAS_API_TOKEN", result.error)
        self.assertEqual(client.session.calls, [])


class MappingTest(SimpleTestCase):
    def setUp(self):
        self.student = SimpleNamespace(id=7, code="4021", grade="Décimo A")

    def map(self, payload, resolver=lambda when, year_id: None):
        record = ExternalRecord.from_payload(payload)
        return map_to_infraction(
            record,
            self.student,
            school_year_id=1,
            infraction_type="Tipo I",
            academic_level=HIGH_SCHOOL,
            trimester_resolver=resolver,
        )

    def test_hash_is_stable(self):
        self.assertEqual(infraction_hash(123), "phidias_123")
        self.assertEqual(self.map(record_payload(123)).hash, self.map(record_payload(123)).hash)

    def test_fields(self):
        data = self.map(record_payload(55), resolver=lambda when, year_id: SimpleNamespace(id=3, name="Trimestre 1"))

        self.assertEqual(data.external_id, 55)
        self.assertEqual(data.student_id, 7)
        self.assertEqual(data.student_code, "4021")
        self.assertEqual(data.number, 3)
        self.assertEqual(data.description, "3. Uso del celular en clase")
        self.assertEqual(data.detail, "Usó el celular durante la evaluación")
        self.assertEqual(data.remedial_actions, "Diálogo con el estudiante")
        self.assertEqual(data.author, "Marta Díaz")
        self.assertEqual(data.occurred_at, datetime(2025, 9, 10, 12, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(data.external_edited_at, datetime(2025, 9, 10, 13, 0, tzinfo=dt_timezone.utc))
        self.assertEqual((data.trimester_id, data.trimester_name), (3, "Trimestre 1"))
        self.assertEqual(data.level, HIGH_SCHOOL)
        self.assertEqual(data.section, "Décimo A")
        self.assertFalse(data.has_diagnosis)
        self.assertEqual(data.observations, "")

    def test_diagnosis_fills_observations(self):
        data = self.map(record_payload(56, diagnosis="Sí"))
        self.assertTrue(data.has_diagnosis)
        self.assertEqual(data.observations, DIAGNOSIS_OBSERVATION)
        self.assertEqual(data.observations_author, "Marta Díaz")
        self.assertEqual(data.observations_at, data.occurred_at)

    def test_missing_items_leave_fields_empty(self):
        payload = record_payload(57)
        payload["items"] = [{"itemName": "Falta según Manual de Convivencia", "itemvalue": "Llegar tarde"}]

        data = self.map(payload)

        self.assertIsNone(data.number)
        self.assertEqual(data.detail, "")
        self.assertEqual(data.remedial_actions, "")
        self.assertIsNone(data.trimester_id)
        self.assertIsNotNone(data.occurred_at)

    def test_date_item_must_be_numeric(self):
        fields = extract_fields(
            PollResponse.from_payload(
                poll_payload(
                    {"id": 1, "items": [{"itemName": "Fecha", "itemvalue": "ayer"}, {"itemName": "Fecha real", "itemvalue": 0}]}
                )
            ).records[0].items
        )
        self.assertEqual(fields["occurred_at"], datetime(1970, 1, 1, tzinfo=dt_timezone.utc))


class PhidiasFixtureMixin:
    def create_year(self):
        self.year = SchoolYear.objects.create(
            name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=True
        )
        self.trimester = Trimester.objects.create(
            school_year=self.year, name="Trimestre 1", order=1,
            start_date=date(2025, 8, 1), end_date=date(2025, 11, 15),
        )
        Trimester.objects.create(
            school_year=self.year, name="Trimestre 2", order=2,
            start_date=date(2025, 12, 1), end_date=date(2026, 3, 15),
        )

    def create_config(self, level=HIGH_SCHOOL, infraction_type="Tipo I", poll_id=651):
        return SeguimientoConfig.objects.create(
            poll_id=poll_id,
            name=f"Faltas {infraction_type} {level}",
            infraction_type=infraction_type,
            academic_level=level,
            school_year=self.year,
        )

    def create_students(self, count, grade="Décimo A"):
        return [
            Student.objects.create(school_year=self.year, code=f"s{index}", first_name=f"Estudiante {index}", grade=grade)
            for index in range(1, count + 1)
        ]


class ReconcileTest(PhidiasFixtureMixin, TestCase):
    def setUp(self):
        self.create_year()
        self.student = self.create_students(1)[0]

    def map(self, payload):
        return map_to_infraction(
            ExternalRecord.from_payload(payload),
            self.student,
            school_year_id=self.year.id,
            infraction_type="Tipo I",
            academic_level=HIGH_SCHOOL,
        )

    def test_create_then_noop(self):
        first = reconcile(self.map(record_payload(10)))
        second = reconcile(self.map(record_payload(10)))

        self.assertTrue(first.created)
        self.assertFalse(second.created or second.updated)
        infraction = Infraction.objects.get(hash="phidias_10")
        self.assertEqual(infraction.source, Infraction.Source.PHIDIAS)
        self.assertEqual(infraction.trimester_id, self.trimester.id)
        self.assertEqual(Infraction.objects.count(), 1)

    def test_newer_edit_updates_and_keeps_attended(self):
        reconcile(self.map(record_payload(11)))
        Infraction.objects.get(hash="phidias_11").mark_attended()

        outcome = reconcile(
            self.map(record_payload(11, last_edit=epoch(2025, 9, 12, 8, 0), description="8. Agresión verbal"))
        )

        self.assertTrue(outcome.updated)
        infraction = Infraction.objects.get(hash="phidias_11")
        self.assertEqual(infraction.number, 8)
        self.assertTrue(infraction.attended)

    def test_older_edit_is_ignored(self):
        reconcile(self.map(record_payload(12, last_edit=epoch(2025, 9, 12, 8, 0))))
        outcome = reconcile(self.map(record_payload(12, last_edit=epoch(2025, 9, 11, 8, 0), description="9. Otro")))
        self.assertFalse(outcome.updated)
        self.assertEqual(Infraction.objects.get(hash="phidias_12").number, 3)

    def test_gap_date_leaves_trimester_empty(self):
        reconcile(self.map(record_payload(13, occurred=epoch(2025, 11, 20, 15, 0))))
        infraction = Infraction.objects.get(hash="phidias_13")
        self.assertIsNone(infraction.trimester_id)
        self.assertEqual(infraction.trimester_name, "")


class PhidiasSyncServiceTest(PhidiasFixtureMixin, TestCase):
    def setUp(self):
        self.create_year()

    def service(self, handler, **kwargs):
        return PhidiasSyncService(make_client(handler, max_retries=0, **kwargs))

    @staticmethod
    def one_record_per_student(params):
        record_id = int(str(params["person"]).lstrip("s")) + 1000
        return http_response(payload=poll_payload(record_payload(record_id)))

    def test_zero_configs_is_fatal(self):
        self.create_students(3)

        result = self.service(self.one_record_per_student).run(triggered_by="cron")

        self.assertFalse(result.success)
        self.assertEqual(result.status, SyncRun.Status.ERROR)
        run = SyncRun.objects.get(id=result.run_id)
        self.assertEqual(run.students_processed, 0)
        self.assertEqual(run.errors[0]["student_id"], 0)
        self.assertIn("configuraciones", run.errors[0]["error"])
        self.assertIsNotNone(run.completed_at)

    def test_no_active_school_year_is_fatal(self):
        SchoolYear.objects.update(is_active=False)
        result = self.service(self.one_record_per_student).run()
        self.assertEqual(result.status, SyncRun.Status.ERROR)
        self.assertIsNone(SyncRun.objects.get(id=result.run_id).school_year_id)

    def test_missing_token_is_fatal(self):
        self.create_config()
        result = self.service(self.one_record_per_student, api_token="").run()
        self.assertEqual(result.status, SyncRun.Status.ERROR)
        self.assertIn("PHIDIAS_API_TOKEN", result.message)

    def test_full_run_success(self):
        self.create_config()
        self.create_students(6)
        Student.objects.create(
            school_year=self.year, code="s100", first_name="Primaria", grade="Tercero"
        )

        result = self.service(self.one_record_per_student).run(triggered_by="rector")

        self.assertEqual(result.status, SyncRun.Status.SUCCESS)
        self.assertEqual(result.students_processed, 6)
        self.assertEqual(result.records_created, 6)
        self.assertEqual(Infraction.objects.filter(level=HIGH_SCHOOL, infraction_type="Tipo I").count(), 6)
        run = SyncRun.objects.get(id=result.run_id)
        self.assertEqual(run.triggered_by, "rector")
        self.assertEqual(run.school_year_id, self.year.id)
        self.assertGreaterEqual(run.duration_seconds, 0)

    def test_rerun_is_idempotent(self):
        self.create_config()
        self.create_students(4)
        service = self.service(self.one_record_per_student)

        service.run()
        second = service.run()

        self.assertEqual(second.records_created, 0)
        self.assertEqual(second.records_updated, 0)
        self.assertEqual(Infraction.objects.count(), 4)
        self.assertEqual(SyncRun.objects.count(), 2)

    def test_partial_when_some_students_fail(self):
        self.create_config()
        self.create_students(50)

        def handler(params):
            if params["person"] in {"s7", "s23"}:
                return http_response(500, reason="Internal Server Error")
            return self.one_record_per_student(params)

        result = self.service(handler).run()

        self.assertEqual(result.status, SyncRun.Status.PARTIAL)
        self.assertTrue(result.success)
        self.assertEqual(result.students_processed, 48)
        self.assertEqual(len(result.errors), 2)
        self.assertEqual({error["poll_id"] for error in result.errors}, {651})
        self.assertEqual(Infraction.objects.count(), 48)

    def test_record_failure_is_isolated(self):
        self.create_config()
        self.create_students(3)

        def reconciler(data):
            if data.hash == "phidias_1002":
                raise ValueError("registro inválido")
            return reconcile(data)

        service = PhidiasSyncService(make_client(self.one_record_per_student), reconciler=reconciler)
        result = service.run()

        self.assertEqual(result.status, SyncRun.Status.PARTIAL)
        self.assertEqual(result.students_processed, 3)
        self.assertEqual(result.records_created, 2)
        self.assertIn("1002", result.errors[0]["error"])

    def test_level_filter_only_uses_matching_configs(self):
        self.create_config(level=HIGH_SCHOOL)
        self.create_config(level=ELEMENTARY, poll_id=652)
        self.create_students(2)
        Student.objects.create(school_year=self.year, code="s10", first_name="Primaria", grade="Cuarto")
        service = self.service(self.one_record_per_student)

        result = service.sync_level(ELEMENTARY)

        self.assertEqual(result.students_processed, 1)
        self.assertEqual({call["params"]["poll"] for call in service.client.session.calls}, {652})
        self.assertEqual(SyncRun.objects.get(id=result.run_id).options["level"], ELEMENTARY)

    def test_single_student(self):
        self.create_config()
        students = self.create_students(3)
        service = self.service(self.one_record_per_student)

        result = service.sync_student(students[1].id)

        self.assertEqual(result.students_processed, 1)
        self.assertEqual([call["params"]["person"] for call in service.client.session.calls], ["s2"])

        missing = service.sync_student(9999)
        self.assertEqual(missing.status, SyncRun.Status.ERROR)

    def test_progress_phases(self):
        self.create_config()
        self.create_students(7)
        events = []

        self.service(self.one_record_per_student, batch_size=5).run(on_progress=events.append)

        phases = [event.phase for event in events]
        self.assertEqual(phases[:3], [SyncPhase.LOADING_CONFIG, SyncPhase.LOADING_STUDENTS, SyncPhase.SYNCING])
        self.assertEqual(phases[-1], SyncPhase.COMPLETED)
        batch_events = [event for event in events if event.current_student is not None]
        self.assertEqual(len(batch_events), 2)
        self.assertEqual(batch_events[-1].current_level, HIGH_SCHOOL)

    def test_progress_sink_errors_are_swallowed(self):
        self.create_config()
        self.create_students(2)

        def broken_sink(event):
            raise RuntimeError("socket cerrado")

        with self.assertLogs("phidias.progress", level="ERROR"):
            result = self.service(self.one_record_per_student).run(on_progress=broken_sink)
        self.assertEqual(result.status, SyncRun.Status.SUCCESS)

    def test_concurrent_run_is_rejected(self):
        self.create_config()
        self.create_students(2)

        with mock.patch("phidias.sync.sync_lock", side_effect=SyncAlreadyRunning("Ya hay una sincronización en curso")):
            result = self.service(self.one_record_per_student).run()

        self.assertEqual(result.status, SyncRun.Status.ERROR)
        self.assertIn("en curso", result.message)
        self.assertEqual(Infraction.objects.count(), 0)

    def test_queued_run_measures_duration_from_start(self):
        self.create_config()
        self.create_students(1)
        run = SyncRun.objects.create(school_year=self.year, options={"level": None, "student_id": None})
        SyncRun.objects.filter(id=run.id).update(started_at=timezone.now() - timedelta(minutes=10))
        run.refresh_from_db()

        result = self.service(self.one_record_per_student).run(run=run)

        self.assertEqual(result.status, SyncRun.Status.SUCCESS)
        self.assertLess(result.duration_seconds, 60)

    def test_config_without_students_reports_completion(self):
        self.create_config(level=ELEMENTARY, poll_id=652)
        self.create_config()
        self.create_students(2)
        events = []

        result = self.service(self.one_record_per_student).run(on_progress=events.append)

        self.assertEqual(result.status, SyncRun.Status.SUCCESS)
        completed = [event for event in events if event.message.startswith("Completado:")]
        self.assertEqual([event.processed for event in completed], [1, 2])
        self.assertTrue(all(event.phase == SyncPhase.SYNCING for event in completed))
        self.assertEqual({event.current_level for event in completed}, {ELEMENTARY, HIGH_SCHOOL})


class SyncLockTest(SimpleTestCase):
    @override_settings(CONVIVENCIA_REDIS_URL="")
    def test_falls_back_to_broker_url(self):
        with mock.patch.dict(os.environ, {"CELERY_BROKER_URL": "redis://localhost:6379/0"}):
            lock = _redis_lock(sync_lock_key(1), 60)

        self.assertIsInstance(lock, redis.lock.Lock)
        self.assertEqual(lock.name, "convivencia:phidias-sync:1")

    @override_settings(CONVIVENCIA_REDIS_URL="")
    def test_redis_url_is_last_fallback(self):
        with mock.patch.dict(os.environ, {"REDIS_URL": "redis://cache:6379/1"}):
            os.environ.pop("CELERY_BROKER_URL", None)
            self.assertIsInstance(_redis_lock(sync_lock_key(2), 60), redis.lock.Lock)

            os.environ.pop("REDIS_URL")
            self.assertIsNone(_redis_lock(sync_lock_key(2), 60))

    def test_held_lock_raises(self):
        held = mock.Mock()
        held.acquire.return_value = False

        with mock.patch("phidias.locks._redis_lock", return_value=held):
            with self.assertRaises(SyncAlreadyRunning):
                with sync_lock(3):
                    pass

        held.acquire.assert_called_once_with(blocking=False)
        held.release.assert_not_called()


class SyncRunModelTest(TestCase):
    def test_finished_run_cannot_be_reopened(self):
        run = SyncRun.objects.create()
        run.mark_finished(status=SyncRun.Status.SUCCESS, students_processed=3)

        with self.assertRaises(ValueError):
            run.mark_finished(status=SyncRun.Status.PARTIAL)
        with self.assertRaises(ValueError):
            SyncRun.objects.create().mark_finished(status=SyncRun.Status.RUNNING)

    def test_mark_error_prepends_message(self):
        run = SyncRun.objects.create()
        run.mark_error("Sin año activo", errors=[{"student_id": 4, "poll_id": 651, "error": "HTTP 500"}])
        run.refresh_from_db()
        self.assertEqual(run.status, SyncRun.Status.ERROR)
        self.assertEqual([error["error"] for error in run.errors], ["Sin año activo", "HTTP 500"])
