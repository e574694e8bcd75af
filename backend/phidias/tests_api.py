from __future__ import annotations

from datetime import date, timedelta
from io import StringIO
from unittest import mock

import pytest
from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.test import override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from academic.levels import HIGH_SCHOOL
from academic.models import SchoolYear
from discipline.models import Infraction
from students.models import Student

from .locks import SyncAlreadyRunning
from .models import SeguimientoConfig, SyncRun
from .status import status_overview
from .tasks import run_phidias_sync
from .tests import http_response, make_client, poll_payload, record_payload


def _one_record(params):
    return http_response(payload=poll_payload(record_payload(int(str(params["person"]).lstrip("s")) + 500)))


def _setup_year(students=2):
    year = SchoolYear.objects.create(
        name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=True
    )
    SeguimientoConfig.objects.create(
        poll_id=651, name="Faltas Tipo I Media", infraction_type="Tipo I", academic_level=HIGH_SCHOOL, school_year=year
    )
    for index in range(1, students + 1):
        Student.objects.create(school_year=year, code=f"s{index}", first_name=f"Est {index}", grade="Once A")
    return year


def _api_client(username="rector", role=None):
    User = get_user_model()
    user = User.objects.create_user(username=username, password="p1", role=role or User.ROLE_ADMIN)
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@override_settings(
    CELERY_TASK_ALWAYS_EAGER=True,
    CELERY_TASK_EAGER_PROPAGATES=True,
)
def test_trigger_runs_sync_and_returns_run(db):
    _setup_year(students=3)
    client = _api_client()

    with mock.patch("phidias.tasks.PhidiasClient.from_settings", return_value=make_client(_one_record)):
        res = client.post("/api/phidias/sync-runs/trigger/", {"level": "high"}, format="json")

    assert res.status_code == 202, res.data
    run = SyncRun.objects.get(id=res.data["run_id"])
    assert run.status == SyncRun.Status.SUCCESS
    assert run.sync_type == SyncRun.SyncType.MANUAL
    assert run.triggered_by == "rector"
    assert run.options == {"level": HIGH_SCHOOL, "student_id": None}
    assert run.students_processed == 3
    assert run.progress["phase"] == "completed"
    assert Infraction.objects.count() == 3


def test_trigger_conflicts_with_running_sync(db):
    year = _setup_year()
    SyncRun.objects.create(school_year=year, status=SyncRun.Status.RUNNING)
    client = _api_client()

    with mock.patch("phidias.views.run_phidias_sync.delay") as delay:
        res = client.post("/api/phidias/sync-runs/trigger/", {}, format="json")

    assert res.status_code == 409
    delay.assert_not_called()


def test_stale_running_sync_does_not_block(db):
    year = _setup_year()
    stale = SyncRun.objects.create(school_year=year, status=SyncRun.Status.RUNNING)
    SyncRun.objects.filter(id=stale.id).update(started_at=timezone.now() - timedelta(hours=5))
    client = _api_client()

    with mock.patch("phidias.views.run_phidias_sync.delay") as delay:
        res = client.post("/api/phidias/sync-runs/trigger/", {}, format="json")

    assert res.status_code == 202
    delay.assert_called_once_with(run_id=res.data["run_id"])


def test_trigger_permissions(db):
    _setup_year()
    User = get_user_model()

    teacher = _api_client("docente", User.ROLE_TEACHER)
    assert teacher.post("/api/phidias/sync-runs/trigger/", {}, format="json").status_code == 403

    coordinator = _api_client("coord_primaria", User.ROLE_ELEMENTARY_COORDINATOR)
    res = coordinator.post("/api/phidias/sync-runs/trigger/", {"level": "high"}, format="json")
    assert res.status_code == 403

    with mock.patch("phidias.views.run_phidias_sync.delay"):
        res = coordinator.post("/api/phidias/sync-runs/trigger/", {}, format="json")
    assert res.status_code == 202
    assert res.data["run"]["options"]["level"] == "Elementary"


def test_trigger_validation(db):
    client = _api_client()
    assert client.post("/api/phidias/sync-runs/trigger/", {}, format="json").status_code == 400

    _setup_year()
    res = client.post("/api/phidias/sync-runs/trigger/", {"level": "kinder"}, format="json")
    assert res.status_code == 400
    assert "level" in res.data


def test_trigger_dispatch_failure_finalizes_run(db):
    _setup_year()
    client = _api_client()

    with mock.patch("phidias.views.run_phidias_sync.delay", side_effect=ConnectionError("broker caído")):
        res = client.post("/api/phidias/sync-runs/trigger/", {}, format="json")

    assert res.status_code == 503
    run = SyncRun.objects.get()
    assert run.status == SyncRun.Status.ERROR


def test_history_and_last(db):
    client = _api_client()
    assert client.get("/api/phidias/sync-runs/last/").status_code == 404

    runs = [SyncRun.objects.create(triggered_by=f"u{index}") for index in range(3)]
    for offset, run in enumerate(runs):
        SyncRun.objects.filter(id=run.id).update(started_at=timezone.now() - timedelta(minutes=10 - offset))

    res = client.get("/api/phidias/sync-runs/history/?limit=2")
    assert res.status_code == 200
    assert [row["id"] for row in res.data] == [runs[2].id, runs[1].id]

    res = client.get("/api/phidias/sync-runs/last/")
    assert res.data["id"] == runs[2].id

    res = client.get(f"/api/phidias/sync-runs/{runs[0].id}/")
    assert res.data["triggered_by"] == "u0"


def test_status_overview_flags_stale_sections(db):
    year = _setup_year(students=4)
    now = timezone.now()

    overview = status_overview(now=now)
    assert overview["needs_sync"] is True
    section = overview["sections"][0]
    assert section["students"] == 4
    assert section["last_synced_at"] is None

    run = SyncRun.objects.create(school_year=year, options={"level": None, "student_id": None})
    run.mark_finished(status=SyncRun.Status.SUCCESS)
    overview = status_overview(now=now + timedelta(hours=1))
    assert overview["needs_sync"] is False
    assert overview["last_successful_run"]["id"] == run.id

    overview = status_overview(now=now + timedelta(hours=30))
    assert overview["sections"][0]["needs_sync"] is True


def test_status_endpoint(db):
    client = _api_client()
    assert client.get("/api/phidias/sync-runs/status/").status_code == 400

    _setup_year()
    res = client.get("/api/phidias/sync-runs/status/")
    assert res.status_code == 200
    assert res.data["school_year"]["name"] == "2025-2026"
    assert len(res.data["sections"]) == 1


def test_config_crud_is_admin_only(db):
    year = _setup_year()
    User = get_user_model()
    payload = {
        "poll_id": 700,
        "name": "Faltas Tipo II Media",
        "infraction_type": "Tipo II",
        "academic_level": HIGH_SCHOOL,
        "school_year": year.id,
    }

    coordinator = _api_client("coord_media", User.ROLE_HIGH_SCHOOL_COORDINATOR)
    assert coordinator.get("/api/phidias/configs/").status_code == 200
    assert coordinator.post("/api/phidias/configs/", payload, format="json").status_code == 403

    admin = _api_client()
    res = admin.post("/api/phidias/configs/", payload, format="json")
    assert res.status_code == 201, res.data

    res = admin.post("/api/phidias/configs/", {**payload, "name": "Duplicada"}, format="json")
    assert res.status_code == 400
    assert "poll_id" in res.data


def test_connection_test_endpoint(db):
    client = _api_client()

    with mock.patch(
        "phidias.views.PhidiasClient.from_settings",
        return_value=make_client(lambda params: http_response(payload=poll_payload(record_payload(1)))),
    ):
        res = client.post("/api/phidias/connection-test/", {}, format="json")
    assert res.status_code == 200
    assert res.data["records"] == 1

    with mock.patch(
        "phidias.views.PhidiasClient.from_settings",
        return_value=make_client(lambda params: http_response(401, reason="Unauthorized")),
    ):
        res = client.post("/api/phidias/connection-test/", {"poll_id": 651}, format="json")
    assert res.status_code == 502
    assert res.data["detail"] == "HTTP 401: Unauthorized"


def test_task_skips_finished_run(db):
    run = SyncRun.objects.create()
    run.mark_finished(status=SyncRun.Status.SUCCESS)

    with mock.patch("phidias.tasks.PhidiasClient.from_settings") as from_settings:
        result = run_phidias_sync(run_id=run.id)

    assert result == {"run_id": run.id, "status": SyncRun.Status.SUCCESS}
    from_settings.assert_not_called()


def test_task_creates_automatic_run(db):
    _setup_year(students=2)

    with mock.patch("phidias.tasks.PhidiasClient.from_settings", return_value=make_client(_one_record)):
        result = run_phidias_sync(triggered_by="cron")

    run = SyncRun.objects.get(id=result["run_id"])
    assert run.sync_type == SyncRun.SyncType.AUTOMATIC
    assert result["status"] == SyncRun.Status.SUCCESS
    assert result["records_created"] == 2


def test_sync_command(db):
    _setup_year(students=2)
    out = StringIO()

    with mock.patch(
        "phidias.management.commands.sync_phidias.PhidiasClient.from_settings",
        return_value=make_client(_one_record),
    ):
        call_command("sync_phidias", "--level", "high", stdout=out)

    assert "estado=success" in out.getvalue()
    assert SyncRun.objects.get().triggered_by == "cron"


def test_sync_command_fails_while_another_sync_holds_the_lock(db):
    _setup_year(students=1)

    with mock.patch(
        "phidias.management.commands.sync_phidias.PhidiasClient.from_settings",
        return_value=make_client(_one_record),
    ), mock.patch("phidias.sync.sync_lock", side_effect=SyncAlreadyRunning("Ya hay una sincronización en curso")):
        with pytest.raises(CommandError, match="en curso"):
            call_command("sync_phidias", stdout=StringIO())

    assert SyncRun.objects.get().status == SyncRun.Status.ERROR
    assert Infraction.objects.count() == 0


def test_sync_command_fails_without_configs(db):
    SchoolYear.objects.create(name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=True)

    with mock.patch(
        "phidias.management.commands.sync_phidias.PhidiasClient.from_settings",
        return_value=make_client(_one_record),
    ):
        with pytest.raises(CommandError):
            call_command("sync_phidias", stdout=StringIO())

    assert SyncRun.objects.get().status == SyncRun.Status.ERROR
