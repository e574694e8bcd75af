from __future__ import annotations

from datetime import date, datetime, timezone as dt_timezone
from io import StringIO
from types import SimpleNamespace
from unittest import mock

import pytest
from django.core.management import CommandError, call_command
from django.test import override_settings
from django.utils.dateparse import parse_datetime

from academic.models import SchoolYear, Trimester
from discipline.models import FollowUp, Infraction
from students.models import Student

from .models import SyncWatermark
from .supabase_mirror import (
    FOLLOW_UPS_TABLE,
    INFRACTIONS_TABLE,
    STUDENTS_TABLE,
    SupabaseMirror,
    SupabaseMirrorError,
    follow_up_number,
)


class FakeQuery:
    def __init__(self, rows):
        self.rows = [dict(row) for row in rows]

    def select(self, *columns):
        return self

    def gt(self, column, value):
        since = parse_datetime(value)
        self.rows = [row for row in self.rows if parse_datetime(row[column]) > since]
        return self

    def in_(self, column, values):
        self.rows = [row for row in self.rows if row[column] in values]
        return self

    def order(self, column, desc=False):
        self.rows.sort(key=lambda row: row[column], reverse=desc)
        return self

    def range(self, start, end):
        self.rows = self.rows[start:end + 1]
        return self

    def execute(self):
        return SimpleNamespace(data=self.rows)


class FakeSupabase:
    def __init__(self, tables):
        self.tables = tables
        self.requested = []

    def table(self, name):
        self.requested.append(name)
        return FakeQuery(self.tables.get(name, []))


def _year():
    year = SchoolYear.objects.create(
        name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=True
    )
    Trimester.objects.create(
        school_year=year, name="Trimestre 1", order=1, start_date=date(2025, 8, 1), end_date=date(2025, 11, 15)
    )
    return year


STUDENT_ROWS = [
    {"codigo": "1001", "nombre": "Gómez Pérez Laura Sofía", "grado": "Décimo A", "nivel": "High School",
     "updated_at": "2025-09-01T10:00:00+00:00"},
    {"codigo": "1002", "nombre": "Ruiz Pablo", "grado": "Tercero B", "nivel": "Elementary",
     "updated_at": "2025-09-02T10:00:00+00:00"},
    {"codigo": "1003", "nombre": "Mora Ana", "grado": "Sexto A", "nivel": "",
     "updated_at": "2025-09-03T10:00:00+00:00"},
]


def test_follow_up_number():
    assert follow_up_number("Seguimiento 2") == 2
    assert follow_up_number("seguimiento3") == 3
    assert follow_up_number("Seguimiento 7") is None
    assert follow_up_number(None) is None


def test_students_are_paged_and_watermark_advances(db):
    year = _year()
    client = FakeSupabase({STUDENTS_TABLE: STUDENT_ROWS})
    mirror = SupabaseMirror(client, page_size=2)

    result = mirror.mirror_students()

    assert result.imported == 3
    assert result.errors == []
    assert client.requested == [STUDENTS_TABLE, STUDENTS_TABLE]
    laura = Student.objects.get(school_year=year, code="1001")
    assert (laura.first_name, laura.last_name) == ("Laura Sofía", "Gómez Pérez")
    assert Student.objects.get(code="1002").first_name == "Pablo"
    assert Student.objects.get(code="1002").level == "Elementary"

    watermark = SyncWatermark.objects.get(table=STUDENTS_TABLE)
    assert watermark.last_synced_at == datetime(2025, 9, 3, 10, 0, tzinfo=dt_timezone.utc)
    assert watermark.rows_imported == 3

    again = SupabaseMirror(FakeSupabase({STUDENTS_TABLE: STUDENT_ROWS}), page_size=2).mirror_students()
    assert again.imported == 0
    assert Student.objects.count() == 3


def test_infractions_skip_phidias_owned_rows(db):
    year = _year()
    Student.objects.create(school_year=year, code="1001", first_name="Laura", grade="Décimo A")
    owned = Infraction.objects.create(
        hash="phidias-1",
        source=Infraction.Source.PHIDIAS,
        school_year=year,
        infraction_type=Infraction.Type.TYPE_I,
        occurred_at=datetime(2025, 9, 5, 12, 0, tzinfo=dt_timezone.utc),
        description="Texto de Phidias",
    )
    rows = [
        {"hash": "phidias-1", "tipo_falta": "Tipo I", "fecha": "2025-09-05", "descripcion_falta": "Copia vieja",
         "codigo_estudiante": "1001", "updated_at": "2025-09-06T10:00:00+00:00"},
        {"hash": "legacy-2", "tipo_falta": "Tipo II", "fecha": "2025-09-10", "numero_falta": 4,
         "descripcion_falta": "4. Agresión verbal", "codigo_estudiante": "1001", "autor": "Marta Díaz",
         "updated_at": "2025-09-11T10:00:00+00:00"},
        {"hash": "legacy-3", "tipo_falta": "Tipo IV", "fecha": "2025-09-10",
         "updated_at": "2025-09-12T10:00:00+00:00"},
    ]

    result = SupabaseMirror(FakeSupabase({INFRACTIONS_TABLE: rows})).mirror_infractions()

    assert (result.imported, result.skipped) == (1, 2)
    owned.refresh_from_db()
    assert owned.description == "Texto de Phidias"

    legacy = Infraction.objects.get(hash="legacy-2")
    assert legacy.source == Infraction.Source.SUPABASE
    assert legacy.student.code == "1001"
    assert legacy.level == "High School"
    assert legacy.trimester.name == "Trimestre 1"
    assert legacy.number == 4
    assert SyncWatermark.objects.get(table=INFRACTIONS_TABLE).last_synced_at == datetime(
        2025, 9, 12, 10, 0, tzinfo=dt_timezone.utc
    )


def test_follow_ups_resolve_infraction_through_cases(db):
    year = _year()
    infraction = Infraction.objects.create(
        hash="legacy-2",
        source=Infraction.Source.SUPABASE,
        school_year=year,
        infraction_type=Infraction.Type.TYPE_II,
        occurred_at=datetime(2025, 9, 10, 12, 0, tzinfo=dt_timezone.utc),
    )
    client = FakeSupabase(
        {
            "casos": [{"id_caso": 7, "hash_falta": "legacy-2"}, {"id_caso": 8, "hash_falta": "desconocida"}],
            FOLLOW_UPS_TABLE: [
                {"id": 1, "id_caso": 7, "tipo_seguimiento": "Seguimiento 2", "fecha_seguimiento": "2025-09-20",
                 "detalles": "Reunión con acudiente", "autor": "Psicología",
                 "updated_at": "2025-09-20T15:00:00+00:00"},
                {"id": 2, "id_caso": 8, "tipo_seguimiento": "Seguimiento 1", "fecha_seguimiento": "2025-09-21",
                 "updated_at": "2025-09-21T15:00:00+00:00"},
            ],
        }
    )

    result = SupabaseMirror(client).mirror_follow_ups()

    assert (result.imported, result.skipped) == (1, 1)
    follow_up = FollowUp.objects.get(infraction=infraction)
    assert follow_up.number == 2
    assert follow_up.date == date(2025, 9, 20)
    assert follow_up.details == "Reunión con acudiente"


def test_row_errors_do_not_stop_the_table(db):
    _year()
    mirror = SupabaseMirror(FakeSupabase({STUDENTS_TABLE: STUDENT_ROWS}))

    original = mirror._import_student

    def flaky(row):
        if row["codigo"] == "1002":
            raise ValueError("fila corrupta")
        return original(row)

    with mock.patch.object(mirror, "_import_student", side_effect=flaky):
        result = mirror.mirror_students()

    assert result.imported == 2
    assert len(result.errors) == 1
    assert "fila corrupta" in result.errors[0]


def test_failed_row_is_retried_on_next_run(db):
    _year()
    rows = [
        {"hash": "h1", "tipo_falta": "Tipo I", "fecha": "2025-09-01", "numero_falta": "abc",
         "updated_at": "2025-09-01T10:00:00+00:00"},
        {"hash": "h2", "tipo_falta": "Tipo I", "fecha": "2025-09-02", "numero_falta": 2,
         "updated_at": "2025-09-02T10:00:00+00:00"},
    ]

    first = SupabaseMirror(FakeSupabase({INFRACTIONS_TABLE: rows})).mirror_infractions()

    assert (first.imported, len(first.errors)) == (1, 1)
    assert first.watermark is None
    assert SyncWatermark.objects.get(table=INFRACTIONS_TABLE).last_synced_at is None

    rows[0]["numero_falta"] = 1
    second = SupabaseMirror(FakeSupabase({INFRACTIONS_TABLE: rows})).mirror_infractions()

    assert second.errors == []
    assert sorted(Infraction.objects.values_list("hash", flat=True)) == ["h1", "h2"]
    assert Infraction.objects.get(hash="h1").number == 1
    assert SyncWatermark.objects.get(table=INFRACTIONS_TABLE).last_synced_at == datetime(
        2025, 9, 2, 10, 0, tzinfo=dt_timezone.utc
    )


@override_settings(SUPABASE_URL="", SUPABASE_KEY="")
def test_from_settings_requires_credentials():
    with pytest.raises(SupabaseMirrorError):
        SupabaseMirror.from_settings()


@override_settings(SUPABASE_URL="https://legacy.supabase.co", SUPABASE_KEY="service-key", SUPABASE_PAGE_SIZE=50)
def test_mirror_command(db):
    _year()
    fake = FakeSupabase({STUDENTS_TABLE: STUDENT_ROWS})
    out = StringIO()

    with mock.patch("phidias.supabase_mirror.create_client", return_value=fake) as create_client:
        call_command("mirror_supabase", "--table", STUDENTS_TABLE, stdout=out)

    create_client.assert_called_once_with("https://legacy.supabase.co", "service-key")
    assert "estudiantes: importadas=3" in out.getvalue()
    assert INFRACTIONS_TABLE not in fake.requested


@override_settings(SUPABASE_URL="https://legacy.supabase.co", SUPABASE_KEY="service-key")
def test_mirror_command_requires_active_year(db):
    with mock.patch("phidias.supabase_mirror.create_client", return_value=FakeSupabase({STUDENTS_TABLE: STUDENT_ROWS})):
        with pytest.raises(CommandError):
            call_command("mirror_supabase", stdout=StringIO())
