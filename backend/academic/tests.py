from datetime import date, datetime
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from .levels import (
    ELEMENTARY,
    HIGH_SCHOOL,
    MIDDLE_SCHOOL,
    PRESCHOOL,
    UNSPECIFIED_LEVEL,
    classify_level,
    extract_infraction_number,
    level_for_student,
    parse_level,
)
from .management.commands.seed_school_year import split_in_trimesters
from .models import SchoolYear, Trimester
from .services import NoActiveSchoolYear, get_active_school_year, resolve_trimester

User = get_user_model()


class ClassifyLevelTest(SimpleTestCase):
    def test_named_grades(self):
        cases = {
            "Décimo A": HIGH_SCHOOL,
            "Kínder 5 B": PRESCHOOL,
            "Transición": PRESCHOOL,
            "Primero A": PRESCHOOL,
            "Segundo": ELEMENTARY,
            "quinto b": ELEMENTARY,
            "Séptimo C": MIDDLE_SCHOOL,
            "Noveno": MIDDLE_SCHOOL,
            "Undécimo": HIGH_SCHOOL,
            "Once A": HIGH_SCHOOL,
            "Décimo Segundo": HIGH_SCHOOL,
        }
        for label, expected in cases.items():
            with self.subTest(label=label):
                self.assertEqual(classify_level(label), expected)

    def test_numeric_grades(self):
        self.assertEqual(classify_level("10°"), HIGH_SCHOOL)
        self.assertEqual(classify_level("Grado 7"), MIDDLE_SCHOOL)
        self.assertEqual(classify_level("3B"), ELEMENTARY)
        self.assertEqual(classify_level("K3"), PRESCHOOL)

    def test_unknown_labels_never_raise(self):
        for label in (None, "", "   ", "Graduados", "13", "Kinder 9"):
            with self.subTest(label=label):
                self.assertEqual(classify_level(label), UNSPECIFIED_LEVEL)

    def test_section_alias_wins_over_grade(self):
        self.assertEqual(level_for_student("Primero", "Elementary"), ELEMENTARY)
        self.assertEqual(level_for_student("Kínder 2", "Mi Taller"), PRESCHOOL)
        self.assertEqual(level_for_student("Sexto", "B"), MIDDLE_SCHOOL)

    def test_parse_level(self):
        self.assertIsNone(parse_level(""))
        self.assertEqual(parse_level("high"), HIGH_SCHOOL)
        self.assertEqual(parse_level("Middle School"), MIDDLE_SCHOOL)
        with self.assertRaises(ValueError):
            parse_level("university")


class ExtractInfractionNumberTest(SimpleTestCase):
    def test_leading_number(self):
        self.assertEqual(extract_infraction_number("12. Llegar tarde a clase"), 12)
        self.assertEqual(extract_infraction_number("  4 - Uso del celular"), 4)

    def test_roman_type_prefix(self):
        self.assertEqual(extract_infraction_number("II-3 Agresión verbal"), 3)
        self.assertEqual(extract_infraction_number("Tipo I 7: Desorden"), 7)

    def test_without_number(self):
        self.assertIsNone(extract_infraction_number("Incumplir el uniforme"))
        self.assertIsNone(extract_infraction_number(""))
        self.assertIsNone(extract_infraction_number(None))


class ResolveTrimesterTest(TestCase):
    def setUp(self):
        self.year = SchoolYear.objects.create(
            name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=True
        )
        self.t1 = Trimester.objects.create(
            school_year=self.year, name="Trimestre 1", order=1,
            start_date=date(2025, 8, 1), end_date=date(2025, 11, 15),
        )
        self.t2 = Trimester.objects.create(
            school_year=self.year, name="Trimestre 2", order=2,
            start_date=date(2025, 12, 1), end_date=date(2026, 3, 15),
        )

    def test_inclusive_bounds(self):
        self.assertEqual(resolve_trimester(date(2025, 8, 1), self.year.id).id, self.t1.id)
        self.assertEqual(resolve_trimester(date(2025, 11, 15), self.year.id).name, "Trimestre 1")
        self.assertEqual(resolve_trimester(date(2025, 12, 1), self.year.id).id, self.t2.id)

    def test_gap_returns_none(self):
        self.assertIsNone(resolve_trimester(date(2025, 11, 20), self.year.id))

    def test_other_school_year_is_ignored(self):
        other = SchoolYear.objects.create(name="2024-2025", start_date=date(2024, 8, 1), end_date=date(2025, 6, 30))
        self.assertIsNone(resolve_trimester(date(2025, 9, 1), other.id))

    def test_overlap_picks_first_by_order(self):
        overlap = Trimester.objects.create(
            school_year=self.year, name="Recuperación", order=5,
            start_date=date(2025, 11, 1), end_date=date(2025, 12, 10),
        )
        self.assertEqual(resolve_trimester(date(2025, 11, 10), self.year.id).id, self.t1.id)
        self.assertEqual(resolve_trimester(date(2025, 11, 20), self.year.id).id, overlap.id)

    def test_accepts_aware_datetimes(self):
        moment = timezone.make_aware(datetime(2026, 1, 10, 9, 30))
        self.assertEqual(resolve_trimester(moment, self.year.id).id, self.t2.id)


class SchoolYearActivationTest(TestCase):
    def test_only_one_active_year(self):
        first = SchoolYear.objects.create(
            name="2024-2025", start_date=date(2024, 8, 1), end_date=date(2025, 6, 30), is_active=True
        )
        second = SchoolYear.objects.create(
            name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=True
        )
        first.refresh_from_db()
        self.assertFalse(first.is_active)
        self.assertEqual(get_active_school_year().id, second.id)

    def test_no_active_year(self):
        with self.assertRaises(NoActiveSchoolYear):
            get_active_school_year()


class SeedSchoolYearCommandTest(TestCase):
    def test_split_in_trimesters_has_no_gaps(self):
        ranges = split_in_trimesters(date(2025, 8, 1), date(2026, 6, 30), 3)
        self.assertEqual(len(ranges), 3)
        self.assertEqual(ranges[0][0], date(2025, 8, 1))
        self.assertEqual(ranges[-1][1], date(2026, 6, 30))
        for (_, previous_end), (next_start, _) in zip(ranges, ranges[1:]):
            self.assertEqual((next_start - previous_end).days, 1)

    def test_command_creates_active_year(self):
        out = StringIO()
        call_command(
            "seed_school_year",
            "--name", "2025-2026",
            "--start", "2025-08-01",
            "--end", "2026-06-30",
            "--activate",
            stdout=out,
        )
        year = get_active_school_year()
        self.assertEqual(year.name, "2025-2026")
        self.assertEqual(year.trimesters.count(), 3)


class SchoolYearAPITest(APITestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username="admin", password="pw", role=User.ROLE_ADMIN)
        self.teacher = User.objects.create_user(
            username="docente", password="pw", role=User.ROLE_TEACHER, email="docente@example.com"
        )
        self.year = SchoolYear.objects.create(
            name="2025-2026", start_date=date(2025, 8, 1), end_date=date(2026, 6, 30)
        )

    def test_active_returns_404_without_active_year(self):
        self.client.force_authenticate(user=self.teacher)
        res = self.client.get("/api/school-years/active/")
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_activate_requires_admin(self):
        self.client.force_authenticate(user=self.teacher)
        res = self.client.post(f"/api/school-years/{self.year.id}/activate/")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.admin)
        res = self.client.post(f"/api/school-years/{self.year.id}/activate/")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertTrue(res.data["is_active"])

    def test_trimester_must_fit_in_year(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            "/api/trimesters/",
            {
                "school_year": self.year.id,
                "name": "Trimestre 1",
                "order": 1,
                "start_date": "2025-07-01",
                "end_date": "2025-10-31",
            },
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)
