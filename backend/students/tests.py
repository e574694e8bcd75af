from datetime import date

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from academic.levels import ELEMENTARY, HIGH_SCHOOL, PRESCHOOL
from academic.models import SchoolYear

from .models import Student
from .services.levels import filter_by_level, student_ids_for_level

User = get_user_model()


def _year(name="2025-2026", active=True):
    return SchoolYear.objects.create(
        name=name, start_date=date(2025, 8, 1), end_date=date(2026, 6, 30), is_active=active
    )


class StudentModelTest(TestCase):
    def setUp(self):
        self.year = _year()

    def test_level_from_grade_or_section(self):
        high = Student.objects.create(school_year=self.year, code="1001", first_name="Ana", grade="Décimo A")
        preschool = Student.objects.create(
            school_year=self.year, code="1002", first_name="Luis", grade="Kínder 4", section="Mi Taller"
        )
        self.assertEqual(high.level, HIGH_SCHOOL)
        self.assertEqual(preschool.level, PRESCHOOL)

    def test_full_name_skips_blank_parts(self):
        student = Student(school_year=self.year, code="1003", first_name="María", last_name="")
        self.assertEqual(student.full_name, "María")

    def test_code_unique_per_school_year(self):
        Student.objects.create(school_year=self.year, code="2001")
        Student.objects.create(school_year=_year("2024-2025", active=False), code="2001")
        with self.assertRaises(IntegrityError):
            Student.objects.create(school_year=self.year, code="2001")


class StudentLevelFilterTest(TestCase):
    def setUp(self):
        self.year = _year()
        self.segundo = Student.objects.create(school_year=self.year, code="1", grade="Segundo A")
        self.quinto = Student.objects.create(school_year=self.year, code="2", grade="Quinto B")
        self.once = Student.objects.create(school_year=self.year, code="3", grade="Once")

    def test_ids_for_level(self):
        ids = student_ids_for_level(Student.objects.all(), ELEMENTARY)
        self.assertCountEqual(ids, [self.segundo.id, self.quinto.id])

    def test_filter_by_level_keeps_queryset(self):
        queryset = filter_by_level(Student.objects.filter(code__in=["1", "3"]), HIGH_SCHOOL)
        self.assertEqual(list(queryset), [self.once])


class StudentAPITest(APITestCase):
    def setUp(self):
        self.year = _year()
        self.elementary = Student.objects.create(
            school_year=self.year, code="10", first_name="Sofía", last_name="Rojas", grade="Tercero"
        )
        self.high = Student.objects.create(
            school_year=self.year, code="11", first_name="Juan", last_name="Pérez", grade="Décimo B"
        )

    def test_filter_by_level_slug(self):
        admin = User.objects.create_user(username="admin", password="pw", role=User.ROLE_ADMIN)
        self.client.force_authenticate(user=admin)

        res = self.client.get("/api/students/?level=high")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual([row["id"] for row in res.data], [self.high.id])
        self.assertEqual(res.data[0]["level"], HIGH_SCHOOL)

        res = self.client.get("/api/students/?level=university")
        self.assertEqual(res.data, [])

    def test_search(self):
        admin = User.objects.create_user(username="admin", password="pw", role=User.ROLE_ADMIN)
        self.client.force_authenticate(user=admin)
        res = self.client.get("/api/students/?q=rojas")
        self.assertEqual([row["id"] for row in res.data], [self.elementary.id])

    def test_coordinator_only_sees_own_level(self):
        coordinator = User.objects.create_user(
            username="coord_primaria", password="pw", role=User.ROLE_ELEMENTARY_COORDINATOR
        )
        self.client.force_authenticate(user=coordinator)
        res = self.client.get("/api/students/")
        self.assertEqual([row["id"] for row in res.data], [self.elementary.id])

    def test_coordinator_cannot_create(self):
        coordinator = User.objects.create_user(
            username="coord_media", password="pw", role=User.ROLE_HIGH_SCHOOL_COORDINATOR
        )
        self.client.force_authenticate(user=coordinator)
        res = self.client.post(
            "/api/students/",
            {"school_year": self.year.id, "code": "99", "first_name": "Nuevo", "grade": "Once"},
            format="json",
        )
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
