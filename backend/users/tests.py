from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from academic.levels import ELEMENTARY, HIGH_SCHOOL

from .models import User
from .permissions import CanTriggerSync, IsConvivenciaStaff, level_scope


class UserModelTests(TestCase):
    def test_coordinated_level(self):
        coordinator = User.objects.create_user(
            username="coord", password="password", role=User.ROLE_HIGH_SCHOOL_COORDINATOR
        )
        admin = User.objects.create_user(username="admin", password="password", role=User.ROLE_ADMIN)
        self.assertEqual(coordinator.coordinated_level, HIGH_SCHOOL)
        self.assertEqual(level_scope(coordinator), HIGH_SCHOOL)
        self.assertIsNone(admin.coordinated_level)
        self.assertIsNone(level_scope(admin))

    def test_blank_email_is_stored_as_null(self):
        first = User.objects.create_user(username="a", password="password", role=User.ROLE_TEACHER, email="")
        second = User.objects.create_user(username="b", password="password", role=User.ROLE_TEACHER, email="")
        self.assertIsNone(first.email)
        self.assertIsNone(second.email)


class RolePermissionTests(TestCase):
    def _request(self, user, method="GET"):
        return type("Request", (), {"user": user, "method": method})()

    def test_sync_roles(self):
        allowed = [
            User.ROLE_SUPERADMIN,
            User.ROLE_ADMIN,
            User.ROLE_ELEMENTARY_COORDINATOR,
            User.ROLE_PSYCHOLOGY,
        ]
        for index, role in enumerate(allowed):
            user = User.objects.create_user(username=f"u{index}", password="password", role=role)
            with self.subTest(role=role):
                self.assertTrue(CanTriggerSync().has_permission(self._request(user, "POST"), None))

        teacher = User.objects.create_user(username="teacher", password="password", role=User.ROLE_TEACHER)
        self.assertFalse(CanTriggerSync().has_permission(self._request(teacher, "POST"), None))

    def test_teacher_has_read_only_access(self):
        teacher = User.objects.create_user(username="teacher", password="password", role=User.ROLE_TEACHER)
        self.assertTrue(IsConvivenciaStaff().has_permission(self._request(teacher, "GET"), None))
        self.assertFalse(IsConvivenciaStaff().has_permission(self._request(teacher, "POST"), None))


class UserAPITests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = User.objects.create_user(username="admin", password="password", role=User.ROLE_ADMIN)
        self.coordinator = User.objects.create_user(
            username="coord", password="password", role=User.ROLE_ELEMENTARY_COORDINATOR
        )

    def get_token(self, user):
        response = self.client.post("/api/token/", {"username": user.username, "password": "password"})
        return response.data["access"]

    def test_me_returns_role_and_level(self):
        token = self.get_token(self.coordinator)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get("/api/users/me/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["role"], User.ROLE_ELEMENTARY_COORDINATOR)
        self.assertEqual(response.data["coordinated_level"], ELEMENTARY)

    def test_only_admin_can_list_users(self):
        token = self.get_token(self.coordinator)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        self.assertEqual(self.client.get("/api/users/").status_code, status.HTTP_403_FORBIDDEN)

        token = self.get_token(self.admin)
        self.client.credentials(HTTP_AUTHORIZATION="Bearer " + token)
        response = self.client.get("/api/users/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

    def test_anonymous_is_rejected(self):
        self.assertEqual(self.client.get("/api/users/me/").status_code, status.HTTP_401_UNAUTHORIZED)
