from rest_framework import permissions
from .models import User


ADMIN_ROLES = (User.ROLE_SUPERADMIN, User.ROLE_ADMIN)

# Roles autorizados para disparar una sincronización manual con Phidias
SYNC_ROLES = ADMIN_ROLES + (
    User.ROLE_PRESCHOOL_COORDINATOR,
    User.ROLE_ELEMENTARY_COORDINATOR,
    User.ROLE_MIDDLE_SCHOOL_COORDINATOR,
    User.ROLE_HIGH_SCHOOL_COORDINATOR,
    User.ROLE_PSYCHOLOGY,
)


class IsAdmin(permissions.BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role in ADMIN_ROLES


class IsAdminOrReadOnly(permissions.BasePermission):
    """
    Allows access to update only to admin users.
    """
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return request.user.role in ADMIN_ROLES


class CanTriggerSync(permissions.BasePermission):
    message = "No tienes permisos para ejecutar la sincronización."

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role in SYNC_ROLES


class IsConvivenciaStaff(permissions.BasePermission):
    """Roles con acceso de escritura a faltas y seguimientos."""

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return request.user.role in SYNC_ROLES


def level_scope(user) -> str | None:
    """Nivel al que se restringe la consulta; None significa sin restricción."""
    return getattr(user, "coordinated_level", None)
