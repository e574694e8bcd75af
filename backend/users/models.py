from django.contrib.auth.models import AbstractUser
from django.db import models

from academic.levels import ELEMENTARY, HIGH_SCHOOL, MIDDLE_SCHOOL, PRESCHOOL


class User(AbstractUser):
    ROLE_SUPERADMIN = "SUPERADMIN"
    ROLE_ADMIN = "ADMIN"
    ROLE_PRESCHOOL_COORDINATOR = "PRESCHOOL_COORDINATOR"
    ROLE_ELEMENTARY_COORDINATOR = "ELEMENTARY_COORDINATOR"
    ROLE_MIDDLE_SCHOOL_COORDINATOR = "MIDDLE_SCHOOL_COORDINATOR"
    ROLE_HIGH_SCHOOL_COORDINATOR = "HIGH_SCHOOL_COORDINATOR"
    ROLE_PSYCHOLOGY = "PSYCHOLOGY"
    ROLE_TEACHER = "TEACHER"

    ROLES = (
        (ROLE_SUPERADMIN, "Superadministrador"),
        (ROLE_ADMIN, "Administrador/Rector"),
        (ROLE_PRESCHOOL_COORDINATOR, "Coordinación Preescolar"),
        (ROLE_ELEMENTARY_COORDINATOR, "Coordinación Primaria"),
        (ROLE_MIDDLE_SCHOOL_COORDINATOR, "Coordinación Secundaria"),
        (ROLE_HIGH_SCHOOL_COORDINATOR, "Coordinación Media"),
        (ROLE_PSYCHOLOGY, "Psicología"),
        (ROLE_TEACHER, "Docente"),
    )

    COORDINATED_LEVELS = {
        ROLE_PRESCHOOL_COORDINATOR: PRESCHOOL,
        ROLE_ELEMENTARY_COORDINATOR: ELEMENTARY,
        ROLE_MIDDLE_SCHOOL_COORDINATOR: MIDDLE_SCHOOL,
        ROLE_HIGH_SCHOOL_COORDINATOR: HIGH_SCHOOL,
    }

    role = models.CharField(max_length=30, choices=ROLES)
    email = models.EmailField(unique=True, blank=True, null=True, verbose_name="Correo electrónico")

    REQUIRED_FIELDS = ["email", "role"]

    @property
    def coordinated_level(self) -> str | None:
        """Nivel académico a cargo, solo para coordinadores de nivel."""
        return self.COORDINATED_LEVELS.get(self.role)

    def save(self, *args, **kwargs):
        # Correo vacío se guarda como NULL para no chocar con la restricción única
        if not self.email:
            self.email = None
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.username} ({self.get_role_display()})"
