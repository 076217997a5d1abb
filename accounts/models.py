# accounts/models.py
from django.contrib.auth.models import AbstractUser
from django.db import models


class Role(models.TextChoices):
    MASTER          = "master", "Master"
    DEVELOPER_HQ    = "developer_hq", "Developer HQ"
    SALES_ADMIN     = "sales_admin", "Sales Admin"
    SALES_EXECUTIVE = "sales_executive", "Sales Executive"


# Roles allowed to run administrative actions (sell unit, delete lead, ...)
MANAGER_ROLES = (Role.MASTER, Role.DEVELOPER_HQ, Role.SALES_ADMIN)

# Roles a user may pick for themselves on /register/
SELF_REGISTER_ROLES = (Role.SALES_ADMIN, Role.SALES_EXECUTIVE)


class User(AbstractUser):
    """
    - role: business role, drives lead visibility and admin actions
    - phone: contact number shown on leads / bookings
    """

    email = models.EmailField(
        unique=True,
        null=True,
        blank=True,
        error_messages={"unique": "A user with that email already exists."},
    )

    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.SALES_EXECUTIVE,
        help_text="Business role",
    )

    phone = models.CharField(max_length=32, blank=True)

    class Meta:
        indexes = [models.Index(fields=["role"])]

    def __str__(self):
        return self.get_full_name() or self.username

    @property
    def is_manager(self) -> bool:
        return self.is_superuser or self.role in MANAGER_ROLES
