# accounts/permissions.py
from rest_framework import permissions

from .models import MANAGER_ROLES


class IsManagerRole(permissions.BasePermission):
    """
    master / developer_hq / sales_admin (and superusers) only.
    Used for administrative actions: sell unit, delete lead/unit, pay commission.
    """
    message = "Only master, developer HQ or sales admin users can do this."

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return user.is_superuser or getattr(user, "role", None) in MANAGER_ROLES
