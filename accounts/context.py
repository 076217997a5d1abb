# accounts/context.py
from dataclasses import dataclass

from .models import MANAGER_ROLES, Role


@dataclass(frozen=True)
class RequestContext:
    """
    Authenticated identity handed to every service call.
    Services never look at request.user or any other ambient state.
    """
    user_id: int
    role: str

    @classmethod
    def from_request(cls, request):
        user = request.user
        role = getattr(user, "role", None) or Role.SALES_EXECUTIVE
        if user.is_superuser:
            role = Role.MASTER
        return cls(user_id=user.pk, role=role)

    @classmethod
    def for_user(cls, user):
        return cls(user_id=user.pk, role=Role.MASTER if user.is_superuser else user.role)

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES
