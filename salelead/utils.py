# salelead/utils.py
from django.db.models import Q

from accounts.models import Role

from .models import Lead


def leads_for_context(ctx, qs=None):
    """
    Role based lead visibility:
      - master / developer_hq : every lead
      - sales_admin           : own leads + leads assigned to any sales_executive
      - sales_executive       : own leads only
    """
    qs = Lead.objects.all() if qs is None else qs

    if ctx.role in (Role.MASTER, Role.DEVELOPER_HQ):
        return qs
    if ctx.role == Role.SALES_ADMIN:
        return qs.filter(Q(assigned_to_id=ctx.user_id) | Q(assigned_to__role=Role.SALES_EXECUTIVE))
    return qs.filter(assigned_to_id=ctx.user_id)
