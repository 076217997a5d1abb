# clientsetup/lifecycle.py
"""
Unit lifecycle:

    available --block-->   blocked
    blocked   --unblock--> available
    available --book-->    booked
    blocked   --book-->    booked
    booked    --sell-->    sold

Every transition is one conditional UPDATE (compare-and-swap on status).
If no row matched, the unit is re-read so the caller gets either
NotFoundError or a ConflictError carrying the status the unit is really in.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from common.exceptions import ConflictError, NotFoundError, ValidationError

from .models import Project, Unit, UnitStatus, UnitStatusHistory

logger = logging.getLogger(__name__)


BLOCK = "block"
UNBLOCK = "unblock"
BOOK = "book"
SELL = "sell"

# action -> (allowed source states, target state)
TRANSITIONS = {
    BLOCK:   ((UnitStatus.AVAILABLE,), UnitStatus.BLOCKED),
    UNBLOCK: ((UnitStatus.BLOCKED,), UnitStatus.AVAILABLE),
    BOOK:    ((UnitStatus.AVAILABLE, UnitStatus.BLOCKED), UnitStatus.BOOKED),
    SELL:    ((UnitStatus.BOOKED,), UnitStatus.SOLD),
}

_CLEAR_BLOCK = {"blocked_at": None, "block_expiry_at": None, "blocked_by": None}


def _current_status(unit_id, lock=False):
    qs = Unit.objects.filter(pk=unit_id)
    if lock:
        qs = qs.select_for_update()
    return qs.values_list("status", flat=True).first()


def _transition(unit_id, action, *, ctx=None, reason="", fields=None):
    allowed, target = TRANSITIONS[action]
    fields = dict(fields or {})
    fields["updated_at"] = timezone.now()

    with transaction.atomic():
        # row lock: the status read here is the one the UPDATE replaces.
        # The UPDATE still carries the status guard.
        old_status = _current_status(unit_id, lock=True)
        if old_status is None:
            raise NotFoundError(f"Unit {unit_id} not found.")

        updated = (
            Unit.objects
            .filter(pk=unit_id, status__in=allowed)
            .update(status=target, **fields)
        )

        if updated == 0:
            current = _current_status(unit_id)
            if current is None:
                raise NotFoundError(f"Unit {unit_id} not found.")
            logger.warning(
                "Unit %s: %s rejected, status is %s", unit_id, action, current
            )
            raise ConflictError(attempted=f"{action} unit", current_status=current)

        unit = Unit.objects.select_related("project", "tower").get(pk=unit_id)

        UnitStatusHistory.objects.create(
            unit=unit,
            old_status=old_status,
            new_status=target,
            reason=reason or f"Unit {action}",
            changed_by_id=ctx.user_id if ctx else None,
        )
        Project.refresh_unit_counts(unit.project_id)

    logger.info("Unit %s: %s -> %s (%s)", unit_id, old_status, target, action)
    return unit


def block_unit(unit_id, ctx, *, hours=None, reason=""):
    """
    available -> blocked. hours=None uses UNIT_BLOCK_TTL_HOURS; 0 means no expiry.
    """
    if hours is None:
        hours = getattr(settings, "UNIT_BLOCK_TTL_HOURS", 0)
    if hours < 0:
        raise ValidationError("Block hours cannot be negative.")

    now = timezone.now()
    return _transition(
        unit_id,
        BLOCK,
        ctx=ctx,
        reason=reason or "Unit blocked",
        fields={
            "blocked_at": now,
            "block_expiry_at": now + timedelta(hours=hours) if hours else None,
            "blocked_by_id": ctx.user_id if ctx else None,
        },
    )


def unblock_unit(unit_id, ctx, *, reason=""):
    return _transition(unit_id, UNBLOCK, ctx=ctx, reason=reason or "Unit unblocked", fields=_CLEAR_BLOCK)


def book_unit(unit_id, ctx, *, reason=""):
    """
    available|blocked -> booked. Called from booking creation inside its
    transaction; a ConflictError here rolls the whole booking back.
    """
    return _transition(unit_id, BOOK, ctx=ctx, reason=reason or "Unit booked", fields=_CLEAR_BLOCK)


def sell_unit(unit_id, ctx, *, reason=""):
    return _transition(unit_id, SELL, ctx=ctx, reason=reason or "Deal closed")


def release_expired_blocks(now=None):
    """
    Blocked units whose block_expiry_at has passed go back to available.
    A unit booked in the meantime no longer matches the update and is left alone.
    Returns the number of units released.
    """
    now = now or timezone.now()
    candidates = list(
        Unit.objects
        .filter(status=UnitStatus.BLOCKED, block_expiry_at__isnull=False, block_expiry_at__lte=now)
        .values_list("id", "project_id")
    )

    released = 0
    for unit_id, project_id in candidates:
        with transaction.atomic():
            updated = (
                Unit.objects
                .filter(pk=unit_id, status=UnitStatus.BLOCKED, block_expiry_at__lte=now)
                .update(status=UnitStatus.AVAILABLE, updated_at=now, **_CLEAR_BLOCK)
            )
            if not updated:
                continue
            UnitStatusHistory.objects.create(
                unit_id=unit_id,
                old_status=UnitStatus.BLOCKED,
                new_status=UnitStatus.AVAILABLE,
                reason="Auto unblocked: block period expired",
            )
            Project.refresh_unit_counts(project_id)
        released += 1

    if released:
        logger.info("Released %s expired unit blocks", released)
    return released
