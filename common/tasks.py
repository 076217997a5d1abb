# common/tasks.py

import logging

from celery import shared_task

from common.utils import send_email_and_log

logger = logging.getLogger(__name__)


def _project_title(project):
    if not project:
        return "Project"
    return getattr(project, "name", None) or f"Project #{project.pk}"


# ---------- 1) Periodic sweeps (beat) ----------

@shared_task
def release_expired_unit_blocks():
    """
    Blocked units whose hold has run out go back to available.
    """
    from clientsetup.lifecycle import release_expired_blocks

    released = release_expired_blocks()
    logger.info("release_expired_unit_blocks: %s unit(s) released", released)
    return released


@shared_task
def mark_overdue_payments():
    from booking.services import mark_overdue_payments as _mark

    flagged = _mark()
    logger.info("mark_overdue_payments: %s payment(s) flagged", flagged)
    return flagged


# ---------- 2) Booking emails ----------

@shared_task
def send_booking_created_email(booking_id: int):
    from booking.models import Booking

    try:
        booking = Booking.objects.select_related(
            "lead", "unit", "unit__tower", "project", "sales_person"
        ).get(pk=booking_id)
    except Booking.DoesNotExist:
        return False

    lead = booking.lead
    unit = booking.unit
    project_name = _project_title(booking.project)
    tower = unit.tower.name if unit.tower_id else "-"

    subject = f"Booking confirmed: {project_name} / {unit.unit_number}"
    lines = [
        f"Dear {lead.name},",
        "",
        f"Your booking {booking.form_ref_no} is confirmed.",
        "",
        f"Project: {project_name}",
        f"Tower: {tower}",
        f"Unit: {unit.unit_number} (floor {unit.floor})",
        f"Final amount: {booking.final_amount}",
        f"Token amount: {booking.token_amount}",
        f"Payment plan: {booking.get_payment_plan_display()}",
        f"Booking date: {booking.booking_date}",
    ]
    sales_email = booking.sales_person.email if booking.sales_person_id else None

    return send_email_and_log(subject, "\n".join(lines), [lead.email, sales_email])
