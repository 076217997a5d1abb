# booking/services.py
"""
Negotiation / booking workflow.

Every public function takes an explicit RequestContext and runs inside one
transaction: either all of its writes land or none do.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from channel.utils import attribute_booking
from clientsetup import lifecycle
from clientsetup.models import Unit
from common.exceptions import ConflictError, NotFoundError, ValidationError
from costsheet.schedule import PlanType, generate_schedule, reconcile_schedule, to_money
from salelead.models import Lead, LeadStatus

from .models import (
    Booking,
    BookingStatusHistory,
    Negotiation,
    NegotiationStatus,
    Payment,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


NEGOTIATION_TRANSITIONS = {
    NegotiationStatus.PENDING: {NegotiationStatus.NEGOTIATING, NegotiationStatus.REJECTED},
    NegotiationStatus.NEGOTIATING: {NegotiationStatus.APPROVED, NegotiationStatus.REJECTED},
    NegotiationStatus.APPROVED: set(),
    NegotiationStatus.REJECTED: set(),
}

TERMINAL_NEGOTIATION_STATES = {NegotiationStatus.APPROVED, NegotiationStatus.REJECTED}

# fields a caller may change on a non-terminal negotiation
NEGOTIATION_FIELDS = (
    "unit", "project", "base_price", "requested_price", "offered_price",
    "discount_percent", "token_amount", "payment_plan", "is_token_ready",
    "notes", "admin_notes",
)


def derive_discount_percent(base_price, negotiated_price):
    if not base_price or negotiated_price is None:
        return Decimal("0.00")
    base = Decimal(base_price)
    pct = (base - Decimal(negotiated_price)) / base * Decimal("100")
    return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------

def _lock_booking(booking_id):
    booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found.")
    return booking


def create_booking(
    ctx,
    *,
    lead_id,
    unit_id,
    payment_plan=PlanType.CLP,
    token_amount=None,
    total_amount=None,
    discount_amount=None,
    final_amount=None,
    booking_date=None,
    agreement_date=None,
    possession_date=None,
    schedule=None,
    notes="",
):
    """
    Book `unit_id` for `lead_id`.

    The unit moves to booked through a conditional update, so two concurrent
    calls for one unit produce exactly one Booking; the loser gets ConflictError.
    total_amount defaults to the unit's total price; final_amount defaults to
    total - discount. An optional schedule is reconciled against final_amount
    and saved as Payment rows.
    """
    if payment_plan not in PlanType.values:
        raise ValidationError(f"Unknown payment plan '{payment_plan}'.", field="payment_plan")

    with transaction.atomic():
        lead = Lead.objects.filter(pk=lead_id).first()
        if lead is None:
            raise NotFoundError(f"Lead {lead_id} not found.")

        unit = lifecycle.book_unit(unit_id, ctx, reason=f"Booked for lead #{lead_id}")

        total = to_money(total_amount if total_amount is not None else unit.total_price, "total_amount")
        if final_amount is not None:
            final = to_money(final_amount, "final_amount")
            discount = total - final if discount_amount is None else to_money(discount_amount, "discount_amount")
        else:
            discount = to_money(discount_amount or 0, "discount_amount")
            final = total - discount
        token = to_money(token_amount or 0, "token_amount")

        if total <= 0:
            raise ValidationError("total_amount must be greater than zero.", field="total_amount")
        if final <= 0:
            raise ValidationError("final_amount must be greater than zero.", field="final_amount")
        if total - discount != final:
            raise ValidationError(
                "total_amount - discount_amount must equal final_amount.", field="discount_amount"
            )
        if token < 0 or token > final:
            raise ValidationError("token_amount must be between 0 and final_amount.", field="token_amount")

        booking = Booking.objects.create(
            lead=lead,
            unit=unit,
            project_id=unit.project_id,
            sales_person_id=ctx.user_id,
            token_amount=token,
            total_amount=total,
            discount_amount=discount,
            final_amount=final,
            payment_plan=payment_plan,
            booking_date=booking_date or timezone.localdate(),
            agreement_date=agreement_date,
            possession_date=possession_date,
            notes=notes or "",
        )
        BookingStatusHistory.objects.create(
            booking=booking,
            action="CREATE",
            reason=f"Unit {unit.unit_number} booked",
            changed_by_id=ctx.user_id,
        )

        if schedule:
            _replace_schedule(ctx, booking, schedule)

        lead.advance_status(LeadStatus.BOOKING)
        attribute_booking(booking)

    logger.info(
        "Booking %s created: unit=%s lead=%s final=%s by user %s",
        booking.pk, unit_id, lead_id, final, ctx.user_id,
    )
    return booking


def _replace_schedule(ctx, booking, items):
    normalized = reconcile_schedule(items, booking.final_amount)

    booking.payments.all().delete()
    Payment.objects.bulk_create([
        Payment(
            booking=booking,
            sequence=item.sequence,
            milestone=item.milestone,
            amount=item.amount,
            due_date=item.due_date,
            editable=item.editable,
        )
        for item in normalized
    ])
    payments = list(booking.payments.order_by("sequence"))
    BookingStatusHistory.objects.create(
        booking=booking,
        action="SCHEDULE",
        reason=f"{len(payments)} payments scheduled",
        changed_by_id=ctx.user_id,
    )
    return payments


def save_schedule(
    ctx,
    booking_id,
    *,
    items=None,
    plan_type=None,
    down_payment_percent=20,
    installment_count=12,
    start_date=None,
):
    """
    Persist a payment schedule for a booking: `items` as given, or generated
    from `plan_type` (default: the booking's plan) over final_amount.
    Replaces the current schedule; refused once any payment has money against it.
    """
    with transaction.atomic():
        booking = _lock_booking(booking_id)

        received = booking.payments.filter(
            Q(status__in=[PaymentStatus.PAID, PaymentStatus.PARTIAL]) | Q(paid_amount__gt=0)
        )
        if received.exists():
            raise ConflictError(
                "Cannot replace the schedule: payments have already been received.",
                attempted="replace payment schedule",
                current_status="payments_received",
            )

        if items is None:
            plan = plan_type or booking.payment_plan
            items = generate_schedule(
                booking.final_amount,
                plan,
                down_payment_percent=down_payment_percent,
                installment_count=installment_count,
                start_date=start_date or booking.booking_date,
            )
            if plan != booking.payment_plan:
                booking.payment_plan = plan
                booking.save(update_fields=["payment_plan", "updated_at"])

        payments = _replace_schedule(ctx, booking, items)

    logger.info("Booking %s: schedule saved with %s payments", booking_id, len(payments))
    return payments


# ---------------------------------------------------------------------------
# Negotiations
# ---------------------------------------------------------------------------

def create_negotiation(ctx, *, lead, **fields):
    """
    New negotiations always start in pending. base_price falls back to the
    unit's total price and discount_percent is derived when not given.
    """
    fields.pop("status", None)
    unit = fields.get("unit")

    if unit is not None:
        fields.setdefault("project", unit.project)
        if not fields.get("base_price"):
            fields["base_price"] = unit.total_price

    neg = Negotiation(lead=lead, created_by_id=ctx.user_id, **fields)
    if "discount_percent" not in fields:
        neg.discount_percent = derive_discount_percent(neg.base_price, neg.negotiated_price)
    neg.save()

    lead.advance_status(LeadStatus.NEGOTIATION)
    logger.info("Negotiation %s created for lead %s by user %s", neg.pk, lead.pk, ctx.user_id)
    return neg


def update_negotiation(ctx, negotiation_id, changes):
    """
    Apply field changes and an optional status transition.

    pending     -> negotiating | rejected
    negotiating -> approved | rejected
    approved / rejected are terminal: any change raises ConflictError.

    Approval books the unit and creates the Booking in the same transaction;
    if the unit cannot be booked nothing is saved.
    """
    changes = dict(changes)

    with transaction.atomic():
        neg = Negotiation.objects.select_for_update().filter(pk=negotiation_id).first()
        if neg is None:
            raise NotFoundError(f"Negotiation {negotiation_id} not found.")

        old_status = neg.status
        new_status = changes.pop("status", old_status) or old_status

        if old_status in TERMINAL_NEGOTIATION_STATES:
            raise ConflictError(attempted="update negotiation", current_status=old_status)

        if new_status != old_status and new_status not in NEGOTIATION_TRANSITIONS[old_status]:
            raise ConflictError(attempted=f"move negotiation to {new_status}", current_status=old_status)

        for field in NEGOTIATION_FIELDS:
            if field in changes:
                setattr(neg, field, changes[field])

        if neg.unit_id and ("unit" in changes or not neg.project_id):
            neg.project_id = neg.unit.project_id

        if "discount_percent" not in changes:
            neg.discount_percent = derive_discount_percent(neg.base_price, neg.negotiated_price)

        if new_status == NegotiationStatus.APPROVED:
            if not neg.unit_id:
                raise ValidationError("A unit is required to approve a negotiation.", field="unit")

            unit = Unit.objects.filter(pk=neg.unit_id).only("total_price").first()
            total = neg.base_price or (unit.total_price if unit else None)
            final = neg.negotiated_price if neg.negotiated_price is not None else total

            booking = create_booking(
                ctx,
                lead_id=neg.lead_id,
                unit_id=neg.unit_id,
                payment_plan=neg.payment_plan,
                token_amount=neg.token_amount,
                total_amount=total,
                final_amount=final,
                notes=f"From negotiation #{neg.pk}",
            )
            neg.booking = booking
            neg.approved_by_id = ctx.user_id

        neg.status = new_status
        neg.save()

    if new_status != old_status:
        logger.info(
            "Negotiation %s: %s -> %s by user %s", neg.pk, old_status, new_status, ctx.user_id
        )
    return neg


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

# fields a caller may set on a single payment row
PAYMENT_FIELDS = (
    "sequence", "milestone", "amount", "due_date",
    "payment_method", "transaction_ref", "notes",
)


def _check_schedule(booking, payments):
    """
    The booking's payments, as they would be after a write, must still add
    up to final_amount.
    """
    rows = [
        {"milestone": p.milestone or f"Payment {p.sequence}", "amount": p.amount, "due_date": p.due_date}
        for p in payments
    ]
    reconcile_schedule(rows, booking.final_amount)


def add_payment(ctx, booking_id, **fields):
    """
    Add one row to a booking's schedule. Accepted only if the schedule still
    balances, so in practice a non-zero row needs the schedule resaved instead.
    """
    fields = {k: v for k, v in fields.items() if k in PAYMENT_FIELDS}

    with transaction.atomic():
        booking = _lock_booking(booking_id)
        current = list(booking.payments.order_by("sequence"))
        if "sequence" not in fields:
            fields["sequence"] = max((p.sequence for p in current), default=0) + 1

        payment = Payment(booking=booking, **fields)
        _check_schedule(booking, current + [payment])
        payment.save()

        BookingStatusHistory.objects.create(
            booking=booking,
            action="MANUAL_UPDATE",
            reason=f"Payment #{payment.pk} added ({payment.amount})",
            changed_by_id=ctx.user_id,
        )

    logger.info("Payment %s added to booking %s by user %s", payment.pk, booking_id, ctx.user_id)
    return payment


def update_payment(ctx, payment_id, changes):
    """
    Change one scheduled payment. Paid rows are frozen, non-editable rows
    refuse any change and the schedule must still add up to final_amount.
    """
    changes = {k: v for k, v in dict(changes).items() if k in PAYMENT_FIELDS}

    with transaction.atomic():
        booking_id = Payment.objects.filter(pk=payment_id).values_list("booking_id", flat=True).first()
        if booking_id is None:
            raise NotFoundError(f"Payment {payment_id} not found.")
        booking = _lock_booking(booking_id)
        payment = Payment.objects.select_for_update().get(pk=payment_id)

        if payment.status == PaymentStatus.PAID:
            raise ConflictError(attempted="edit payment", current_status=payment.status)

        changed = {k: v for k, v in changes.items() if getattr(payment, k) != v}
        if changed and not payment.editable:
            raise ValidationError(f"'{payment.milestone}' cannot be edited.", field=next(iter(changed)))

        amount = changed.get("amount")
        if amount is not None and amount < payment.paid_amount:
            raise ValidationError(
                f"Amount cannot be less than the {payment.paid_amount} already received.",
                field="amount",
            )

        for field, value in changed.items():
            setattr(payment, field, value)

        others = list(booking.payments.exclude(pk=payment.pk).order_by("sequence"))
        _check_schedule(booking, sorted(others + [payment], key=lambda p: p.sequence))
        payment.save()

        if changed:
            BookingStatusHistory.objects.create(
                booking=booking,
                action="MANUAL_UPDATE",
                reason=f"Payment #{payment.pk} changed: {', '.join(sorted(changed))}",
                changed_by_id=ctx.user_id,
            )

    logger.info("Payment %s updated by user %s", payment_id, ctx.user_id)
    return payment


def record_payment(ctx, payment_id, *, amount, paid_date=None, payment_method="", transaction_ref=""):
    """
    Record money received against one scheduled payment.
    Partial receipts accumulate; the payment becomes paid when fully covered.
    """
    received = to_money(amount)
    if received <= 0:
        raise ValidationError("amount must be greater than zero.", field="amount")

    with transaction.atomic():
        payment = Payment.objects.select_for_update().filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found.")
        if payment.status == PaymentStatus.PAID:
            raise ConflictError(attempted="record payment", current_status=payment.status)

        paid = payment.paid_amount + received
        if paid > payment.amount:
            raise ValidationError(
                f"Receipt exceeds the balance of {payment.balance}.",
                field="amount",
                balance=str(payment.balance),
            )

        old_status = payment.status
        payment.paid_amount = paid
        payment.status = PaymentStatus.PAID if paid == payment.amount else PaymentStatus.PARTIAL
        payment.paid_date = paid_date or timezone.localdate()
        if payment_method:
            payment.payment_method = payment_method
        if transaction_ref:
            payment.transaction_ref = transaction_ref
        payment.save()

        BookingStatusHistory.objects.create(
            booking_id=payment.booking_id,
            action="PAYMENT",
            reason=f"{received} received against '{payment.milestone}'",
            changed_by_id=ctx.user_id,
        )

    logger.info("Payment %s: %s -> %s (+%s)", payment_id, old_status, payment.status, received)
    return payment


def mark_overdue_payments(today=None):
    """
    Unsettled payments whose due date has passed become overdue.
    Returns the number of payments flagged.
    """
    today = today or timezone.localdate()
    count = (
        Payment.objects
        .filter(status__in=[PaymentStatus.PENDING, PaymentStatus.PARTIAL], due_date__lt=today)
        .update(status=PaymentStatus.OVERDUE, updated_at=timezone.now())
    )
    if count:
        logger.info("Marked %s payments overdue", count)
    return count

