# costsheet/schedule.py
"""
Payment schedule generator.

Pure functions only: nothing here touches the database. A schedule becomes
Payment rows only when booking.services saves it.

Money is Decimal quantized to paise (0.01). Allocated shares round down and
the last item of every plan takes whatever is left, so the items always add
up to the total and none of them is negative.
"""
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

from dateutil.relativedelta import relativedelta
from django.db import models

from common.exceptions import ValidationError

PAISE = Decimal("0.01")
PERCENT_PLACES = Decimal("0.0001")
HUNDRED = Decimal("100")

MAX_INSTALLMENTS = 120


class PlanType(models.TextChoices):
    FULL_DP    = "full_dp", "Full Down Payment"
    SUBVENTION = "subvention", "Subvention"
    CLP        = "clp", "Construction Linked Plan"
    TLP        = "tlp", "Time Linked Plan"
    CUSTOM     = "custom", "Custom"


# (milestone, percent); due every CLP_STEP_MONTHS from start
CLP_MILESTONES = [
    ("Booking Amount", Decimal("10")),
    ("Foundation Complete", Decimal("10")),
    ("Ground Floor Slab", Decimal("10")),
    ("1st Floor Slab", Decimal("10")),
    ("2nd Floor Slab", Decimal("10")),
    ("Roof Casting", Decimal("15")),
    ("Plastering Complete", Decimal("10")),
    ("Flooring & Finishing", Decimal("15")),
    ("Possession", Decimal("10")),
]
CLP_STEP_MONTHS = 3

SUBVENTION_CONSTRUCTION_MONTHS = 6
SUBVENTION_POSSESSION_MONTHS = 24

CUSTOM_BOOKING_PERCENT = Decimal("10")
CUSTOM_BALANCE_MONTHS = 6


@dataclass(frozen=True)
class ScheduleItem:
    sequence: int
    milestone: str
    amount: Decimal
    due_date: date
    percentage: Decimal
    editable: bool = True

    def as_dict(self):
        return {
            "sequence": self.sequence,
            "milestone": self.milestone,
            "amount": str(self.amount),
            "due_date": self.due_date.isoformat(),
            "percentage": str(self.percentage),
            "editable": self.editable,
        }


def to_money(value, field="amount"):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number.", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number.", field=field)
    return amount.quantize(PAISE, rounding=ROUND_HALF_UP)


def percent_of(amount, total):
    if not total:
        return Decimal("0").quantize(PERCENT_PLACES)
    return (Decimal(amount) / Decimal(total) * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def _share(total, percent):
    return (total * Decimal(percent) / HUNDRED).quantize(PAISE, rounding=ROUND_DOWN)


def _build(total, rows):
    """
    rows: [(milestone, amount_or_None, due_date, editable)]
    The row with amount None is the one that absorbs the remainder (always last).
    """
    allocated = sum((amt for _, amt, _, _ in rows if amt is not None), Decimal("0.00"))
    items = []
    for seq, (milestone, amt, due, editable) in enumerate(rows, start=1):
        if amt is None:
            amt = total - allocated
        items.append(ScheduleItem(
            sequence=seq,
            milestone=milestone,
            amount=amt,
            due_date=due,
            percentage=percent_of(amt, total),
            editable=editable,
        ))
    return items


def _full_dp(total, start, **_):
    return _build(total, [("Full Payment", None, start, True)])


def _subvention(total, start, down_payment_percent, **_):
    return _build(total, [
        ("Down Payment", _share(total, down_payment_percent), start, True),
        ("During Construction", Decimal("0.00"), start + relativedelta(months=SUBVENTION_CONSTRUCTION_MONTHS), False),
        ("On Possession", None, start + relativedelta(months=SUBVENTION_POSSESSION_MONTHS), True),
    ])


def _clp(total, start, **_):
    rows = []
    last = len(CLP_MILESTONES) - 1
    for idx, (milestone, pct) in enumerate(CLP_MILESTONES):
        amt = None if idx == last else _share(total, pct)
        rows.append((milestone, amt, start + relativedelta(months=idx * CLP_STEP_MONTHS), True))
    return _build(total, rows)


def _tlp(total, start, down_payment_percent, installment_count, **_):
    down = _share(total, down_payment_percent)
    each = ((total - down) / installment_count).quantize(PAISE, rounding=ROUND_DOWN)

    rows = [("Down Payment", down, start, True)]
    for i in range(1, installment_count + 1):
        amt = None if i == installment_count else each
        rows.append((f"Installment {i}", amt, start + relativedelta(months=i), True))
    return _build(total, rows)


def _custom(total, start, **_):
    return _build(total, [
        ("Booking Amount", _share(total, CUSTOM_BOOKING_PERCENT), start, True),
        ("Balance Payment", None, start + relativedelta(months=CUSTOM_BALANCE_MONTHS), True),
    ])


GENERATORS = {
    PlanType.FULL_DP: _full_dp,
    PlanType.SUBVENTION: _subvention,
    PlanType.CLP: _clp,
    PlanType.TLP: _tlp,
    PlanType.CUSTOM: _custom,
}


def generate_schedule(
    total_amount,
    plan_type,
    down_payment_percent=20,
    installment_count=12,
    start_date=None,
):
    """
    Build the milestone schedule for `plan_type`.

    full_dp     one item, 100% at start
    subvention  down payment at start, 0 placeholder at +6m (not editable), balance at +24m
    clp         nine construction milestones every 3 months
    tlp         down payment at start, then `installment_count` equal monthly installments
    custom      10% booking at start, 90% balance at +6m, meant to be edited

    Raises ValidationError for a non-positive total, an unknown plan or out of
    range percent / installment count.
    """
    total = to_money(total_amount, "total_amount")
    if total <= 0:
        raise ValidationError("total_amount must be greater than zero.", field="total_amount")

    if plan_type not in PlanType.values:
        raise ValidationError(
            f"Unknown plan type '{plan_type}'.",
            field="plan_type",
            allowed=list(PlanType.values),
        )

    try:
        dp_percent = Decimal(str(down_payment_percent))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("down_payment_percent must be a number.", field="down_payment_percent")
    if not dp_percent.is_finite() or dp_percent < 0 or dp_percent > HUNDRED:
        raise ValidationError("down_payment_percent must be between 0 and 100.", field="down_payment_percent")

    try:
        count = int(installment_count)
    except (TypeError, ValueError):
        raise ValidationError("installment_count must be an integer.", field="installment_count")
    if count < 1 or count > MAX_INSTALLMENTS:
        raise ValidationError(
            f"installment_count must be between 1 and {MAX_INSTALLMENTS}.",
            field="installment_count",
        )

    start = start_date or date.today()

    return GENERATORS[PlanType(plan_type)](
        total,
        start,
        down_payment_percent=dp_percent,
        installment_count=count,
    )


def edit_item_amount(items, index, amount, total_amount):
    """
    Return a new list with items[index] set to `amount` and its percentage
    recomputed. The other items are untouched; call reconcile_schedule before saving.
    """
    if index < 0 or index >= len(items):
        raise ValidationError(f"No schedule item at index {index}.", field="index")

    item = items[index]
    if not item.editable:
        raise ValidationError(f"'{item.milestone}' cannot be edited.", field="amount")

    new_amount = to_money(amount)
    if new_amount < 0:
        raise ValidationError("Amount cannot be negative.", field="amount")

    total = to_money(total_amount, "total_amount")
    updated = list(items)
    updated[index] = replace(item, amount=new_amount, percentage=percent_of(new_amount, total))
    return updated


def _coerce_item(seq, raw, total):
    if isinstance(raw, ScheduleItem):
        return replace(raw, sequence=seq, percentage=percent_of(raw.amount, total))

    milestone = (raw.get("milestone") or "").strip()
    if not milestone:
        raise ValidationError(f"Item {seq}: milestone is required.", field="milestone")

    due = raw.get("due_date")
    if isinstance(due, str):
        try:
            due = date.fromisoformat(due)
        except ValueError:
            raise ValidationError(f"Item {seq}: due_date must be YYYY-MM-DD.", field="due_date")
    if not isinstance(due, date):
        raise ValidationError(f"Item {seq}: due_date is required.", field="due_date")

    amount = to_money(raw.get("amount"))
    return ScheduleItem(
        sequence=seq,
        milestone=milestone,
        amount=amount,
        due_date=due,
        percentage=percent_of(amount, total),
        editable=bool(raw.get("editable", True)),
    )


def reconcile_schedule(items, total_amount):
    """
    Accept a (possibly hand-edited) schedule only if it adds up to the total.
    Items may be ScheduleItem or dicts with milestone / amount / due_date.
    Returns normalized ScheduleItems with sequence and percentage recomputed.
    """
    total = to_money(total_amount, "total_amount")
    if not items:
        raise ValidationError("Schedule must have at least one item.", field="schedule")

    normalized = [_coerce_item(seq, raw, total) for seq, raw in enumerate(items, start=1)]

    for item in normalized:
        if item.amount < 0:
            raise ValidationError(f"'{item.milestone}' has a negative amount.", field="amount")

    scheduled = sum((i.amount for i in normalized), Decimal("0.00"))
    remaining = total - scheduled
    if remaining != 0:
        raise ValidationError(
            f"Schedule total {scheduled} does not match {total}; remaining amount is {remaining}.",
            field="schedule",
            remaining=str(remaining),
        )
    return normalized
