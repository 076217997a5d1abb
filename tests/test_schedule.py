from datetime import date
from decimal import Decimal

import pytest
from dateutil.relativedelta import relativedelta

from common.exceptions import ValidationError
from costsheet.schedule import (
    PlanType,
    ScheduleItem,
    edit_item_amount,
    generate_schedule,
    reconcile_schedule,
)

START = date(2025, 1, 15)


def _total(items):
    return sum((i.amount for i in items), Decimal("0"))


def test_full_dp_single_item():
    items = generate_schedule(5_000_000, PlanType.FULL_DP, start_date=START)

    assert len(items) == 1
    assert items[0].amount == Decimal("5000000.00")
    assert items[0].percentage == Decimal("100.0000")
    assert items[0].due_date == START


def test_clp_nine_milestones_every_three_months():
    items = generate_schedule(10_000_000, PlanType.CLP, start_date=START)

    assert len(items) == 9
    assert [i.percentage for i in items] == [
        Decimal(p).quantize(Decimal("0.0001")) for p in (10, 10, 10, 10, 10, 15, 10, 15, 10)
    ]
    assert _total(items) == Decimal("10000000.00")
    assert [i.due_date for i in items] == [
        date(2025, 1, 15), date(2025, 4, 15), date(2025, 7, 15),
        date(2025, 10, 15), date(2026, 1, 15), date(2026, 4, 15),
        date(2026, 7, 15), date(2026, 10, 15), date(2027, 1, 15),
    ]


def test_tlp_down_payment_and_equal_installments():
    items = generate_schedule(
        1_200_000, PlanType.TLP, down_payment_percent=20, installment_count=12, start_date=START
    )

    assert len(items) == 13
    assert items[0].milestone == "Down Payment"
    assert items[0].amount == Decimal("240000.00")
    assert items[0].due_date == START
    for month, item in enumerate(items[1:], start=1):
        assert item.milestone == f"Installment {month}"
        assert item.amount == Decimal("80000.00")
        assert item.due_date == START + relativedelta(months=month)
    assert _total(items) == Decimal("1200000.00")


def test_subvention_zero_placeholder_not_editable():
    items = generate_schedule(3_000_000, PlanType.SUBVENTION, down_payment_percent=10, start_date=START)

    assert [i.milestone for i in items] == ["Down Payment", "During Construction", "On Possession"]
    assert items[0].amount == Decimal("300000.00")
    assert items[1].amount == Decimal("0.00")
    assert items[1].editable is False
    assert items[1].due_date == date(2025, 7, 15)
    assert items[2].amount == Decimal("2700000.00")
    assert items[2].due_date == date(2027, 1, 15)


def test_custom_seed_items():
    items = generate_schedule(2_000_000, PlanType.CUSTOM, start_date=START)

    assert [(i.milestone, i.amount) for i in items] == [
        ("Booking Amount", Decimal("200000.00")),
        ("Balance Payment", Decimal("1800000.00")),
    ]
    assert items[1].due_date == date(2025, 7, 15)


@pytest.mark.parametrize("plan", PlanType.values)
@pytest.mark.parametrize("total", ["1", "999999.99", "1234567.89", "3333333.33", "10000000"])
def test_sum_and_percentage_invariants(plan, total):
    items = generate_schedule(total, plan, down_payment_percent=17, installment_count=7, start_date=START)

    assert _total(items) == Decimal(total).quantize(Decimal("0.01"))
    for item in items:
        expected = item.amount / Decimal(total) * 100
        assert abs(item.percentage - expected) < Decimal("0.0001")


def test_remainder_lands_on_last_item():
    items = generate_schedule("100.00", PlanType.TLP, down_payment_percent=0, installment_count=3, start_date=START)

    assert [i.amount for i in items] == [
        Decimal("0.00"), Decimal("33.33"), Decimal("33.33"), Decimal("33.34"),
    ]


@pytest.mark.parametrize("plan", PlanType.values)
@pytest.mark.parametrize("total", ["0.05", "0.99", "1.19", "60.60", "119.99"])
@pytest.mark.parametrize("count", [7, 99, 120])
def test_no_item_goes_negative(plan, total, count):
    items = generate_schedule(total, plan, down_payment_percent=0, installment_count=count, start_date=START)

    assert all(i.amount >= 0 for i in items)
    assert reconcile_schedule(items, total) == items


def test_tlp_share_rounds_down():
    items = generate_schedule("60.60", PlanType.TLP, down_payment_percent=0, installment_count=120, start_date=START)

    assert items[1].amount == Decimal("0.50")
    assert items[-1].amount == Decimal("1.10")


def test_month_end_start_is_clamped():
    items = generate_schedule(900, PlanType.TLP, installment_count=2, start_date=date(2025, 1, 31))

    assert items[1].due_date == date(2025, 2, 28)
    assert items[2].due_date == date(2025, 3, 31)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"total_amount": 0, "plan_type": "clp"},
        {"total_amount": -5, "plan_type": "clp"},
        {"total_amount": "abc", "plan_type": "clp"},
        {"total_amount": 1000, "plan_type": "weekly"},
        {"total_amount": 1000, "plan_type": "tlp", "down_payment_percent": 101},
        {"total_amount": 1000, "plan_type": "tlp", "installment_count": 0},
        {"total_amount": 1000, "plan_type": "tlp", "installment_count": 121},
    ],
)
def test_invalid_input_raises_validation_error(kwargs):
    with pytest.raises(ValidationError):
        generate_schedule(**kwargs)


def test_edit_recomputes_percentage():
    items = generate_schedule(1_000_000, PlanType.CUSTOM, start_date=START)

    edited = edit_item_amount(items, 0, "250000", 1_000_000)

    assert edited[0].amount == Decimal("250000.00")
    assert edited[0].percentage == Decimal("25.0000")
    assert items[0].amount == Decimal("100000.00")


def test_edit_rejects_locked_item():
    items = generate_schedule(1_000_000, PlanType.SUBVENTION, start_date=START)

    with pytest.raises(ValidationError):
        edit_item_amount(items, 1, 5000, 1_000_000)


def test_reconcile_reports_remaining_amount():
    items = generate_schedule(1_000_000, PlanType.CUSTOM, start_date=START)
    edited = edit_item_amount(items, 0, "250000", 1_000_000)

    with pytest.raises(ValidationError) as exc:
        reconcile_schedule(edited, 1_000_000)

    assert exc.value.extra["remaining"] == "-150000.00"


def test_reconcile_accepts_dicts_and_renumbers():
    rows = [
        {"milestone": "Token", "amount": "100000", "due_date": "2025-01-15"},
        {"milestone": "Balance", "amount": "900000", "due_date": date(2025, 6, 1)},
    ]

    items = reconcile_schedule(rows, "1000000")

    assert all(isinstance(i, ScheduleItem) for i in items)
    assert [i.sequence for i in items] == [1, 2]
    assert items[1].percentage == Decimal("90.0000")


@pytest.mark.parametrize(
    "rows",
    [
        [],
        [{"milestone": "", "amount": "1000", "due_date": "2025-01-01"}],
        [{"milestone": "Token", "amount": "1000", "due_date": "15/01/2025"}],
        [
            {"milestone": "A", "amount": "-100", "due_date": "2025-01-01"},
            {"milestone": "B", "amount": "1100", "due_date": "2025-02-01"},
        ],
    ],
)
def test_reconcile_rejects_bad_rows(rows):
    with pytest.raises(ValidationError):
        reconcile_schedule(rows, 1000)
