import threading
from datetime import date
from decimal import Decimal

import pytest
from django.core import mail
from django.db import connection

from booking import services
from booking.models import (
    Booking,
    BookingStatusHistory,
    Negotiation,
    NegotiationStatus,
    Payment,
    PaymentStatus,
)
from channel.models import ChannelPartner, ChannelPartnerLead
from clientsetup import lifecycle
from clientsetup.models import Project, Tower, Unit, UnitStatus, UnitStatusHistory
from common.exceptions import ConflictError, NotFoundError, ValidationError
from salelead.models import LeadStatus


def _book(ctx, lead, unit, **kwargs):
    return services.create_booking(ctx, lead_id=lead.pk, unit_id=unit.pk, **kwargs)


# --- create_booking ---

def test_create_booking_books_unit_and_advances_lead(ctx, lead, unit):
    booking = _book(ctx, lead, unit, token_amount="100000", discount_amount="40000")

    unit.refresh_from_db()
    lead.refresh_from_db()
    assert unit.status == UnitStatus.BOOKED
    assert lead.status == LeadStatus.BOOKING
    assert booking.total_amount == Decimal("5340000.00")
    assert booking.final_amount == Decimal("5300000.00")
    assert booking.sales_person_id == ctx.user_id
    assert booking.form_ref_no == f"BKG-{unit.project_id}-{booking.pk:06d}"
    assert BookingStatusHistory.objects.filter(booking=booking, action="CREATE").exists()


def test_blocked_unit_can_be_booked(ctx, lead, unit):
    lifecycle.block_unit(unit.pk, ctx, hours=24)

    _book(ctx, lead, unit)

    unit.refresh_from_db()
    assert unit.status == UnitStatus.BOOKED
    assert unit.block_expiry_at is None


def test_second_booking_of_same_unit_conflicts(ctx, exec_ctx, make_lead, unit):
    first_lead, second_lead = make_lead(), make_lead()

    _book(ctx, first_lead, unit)

    with pytest.raises(ConflictError) as exc:
        _book(exec_ctx, second_lead, unit)

    assert exc.value.current_status == UnitStatus.BOOKED
    assert Booking.objects.filter(unit=unit).count() == 1
    second_lead.refresh_from_db()
    assert second_lead.status == LeadStatus.NEW


def test_booking_lost_between_read_and_update_rolls_back(exec_ctx, lead, unit, monkeypatch):
    real_current_status = lifecycle._current_status
    calls = {"n": 0}

    def booked_meanwhile(unit_id, lock=False):
        calls["n"] += 1
        if calls["n"] == 1:
            # the row moves on while this caller still sees it available
            Unit.objects.filter(pk=unit_id).update(status=UnitStatus.BOOKED)
            return UnitStatus.AVAILABLE
        return real_current_status(unit_id, lock=lock)

    monkeypatch.setattr(lifecycle, "_current_status", booked_meanwhile)

    with pytest.raises(ConflictError) as exc:
        _book(exec_ctx, lead, unit)

    assert exc.value.current_status == UnitStatus.BOOKED
    assert not Booking.objects.filter(unit=unit).exists()
    assert not UnitStatusHistory.objects.filter(unit=unit).exists()
    lead.refresh_from_db()
    assert lead.status == LeadStatus.NEW


@pytest.mark.django_db(transaction=True)
def test_concurrent_bookings_have_one_winner(ctx, exec_ctx, make_lead, unit):
    if connection.vendor == "sqlite":
        pytest.skip("needs row-level locking; run with TEST_ON_POSTGRES=1")

    leads = [make_lead(), make_lead()]
    barrier = threading.Barrier(2)
    booked, conflicts, failures = [], [], []

    def attempt(rctx, lead):
        try:
            barrier.wait(timeout=10)
            booked.append(_book(rctx, lead, unit))
        except ConflictError as exc:
            conflicts.append(exc)
        except Exception as exc:  # noqa: BLE001
            failures.append(exc)
        finally:
            connection.close()

    threads = [threading.Thread(target=attempt, args=pair) for pair in zip((ctx, exec_ctx), leads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert failures == []
    assert len(booked) == 1
    assert len(conflicts) == 1
    assert conflicts[0].current_status == UnitStatus.BOOKED
    assert Booking.objects.filter(unit=unit).count() == 1
    assert UnitStatusHistory.objects.filter(unit=unit, new_status=UnitStatus.BOOKED).count() == 1


def test_missing_lead_or_unit_is_not_found(ctx, lead, unit):
    with pytest.raises(NotFoundError):
        services.create_booking(ctx, lead_id=999999, unit_id=unit.pk)
    with pytest.raises(NotFoundError):
        services.create_booking(ctx, lead_id=lead.pk, unit_id=999999)

    unit.refresh_from_db()
    assert unit.status == UnitStatus.AVAILABLE


def test_bad_amounts_roll_back_unit(ctx, lead, unit):
    with pytest.raises(ValidationError):
        _book(ctx, lead, unit, total_amount="1000000", discount_amount="10", final_amount="500000")

    unit.refresh_from_db()
    assert unit.status == UnitStatus.AVAILABLE
    assert not Booking.objects.exists()


def test_booking_with_schedule_creates_payments(ctx, lead, unit):
    schedule = [
        {"milestone": "Token", "amount": "340000", "due_date": date(2025, 1, 1)},
        {"milestone": "Agreement", "amount": "5000000", "due_date": date(2025, 3, 1)},
    ]

    booking = _book(ctx, lead, unit, schedule=schedule)

    payments = list(booking.payments.order_by("sequence"))
    assert [(p.milestone, p.amount) for p in payments] == [
        ("Token", Decimal("340000.00")),
        ("Agreement", Decimal("5000000.00")),
    ]
    assert all(p.status == PaymentStatus.PENDING for p in payments)


def test_unbalanced_schedule_rolls_back_everything(ctx, lead, unit):
    schedule = [{"milestone": "Token", "amount": "100", "due_date": date(2025, 1, 1)}]

    with pytest.raises(ValidationError) as exc:
        _book(ctx, lead, unit, schedule=schedule)

    assert exc.value.extra["remaining"] == "5339900.00"
    unit.refresh_from_db()
    assert unit.status == UnitStatus.AVAILABLE
    assert not Booking.objects.exists()
    assert not Payment.objects.exists()


def test_booking_fixes_partner_commission(ctx, lead, unit, master):
    partner = ChannelPartner.objects.create(
        name="Prime Realty", phone="9000000001", commission_rate=Decimal("2.00"), created_by=master
    )
    link = ChannelPartnerLead.objects.create(partner=partner, lead=lead)

    booking = _book(ctx, lead, unit)

    link.refresh_from_db()
    assert link.booking_id == booking.pk
    assert link.commission_amount == Decimal("106800.00")


def test_booking_created_email(ctx, lead, unit, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        booking = _book(ctx, lead, unit)

    assert len(mail.outbox) == 1
    msg = mail.outbox[0]
    assert booking.form_ref_no in msg.body
    assert set(msg.to) == {lead.email, "master@example.com"}


# --- negotiations ---

def test_negotiation_starts_pending_with_derived_discount(ctx, lead, unit):
    neg = services.create_negotiation(
        ctx, lead=lead, unit=unit, offered_price=Decimal("5000000"), status=NegotiationStatus.APPROVED
    )

    assert neg.status == NegotiationStatus.PENDING
    assert neg.project_id == unit.project_id
    assert neg.base_price == Decimal("5340000.00")
    assert neg.discount_percent == Decimal("6.37")
    lead.refresh_from_db()
    assert lead.status == LeadStatus.NEGOTIATION


def test_approval_creates_booking(ctx, lead, unit):
    neg = services.create_negotiation(
        ctx, lead=lead, unit=unit, offered_price=Decimal("5000000"), token_amount=Decimal("50000")
    )
    services.update_negotiation(ctx, neg.pk, {"status": NegotiationStatus.NEGOTIATING})

    neg = services.update_negotiation(ctx, neg.pk, {"status": NegotiationStatus.APPROVED})

    assert neg.status == NegotiationStatus.APPROVED
    assert neg.approved_by_id == ctx.user_id
    booking = neg.booking
    assert booking.final_amount == Decimal("5000000.00")
    assert booking.discount_amount == Decimal("340000.00")
    assert booking.token_amount == Decimal("50000.00")
    unit.refresh_from_db()
    assert unit.status == UnitStatus.BOOKED


def test_failed_approval_leaves_negotiation_untouched(ctx, make_lead, unit):
    buyer, rival = make_lead(), make_lead()
    neg = services.create_negotiation(ctx, lead=buyer, unit=unit)
    services.update_negotiation(ctx, neg.pk, {"status": NegotiationStatus.NEGOTIATING})
    _book(ctx, rival, unit)

    with pytest.raises(ConflictError) as exc:
        services.update_negotiation(
            ctx, neg.pk, {"status": NegotiationStatus.APPROVED, "admin_notes": "ok"}
        )

    assert exc.value.current_status == UnitStatus.BOOKED
    neg = Negotiation.objects.get(pk=neg.pk)
    assert neg.status == NegotiationStatus.NEGOTIATING
    assert neg.booking_id is None
    assert neg.admin_notes == ""
    assert Booking.objects.filter(unit=unit).count() == 1


def test_approval_needs_unit(ctx, lead):
    neg = services.create_negotiation(ctx, lead=lead, requested_price=Decimal("100"))
    services.update_negotiation(ctx, neg.pk, {"status": NegotiationStatus.NEGOTIATING})

    with pytest.raises(ValidationError):
        services.update_negotiation(ctx, neg.pk, {"status": NegotiationStatus.APPROVED})


def test_pending_cannot_jump_to_approved(ctx, lead, unit):
    neg = services.create_negotiation(ctx, lead=lead, unit=unit)

    with pytest.raises(ConflictError) as exc:
        services.update_negotiation(ctx, neg.pk, {"status": NegotiationStatus.APPROVED})

    assert exc.value.current_status == NegotiationStatus.PENDING
    assert not Booking.objects.exists()


@pytest.mark.parametrize("changes", [{"notes": "again"}, {"status": NegotiationStatus.NEGOTIATING}])
def test_terminal_negotiation_is_frozen(ctx, lead, unit, changes):
    neg = services.create_negotiation(ctx, lead=lead, unit=unit)
    services.update_negotiation(ctx, neg.pk, {"status": NegotiationStatus.REJECTED, "admin_notes": "too low"})

    with pytest.raises(ConflictError) as exc:
        services.update_negotiation(ctx, neg.pk, changes)
    assert exc.value.current_status == NegotiationStatus.REJECTED


def test_changing_unit_moves_negotiation_to_its_project(ctx, lead, unit, make_unit, master):
    other_project = Project.objects.create(name="Lakeview", developer=master)
    other_tower = Tower.objects.create(project=other_project, name="L1", floors=5, units_per_floor=2)
    other_unit = make_unit(tower=other_tower)
    neg = services.create_negotiation(ctx, lead=lead, unit=unit)
    assert neg.project_id == unit.project_id

    neg = services.update_negotiation(ctx, neg.pk, {"unit": other_unit})

    assert neg.project_id == other_project.pk
    assert Negotiation.objects.get(pk=neg.pk).project_id == other_project.pk


def test_non_terminal_field_update_recomputes_discount(ctx, lead, unit):
    neg = services.create_negotiation(ctx, lead=lead, unit=unit)

    neg = services.update_negotiation(ctx, neg.pk, {"requested_price": Decimal("4806000")})

    assert neg.status == NegotiationStatus.PENDING
    assert neg.discount_percent == Decimal("10.00")


# --- schedules and payments ---

def test_save_generated_schedule(ctx, lead, unit):
    booking = _book(ctx, lead, unit, payment_plan="clp")

    payments = services.save_schedule(ctx, booking.pk, start_date=date(2025, 1, 1))

    assert len(payments) == 9
    assert sum(p.amount for p in payments) == booking.final_amount
    assert BookingStatusHistory.objects.filter(booking=booking, action="SCHEDULE").exists()


def test_save_schedule_switches_plan(ctx, lead, unit):
    booking = _book(ctx, lead, unit, payment_plan="clp")

    services.save_schedule(ctx, booking.pk, plan_type="full_dp")

    booking.refresh_from_db()
    assert booking.payment_plan == "full_dp"
    assert booking.payments.count() == 1


def test_schedule_locked_after_receipt(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    payment = services.save_schedule(ctx, booking.pk, plan_type="full_dp")[0]
    services.record_payment(ctx, payment.pk, amount="1000")

    with pytest.raises(ConflictError) as exc:
        services.save_schedule(ctx, booking.pk, plan_type="clp")

    assert exc.value.current_status == "payments_received"
    assert booking.payments.count() == 1


def test_subvention_placeholder_is_stored_locked(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    payments = services.save_schedule(ctx, booking.pk, plan_type="subvention", start_date=date(2025, 1, 1))
    placeholder = payments[1]
    assert placeholder.editable is False

    with pytest.raises(ValidationError):
        services.update_payment(ctx, placeholder.pk, {"amount": Decimal("12345")})

    assert Payment.objects.get(pk=placeholder.pk).amount == Decimal("0.00")


def test_payment_edit_must_keep_schedule_balanced(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    first = services.save_schedule(ctx, booking.pk, plan_type="custom", start_date=date(2025, 1, 1))[0]

    with pytest.raises(ValidationError) as exc:
        services.update_payment(ctx, first.pk, {"amount": Decimal("600000")})
    assert exc.value.extra["remaining"] == "-66000.00"

    moved = services.update_payment(ctx, first.pk, {"due_date": date(2025, 2, 1), "notes": "after loan"})

    assert moved.due_date == date(2025, 2, 1)
    assert sum(p.amount for p in booking.payments.all()) == booking.final_amount
    assert BookingStatusHistory.objects.filter(booking=booking, action="MANUAL_UPDATE").count() == 1


def test_added_payment_must_keep_schedule_balanced(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    services.save_schedule(ctx, booking.pk, plan_type="full_dp", start_date=date(2025, 1, 1))

    with pytest.raises(ValidationError) as exc:
        services.add_payment(ctx, booking.pk, milestone="Parking", amount=Decimal("999"), due_date=date(2025, 6, 1))
    assert exc.value.extra["remaining"] == "-999.00"
    assert booking.payments.count() == 1

    extra = services.add_payment(
        ctx, booking.pk, milestone="Club membership", amount=Decimal("0"), due_date=date(2025, 6, 1)
    )
    assert extra.sequence == 2
    assert sum(p.amount for p in booking.payments.all()) == booking.final_amount


def test_paid_payment_cannot_be_edited(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    payment = services.save_schedule(ctx, booking.pk, plan_type="full_dp")[0]
    services.record_payment(ctx, payment.pk, amount=payment.amount)

    with pytest.raises(ConflictError) as exc:
        services.update_payment(ctx, payment.pk, {"notes": "late"})
    assert exc.value.current_status == PaymentStatus.PAID


def test_record_payment_partial_then_paid(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    payment = services.save_schedule(ctx, booking.pk, plan_type="custom")[0]

    payment = services.record_payment(ctx, payment.pk, amount="200000", payment_method="NEFT")
    assert payment.status == PaymentStatus.PARTIAL
    assert payment.balance == Decimal("334000.00")

    with pytest.raises(ValidationError):
        services.record_payment(ctx, payment.pk, amount="334000.01")

    payment = services.record_payment(ctx, payment.pk, amount="334000", transaction_ref="UTR123")
    assert payment.status == PaymentStatus.PAID
    assert payment.paid_amount == payment.amount
    assert payment.transaction_ref == "UTR123"

    with pytest.raises(ConflictError):
        services.record_payment(ctx, payment.pk, amount="1")


def test_record_payment_rejects_zero(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    payment = services.save_schedule(ctx, booking.pk, plan_type="full_dp")[0]

    with pytest.raises(ValidationError):
        services.record_payment(ctx, payment.pk, amount="0")


def test_mark_overdue_payments(ctx, lead, unit):
    booking = _book(ctx, lead, unit)
    payments = services.save_schedule(
        ctx, booking.pk, plan_type="tlp", installment_count=12, start_date=date(2024, 1, 1)
    )
    services.record_payment(ctx, payments[0].pk, amount=payments[0].amount)

    flagged = services.mark_overdue_payments(today=date(2024, 6, 15))

    # installments due Feb 1 .. Jun 1; the paid down payment is left alone
    assert flagged == 5
    assert Payment.objects.get(pk=payments[0].pk).status == PaymentStatus.PAID
    assert Payment.objects.filter(booking=booking, status=PaymentStatus.OVERDUE).count() == 5
