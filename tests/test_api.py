import io
from decimal import Decimal

import pytest
from openpyxl import Workbook, load_workbook

from booking.models import Booking, NegotiationStatus
from clientsetup.models import Unit, UnitStatus

pytestmark = pytest.mark.django_db


UNIT_PAYLOAD = {
    "unit_number": "B-501",
    "floor": 5,
    "property_type": "flat",
    "base_rate": "4800000",
    "plc": "200000",
    "gst": "240000",
    "stamp_duty": "100000",
}


def test_requests_need_authentication(api_client):
    resp = api_client.get("/api/units/")
    assert resp.status_code == 401
    assert resp.json()["kind"] == "unauthorized"


# --- units ---

def test_create_unit_computes_total_and_ignores_status(client_for, master, tower):
    client = client_for(master)
    payload = dict(UNIT_PAYLOAD, tower=tower.pk, total_price="1.00", status="sold")

    resp = client.post("/api/units/", payload, format="json")

    assert resp.status_code == 201, resp.json()
    body = resp.json()
    assert body["total_price"] == "5340000.00"
    assert body["status"] == UnitStatus.AVAILABLE
    assert body["project"] == tower.project_id


def test_update_unit_recomputes_total(client_for, master, unit):
    client = client_for(master)

    resp = client.patch(f"/api/units/{unit.pk}/", {"gst": "0", "total_price": "9"}, format="json")

    assert resp.status_code == 200
    assert resp.json()["total_price"] == "5100000.00"


def test_duplicate_unit_number_is_400(client_for, master, unit):
    client = client_for(master)
    payload = dict(UNIT_PAYLOAD, tower=unit.tower_id, unit_number=unit.unit_number)

    resp = client.post("/api/units/", payload, format="json")

    assert resp.status_code == 400
    body = resp.json()
    assert body["kind"] == "validation"
    assert "unit_number" in body["errors"]


def test_floor_above_tower_is_400(client_for, master, tower):
    resp = client_for(master).post(
        "/api/units/", dict(UNIT_PAYLOAD, tower=tower.pk, floor=tower.floors + 1), format="json"
    )
    assert resp.status_code == 400
    assert "floor" in resp.json()["errors"]


def test_missing_unit_is_404(client_for, master):
    client = client_for(master)

    assert client.get("/api/units/999999/").status_code == 404
    resp = client.post("/api/units/999999/block/", {}, format="json")
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"


def test_block_twice_is_409_with_current_status(client_for, executive, unit):
    client = client_for(executive)

    first = client.post(f"/api/units/{unit.pk}/block/", {"hours": 2}, format="json")
    second = client.post(f"/api/units/{unit.pk}/block/", {}, format="json")

    assert first.status_code == 200
    assert first.json()["status"] == UnitStatus.BLOCKED
    assert second.status_code == 409
    assert second.json() == {
        "kind": "conflict",
        "detail": "Cannot block unit: current status is 'blocked'.",
        "attempted": "block unit",
        "current_status": "blocked",
    }


def test_unblock_available_unit_is_409(client_for, executive, unit):
    resp = client_for(executive).post(f"/api/units/{unit.pk}/unblock/", {}, format="json")
    assert resp.status_code == 409
    assert resp.json()["current_status"] == UnitStatus.AVAILABLE


def test_negative_block_hours_is_400(client_for, executive, unit):
    resp = client_for(executive).post(f"/api/units/{unit.pk}/block/", {"hours": -3}, format="json")
    assert resp.status_code == 400


def test_sell_needs_manager_role(client_for, executive, master, unit, ctx):
    from clientsetup import lifecycle

    lifecycle.book_unit(unit.pk, ctx)

    assert client_for(executive).post(f"/api/units/{unit.pk}/sell/", {}, format="json").status_code == 403
    resp = client_for(master).post(f"/api/units/{unit.pk}/sell/", {"reason": "Registry done"}, format="json")
    assert resp.status_code == 200
    assert resp.json()["status"] == UnitStatus.SOLD


def test_unit_history(client_for, master, unit):
    client = client_for(master)
    client.post(f"/api/units/{unit.pk}/block/", {"reason": "Client visit"}, format="json")

    resp = client.get(f"/api/units/{unit.pk}/history/")

    assert resp.status_code == 200
    assert resp.json()[0]["reason"] == "Client visit"
    assert resp.json()[0]["new_status"] == UnitStatus.BLOCKED


def test_delete_only_available_units(client_for, master, make_unit, ctx):
    from clientsetup import lifecycle

    free, held = make_unit(), make_unit()
    lifecycle.block_unit(held.pk, ctx)
    client = client_for(master)

    assert client.delete(f"/api/units/{free.pk}/").status_code == 204
    resp = client.delete(f"/api/units/{held.pk}/")
    assert resp.status_code == 409
    assert Unit.objects.filter(pk=held.pk).exists()


def test_filters_and_available_units(client_for, master, project, make_unit, ctx):
    from clientsetup import lifecycle

    make_unit()
    lifecycle.block_unit(make_unit().pk, ctx)
    client = client_for(master)

    assert len(client.get("/api/units/", {"status": "blocked"}).json()) == 1
    assert len(client.get(f"/api/projects/{project.pk}/available-units/").json()) == 1


def test_tower_floors(client_for, master, make_unit, tower):
    make_unit(floor=3)
    make_unit(floor=1)
    make_unit(floor=3)

    resp = client_for(master).get(f"/api/towers/{tower.pk}/floors/")

    assert resp.json() == {"tower_id": tower.pk, "floors": [1, 3]}


def test_project_towers_action(client_for, master, project):
    client = client_for(master)

    resp = client.post(f"/api/projects/{project.pk}/towers/", {"name": "B", "floors": 12}, format="json")
    assert resp.status_code == 201
    dup = client.post(f"/api/projects/{project.pk}/towers/", {"name": "B", "floors": 12}, format="json")
    assert dup.status_code == 400
    assert [t["name"] for t in client.get(f"/api/projects/{project.pk}/towers/").json()] == ["B"]


def test_export_units_xlsx(client_for, master, unit):
    resp = client_for(master).get("/api/units/export/")

    assert resp.status_code == 200
    assert resp["Content-Type"].startswith("application/vnd.openxmlformats")
    ws = load_workbook(io.BytesIO(resp.content)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][3] == "unit_number"
    assert rows[1][3] == unit.unit_number
    assert rows[1][11] == 5340000.0


def test_import_units_reports_bad_rows(client_for, master, unit, tower):
    wb = Workbook()
    ws = wb.active
    ws.append(["Tower", "Unit_No", "Floor", "Rate", "PLC", "GST", "Stamp Duty"])
    ws.append([tower.pk, "C-101", 2, 3000000, 100000, 150000, 60000])
    ws.append([tower.pk, unit.unit_number, 1, 3000000, 0, 0, 0])
    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    buf.name = "units.xlsx"

    resp = client_for(master).post("/api/units/import/", {"file": buf}, format="multipart")

    assert resp.status_code == 207, resp.json()
    body = resp.json()
    assert len(body["created_ids"]) == 1
    assert body["errors"][0]["row"] == 3
    created = Unit.objects.get(pk=body["created_ids"][0])
    assert created.total_price == Decimal("3310000.00")


# --- schedule preview ---

def test_schedule_preview(client_for, executive):
    resp = client_for(executive).post(
        "/api/costsheet/schedule/preview/",
        {"total_amount": "1200000", "plan_type": "tlp", "start_date": "2025-01-15"},
        format="json",
    )

    assert resp.status_code == 200
    items = resp.json()["items"]
    assert len(items) == 13
    assert items[0]["amount"] == "240000.00"
    assert items[1]["due_date"] == "2025-02-15"


@pytest.mark.parametrize(
    "payload",
    [
        {"total_amount": "0", "plan_type": "clp"},
        {"total_amount": "1000", "plan_type": "weekly"},
        {"plan_type": "clp"},
    ],
)
def test_schedule_preview_rejects_bad_input(client_for, executive, payload):
    resp = client_for(executive).post("/api/costsheet/schedule/preview/", payload, format="json")
    assert resp.status_code == 400
    assert resp.json()["kind"] == "validation"


# --- bookings ---

def test_booking_endpoint_and_double_booking(client_for, executive, make_lead, unit):
    client = client_for(executive)
    first, second = make_lead(), make_lead()

    ok = client.post(
        "/api/bookings/",
        {"lead": first.pk, "unit": unit.pk, "token_amount": "1,00,000", "payment_plan": "clp"},
        format="json",
    )
    clash = client.post("/api/bookings/", {"lead": second.pk, "unit": unit.pk}, format="json")

    assert ok.status_code == 201, ok.json()
    assert ok.json()["token_amount"] == "100000.00"
    assert clash.status_code == 409
    assert clash.json()["current_status"] == UnitStatus.BOOKED
    assert Booking.objects.count() == 1


def test_booking_missing_fields_and_entities(client_for, executive, lead, unit):
    client = client_for(executive)

    missing = client.post("/api/bookings/", {"lead": lead.pk}, format="json")
    assert missing.status_code == 400
    assert "unit" in missing.json()["errors"]

    unknown = client.post("/api/bookings/", {"lead": 999999, "unit": unit.pk}, format="json")
    assert unknown.status_code == 404
    unit.refresh_from_db()
    assert unit.status == UnitStatus.AVAILABLE


def test_booking_schedule_and_payment_record(client_for, executive, lead, unit):
    client = client_for(executive)
    booking_id = client.post("/api/bookings/", {"lead": lead.pk, "unit": unit.pk}, format="json").json()["id"]

    sched = client.post(
        f"/api/bookings/{booking_id}/schedule/",
        {"plan_type": "subvention", "start_date": "2025-01-01"},
        format="json",
    )
    assert sched.status_code == 201
    payments = sched.json()
    assert [p["milestone"] for p in payments] == ["Down Payment", "During Construction", "On Possession"]

    rec = client.post(f"/api/payments/{payments[0]['id']}/record/", {"amount": "1068000"}, format="json")
    assert rec.status_code == 200
    assert rec.json()["status"] == "paid"

    again = client.post(f"/api/bookings/{booking_id}/schedule/", {"plan_type": "clp"}, format="json")
    assert again.status_code == 409
    assert again.json()["current_status"] == "payments_received"

    pending = client.get("/api/payments/pending/").json()
    assert {p["id"] for p in pending} == {payments[1]["id"], payments[2]["id"]}


def test_booking_schedule_items_must_balance(client_for, executive, lead, unit):
    client = client_for(executive)
    booking_id = client.post("/api/bookings/", {"lead": lead.pk, "unit": unit.pk}, format="json").json()["id"]

    resp = client.post(
        f"/api/bookings/{booking_id}/schedule/",
        {"items": [{"milestone": "Token", "amount": "1000", "due_date": "2025-01-01"}]},
        format="json",
    )

    assert resp.status_code == 400
    assert resp.json()["remaining"] == "5339000.00"


def test_payment_writes_keep_schedule_summing_to_final(client_for, executive, lead, unit):
    client = client_for(executive)
    booking = client.post("/api/bookings/", {"lead": lead.pk, "unit": unit.pk}, format="json").json()
    payments = client.post(
        f"/api/bookings/{booking['id']}/schedule/",
        {"plan_type": "subvention", "start_date": "2025-01-01"},
        format="json",
    ).json()
    placeholder = payments[1]
    assert placeholder["editable"] is False

    locked = client.patch(f"/api/payments/{placeholder['id']}/", {"amount": "12345"}, format="json")
    assert locked.status_code == 400

    extra = client.post(
        "/api/payments/",
        {"booking": booking["id"], "milestone": "Parking", "amount": "999", "due_date": "2025-06-01"},
        format="json",
    )
    assert extra.status_code == 400
    assert extra.json()["remaining"] == "-999.00"

    noted = client.patch(f"/api/payments/{payments[0]['id']}/", {"notes": "cheque"}, format="json")
    assert noted.status_code == 200
    assert noted.json()["notes"] == "cheque"

    final = Booking.objects.get(pk=booking["id"])
    assert sum(p.amount for p in final.payments.all()) == final.final_amount


def test_payment_cannot_be_added_to_hidden_booking(client_for, executive, other_executive, lead, unit):
    booking_id = client_for(executive).post(
        "/api/bookings/", {"lead": lead.pk, "unit": unit.pk}, format="json"
    ).json()["id"]

    resp = client_for(other_executive).post(
        "/api/payments/",
        {"booking": booking_id, "milestone": "Extra", "amount": "0", "due_date": "2025-06-01"},
        format="json",
    )

    assert resp.status_code == 404
    assert not Booking.objects.get(pk=booking_id).payments.exists()


def test_booking_update_limited_to_dates(client_for, executive, lead, unit):
    client = client_for(executive)
    booking = client.post("/api/bookings/", {"lead": lead.pk, "unit": unit.pk}, format="json").json()

    resp = client.patch(
        f"/api/bookings/{booking['id']}/",
        {"notes": "Loan from HDFC", "final_amount": "1"},
        format="json",
    )

    assert resp.status_code == 200
    assert resp.json()["notes"] == "Loan from HDFC"
    assert resp.json()["final_amount"] == booking["final_amount"]


def test_booking_not_deletable(client_for, master, lead, unit, ctx):
    from booking.services import create_booking

    booking = create_booking(ctx, lead_id=lead.pk, unit_id=unit.pk)
    assert client_for(master).delete(f"/api/bookings/{booking.pk}/").status_code == 405


# --- negotiations ---

def test_negotiation_flow_over_http(client_for, executive, lead, unit):
    client = client_for(executive)

    created = client.post(
        "/api/negotiations/",
        {"lead": lead.pk, "unit": unit.pk, "requested_price": "50,00,000", "status": "approved"},
        format="json",
    )
    assert created.status_code == 201, created.json()
    neg = created.json()
    assert neg["status"] == NegotiationStatus.PENDING

    jump = client.put(f"/api/negotiations/{neg['id']}/", {"status": "approved"}, format="json")
    assert jump.status_code == 409
    assert jump.json()["current_status"] == "pending"

    client.put(f"/api/negotiations/{neg['id']}/", {"status": "negotiating", "offered_price": "5100000"}, format="json")
    approved = client.put(f"/api/negotiations/{neg['id']}/", {"status": "approved"}, format="json")

    assert approved.status_code == 200
    assert approved.json()["booking"] is not None
    booking = Booking.objects.get(pk=approved.json()["booking"])
    assert booking.final_amount == Decimal("5100000.00")

    frozen = client.put(f"/api/negotiations/{neg['id']}/", {"notes": "late"}, format="json")
    assert frozen.status_code == 409


def test_unit_must_belong_to_project(client_for, executive, lead, unit, master):
    from clientsetup.models import Project

    elsewhere = Project.objects.create(name="Other", developer=master)
    resp = client_for(executive).post(
        "/api/negotiations/", {"lead": lead.pk, "unit": unit.pk, "project": elsewhere.pk}, format="json"
    )
    assert resp.status_code == 400
