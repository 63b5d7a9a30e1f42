"""
Décisions de la machine d'états, sans base ni transport.
"""
import re
from datetime import datetime, timedelta, timezone

import pytest

from core.exceptions import NotFoundError, OwnershipError, PreconditionFailedError
from core.security import generate_tracking_number
from models.common import GeoPin, ParcelStatus, ParcelType
from models.intent import NotifyIntent, PublishIntent
from services.lifecycle import (
    decide_assignment, decide_completion, decide_delivery, decide_location,
    decide_pickup, decide_status_override,
)
from services.pricing_service import calculate_shipping_cost, estimate_delivery_date, resolve_distance_km
from services.qr_service import generate_qr_code, verify_qr_code

NOW = datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc)


def _parcel(**overrides) -> dict:
    parcel = {
        "parcel_id":       "prc_1",
        "tracking_number": "CRR-ABC-1234",
        "customer_id":     "usr_customer",
        "agent_id":        None,
        "pickup_city":     "Dakar",
        "delivery_city":   "Thiès",
        "status":          "pending",
        "actual_delivery_date": None,
    }
    parcel.update(overrides)
    return parcel


# ── Pickup ────────────────────────────────────────────────────────────────────
def test_pickup_pending_parcel_produces_guarded_transition():
    t = decide_pickup(_parcel(), "usr_agent", "CRR-ABC-1234", NOW)

    assert t.parcel_guard["status"] == "pending"
    assert t.parcel_set["status"] == "picked-up"
    assert t.parcel_set["agent_id"] == "usr_agent"
    assert t.delivery_set["picked_up_time"] == NOW
    assert t.delivery_on_insert["parcel_id"] == "prc_1"

    notify, publish = t.intents
    assert isinstance(notify, NotifyIntent) and notify.user_id == "usr_customer"
    assert isinstance(publish, PublishIntent)
    assert publish.event == "status-changed"
    assert publish.channel == "parcel-prc_1"
    assert publish.payload["status"] == "picked-up"


@pytest.mark.parametrize("status", ["picked-up", "in-transit", "delivered", "failed"])
def test_pickup_rejects_non_pending_with_current_status(status):
    with pytest.raises(PreconditionFailedError) as exc:
        decide_pickup(_parcel(status=status), "usr_agent", "CRR-ABC-1234", NOW)
    assert exc.value.error_code == "ERR_WRONG_STATUS"
    assert exc.value.details["current_status"] == status


def test_qr_mismatch_is_checked_before_status():
    with pytest.raises(PreconditionFailedError) as exc:
        decide_pickup(_parcel(status="delivered"), "usr_agent", "CRR-ZZZ-0000", NOW)
    assert exc.value.error_code == "ERR_QR_MISMATCH"


def test_pickup_of_parcel_assigned_to_someone_else():
    with pytest.raises(OwnershipError):
        decide_pickup(_parcel(agent_id="usr_other"), "usr_agent", "CRR-ABC-1234", NOW)


def test_pickup_unknown_parcel():
    with pytest.raises(NotFoundError):
        decide_pickup(None, "usr_agent", "CRR-ABC-1234", NOW)


# ── Delivery ──────────────────────────────────────────────────────────────────
def test_delivery_sets_same_timestamp_on_parcel_and_delivery():
    parcel = _parcel(status="picked-up", agent_id="usr_agent")
    t = decide_delivery(parcel, "usr_agent", " CRR-ABC-1234 ", "sig-data", NOW)

    assert t.parcel_set["actual_delivery_date"] == t.delivery_set["delivered_time"] == NOW
    assert t.delivery_set["signature"] == "sig-data"
    assert [i.event for i in t.intents if isinstance(i, PublishIntent)] == [
        "status-changed", "delivery-completed",
    ]


def test_delivery_by_unassigned_agent():
    parcel = _parcel(status="in-transit", agent_id="usr_agent")
    with pytest.raises(OwnershipError) as exc:
        decide_delivery(parcel, "usr_other", "CRR-ABC-1234", None, NOW)
    assert exc.value.status_code == 403


@pytest.mark.parametrize("status", ["pending", "delivered"])
def test_delivery_rejected_before_pickup_or_twice(status):
    parcel = _parcel(status=status, agent_id="usr_agent")
    with pytest.raises(PreconditionFailedError) as exc:
        decide_delivery(parcel, "usr_agent", "CRR-ABC-1234", None, NOW)
    assert exc.value.details["current_status"] == status


# ── Assignment / location ─────────────────────────────────────────────────────
def test_assignment_requires_an_agent():
    customer = {"user_id": "usr_customer", "role": "customer"}
    with pytest.raises(NotFoundError):
        decide_assignment(_parcel(), customer, "usr_customer", NOW)
    with pytest.raises(NotFoundError):
        decide_assignment(_parcel(), None, "usr_ghost", NOW)


def test_assignment_creates_assigned_delivery_and_targets_agent():
    agent = {"user_id": "usr_agent", "role": "agent", "name": "Moussa"}
    t = decide_assignment(_parcel(), agent, "usr_agent", NOW)

    assert t.parcel_set["agent_id"] == "usr_agent"
    assert "status" not in t.parcel_set
    assert t.delivery_on_insert["status"] == "assigned"
    targets = [i.target_user_id for i in t.intents]
    assert targets == [None, "usr_agent"]


def test_location_requires_assigned_agent():
    with pytest.raises(OwnershipError):
        decide_location(_parcel(agent_id="usr_agent"), "usr_other", 14.7, -17.4, NOW)

    t = decide_location(_parcel(agent_id="usr_agent"), "usr_agent", 14.7, -17.4, NOW)
    assert t.parcel_set["current_location"] == {"lat": 14.7, "lng": -17.4}
    assert t.intents[0].event == "location-updated"


# ── Completion / override ─────────────────────────────────────────────────────
def test_completion_as_failed_keeps_reason_and_no_delivery_date():
    delivery = {"parcel_id": "prc_1", "status": "in-transit"}
    t = decide_completion(
        _parcel(status="in-transit", agent_id="usr_agent"), delivery, "usr_agent",
        ParcelStatus.FAILED, "Destinataire absent", None, NOW,
    )
    assert t.parcel_set["status"] == "failed"
    assert t.parcel_set["actual_delivery_date"] is None
    assert t.delivery_set["failure_reason"] == "Destinataire absent"
    assert t.delivery_set["delivered_time"] is None


def test_completion_without_delivery():
    with pytest.raises(NotFoundError):
        decide_completion(_parcel(), None, "usr_agent", ParcelStatus.DELIVERED, None, None, NOW)


def test_override_to_delivered_keeps_existing_date():
    earlier = NOW - timedelta(days=1)
    parcel = _parcel(status="delivered", actual_delivery_date=earlier)
    t = decide_status_override(parcel, {"parcel_id": "prc_1"}, ParcelStatus.DELIVERED, None, NOW)
    assert t.parcel_set["actual_delivery_date"] == earlier
    assert t.delivery_set["delivered_time"] == earlier


def test_override_away_from_delivered_clears_date():
    parcel = _parcel(status="delivered", actual_delivery_date=NOW)
    t = decide_status_override(parcel, {"parcel_id": "prc_1"}, ParcelStatus.IN_TRANSIT, "retour", NOW)
    assert t.parcel_set["actual_delivery_date"] is None
    assert t.parcel_set["notes"] == "retour"
    assert t.delivery_set["status"] == "in-transit"


def test_override_to_pending_leaves_delivery_untouched():
    t = decide_status_override(_parcel(status="failed"), {"parcel_id": "prc_1"}, ParcelStatus.PENDING, None, NOW)
    assert t.delivery_set is None


def test_completion_without_signature_keeps_captured_one():
    delivery = {"parcel_id": "prc_1", "status": "delivered", "signature": "data:sig"}
    t = decide_completion(
        _parcel(status="delivered", agent_id="usr_agent"), delivery, "usr_agent",
        ParcelStatus.DELIVERED, None, None, NOW,
    )
    assert "signature" not in t.delivery_set


def test_override_of_parcel_without_delivery_creates_one():
    t = decide_status_override(_parcel(), None, ParcelStatus.IN_TRANSIT, None, NOW)
    assert t.delivery_set["status"] == "in-transit"
    assert t.delivery_on_insert["parcel_id"] == "prc_1"
    assert t.delivery_on_insert["agent_id"] is None


# ── Tarifs, QR, tracking ──────────────────────────────────────────────────────
def test_shipping_cost_is_base_plus_two_per_km():
    assert calculate_shipping_cost(ParcelType.SMALL_PACKAGE, 0) == 100
    assert calculate_shipping_cost(ParcelType.SMALL_PACKAGE, 10) == 120
    assert calculate_shipping_cost(ParcelType.DOCUMENT, 2.5) == 55
    assert calculate_shipping_cost(ParcelType.LARGE_PACKAGE, 0) == 400


def test_distance_resolution():
    dakar = GeoPin(lat=14.6928, lng=-17.4467)
    thies = GeoPin(lat=14.7910, lng=-16.9359)
    assert 50 < resolve_distance_km(dakar, thies, 999) < 60
    assert resolve_distance_km(dakar, None, 12.5) == 12.5
    assert resolve_distance_km(None, None, None) == 0


def test_estimated_delivery_is_three_days_later():
    assert estimate_delivery_date(NOW) == NOW + timedelta(days=3)


def test_tracking_number_format():
    for _ in range(20):
        assert re.fullmatch(r"CRR-[A-Z0-9]{3}-[A-Z0-9]{4}", generate_tracking_number())


def test_qr_code_is_png_data_uri():
    assert generate_qr_code("CRR-ABC-1234").startswith("data:image/png;base64,")


def test_qr_verification_ignores_surrounding_whitespace():
    assert verify_qr_code("  CRR-ABC-1234\n", "CRR-ABC-1234")
    assert not verify_qr_code("CRR-ABC-1235", "CRR-ABC-1234")
