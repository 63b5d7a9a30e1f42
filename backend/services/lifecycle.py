"""
Machine d'états colis : décisions pures.

Chaque fonction `decide_*` prend l'état lu en base, l'acteur et la commande,
et retourne une `Transition` (écritures conditionnelles + intents), ou lève
une erreur métier. Aucun accès base ni transport ici.
"""
import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from core.exceptions import NotFoundError, OwnershipError, qr_mismatch_error, wrong_status_error
from models.common import DeliveryStatus, ParcelStatus, UserRole, as_delivery_status, parcel_channel
from models.intent import Intent, NotifyIntent, PublishIntent
from services.qr_service import verify_qr_code


class Transition(BaseModel):
    parcel_id:     str
    # Filtre ajouté au find_one_and_update du colis (check-and-set)
    parcel_guard:  dict = {}
    parcel_set:    dict = {}
    # None = pas d'écriture livraison
    delivery_set:  Optional[dict] = None
    # Renseigné = la livraison est créée si absente
    delivery_on_insert: Optional[dict] = None
    intents:       List[Intent] = []


def _delivery_id() -> str:
    return f"dlv_{uuid.uuid4().hex[:12]}"


def new_delivery_doc(parcel_id: str, now: datetime) -> dict:
    """Champs posés uniquement à la création d'une livraison."""
    return {
        "delivery_id":    _delivery_id(),
        "parcel_id":      parcel_id,
        "failure_reason": None,
        "signature":      None,
        "photos":         [],
        "route":          [],
        "current_location": None,
        "created_at":     now,
    }


def _status_changed(parcel: dict, status: ParcelStatus, actor_id: str, now: datetime) -> PublishIntent:
    return PublishIntent(
        event="status-changed",
        channel=parcel_channel(parcel["parcel_id"]),
        payload={
            "parcel_id":       parcel["parcel_id"],
            "tracking_number": parcel["tracking_number"],
            "status":          status.value,
            "agent_id":        actor_id,
            "timestamp":       now,
        },
    )


def _notify_customer(parcel: dict, subject: str, message: str, html: Optional[str] = None) -> NotifyIntent:
    return NotifyIntent(
        user_id=parcel["customer_id"],
        subject=subject,
        message=message,
        html=html,
        ref_id=parcel["parcel_id"],
    )


def _check_scan(parcel: Optional[dict], scanned_data: str) -> dict:
    if not parcel:
        raise NotFoundError("Colis", scanned_data.strip())
    if not verify_qr_code(scanned_data, parcel["tracking_number"]):
        raise qr_mismatch_error(parcel["tracking_number"])
    return parcel


# ── Book ──────────────────────────────────────────────────────────────────────
def booking_intents(parcel: dict, customer: dict) -> List[Intent]:
    tracking = parcel["tracking_number"]
    eta = parcel["estimated_delivery_date"].strftime("%d/%m/%Y")
    return [
        _notify_customer(
            parcel,
            "Colis réservé",
            f"Bonjour {customer.get('name', '')}, votre colis {tracking} est réservé. "
            f"Livraison estimée le {eta}.",
            f"<p>Bonjour <strong>{customer.get('name', '')}</strong>,</p>"
            f"<p>Votre colis <strong>{tracking}</strong> est réservé et en cours de traitement.</p>"
            f"<p><strong>Livraison estimée :</strong> {eta}</p>",
        ),
        PublishIntent(
            event="parcel-booked",
            payload={
                "parcel_id":       parcel["parcel_id"],
                "tracking_number": tracking,
                "pickup_city":     parcel["pickup_city"],
                "delivery_city":   parcel["delivery_city"],
                "customer_id":     parcel["customer_id"],
            },
        ),
    ]


# ── AssignAgent ───────────────────────────────────────────────────────────────
def decide_assignment(parcel: Optional[dict], agent: Optional[dict], agent_id: str, now: datetime) -> Transition:
    if not agent or agent.get("role") != UserRole.AGENT.value:
        raise NotFoundError("Agent", agent_id)
    if not parcel:
        raise NotFoundError("Colis")

    on_insert = new_delivery_doc(parcel["parcel_id"], now)
    on_insert["status"] = DeliveryStatus.ASSIGNED.value
    payload = {
        "parcel_id":       parcel["parcel_id"],
        "agent_id":        agent_id,
        "agent_name":      agent.get("name"),
        "tracking_number": parcel["tracking_number"],
        "pickup_city":     parcel["pickup_city"],
        "delivery_city":   parcel["delivery_city"],
    }
    return Transition(
        parcel_id=parcel["parcel_id"],
        parcel_set={"agent_id": agent_id, "updated_at": now},
        delivery_set={"agent_id": agent_id, "updated_at": now},
        delivery_on_insert=on_insert,
        intents=[
            PublishIntent(event="agent-assigned", payload=payload),
            PublishIntent(event="agent-assigned", payload=payload, target_user_id=agent_id),
        ],
    )


# ── ScanForPickup ─────────────────────────────────────────────────────────────
def decide_pickup(parcel: Optional[dict], actor_id: str, scanned_data: str, now: datetime) -> Transition:
    parcel = _check_scan(parcel, scanned_data)

    if parcel["status"] != ParcelStatus.PENDING.value:
        raise wrong_status_error(f"Colis déjà {parcel['status']}", parcel["status"])
    if parcel.get("agent_id") and parcel["agent_id"] != actor_id:
        raise OwnershipError(parcel_id=parcel["parcel_id"])

    tracking = parcel["tracking_number"]
    return Transition(
        parcel_id=parcel["parcel_id"],
        parcel_guard={
            "status":   ParcelStatus.PENDING.value,
            "agent_id": {"$in": [None, actor_id]},
        },
        parcel_set={
            "status":     ParcelStatus.PICKED_UP.value,
            "agent_id":   actor_id,
            "updated_at": now,
        },
        delivery_set={
            "status":         DeliveryStatus.PICKED_UP.value,
            "agent_id":       actor_id,
            "picked_up_time": now,
            "updated_at":     now,
        },
        delivery_on_insert=new_delivery_doc(parcel["parcel_id"], now),
        intents=[
            _notify_customer(
                parcel,
                "Colis pris en charge",
                f"Votre colis {tracking} a été pris en charge par notre agent.",
                f"<p>Votre colis <strong>{tracking}</strong> a été pris en charge par notre agent "
                f"et est en route vers sa destination.</p>",
            ),
            _status_changed(parcel, ParcelStatus.PICKED_UP, actor_id, now),
        ],
    )


# ── ScanForDelivery ───────────────────────────────────────────────────────────
def decide_delivery(
    parcel: Optional[dict],
    actor_id: str,
    scanned_data: str,
    signature: Optional[str],
    now: datetime,
) -> Transition:
    parcel = _check_scan(parcel, scanned_data)

    if parcel["status"] == ParcelStatus.DELIVERED.value:
        raise wrong_status_error("Colis déjà livré", parcel["status"])
    if parcel["status"] == ParcelStatus.PENDING.value:
        raise wrong_status_error("Le colis doit être pris en charge avant la livraison", parcel["status"])
    if parcel.get("agent_id") != actor_id:
        raise OwnershipError(parcel_id=parcel["parcel_id"])

    tracking = parcel["tracking_number"]
    delivered_on = now.strftime("%d/%m/%Y %H:%M")
    return Transition(
        parcel_id=parcel["parcel_id"],
        parcel_guard={
            "status":   {"$nin": [ParcelStatus.PENDING.value, ParcelStatus.DELIVERED.value]},
            "agent_id": actor_id,
        },
        parcel_set={
            "status":               ParcelStatus.DELIVERED.value,
            "actual_delivery_date": now,
            "updated_at":           now,
        },
        delivery_set={
            "status":         DeliveryStatus.DELIVERED.value,
            "agent_id":       actor_id,
            "delivered_time": now,
            "failure_reason": None,
            "signature":      signature,
            "updated_at":     now,
        },
        delivery_on_insert=new_delivery_doc(parcel["parcel_id"], now),
        intents=[
            _notify_customer(
                parcel,
                "Colis livré",
                f"Votre colis {tracking} a été livré avec succès.",
                f"<p>Votre colis <strong>{tracking}</strong> a été livré avec succès.</p>"
                f"<p><strong>Date de livraison :</strong> {delivered_on}</p>",
            ),
            _status_changed(parcel, ParcelStatus.DELIVERED, actor_id, now),
            PublishIntent(
                event="delivery-completed",
                payload={
                    "parcel_id":       parcel["parcel_id"],
                    "tracking_number": tracking,
                    "agent_id":        actor_id,
                    "completed_at":    now,
                },
            ),
        ],
    )


# ── UpdateLocation ────────────────────────────────────────────────────────────
def decide_location(parcel: Optional[dict], actor_id: str, lat: float, lng: float, now: datetime) -> Transition:
    if not parcel:
        raise NotFoundError("Colis")
    if parcel.get("agent_id") != actor_id:
        raise OwnershipError(parcel_id=parcel["parcel_id"])

    return Transition(
        parcel_id=parcel["parcel_id"],
        parcel_set={"current_location": {"lat": lat, "lng": lng}, "updated_at": now},
        intents=[
            PublishIntent(
                event="location-updated",
                channel=parcel_channel(parcel["parcel_id"]),
                payload={
                    "parcel_id": parcel["parcel_id"],
                    "lat":       lat,
                    "lng":       lng,
                    "agent_id":  actor_id,
                    "timestamp": now,
                },
            ),
        ],
    )


# ── CompleteDelivery (générique) ──────────────────────────────────────────────
def decide_completion(
    parcel: Optional[dict],
    delivery: Optional[dict],
    actor_id: str,
    status: ParcelStatus,
    failure_reason: Optional[str],
    signature: Optional[str],
    now: datetime,
) -> Transition:
    """
    Aucune vérification du statut précédent : un colis peut passer à
    `failed` depuis n'importe quel état (question de politique ouverte).
    """
    if not parcel:
        raise NotFoundError("Colis")
    if not delivery:
        raise NotFoundError("Livraison", parcel["parcel_id"])

    delivered = status == ParcelStatus.DELIVERED
    delivery_set = {
        "status":         as_delivery_status(status).value,
        "delivered_time": now if delivered else None,
        "failure_reason": None if delivered else failure_reason,
        "updated_at":     now,
    }
    # Sans signature fournie, on garde celle déjà capturée
    if signature is not None:
        delivery_set["signature"] = signature
    return Transition(
        parcel_id=parcel["parcel_id"],
        parcel_set={
            "status":               status.value,
            "actual_delivery_date": now if delivered else None,
            "updated_at":           now,
        },
        delivery_set=delivery_set,
        intents=[_status_changed(parcel, status, actor_id, now)],
    )


# ── UpdateStatus (forçage admin) ──────────────────────────────────────────────
def decide_status_override(
    parcel: Optional[dict],
    delivery: Optional[dict],
    status: ParcelStatus,
    notes: Optional[str],
    now: datetime,
) -> Transition:
    """Forçage manuel : pas de contrôle de légalité de la transition."""
    if not parcel:
        raise NotFoundError("Colis")

    parcel_set = {"status": status.value, "updated_at": now}
    if notes is not None:
        parcel_set["notes"] = notes
    if status == ParcelStatus.DELIVERED:
        parcel_set["actual_delivery_date"] = parcel.get("actual_delivery_date") or now
    else:
        parcel_set["actual_delivery_date"] = None

    delivery_set = None
    on_insert = None
    mirrored = as_delivery_status(status)
    if mirrored:
        delivery_set = {
            "status":         mirrored.value,
            "delivered_time": parcel_set["actual_delivery_date"],
            "updated_at":     now,
        }
        if not delivery:
            # Un colis sorti de pending a toujours une livraison
            on_insert = new_delivery_doc(parcel["parcel_id"], now)
            on_insert["agent_id"] = parcel.get("agent_id")
            on_insert["picked_up_time"] = None

    tracking = parcel["tracking_number"]
    return Transition(
        parcel_id=parcel["parcel_id"],
        parcel_set=parcel_set,
        delivery_set=delivery_set,
        delivery_on_insert=on_insert,
        intents=[
            _notify_customer(
                parcel,
                "Statut du colis mis à jour",
                f"Mise à jour : votre colis ({tracking}) est maintenant : {status.value}.",
            ),
            PublishIntent(
                event="status-updated",
                payload={
                    "parcel_id":       parcel["parcel_id"],
                    "status":          status.value,
                    "tracking_number": tracking,
                },
            ),
        ],
    )

