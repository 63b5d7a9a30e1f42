"""
Service colis : commandes du cycle de vie.

Ordre imposé pour chaque commande réussie :
persistance → notifications (détachées) → publication live.
Une erreur de persistance annule la commande avant tout effet de bord.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from core.exceptions import NotFoundError, PersistenceError, conflict_error
from core.security import generate_tracking_number
from models.common import ParcelStatus, UserRole
from models.parcel import CompleteDeliveryRequest, Parcel, ParcelCreate, ParcelStatusUpdate, ScanRequest
from services import parcel_store
from services.intent_dispatcher import dispatch
from services.lifecycle import (
    Transition, booking_intents, decide_assignment, decide_completion, decide_delivery,
    decide_location, decide_pickup, decide_status_override,
)
from services.pricing_service import calculate_shipping_cost, estimate_delivery_date, resolve_distance_km
from services.qr_service import generate_qr_code

logger = logging.getLogger(__name__)

MAX_TRACKING_ATTEMPTS = 5


def _parcel_id() -> str:
    return f"prc_{uuid.uuid4().hex[:12]}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _revert_parcel(parcel: dict, transition: Transition) -> None:
    """Annule l'écriture colis si l'écriture livraison a échoué."""
    restore = {k: parcel.get(k) for k in transition.parcel_set}
    try:
        await parcel_store.update_parcel(
            transition.parcel_id, restore,
            guard={"updated_at": transition.parcel_set.get("updated_at")},
        )
        logger.warning(f"Écriture colis {transition.parcel_id} annulée après échec livraison")
    except PersistenceError:
        logger.error(f"Colis {transition.parcel_id} incohérent : compensation impossible")


async def _commit(
    parcel: dict,
    transition: Transition,
    redecide: Callable[[Optional[dict]], Transition],
) -> Tuple[dict, Optional[dict]]:
    """
    Applique la transition. Si le check-and-set échoue, l'état relu est
    re-décidé pour renvoyer l'erreur métier exacte (ex. statut courant).
    """
    updated = await parcel_store.update_parcel(
        transition.parcel_id, transition.parcel_set, transition.parcel_guard,
    )
    if updated is None:
        current = await parcel_store.find_parcel(transition.parcel_id)
        redecide(current)
        raise conflict_error(current["status"] if current else None)

    delivery = None
    if transition.delivery_set is not None:
        try:
            if transition.delivery_on_insert is not None:
                delivery = await parcel_store.upsert_delivery(
                    transition.parcel_id, transition.delivery_set, transition.delivery_on_insert,
                )
            else:
                delivery = await parcel_store.update_delivery(transition.parcel_id, transition.delivery_set)
        except PersistenceError:
            await _revert_parcel(parcel, transition)
            raise
    return updated, delivery


async def _resolve_scanned(body: ScanRequest) -> Optional[dict]:
    tracking = (body.tracking_number or body.scanned_data).strip()
    return await parcel_store.find_parcel_by_tracking(tracking)


# ── Commandes ─────────────────────────────────────────────────────────────────
async def book_parcel(data: ParcelCreate, customer: dict) -> dict:
    """Crée un colis pending avec tracking number, coût, date estimée et QR."""
    now = _now()
    distance_km = resolve_distance_km(data.pickup_location, data.delivery_location, data.distance_km)

    for _ in range(MAX_TRACKING_ATTEMPTS):
        tracking_number = generate_tracking_number()
        parcel_doc = {
            "parcel_id":         _parcel_id(),
            "tracking_number":   tracking_number,
            "customer_id":       customer["user_id"],
            "agent_id":          None,
            "pickup_address":    data.pickup_address,
            "pickup_city":       data.pickup_city,
            "pickup_location":   data.pickup_location.model_dump() if data.pickup_location else None,
            "delivery_address":  data.delivery_address,
            "delivery_city":     data.delivery_city,
            "delivery_location": data.delivery_location.model_dump() if data.delivery_location else None,
            "parcel_type":       data.parcel_type.value,
            "weight_kg":         data.weight_kg,
            "payment_method":    data.payment_method.value,
            "cod_amount":        data.cod_amount,
            "distance_km":       distance_km,
            "shipping_cost":     calculate_shipping_cost(data.parcel_type, distance_km),
            "status":            ParcelStatus.PENDING.value,
            "current_location":  None,
            "notes":             data.notes,
            "qr_code":           generate_qr_code(tracking_number),
            "estimated_delivery_date": estimate_delivery_date(now),
            "actual_delivery_date":    None,
            "created_at":        now,
            "updated_at":        now,
        }
        Parcel.model_validate(parcel_doc)
        if await parcel_store.insert_parcel(parcel_doc):
            break
        logger.warning(f"Collision tracking number {tracking_number}, nouvel essai")
    else:
        raise PersistenceError("insert_parcel")

    logger.info(f"Colis {parcel_doc['tracking_number']} réservé par {customer['user_id']}")
    await dispatch(booking_intents(parcel_doc, customer))
    return parcel_doc


async def assign_agent(parcel_id: str, agent_id: str) -> dict:
    now = _now()
    parcel = await parcel_store.find_parcel(parcel_id)
    agent = await parcel_store.find_user(agent_id)
    transition = decide_assignment(parcel, agent, agent_id, now)
    parcel, delivery = await _commit(
        parcel, transition, lambda current: decide_assignment(current, agent, agent_id, now),
    )
    logger.info(f"Agent {agent_id} assigné au colis {parcel_id}")
    await dispatch(transition.intents)
    return {"parcel": parcel, "delivery": delivery}


async def scan_for_pickup(body: ScanRequest, agent: dict) -> dict:
    now = _now()
    agent_id = agent["user_id"]
    parcel = await _resolve_scanned(body)
    transition = decide_pickup(parcel, agent_id, body.scanned_data, now)
    parcel, delivery = await _commit(
        parcel, transition, lambda current: decide_pickup(current, agent_id, body.scanned_data, now),
    )
    logger.info(f"Colis {parcel['tracking_number']} pris en charge par {agent_id}")
    await dispatch(transition.intents)
    return {"parcel": parcel, "delivery": delivery}


async def scan_for_delivery(body: ScanRequest, agent: dict) -> dict:
    now = _now()
    agent_id = agent["user_id"]
    parcel = await _resolve_scanned(body)
    transition = decide_delivery(parcel, agent_id, body.scanned_data, body.signature, now)
    parcel, delivery = await _commit(
        parcel, transition,
        lambda current: decide_delivery(current, agent_id, body.scanned_data, body.signature, now),
    )
    logger.info(f"Colis {parcel['tracking_number']} livré par {agent_id}")
    await dispatch(transition.intents)
    return {"parcel": parcel, "delivery": delivery}


async def update_location(parcel_id: str, lat: float, lng: float, agent: dict) -> dict:
    now = _now()
    agent_id = agent["user_id"]
    parcel = await parcel_store.find_parcel(parcel_id)
    transition = decide_location(parcel, agent_id, lat, lng, now)
    parcel, _ = await _commit(
        parcel, transition, lambda current: decide_location(current, agent_id, lat, lng, now),
    )
    point = {"lat": lat, "lng": lng, "timestamp": now}
    if not await parcel_store.append_route_point(parcel_id, point):
        logger.debug(f"Pas de livraison pour {parcel_id}, trail non enregistré")
    await dispatch(transition.intents)
    return {"parcel_id": parcel_id, "current_location": point}


async def complete_delivery(parcel_id: str, body: CompleteDeliveryRequest, agent: dict) -> dict:
    now = _now()
    agent_id = agent["user_id"]
    parcel = await parcel_store.find_parcel(parcel_id)
    delivery = await parcel_store.find_delivery(parcel_id)

    def _decide(current: Optional[dict]) -> Transition:
        return decide_completion(
            current, delivery, agent_id, body.status, body.failure_reason, body.signature, now,
        )

    transition = _decide(parcel)
    parcel, delivery = await _commit(parcel, transition, _decide)
    logger.info(f"Livraison {parcel_id} clôturée : {body.status.value}")
    await dispatch(transition.intents)
    return {"parcel": parcel, "delivery": delivery}


async def update_status(parcel_id: str, body: ParcelStatusUpdate) -> dict:
    now = _now()
    parcel = await parcel_store.find_parcel(parcel_id)
    delivery = await parcel_store.find_delivery(parcel_id)

    def _decide(current: Optional[dict]) -> Transition:
        return decide_status_override(current, delivery, body.status, body.notes, now)

    transition = _decide(parcel)
    parcel, _ = await _commit(parcel, transition, _decide)
    logger.info(f"Statut du colis {parcel_id} forcé à {body.status.value}")
    await dispatch(transition.intents)
    return parcel


# ── Lectures ──────────────────────────────────────────────────────────────────
PUBLIC_FIELDS_EXCLUDED = ("customer_id", "qr_code", "notes")


async def track_parcel(tracking_number: str) -> dict:
    """Vue publique : sans QR ni identité client."""
    parcel = await parcel_store.find_parcel_by_tracking(tracking_number.strip())
    if not parcel:
        raise NotFoundError("Colis", tracking_number)
    public = {k: v for k, v in parcel.items() if k not in PUBLIC_FIELDS_EXCLUDED}
    delivery = await parcel_store.find_delivery(parcel["parcel_id"])
    public["live_location"] = delivery.get("current_location") if delivery else None
    return public


def can_view_parcel(parcel: dict, user: dict) -> bool:
    role = user.get("role")
    if role == UserRole.ADMIN.value:
        return True
    if role == UserRole.AGENT.value:
        return parcel.get("agent_id") == user["user_id"]
    return parcel.get("customer_id") == user["user_id"]
