"""
Router parcels : réservation, consultation, suivi public, forçage de statut, QR code.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from config import settings
from core.dependencies import get_current_user, require_admin, require_customer
from core.exceptions import NotFoundError, forbidden_exception
from core.limiter import limiter
from models.parcel import ParcelCreate, ParcelStatusUpdate
from services import parcel_service, parcel_store

router = APIRouter()


@router.post("/book", status_code=status.HTTP_201_CREATED, summary="Réserver un colis")
@limiter.limit(settings.RATE_LIMIT_BOOK)
async def book_parcel(
    request: Request,
    body: ParcelCreate,
    current_user: dict = Depends(require_customer),
):
    parcel = await parcel_service.book_parcel(body, current_user)
    return {"message": "Colis réservé", "parcel": parcel}


@router.get("/my-parcels", summary="Mes colis")
async def my_parcels(
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 50,
    current_user: dict = Depends(require_customer),
):
    query: dict = {"customer_id": current_user["user_id"]}
    if status:
        query["status"] = status
    parcels = await parcel_store.list_parcels(query, skip=skip, limit=limit)
    return {"parcels": parcels}


@router.get("/track/{tracking_number}", summary="Suivi public d'un colis")
async def track_parcel(tracking_number: str):
    return {"parcel": await parcel_service.track_parcel(tracking_number)}


@router.get("/{parcel_id}", summary="Détail colis")
async def get_parcel(parcel_id: str, current_user: dict = Depends(get_current_user)):
    parcel = await parcel_store.find_parcel(parcel_id)
    if not parcel:
        raise NotFoundError("Colis", parcel_id)
    if not parcel_service.can_view_parcel(parcel, current_user):
        raise forbidden_exception()
    delivery = await parcel_store.find_delivery(parcel_id)
    return {"parcel": parcel, "delivery": delivery}


@router.patch("/{parcel_id}/status", summary="Forcer le statut (admin)")
async def update_parcel_status(
    parcel_id: str,
    body: ParcelStatusUpdate,
    _admin: dict = Depends(require_admin),
):
    parcel = await parcel_service.update_status(parcel_id, body)
    return {"message": "Statut mis à jour", "parcel": parcel}


@router.get("/{parcel_id}/qr-code", summary="QR code du colis")
async def get_parcel_qr_code(parcel_id: str, current_user: dict = Depends(get_current_user)):
    parcel = await parcel_store.find_parcel(parcel_id)
    if not parcel:
        raise NotFoundError("Colis", parcel_id)
    if not parcel_service.can_view_parcel(parcel, current_user):
        raise forbidden_exception()
    if not parcel.get("qr_code"):
        raise NotFoundError("QR code", parcel_id)
    return {"tracking_number": parcel["tracking_number"], "qr_code": parcel["qr_code"]}
