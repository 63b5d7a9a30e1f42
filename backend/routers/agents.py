"""
Router agents : scans QR de collecte / livraison, position GPS, clôture.
"""
from fastapi import APIRouter, Depends, Request

from config import settings
from core.dependencies import require_agent
from core.limiter import limiter
from models.parcel import CompleteDeliveryRequest, LocationUpdate, ScanRequest
from services import parcel_service, parcel_store

router = APIRouter()


@router.get("/assigned", summary="Colis assignés à l'agent")
async def assigned_parcels(current_user: dict = Depends(require_agent)):
    parcels = await parcel_store.list_parcels({"agent_id": current_user["user_id"]}, limit=200)
    return {"parcels": parcels}


@router.post("/scan-pickup", summary="Scan QR de collecte")
@limiter.limit(settings.RATE_LIMIT_SCAN)
async def scan_pickup(
    request: Request,
    body: ScanRequest,
    current_user: dict = Depends(require_agent),
):
    result = await parcel_service.scan_for_pickup(body, current_user)
    return {"message": "Colis pris en charge", **result}


@router.post("/scan-delivery", summary="Scan QR de livraison")
@limiter.limit(settings.RATE_LIMIT_SCAN)
async def scan_delivery(
    request: Request,
    body: ScanRequest,
    current_user: dict = Depends(require_agent),
):
    result = await parcel_service.scan_for_delivery(body, current_user)
    return {"message": "Colis livré", **result}


@router.patch("/{parcel_id}/location", summary="Mettre à jour la position GPS")
async def update_location(
    parcel_id: str,
    body: LocationUpdate,
    current_user: dict = Depends(require_agent),
):
    result = await parcel_service.update_location(parcel_id, body.lat, body.lng, current_user)
    return {"message": "Position mise à jour", **result}


@router.patch("/{parcel_id}/complete", summary="Clôturer la livraison (livré / échec)")
async def complete_delivery(
    parcel_id: str,
    body: CompleteDeliveryRequest,
    current_user: dict = Depends(require_agent),
):
    result = await parcel_service.complete_delivery(parcel_id, body, current_user)
    return {"message": "Livraison mise à jour", **result}
