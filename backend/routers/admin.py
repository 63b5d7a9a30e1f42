"""
Router admin : assignation des agents et vue globale des colis.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from core.dependencies import require_admin
from models.parcel import AssignAgentRequest
from services import parcel_service, parcel_store

router = APIRouter()


@router.post("/assign-agent", summary="Assigner un agent à un colis")
async def assign_agent(body: AssignAgentRequest, _admin: dict = Depends(require_admin)):
    result = await parcel_service.assign_agent(body.parcel_id, body.agent_id)
    return {"message": "Agent assigné", **result}


@router.get("/parcels", summary="Tous les colis")
async def admin_list_parcels(
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    _admin: dict = Depends(require_admin),
):
    query = {"status": status} if status else {}
    parcels = await parcel_store.list_parcels(query, skip=skip, limit=limit)
    return {"parcels": parcels}
