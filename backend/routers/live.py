"""
WebSocket de suivi temps réel.

Messages client : {"event": "<nom>", "data": {...}}
  user-login       → enregistre la session de l'utilisateur authentifié
  join-tracking    → {"parcel_id"} : abonnement au canal parcel-<id>
  leave-tracking   → {"parcel_id"}
  location-update  → {"parcel_id", "lat", "lng"} (agents)
  announcement     → {"message"} (admins, diffusé à tous)
"""
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from core.dependencies import resolve_user_from_token
from core.exceptions import AppException
from models.common import UserRole, parcel_channel
from models.parcel import LocationUpdate
from services import parcel_service
from services.broadcaster import broadcaster

router = APIRouter()
logger = logging.getLogger(__name__)

WS_POLICY_UNAUTHORIZED = 4401


async def _send_error(websocket: WebSocket, message: str, error_code: str = "ERR_BAD_MESSAGE") -> None:
    await websocket.send_json({"event": "error", "data": {"error_code": error_code, "message": message}})


async def _handle(websocket: WebSocket, user: dict, event: str, data: dict) -> None:
    if event == "user-login":
        broadcaster.registry.register(user["user_id"], websocket)
        await websocket.send_json({
            "event": "connection-confirmed",
            "data": {"user_id": user["user_id"], "role": user.get("role")},
        })

    elif event in ("join-tracking", "leave-tracking"):
        parcel_id = data.get("parcel_id")
        if not parcel_id:
            await _send_error(websocket, "parcel_id requis")
            return
        channel = parcel_channel(parcel_id)
        if event == "join-tracking":
            broadcaster.join(websocket, channel)
            await websocket.send_json({"event": "tracking-joined", "data": {"parcel_id": parcel_id}})
        else:
            broadcaster.leave(websocket, channel)
            await websocket.send_json({"event": "tracking-left", "data": {"parcel_id": parcel_id}})

    elif event == "location-update":
        if user.get("role") != UserRole.AGENT.value:
            await _send_error(websocket, "Réservé aux agents", "ERR_FORBIDDEN")
            return
        try:
            point = LocationUpdate(lat=data.get("lat"), lng=data.get("lng"))
        except ValidationError:
            await _send_error(websocket, "Coordonnées invalides")
            return
        try:
            await parcel_service.update_location(data.get("parcel_id", ""), point.lat, point.lng, user)
        except AppException as e:
            await _send_error(websocket, e.message, e.error_code)

    elif event == "announcement":
        if user.get("role") != UserRole.ADMIN.value:
            await _send_error(websocket, "Réservé aux administrateurs", "ERR_FORBIDDEN")
            return
        await broadcaster.broadcast("announcement", {
            "message": data.get("message", ""),
            "from": user["user_id"],
        })

    else:
        await _send_error(websocket, f"Événement inconnu : {event}")


@router.websocket("/ws")
async def live_socket(websocket: WebSocket, token: str = ""):
    user = await resolve_user_from_token(token)
    if not user or not user.get("is_active", True):
        await websocket.close(code=WS_POLICY_UNAUTHORIZED)
        return

    await websocket.accept()
    broadcaster.connect(websocket)
    logger.info(f"Session live ouverte pour {user['user_id']}")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(websocket, "JSON invalide")
                continue
            if not isinstance(message, dict):
                await _send_error(websocket, "Message JSON objet attendu")
                continue
            data = message.get("data") or {}
            if not isinstance(data, dict):
                data = {}
            await _handle(websocket, user, message.get("event", ""), data)
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
        logger.info(f"Session live fermée pour {user['user_id']}")
