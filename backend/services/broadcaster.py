"""
Diffusion temps réel : canaux par colis, canal global et annuaire des sessions.

Livraison at-most-once, sans persistance ni rejeu : un client connecté après
la publication d'un événement ne le reçoit jamais.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi.encoders import jsonable_encoder

from config import settings

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Annuaire user_id → session live (last-write-wins à la reconnexion).
    Une entrée absente signifie « non joignable en direct », pas une erreur.
    Tout s'exécute dans la boucle asyncio : un seul écrivain par clé.
    """

    def __init__(self):
        self._sessions: Dict[str, Any] = {}

    def register(self, user_id: str, handle: Any) -> None:
        self._sessions[user_id] = handle

    def resolve(self, user_id: str) -> Optional[Any]:
        return self._sessions.get(user_id)

    def unregister(self, handle: Any) -> None:
        # Ne retire que les entrées qui pointent encore vers cette session
        for user_id in [uid for uid, h in self._sessions.items() if h is handle]:
            del self._sessions[user_id]

    def __len__(self) -> int:
        return len(self._sessions)


class LiveBroadcaster:
    def __init__(self, send_timeout: float = settings.LIVE_SEND_TIMEOUT):
        self.registry = SessionRegistry()
        self.send_timeout = send_timeout
        self._connections: Set[Any] = set()
        self._channels: Dict[str, Set[Any]] = {}

    # ── Connexions ────────────────────────────────────────────────────────────
    def connect(self, handle: Any) -> None:
        self._connections.add(handle)

    def disconnect(self, handle: Any) -> None:
        self._connections.discard(handle)
        for channel in list(self._channels):
            self.leave(handle, channel)
        self.registry.unregister(handle)

    def join(self, handle: Any, channel: str) -> None:
        self._channels.setdefault(channel, set()).add(handle)

    def leave(self, handle: Any, channel: str) -> None:
        members = self._channels.get(channel)
        if members is None:
            return
        members.discard(handle)
        if not members:
            del self._channels[channel]

    def subscribers(self, channel: str) -> Set[Any]:
        return set(self._channels.get(channel, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ── Envoi ─────────────────────────────────────────────────────────────────
    async def _send(self, handle: Any, message: dict) -> bool:
        try:
            await asyncio.wait_for(handle.send_json(message), self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Session live bloquée plus de {self.send_timeout}s, déconnexion")
            self.disconnect(handle)
            return False
        except Exception as e:
            logger.warning(f"Session live injoignable, déconnexion : {e}")
            self.disconnect(handle)
            return False

    async def _fan_out(self, handles: Set[Any], event: str, payload: dict) -> int:
        message = {"event": event, "data": jsonable_encoder(payload)}
        results = await asyncio.gather(*[self._send(h, message) for h in handles])
        return sum(results)

    async def publish(self, channel: str, event: str, payload: dict) -> int:
        """Diffuse sur un canal colis. Retourne le nombre de sessions atteintes."""
        delivered = await self._fan_out(self.subscribers(channel), event, payload)
        logger.debug(f"{event} → {channel} ({delivered} session(s))")
        return delivered

    async def broadcast(self, event: str, payload: dict) -> int:
        """Diffuse à toutes les sessions connectées."""
        return await self._fan_out(set(self._connections), event, payload)

    async def send_to_user(self, user_id: str, event: str, payload: dict) -> bool:
        handle = self.registry.resolve(user_id)
        if handle is None:
            return False
        return await self._send(handle, {"event": event, "data": jsonable_encoder(payload)})


broadcaster = LiveBroadcaster()
