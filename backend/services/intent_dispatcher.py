"""
Exécution des intents après commit : notifications détachées, puis publication live.
"""
import asyncio
import logging
from typing import Iterable, Set

from models.intent import Intent, NotifyIntent, PublishIntent
from services import parcel_store
from services.broadcaster import broadcaster
from services.notification_service import notify_user

logger = logging.getLogger(__name__)

# Références fortes sur les tâches détachées (sinon le GC peut les annuler)
_background_tasks: Set[asyncio.Task] = set()


async def _run_notify(intent: NotifyIntent) -> None:
    try:
        user = await parcel_store.find_user(intent.user_id)
        if not user:
            logger.info(f"Notification ignorée : utilisateur {intent.user_id} introuvable")
            return
        outcome = await notify_user(
            user, intent.subject, intent.message, intent.html,
            ref_type=intent.ref_type, ref_id=intent.ref_id,
        )
        logger.debug(f"Notification {intent.subject!r} → {intent.user_id} : {outcome}")
    except Exception as e:
        logger.warning(f"Notification perdue pour {intent.user_id} : {e}")


def _spawn(intent: NotifyIntent) -> None:
    task = asyncio.create_task(_run_notify(intent))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def _publish(intent: PublishIntent) -> None:
    if intent.target_user_id:
        reached = await broadcaster.send_to_user(intent.target_user_id, intent.event, intent.payload)
        if not reached:
            logger.debug(f"{intent.event} : {intent.target_user_id} non connecté")
    elif intent.channel:
        await broadcaster.publish(intent.channel, intent.event, intent.payload)
    else:
        await broadcaster.broadcast(intent.event, intent.payload)


async def dispatch(intents: Iterable[Intent]) -> None:
    """À appeler uniquement une fois la commande persistée."""
    intents = list(intents)
    for intent in intents:
        if isinstance(intent, NotifyIntent):
            _spawn(intent)
    for intent in intents:
        if isinstance(intent, PublishIntent):
            await _publish(intent)


async def drain() -> None:
    """Attend les notifications en cours (arrêt de l'app, tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
