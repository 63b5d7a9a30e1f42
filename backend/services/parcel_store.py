"""
Stockage colis / livraisons (MongoDB).

Les mises à jour acceptent un `guard` : filtre supplémentaire appliqué dans la
même opération find_one_and_update. C'est ce filtre qui rend le
check-and-set de statut atomique entre requêtes concurrentes.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.exceptions import PersistenceError
from database import db

logger = logging.getLogger(__name__)

_NO_ID = {"_id": 0}


@asynccontextmanager
async def _persisting(operation: str):
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        logger.error(f"Échec MongoDB ({operation}) : {e}")
        raise PersistenceError(operation) from e


# ── Parcels ───────────────────────────────────────────────────────────────────
async def insert_parcel(parcel_doc: dict) -> bool:
    """Insère un colis. False si le tracking number existe déjà."""
    async with _persisting("insert_parcel"):
        try:
            await db.parcels.insert_one(parcel_doc)
        except DuplicateKeyError:
            return False
    parcel_doc.pop("_id", None)
    return True


async def find_parcel(parcel_id: str) -> Optional[dict]:
    async with _persisting("find_parcel"):
        return await db.parcels.find_one({"parcel_id": parcel_id}, _NO_ID)


async def find_parcel_by_tracking(tracking_number: str) -> Optional[dict]:
    async with _persisting("find_parcel_by_tracking"):
        return await db.parcels.find_one({"tracking_number": tracking_number}, _NO_ID)


async def list_parcels(query: dict, skip: int = 0, limit: int = 50) -> list:
    async with _persisting("list_parcels"):
        cursor = db.parcels.find(query, _NO_ID).sort("created_at", -1).skip(skip).limit(limit)
        return await cursor.to_list(length=limit)


async def update_parcel(parcel_id: str, fields: dict, guard: Optional[dict] = None) -> Optional[dict]:
    """
    $set conditionnel. Retourne le colis mis à jour, ou None si aucun
    document ne satisfait `guard`.
    """
    query = {"parcel_id": parcel_id, **(guard or {})}
    async with _persisting("update_parcel"):
        return await db.parcels.find_one_and_update(
            query,
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )


# ── Deliveries ────────────────────────────────────────────────────────────────
async def find_delivery(parcel_id: str) -> Optional[dict]:
    async with _persisting("find_delivery"):
        return await db.deliveries.find_one({"parcel_id": parcel_id}, _NO_ID)


async def upsert_delivery(parcel_id: str, fields: dict, on_insert: dict) -> dict:
    """Met à jour la livraison du colis, la crée si elle n'existe pas."""
    # Mongo refuse un même champ dans $set et $setOnInsert
    on_insert = {k: v for k, v in on_insert.items() if k not in fields}
    update = {"$set": fields, "$setOnInsert": on_insert}
    async with _persisting("upsert_delivery"):
        try:
            return await db.deliveries.find_one_and_update(
                {"parcel_id": parcel_id}, update,
                projection=_NO_ID, upsert=True, return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Deux upserts simultanés : l'autre a créé la livraison, on la met à jour
            return await db.deliveries.find_one_and_update(
                {"parcel_id": parcel_id}, {"$set": fields},
                projection=_NO_ID, return_document=ReturnDocument.AFTER,
            )


async def update_delivery(parcel_id: str, fields: dict) -> Optional[dict]:
    async with _persisting("update_delivery"):
        return await db.deliveries.find_one_and_update(
            {"parcel_id": parcel_id},
            {"$set": fields},
            projection=_NO_ID,
            return_document=ReturnDocument.AFTER,
        )


async def append_route_point(parcel_id: str, point: dict) -> bool:
    """Ajoute un point au trail et remplace la position courante, en une seule écriture."""
    async with _persisting("append_route_point"):
        result = await db.deliveries.update_one(
            {"parcel_id": parcel_id},
            {
                "$push": {"route": point},
                "$set": {"current_location": point, "updated_at": point["timestamp"]},
            },
        )
    return result.matched_count > 0


# ── Users ─────────────────────────────────────────────────────────────────────
async def find_user(user_id: str) -> Optional[dict]:
    async with _persisting("find_user"):
        return await db.users.find_one({"user_id": user_id}, _NO_ID)
