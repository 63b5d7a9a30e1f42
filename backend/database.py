import logging
from typing import Dict, List

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel

from config import settings

logger = logging.getLogger(__name__)

client: AsyncIOMotorClient = None
_db_instance = None

# Collections et index ; les contraintes d'unicité portent les invariants
# (un tracking number par colis, une livraison par colis).
INDEXES: Dict[str, List[IndexModel]] = {
    "users": [
        IndexModel([("user_id", 1)], unique=True),
        IndexModel([("email", 1)], sparse=True),
        IndexModel([("role", 1)]),
    ],
    "parcels": [
        IndexModel([("parcel_id", 1)], unique=True),
        IndexModel([("tracking_number", 1)], unique=True),
        IndexModel([("customer_id", 1), ("created_at", -1)]),
        IndexModel([("agent_id", 1), ("status", 1)]),
        IndexModel([("status", 1)]),
    ],
    "deliveries": [
        IndexModel([("delivery_id", 1)], unique=True),
        IndexModel([("parcel_id", 1)], unique=True),
        IndexModel([("agent_id", 1)]),
    ],
    "notifications": [
        IndexModel([("user_id", 1), ("created_at", -1)]),
        IndexModel([("ref_id", 1)]),
    ],
}


class _DbProxy:
    """
    `from database import db` est résolu à chaque accès : les services
    l'importent au chargement, la base est branchée plus tard
    (connect_db au démarrage, use_database en test).
    """

    @staticmethod
    def _target():
        if _db_instance is None:
            raise RuntimeError("Base non connectée : appeler connect_db() d'abord")
        return _db_instance

    def __getattr__(self, name):
        return getattr(self._target(), name)

    def __getitem__(self, name):
        return self._target()[name]


db = _DbProxy()


def use_database(instance) -> None:
    """Branche une base déjà ouverte (tests, scripts)."""
    global _db_instance
    _db_instance = instance


async def connect_db():
    global client
    client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
        tz_aware=True,
    )
    use_database(client[settings.DB_NAME])
    logger.info(f"MongoDB {settings.DB_NAME} branchée ({settings.APP_ENV})")
    await create_indexes()


async def close_db():
    global client
    if client is not None:
        client.close()
        client = None
        logger.info("Connexion MongoDB fermée")


async def create_indexes():
    """Non bloquant : une collection en échec n'empêche pas le démarrage."""
    for name, models in INDEXES.items():
        try:
            await db[name].create_indexes(models)
        except Exception as e:
            logger.error(f"Index non créés pour {name} : {e}")
        else:
            logger.debug(f"Index OK pour {name}")
