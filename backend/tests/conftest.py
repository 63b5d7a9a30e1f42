"""
Configuration des tests : base MongoDB en mémoire (mongomock derrière une
façade async au format Motor), client HTTP ASGI et comptes de test.
"""
import os

# Avant tout import de config : pas de rate limiting ni de transport réel
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SMTP_HOST"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""

import asyncio
import uuid
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient, ASGITransport
import mongomock

import database
from core.limiter import limiter
from core.security import create_access_token
from main import app
from models.user import User
from services import intent_dispatcher
from services.broadcaster import SessionRegistry, broadcaster


class MockCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    def skip(self, n):
        self._cursor = self._cursor.skip(n)
        return self

    def limit(self, n):
        self._cursor = self._cursor.limit(n)
        return self

    async def to_list(self, length=None):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class MockCollection:
    """Collection mongomock exposée avec les méthodes awaitables de Motor."""

    def __init__(self, collection):
        self._collection = collection

    def find(self, *args, **kwargs):
        return MockCursor(self._collection.find(*args, **kwargs))

    async def find_one_and_update(self, filter, update, projection=None, **kwargs):
        # mongomock relit avec le filtre d'origine si la projection retire _id :
        # on relit par _id, puis on projette
        doc = self._collection.find_one_and_update(filter, update, **kwargs)
        if doc is None or projection is None:
            return doc
        return self._collection.find_one({"_id": doc["_id"]}, projection)

    def __getattr__(self, name):
        method = getattr(self._collection, name)

        async def _call(*args, **kwargs):
            return method(*args, **kwargs)
        return _call


class MockDatabase:
    def __init__(self, database):
        self._database = database

    def __getattr__(self, name):
        return MockCollection(self._database[name])

    def __getitem__(self, name):
        return MockCollection(self._database[name])


class FakeSocket:
    """Session live minimale : enregistre les messages reçus."""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise ConnectionError("socket fermée")
        self.messages.append(message)

    def events(self):
        return [m["event"] for m in self.messages]


class StalledSocket(FakeSocket):
    """Client qui ne lit plus : l'envoi ne se termine jamais."""

    async def send_json(self, message: dict) -> None:
        await asyncio.sleep(3600)


@pytest.fixture(autouse=True)
async def mongo():
    limiter.enabled = False
    instance = MockDatabase(mongomock.MongoClient()[f"courier_test_{uuid.uuid4().hex[:8]}"])
    database.use_database(instance)
    await database.create_indexes()
    yield instance
    await intent_dispatcher.drain()
    broadcaster._connections.clear()
    broadcaster._channels.clear()
    broadcaster.registry = SessionRegistry()
    database.use_database(None)


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _create_user(mongo, role: str, name: str) -> dict:
    now = datetime.now(timezone.utc)
    user = User(
        user_id=f"usr_{uuid.uuid4().hex[:12]}",
        name=name,
        role=role,
        email=f"{role}.{uuid.uuid4().hex[:6]}@courier.test",
        phone="+15550001111",
        created_at=now,
        updated_at=now,
    ).model_dump(mode="json")
    await mongo.users.insert_one(dict(user))
    return user


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user['user_id'])}"}


@pytest.fixture
async def customer(mongo):
    return await _create_user(mongo, "customer", "Fatou")


@pytest.fixture
async def other_customer(mongo):
    return await _create_user(mongo, "customer", "Awa")


@pytest.fixture
async def agent(mongo):
    return await _create_user(mongo, "agent", "Moussa")


@pytest.fixture
async def other_agent(mongo):
    return await _create_user(mongo, "agent", "Ibrahima")


@pytest.fixture
async def admin(mongo):
    return await _create_user(mongo, "admin", "Jane")


@pytest.fixture
def booking_payload():
    return {
        "pickup_address":   "12 rue des Lilas",
        "pickup_city":      "Dakar",
        "delivery_address": "4 avenue Bourguiba",
        "delivery_city":    "Thiès",
        "parcel_type":      "small-package",
        "weight_kg":        2,
        "payment_method":   "cod",
        "cod_amount":       15000,
        "distance_km":      12.5,
    }


@pytest.fixture
async def booked_parcel(client, customer, booking_payload):
    response = await client.post("/api/parcels/book", json=booking_payload, headers=auth_headers(customer))
    assert response.status_code == 201
    return response.json()["parcel"]


@pytest.fixture
async def picked_up_parcel(client, agent, booked_parcel):
    response = await client.post(
        "/api/agents/scan-pickup",
        json={"scanned_data": booked_parcel["tracking_number"]},
        headers=auth_headers(agent),
    )
    assert response.status_code == 200
    return response.json()["parcel"]
