"""
Comptes de développement : un client, un agent, un admin.
Crée ou met à jour chaque compte (clé : email) et affiche un access token.

Usage : cd backend && python seed_users.py
"""
import asyncio
import uuid
from datetime import datetime, timezone

from core.security import create_access_token
from database import close_db, connect_db, db
from models.user import User

DEV_ACCOUNTS = [
    ("admin",    "Jane Doe (Admin)", "admin@courier.local",  "+15550000000"),
    ("agent",    "Moussa (Agent)",   "agent@courier.local",  "+15550000001"),
    ("customer", "Fatou (Client)",   "client@courier.local", "+15550000002"),
]


async def upsert_account(role: str, name: str, email: str, phone: str) -> str:
    now = datetime.now(timezone.utc)
    existing = await db.users.find_one({"email": email}, {"user_id": 1})
    user_id = existing["user_id"] if existing else f"usr_{uuid.uuid4().hex[:12]}"
    doc = User(
        user_id=user_id, name=name, role=role, email=email, phone=phone,
        created_at=now, updated_at=now,
    ).model_dump(mode="json", exclude={"created_at"})
    doc["updated_at"] = now
    await db.users.update_one(
        {"user_id": user_id},
        {"$set": doc, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )
    return user_id


async def main():
    await connect_db()
    try:
        for role, name, email, phone in DEV_ACCOUNTS:
            user_id = await upsert_account(role, name, email, phone)
            print(f"{role.upper():<9} {email:<24} {user_id}")
            print(f"          token : {create_access_token(user_id)}")
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
