from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.security import token_subject
from core.exceptions import credentials_exception, forbidden_exception
from database import db
from models.common import UserRole

bearer_scheme = HTTPBearer(auto_error=False)


async def resolve_user_from_token(token: Optional[str]) -> Optional[dict]:
    """Utilisateur porté par le token (HTTP ou WebSocket), ou None."""
    user_id = token_subject(token) if token else None
    if not user_id:
        return None
    return await db.users.find_one({"user_id": user_id}, {"_id": 0})


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    user = await resolve_user_from_token(credentials.credentials if credentials else None)
    if user is None:
        raise credentials_exception()
    if not user.get("is_active", True):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Compte désactivé")
    return user


def require_role(*roles: UserRole):
    """Usage : Depends(require_role(UserRole.AGENT))"""
    allowed = {r.value for r in roles}

    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in allowed:
            raise forbidden_exception(f"Réservé aux rôles : {', '.join(sorted(allowed))}")
        return current_user
    return _check


require_admin = require_role(UserRole.ADMIN)
require_agent = require_role(UserRole.AGENT)
require_customer = require_role(UserRole.CUSTOMER)
