import secrets
import string
from datetime import datetime, timezone, timedelta
from typing import Optional

from jose import jwt, JWTError

from config import settings

# ── JWT ───────────────────────────────────────────────────────────────────────
# Les tokens sont émis par le service d'identité ; ce backend ne fait que les
# vérifier. L'émission sert aux scripts de dev et aux tests.
ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {"sub": user_id, "exp": expire, "type": TOKEN_TYPE}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=ALGORITHM)


def token_subject(token: str) -> Optional[str]:
    """user_id porté par un access token valide, sinon None (expiré, signature, type)."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if claims.get("type") != TOKEN_TYPE:
        return None
    return claims.get("sub") or None


# ── Tracking number ───────────────────────────────────────────────────────────
TRACKING_PREFIX = "CRR"
_TRACKING_ALPHABET = string.ascii_uppercase + string.digits


def generate_tracking_number() -> str:
    """CRR-XXX-YYYY ; l'unicité est garantie par l'index, pas ici."""
    code = "".join(secrets.choice(_TRACKING_ALPHABET) for _ in range(7))
    return f"{TRACKING_PREFIX}-{code[:3]}-{code[3:]}"
