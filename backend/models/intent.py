"""
Effets de bord produits par une transition, exécutés après le commit.
"""
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel


class NotifyIntent(BaseModel):
    user_id:  str
    subject:  str
    message:  str
    html:     Optional[str] = None
    ref_type: Optional[str] = "parcel"
    ref_id:   Optional[str] = None


class PublishIntent(BaseModel):
    event:   str
    payload: Dict[str, Any] = {}
    # Canal colis ("parcel-<id>") ; None = diffusion globale
    channel: Optional[str] = None
    # Envoi ciblé vers la session live d'un utilisateur
    target_user_id: Optional[str] = None


Intent = Union[NotifyIntent, PublishIntent]
