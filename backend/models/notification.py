from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS   = "sms"


class NotificationStatus(str, Enum):
    SENT    = "sent"
    FAILED  = "failed"
    SKIPPED = "skipped"   # transport non configuré ou canal désactivé


class Notification(BaseModel):
    notif_id:   str
    user_id:    str
    channel:    NotificationChannel
    title:      str
    body:       str
    status:     NotificationStatus
    error:      Optional[str] = None
    # Lien contextuel (ex: parcel_id)
    ref_type:   Optional[str] = None
    ref_id:     Optional[str] = None
    created_at: datetime
