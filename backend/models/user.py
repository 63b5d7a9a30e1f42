from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from models.common import UserRole


class NotificationPreferences(BaseModel):
    email: bool = True
    sms:   bool = True


class User(BaseModel):
    """Identité telle que vue par le cœur : le mot de passe reste côté service d'identité."""
    user_id:    str
    name:       str
    role:       UserRole
    email:      Optional[str] = None
    phone:      Optional[str] = None   # E.164
    is_active:  bool = True
    notification_preferences: NotificationPreferences = NotificationPreferences()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
