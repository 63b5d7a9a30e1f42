from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel
from models.common import DeliveryStatus, RoutePoint


class Delivery(BaseModel):
    delivery_id:  str
    parcel_id:    str
    agent_id:     Optional[str] = None
    status:       DeliveryStatus = DeliveryStatus.ASSIGNED
    # Timestamps opérationnels
    picked_up_time: Optional[datetime] = None
    delivered_time: Optional[datetime] = None
    # Raison échec (uniquement si status = failed)
    failure_reason: Optional[str] = None
    # Preuve de livraison
    signature: Optional[str] = None      # base64 ou URL
    photos:    List[str] = []            # URLs, ordre conservé
    # Tracking GPS : trail append-only + dernière position connue
    route:            List[RoutePoint] = []
    current_location: Optional[RoutePoint] = None
    created_at:   datetime
    updated_at:   datetime
