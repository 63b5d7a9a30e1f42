from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class ParcelStatus(str, Enum):
    PENDING    = "pending"
    PICKED_UP  = "picked-up"
    IN_TRANSIT = "in-transit"
    DELIVERED  = "delivered"
    FAILED     = "failed"


class DeliveryStatus(str, Enum):
    ASSIGNED   = "assigned"
    PICKED_UP  = "picked-up"
    IN_TRANSIT = "in-transit"
    DELIVERED  = "delivered"
    FAILED     = "failed"


class ParcelType(str, Enum):
    DOCUMENT       = "document"
    SMALL_PACKAGE  = "small-package"
    MEDIUM_PACKAGE = "medium-package"
    LARGE_PACKAGE  = "large-package"


class PaymentMethod(str, Enum):
    PREPAID = "prepaid"
    COD     = "cod"   # paiement à la livraison


class UserRole(str, Enum):
    CUSTOMER = "customer"
    AGENT    = "agent"
    ADMIN    = "admin"


class GeoPin(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class RoutePoint(BaseModel):
    lat:       float
    lng:       float
    timestamp: datetime


TERMINAL_STATUSES = {ParcelStatus.DELIVERED, ParcelStatus.FAILED}


def parcel_channel(parcel_id: str) -> str:
    """Nom du canal temps réel d'un colis."""
    return f"parcel-{parcel_id}"


def as_delivery_status(status: ParcelStatus) -> Optional[DeliveryStatus]:
    """Statut de livraison miroir d'un statut colis (aucun pour pending)."""
    if status == ParcelStatus.PENDING:
        return None
    return DeliveryStatus(status.value)
