"""
Service tarifs : coût d'expédition et date de livraison estimée.
"""
import math
from datetime import datetime, timedelta
from typing import Optional

from config import settings
from models.common import GeoPin, ParcelType


def _haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance en km entre deux coordonnées GPS."""
    R = 6371.0
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlng / 2) ** 2
    return R * 2 * math.asin(math.sqrt(a))


def resolve_distance_km(
    pickup: Optional[GeoPin],
    delivery: Optional[GeoPin],
    declared_km: Optional[float] = None,
) -> float:
    """GPS si les deux points sont connus, sinon distance déclarée, sinon 0."""
    if pickup and delivery:
        return round(_haversine_km(pickup.lat, pickup.lng, delivery.lat, delivery.lng), 2)
    return declared_km or 0.0


def calculate_shipping_cost(parcel_type: ParcelType, distance_km: float) -> float:
    base = settings.BASE_COSTS[ParcelType(parcel_type).value]
    return round(base + distance_km * settings.PRICE_PER_KM, 2)


def estimate_delivery_date(created_at: datetime) -> datetime:
    return created_at + timedelta(days=settings.ESTIMATED_DELIVERY_DAYS)
