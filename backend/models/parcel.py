from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from models.common import ParcelStatus, ParcelType, PaymentMethod, GeoPin, TERMINAL_STATUSES


class Parcel(BaseModel):
    parcel_id:        str
    tracking_number:  str        # "CRR-XXX-YYYY", encodé dans le QR
    # Acteurs
    customer_id:      str
    agent_id:         Optional[str] = None
    # Itinéraire
    pickup_address:    str
    pickup_city:       str
    pickup_location:   Optional[GeoPin] = None
    delivery_address:  str
    delivery_city:     str
    delivery_location: Optional[GeoPin] = None
    # Colis physique et paiement
    parcel_type:      ParcelType
    weight_kg:        Optional[float] = None
    payment_method:   PaymentMethod
    cod_amount:       float = 0.0
    distance_km:      float = 0.0
    shipping_cost:    float
    # Statut machine d'états
    status:           ParcelStatus = ParcelStatus.PENDING
    current_location: Optional[GeoPin] = None
    notes:            Optional[str] = None
    qr_code:          Optional[str] = None   # data URI PNG
    # Timestamps
    estimated_delivery_date: datetime
    actual_delivery_date:    Optional[datetime] = None
    created_at:       datetime
    updated_at:       datetime


class ParcelCreate(BaseModel):
    pickup_address:    str
    pickup_city:       str
    pickup_location:   Optional[GeoPin] = None
    delivery_address:  str
    delivery_city:     str
    delivery_location: Optional[GeoPin] = None
    parcel_type:       ParcelType
    weight_kg:         Optional[float] = Field(None, gt=0)
    payment_method:    PaymentMethod
    cod_amount:        float = Field(0.0, ge=0)
    # Utilisé si les coordonnées GPS ne sont pas fournies
    distance_km:       Optional[float] = Field(None, ge=0)
    notes:             Optional[str] = None


class ParcelStatusUpdate(BaseModel):
    status: ParcelStatus
    notes:  Optional[str] = None


class ScanRequest(BaseModel):
    scanned_data:    str
    # Colis attendu ; si absent, le colis est résolu à partir du contenu scanné
    tracking_number: Optional[str] = None
    signature:       Optional[str] = None   # base64 ou URL, livraison uniquement

    @field_validator("scanned_data")
    @classmethod
    def scanned_data_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Contenu du QR code vide")
        return v


class LocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class CompleteDeliveryRequest(BaseModel):
    status:         ParcelStatus
    failure_reason: Optional[str] = None
    signature:      Optional[str] = None

    @field_validator("status")
    @classmethod
    def status_must_be_terminal(cls, v: ParcelStatus) -> ParcelStatus:
        if v not in TERMINAL_STATUSES:
            raise ValueError("Le statut final doit être 'delivered' ou 'failed'")
        return v


class AssignAgentRequest(BaseModel):
    parcel_id: str
    agent_id:  str
