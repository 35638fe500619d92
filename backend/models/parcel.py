from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field
from models.common import ParcelStatus, LifecycleEventType


class Parcel(BaseModel):
    parcel_id:         str
    tracking_code:     str        # 12 caractères, ex : "MF3K2L9Q-7XA"
    created_by:        str        # staff_id
    # Acteurs
    sender_name:       str
    sender_phone:      str        # E.164 : "+254XXXXXXXXX"
    recipient_name:    str
    recipient_phone:   str
    # Destination et contenu
    destination_id:    str
    short_description: str
    # Statut machine d'états
    status:            ParcelStatus = ParcelStatus.PENDING
    ledger_posted:     bool = False   # False → frais de livraison non comptabilisés
    # Timestamps
    created_at:        datetime
    updated_at:        datetime


class ParcelCreate(BaseModel):
    sender_name:       str = ""
    sender_phone:      str = ""
    recipient_name:    str = ""
    recipient_phone:   str = ""
    destination_id:    str = ""
    short_description: str = ""


class StatusUpdate(BaseModel):
    status: str


class CustomSms(BaseModel):
    message: str = Field(min_length=1, max_length=160)


class ParcelEvent(BaseModel):
    event_id:    str
    parcel_id:   str
    event_type:  str            # "PARCEL_CREATED", "STATUS_CHANGED"
    from_status: Optional[ParcelStatus] = None
    to_status:   Optional[ParcelStatus] = None
    actor_id:    Optional[str] = None
    actor_role:  Optional[str] = None
    created_at:  datetime


class LifecycleEvent(BaseModel):
    """Événement publié après chaque écriture de la machine d'états."""
    event_type: LifecycleEventType
    parcel:     dict
    actor_id:   Optional[str] = None
    occurred_at: datetime


class ParcelResult(BaseModel):
    parcel:   Parcel
    warnings: List[str] = []
