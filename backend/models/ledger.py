from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from models.common import LedgerEntryType


class LedgerEntry(BaseModel):
    entry_id:    str
    type:        LedgerEntryType
    amount:      float          # toujours >= 0, le signe vient du type
    currency:    str = "KES"
    staff_id:    str
    parcel_id:   Optional[str] = None   # uniquement pour delivery_fee
    description: Optional[str] = None
    created_by:  Optional[str] = None
    created_at:  datetime


class LedgerEntryCreate(BaseModel):
    type:        LedgerEntryType
    amount:      float = Field(ge=0, allow_inf_nan=False)
    staff_id:    str
    parcel_id:   Optional[str] = None
    currency:    Optional[str] = None
    description: Optional[str] = None


class Wallet(BaseModel):
    staff_id:       str
    balance:        float = 0.0    # dérivé du ledger
    cached_balance: float = 0.0    # champ stocké dans `wallets`
    consistent:     bool = True
    currency:       str = "KES"
    updated_at:     Optional[datetime] = None
