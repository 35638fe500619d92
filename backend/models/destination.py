from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class Destination(BaseModel):
    destination_id: str
    name:           str
    region:         str
    base_fee:       float      # KES
    created_at:     datetime
    updated_at:     datetime


class DestinationCreate(BaseModel):
    name:     str
    region:   str
    base_fee: float = Field(ge=0, allow_inf_nan=False)


class DestinationUpdate(BaseModel):
    name:     Optional[str]   = None
    region:   Optional[str]   = None
    base_fee: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
