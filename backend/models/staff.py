from datetime import datetime
from typing import Optional
from pydantic import BaseModel, field_validator
from models.common import StaffRole


class Staff(BaseModel):
    staff_id:   str
    uid:        Optional[str] = None   # identité Firebase
    name:       str
    phone:      str                    # E.164 : "+254XXXXXXXXX"
    role:       StaffRole = StaffRole.STAFF
    created_at: datetime
    updated_at: datetime


class StaffCreate(BaseModel):
    uid:   str
    name:  str
    phone: str
    role:  StaffRole = StaffRole.STAFF

    @field_validator("uid", "name", "phone")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Champ obligatoire")
        return v.strip()


class StaffUpdate(BaseModel):
    name:  Optional[str] = None
    phone: Optional[str] = None
    role:  Optional[StaffRole] = None


class SessionRequest(BaseModel):
    id_token: str   # ID token Firebase après vérification OTP


class TokenResponse(BaseModel):
    access_token: str
    token_type:   str = "bearer"
    staff:        Staff
