from datetime import datetime
from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel


class SmsKind(str, Enum):
    RECEIVED   = "received"
    IN_TRANSIT = "in_transit"
    DELIVERED  = "delivered"
    CUSTOM     = "custom"


class SmsStatus(str, Enum):
    SENT   = "sent"
    FAILED = "failed"


class SmsResult(BaseModel):
    success:  bool
    provider: str
    data:     Optional[Any] = None   # réponse brute du fournisseur


class SmsLog(BaseModel):
    log_id:          str
    parcel_id:       Optional[str] = None
    recipient_phone: str
    message:         str
    kind:            SmsKind
    status:          SmsStatus
    provider:        Optional[str] = None
    error:           Optional[str] = None
    sent_by:         Optional[str] = None
    sent_at:         datetime
