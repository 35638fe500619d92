from functools import lru_cache
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.security import verify_access_token
from core.exceptions import credentials_exception, forbidden_exception
from database import get_db
from models.common import StaffRole
from services.destination_service import DestinationService
from services.events import EventBus
from services.ledger_service import LedgerService
from services.notification_service import NotificationService
from services.parcel_service import ParcelService
from services.sms_gateway import SmsGateway, build_sms_gateway
from services.staff_service import StaffService

bearer_scheme = HTTPBearer(auto_error=False)

# Rate limiter (branché sur app.state dans main.py)
limiter = Limiter(key_func=get_remote_address)


# ── Services (construits par requête, sans état global) ──────────────────────
@lru_cache
def get_sms_gateway() -> SmsGateway:
    return build_sms_gateway()


def get_notification_service(
    db=Depends(get_db),
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> NotificationService:
    return NotificationService(db, gateway)


def get_ledger_service(db=Depends(get_db)) -> LedgerService:
    return LedgerService(db)


def get_parcel_service(
    db=Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
    notifications: NotificationService = Depends(get_notification_service),
) -> ParcelService:
    events = EventBus()
    events.subscribe(notifications.handle_lifecycle_event)
    return ParcelService(db, ledger, events)


def get_destination_service(db=Depends(get_db)) -> DestinationService:
    return DestinationService(db)


def get_staff_service(db=Depends(get_db)) -> StaffService:
    return StaffService(db)


# ── Authentification ──────────────────────────────────────────────────────────
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
) -> dict:
    if not credentials:
        raise credentials_exception()
    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise credentials_exception()

    staff_id = payload.get("sub")
    if not staff_id:
        raise credentials_exception()

    staff = await db.staffs.find_one({"staff_id": staff_id}, {"_id": 0})
    if not staff:
        raise credentials_exception()
    return staff


def require_role(*roles: StaffRole):
    """
    Dépendance qui vérifie que l'utilisateur connecté possède l'un des rôles donnés.
    Usage : Depends(require_role(StaffRole.ADMIN))
    """
    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in [r.value for r in roles]:
            raise forbidden_exception()
        return current_user
    return _check


# Raccourcis pratiques
require_admin = require_role(StaffRole.ADMIN)
require_staff = require_role(StaffRole.STAFF, StaffRole.ADMIN)
