"""
Service notification : modèles de SMS et consommateur des événements de cycle
de vie. L'envoi est best-effort : un échec est journalisé (logs + sms_logs)
et renvoyé comme avertissement, jamais relancé automatiquement.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pymongo.errors import PyMongoError

from config import settings
from core.exceptions import DispatchFailure
from core.utils import mask_phone
from models.common import LifecycleEventType
from models.notification import SmsKind, SmsStatus, SmsResult
from models.parcel import LifecycleEvent
from services.sms_gateway import SmsGateway

logger = logging.getLogger(__name__)


def _log_id() -> str:
    return f"sms_{uuid.uuid4().hex[:12]}"


class SmsTemplates:
    """Textes des SMS destinataire, sans effet de bord."""

    @staticmethod
    def received(recipient_name: str, tracking_code: str, company_name: str = "CourierPWA") -> str:
        return (
            f"Dear {recipient_name}, your parcel {tracking_code} has been received "
            f"and is pending collection. - {company_name}"
        )

    @staticmethod
    def in_transit(tracking_code: str) -> str:
        return f"Your parcel {tracking_code} is now in transit and will be delivered soon."

    @staticmethod
    def delivered(tracking_code: str) -> str:
        return (
            f"Your parcel {tracking_code} has been delivered successfully. "
            f"Thank you for using our service!"
        )


def render_lifecycle_message(event_type: LifecycleEventType, parcel: dict,
                             company_name: Optional[str] = None) -> str:
    tracking_code = parcel.get("tracking_code", "")
    if event_type == LifecycleEventType.RECEIVED:
        return SmsTemplates.received(
            parcel.get("recipient_name", ""), tracking_code,
            company_name or settings.COMPANY_NAME,
        )
    if event_type == LifecycleEventType.IN_TRANSIT:
        return SmsTemplates.in_transit(tracking_code)
    return SmsTemplates.delivered(tracking_code)


class NotificationService:
    def __init__(self, db, gateway: SmsGateway, company_name: Optional[str] = None):
        self.db = db
        self.gateway = gateway
        self.company_name = company_name or settings.COMPANY_NAME

    async def handle_lifecycle_event(self, event: LifecycleEvent) -> List[str]:
        """Consommateur du bus : SMS templaté au destinataire du colis."""
        parcel = event.parcel
        phone = parcel.get("recipient_phone")
        if not phone:
            return []
        body = render_lifecycle_message(event.event_type, parcel, self.company_name)
        error = await self._send_and_log(
            phone, body, SmsKind(event.event_type.value),
            parcel_id=parcel.get("parcel_id"), sent_by=event.actor_id,
        )
        return [error] if error else []

    async def send_custom(self, parcel: dict, message: str, sent_by: str) -> SmsResult:
        """Message libre de l'opérateur. Ici l'échec est l'erreur principale : il est levé."""
        result = await self.gateway.send(parcel["recipient_phone"], message)
        await self._record(
            parcel["recipient_phone"], message, SmsKind.CUSTOM, SmsStatus.SENT,
            parcel_id=parcel["parcel_id"], sent_by=sent_by, provider=result.provider,
        )
        return result

    async def _send_and_log(self, phone: str, body: str, kind: SmsKind,
                            parcel_id: Optional[str], sent_by: Optional[str]) -> Optional[str]:
        try:
            result = await self.gateway.send(phone, body)
        except DispatchFailure as e:
            logger.warning(f"SMS {kind.value} non envoyé à {mask_phone(phone)} : {e.detail}")
            await self._record(phone, body, kind, SmsStatus.FAILED, parcel_id, sent_by,
                               provider=e.provider, error=e.detail)
            return f"SMS {kind.value} non envoyé : {e.detail}"

        logger.info(f"SMS {kind.value} envoyé à {mask_phone(phone)} via {result.provider}")
        await self._record(phone, body, kind, SmsStatus.SENT, parcel_id, sent_by,
                           provider=result.provider)
        return None

    async def _record(self, phone: str, body: str, kind: SmsKind, status: SmsStatus,
                      parcel_id: Optional[str], sent_by: Optional[str],
                      provider: Optional[str] = None, error: Optional[str] = None):
        log = {
            "log_id":          _log_id(),
            "parcel_id":       parcel_id,
            "recipient_phone": phone,
            "message":         body,
            "kind":            kind.value,
            "status":          status.value,
            "provider":        provider,
            "error":           error,
            "sent_by":         sent_by,
            "sent_at":         datetime.now(timezone.utc),
        }
        try:
            await self.db.sms_logs.insert_one(log)
        except PyMongoError as e:
            logger.error(f"Journal SMS non enregistré ({kind.value}, colis={parcel_id}) : {e}")
