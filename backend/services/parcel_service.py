"""
Service colis : machine d'états, journal d'événements, frais de livraison.

pending → in_transit → delivered, sans retour ni saut. La création écrit le
colis puis l'écriture delivery_fee ; MongoDB ne garantit pas l'atomicité des
deux : `ledger_posted` reste False tant que le ledger n'est pas écrit et
reconcile_ledger() rattrape les colis orphelins.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from pymongo.errors import PyMongoError

from core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from core.utils import format_phone_number, generate_tracking_code, mask_phone, validate_phone_number
from models.common import LifecycleEventType, ParcelStatus, StaffRole, STATUS_ORDER
from models.parcel import LifecycleEvent, ParcelCreate
from services.events import EventBus
from services.ledger_service import LedgerService
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 140

# ── Machine d'états ───────────────────────────────────────────────────────────
ALLOWED_TRANSITIONS: dict[ParcelStatus, list[ParcelStatus]] = {
    ParcelStatus.PENDING:    [ParcelStatus.IN_TRANSIT],
    ParcelStatus.IN_TRANSIT: [ParcelStatus.DELIVERED],
    # État terminal
    ParcelStatus.DELIVERED:  [],
}

# Événement publié à l'arrivée dans chaque statut
STATUS_EVENTS = {
    ParcelStatus.IN_TRANSIT: LifecycleEventType.IN_TRANSIT,
    ParcelStatus.DELIVERED:  LifecycleEventType.DELIVERED,
}

STAFF_ROLES = {StaffRole.STAFF.value, StaffRole.ADMIN.value}


def _parcel_id() -> str:
    return f"prc_{uuid.uuid4().hex[:12]}"


def _event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:12]}"


def _require_staff(actor: dict) -> None:
    if not actor or actor.get("role") not in STAFF_ROLES:
        raise ForbiddenError("Action réservée au personnel")


def validate_parcel_input(data: ParcelCreate) -> dict:
    """
    Contrôle les champs du formulaire. Retourne les valeurs nettoyées
    (noms/description trimés, téléphones au format E.164) ou lève
    ValidationError avec toutes les erreurs d'un coup.
    """
    errors = {}
    cleaned = {
        "sender_name":       data.sender_name.strip(),
        "recipient_name":    data.recipient_name.strip(),
        "short_description": data.short_description.strip(),
        "destination_id":    data.destination_id.strip(),
    }

    if not cleaned["sender_name"]:
        errors["sender_name"] = "Nom de l'expéditeur obligatoire"
    if not cleaned["recipient_name"]:
        errors["recipient_name"] = "Nom du destinataire obligatoire"

    for field, required in (
        ("sender_phone", "Téléphone de l'expéditeur obligatoire"),
        ("recipient_phone", "Téléphone du destinataire obligatoire"),
    ):
        raw = getattr(data, field).strip()
        if not raw:
            errors[field] = required
        elif not validate_phone_number(raw):
            errors[field] = "Numéro de téléphone invalide"
        else:
            cleaned[field] = format_phone_number(raw)

    if not cleaned["destination_id"]:
        errors["destination_id"] = "Destination obligatoire"

    if not cleaned["short_description"]:
        errors["short_description"] = "Description obligatoire"
    elif len(cleaned["short_description"]) > MAX_DESCRIPTION_LENGTH:
        errors["short_description"] = f"{MAX_DESCRIPTION_LENGTH} caractères maximum"

    if errors:
        raise ValidationError(errors)
    return cleaned


class ParcelService:
    def __init__(self, db, ledger: LedgerService, events: EventBus):
        self.db = db
        self.ledger = ledger
        self.events = events

    # ── Création ──────────────────────────────────────────────────────────────
    async def create_parcel(self, data: ParcelCreate, actor: dict) -> dict:
        """Crée un colis `pending`, comptabilise les frais, publie `received`."""
        _require_staff(actor)
        fields = validate_parcel_input(data)

        try:
            destination = await self.db.destinations.find_one(
                {"destination_id": fields["destination_id"]}, {"_id": 0}
            )
        except PyMongoError as e:
            raise StorageFailure(f"Lecture destination impossible : {e}") from e
        if not destination:
            raise NotFoundError("Destination")

        now = datetime.now(timezone.utc)
        parcel_doc = {
            "parcel_id":         _parcel_id(),
            "tracking_code":     generate_tracking_code(),
            "created_by":        actor["staff_id"],
            **fields,
            "status":            ParcelStatus.PENDING.value,
            "ledger_posted":     False,
            "created_at":        now,
            "updated_at":        now,
        }
        try:
            await self.db.parcels.insert_one(parcel_doc)
        except PyMongoError as e:
            raise StorageFailure(f"Création du colis impossible : {e}") from e
        parcel = {k: v for k, v in parcel_doc.items() if k != "_id"}

        try:
            # None : la réconciliation a comptabilisé les frais entre-temps
            await self.ledger.post_delivery_fee(
                parcel["parcel_id"], destination["base_fee"], actor["staff_id"],
                description=f"Frais de livraison {parcel['tracking_code']} → {destination['name']}",
            )
        except StorageFailure as e:
            logger.error(
                f"Colis {parcel['parcel_id']} créé sans frais comptabilisés "
                f"(à réconcilier) : {e.detail}"
            )
            raise

        try:
            await self.db.parcels.update_one(
                {"parcel_id": parcel["parcel_id"]}, {"$set": {"ledger_posted": True}}
            )
            parcel["ledger_posted"] = True
        except PyMongoError as e:
            # Frais bien écrits : la réconciliation se contentera de re-marquer le colis
            logger.error(f"Marqueur ledger_posted non écrit pour {parcel['parcel_id']} : {e}")

        await self._record_event(
            parcel_id=parcel["parcel_id"],
            event_type="PARCEL_CREATED",
            to_status=ParcelStatus.PENDING,
            actor=actor,
        )
        logger.info(
            f"Colis créé : {parcel['tracking_code']} → {destination['name']} "
            f"destinataire {mask_phone(parcel['recipient_phone'])}"
        )

        warnings = await self._publish(LifecycleEventType.RECEIVED, parcel, actor)
        return {"parcel": parcel, "warnings": warnings}

    # ── Transitions ───────────────────────────────────────────────────────────
    async def transition_status(
        self,
        parcel_id: str,
        target_status: Union[ParcelStatus, str],
        actor: dict,
    ) -> dict:
        """
        Transition officielle de la machine d'états.
        Statut identique → no-op (ni écriture, ni SMS). Retour ou saut → refus.
        """
        _require_staff(actor)
        try:
            new_status = ParcelStatus(target_status)
        except ValueError:
            raise ValidationError({"status": f"Statut inconnu : {target_status}"})

        parcel = await self.get_parcel(parcel_id)
        current_status = ParcelStatus(parcel["status"])

        if new_status == current_status:
            return {"parcel": parcel, "warnings": []}
        if new_status not in ALLOWED_TRANSITIONS.get(current_status, []):
            raise InvalidTransitionError(current_status.value, new_status.value)

        now = datetime.now(timezone.utc)
        try:
            # Garde : le statut lu doit être encore en base (écrivains concurrents)
            result = await self.db.parcels.update_one(
                {"parcel_id": parcel_id, "status": current_status.value},
                {"$set": {"status": new_status.value, "updated_at": now}},
            )
        except PyMongoError as e:
            raise StorageFailure(f"Mise à jour du colis impossible : {e}") from e

        if result.matched_count == 0:
            latest = await self.get_parcel(parcel_id)
            if latest["status"] == new_status.value:
                return {"parcel": latest, "warnings": []}
            raise InvalidTransitionError(latest["status"], new_status.value)

        parcel = {**parcel, "status": new_status.value, "updated_at": now}
        await self._record_event(
            parcel_id=parcel_id,
            event_type="STATUS_CHANGED",
            from_status=current_status,
            to_status=new_status,
            actor=actor,
        )
        logger.info(f"Colis {parcel['tracking_code']} : {current_status.value} → {new_status.value}")

        warnings = []
        if new_status in STATUS_EVENTS:
            warnings = await self._publish(STATUS_EVENTS[new_status], parcel, actor)
        return {"parcel": parcel, "warnings": warnings}

    # ── Notifications ─────────────────────────────────────────────────────────
    async def send_custom_sms(self, parcel_id: str, message: str, actor: dict,
                              notifications: NotificationService) -> dict:
        """SMS libre de l'opérateur au destinataire (160 caractères max)."""
        _require_staff(actor)
        message = message.strip()
        if not message:
            raise ValidationError({"message": "Message obligatoire"})
        if len(message) > 160:
            raise ValidationError({"message": "160 caractères maximum"})
        parcel = await self.get_parcel(parcel_id)
        result = await notifications.send_custom(parcel, message, sent_by=actor["staff_id"])
        return {"sent": result.success, "provider": result.provider}

    async def _publish(self, event_type: LifecycleEventType, parcel: dict, actor: dict) -> list:
        event = LifecycleEvent(
            event_type=event_type,
            parcel=parcel,
            actor_id=actor.get("staff_id"),
            occurred_at=datetime.now(timezone.utc),
        )
        return await self.events.publish(event)

    # ── Lecture ───────────────────────────────────────────────────────────────
    async def get_parcel(self, parcel_id: str) -> dict:
        try:
            parcel = await self.db.parcels.find_one({"parcel_id": parcel_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageFailure(f"Lecture du colis impossible : {e}") from e
        if not parcel:
            raise NotFoundError("Colis")
        return parcel

    async def get_by_tracking_code(self, tracking_code: str) -> dict:
        try:
            parcel = await self.db.parcels.find_one(
                {"tracking_code": tracking_code.strip().upper()}, {"_id": 0}
            )
        except PyMongoError as e:
            raise StorageFailure(f"Lecture du colis impossible : {e}") from e
        if not parcel:
            raise NotFoundError("Colis")
        return parcel

    async def list_parcels(
        self,
        created_by: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> dict:
        query: dict = {}
        if created_by:
            query["created_by"] = created_by
        if status:
            try:
                query["status"] = ParcelStatus(status).value
            except ValueError:
                raise ValidationError({"status": f"Statut inconnu : {status}"})
        try:
            cursor = self.db.parcels.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
            parcels = await cursor.to_list(length=limit)
            total = await self.db.parcels.count_documents(query)
        except PyMongoError as e:
            raise StorageFailure(f"Lecture des colis impossible : {e}") from e
        return {"parcels": parcels, "total": total}

    async def status_counts(self, created_by: Optional[str] = None) -> dict:
        base = {"created_by": created_by} if created_by else {}
        counts = {}
        try:
            for status in STATUS_ORDER:
                counts[status.value] = await self.db.parcels.count_documents({**base, "status": status.value})
        except PyMongoError as e:
            raise StorageFailure(f"Lecture des colis impossible : {e}") from e
        counts["total"] = sum(counts.values())
        return counts

    async def get_timeline(self, parcel_id: str) -> list:
        """Retourne les événements triés chronologiquement."""
        try:
            cursor = self.db.parcel_events.find({"parcel_id": parcel_id}, {"_id": 0}).sort("created_at", 1)
            return await cursor.to_list(length=200)
        except PyMongoError as e:
            raise StorageFailure(f"Lecture de l'historique impossible : {e}") from e

    async def _record_event(
        self,
        parcel_id: str,
        event_type: str,
        actor: dict,
        from_status: Optional[ParcelStatus] = None,
        to_status: Optional[ParcelStatus] = None,
    ):
        """Insère un ParcelEvent dans parcel_events. L'historique ne bloque pas la transition."""
        event = {
            "event_id":    _event_id(),
            "parcel_id":   parcel_id,
            "event_type":  event_type,
            "from_status": from_status.value if from_status else None,
            "to_status":   to_status.value if to_status else None,
            "actor_id":    actor.get("staff_id"),
            "actor_role":  actor.get("role"),
            "created_at":  datetime.now(timezone.utc),
        }
        try:
            await self.db.parcel_events.insert_one(event)
        except PyMongoError as e:
            logger.error(f"Événement {event_type} non enregistré pour {parcel_id} : {e}")

    # ── Réconciliation ────────────────────────────────────────────────────────
    async def reconcile_ledger(self, actor: dict) -> dict:
        """
        Rattrape les colis créés sans écriture delivery_fee (crash entre les
        deux écritures). Idempotent : un colis déjà comptabilisé n'est que
        re-marqué.
        """
        if actor.get("role") != StaffRole.ADMIN.value:
            raise ForbiddenError("Réconciliation réservée aux administrateurs")

        posted, relinked, skipped = 0, 0, []
        try:
            orphans = await self.db.parcels.find({"ledger_posted": False}, {"_id": 0}).to_list(length=1000)
            for parcel in orphans:
                parcel_id = parcel["parcel_id"]
                if not await self.ledger.has_delivery_fee(parcel_id):
                    destination = await self.db.destinations.find_one(
                        {"destination_id": parcel["destination_id"]}, {"_id": 0}
                    )
                    if not destination:
                        logger.error(f"Réconciliation impossible pour {parcel_id} : destination absente")
                        skipped.append(parcel_id)
                        continue
                    entry = await self.ledger.post_delivery_fee(
                        parcel_id, destination["base_fee"], parcel["created_by"],
                        description=f"Frais de livraison {parcel['tracking_code']} (réconciliation)",
                    )
                    if entry:
                        posted += 1
                    else:
                        relinked += 1
                else:
                    relinked += 1
                await self.db.parcels.update_one({"parcel_id": parcel_id}, {"$set": {"ledger_posted": True}})
        except PyMongoError as e:
            raise StorageFailure(f"Réconciliation interrompue : {e}") from e

        logger.info(f"Réconciliation ledger : {posted} écriture(s), {relinked} re-marqué(s), {len(skipped)} ignoré(s)")
        return {"scanned": len(orphans), "posted": posted, "relinked": relinked, "skipped": skipped}
