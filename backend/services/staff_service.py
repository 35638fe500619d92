"""
Service personnel : fiche créée au premier login, registre admin.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from core.exceptions import ConflictError, NotFoundError, StorageFailure, ValidationError
from core.utils import format_phone_number, mask_phone, validate_phone_number
from models.common import StaffRole
from models.staff import StaffCreate, StaffUpdate

logger = logging.getLogger(__name__)


def _staff_id() -> str:
    return f"stf_{uuid.uuid4().hex[:12]}"


def _normalized_phone(phone: str) -> str:
    formatted = format_phone_number(phone.strip())
    if not validate_phone_number(formatted):
        raise ValidationError({"phone": "Numéro de téléphone invalide"})
    return formatted


class StaffService:
    def __init__(self, db):
        self.db = db

    async def get(self, staff_id: str) -> dict:
        try:
            staff = await self.db.staffs.find_one({"staff_id": staff_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageFailure(f"Lecture personnel impossible : {e}") from e
        if not staff:
            raise NotFoundError("Membre du personnel")
        return staff

    async def get_or_create_from_identity(self, uid: str, phone: str) -> dict:
        """
        Résout l'identité vérifiée (uid Firebase, téléphone) en fiche personnel.
        Aucune fiche pour ce téléphone → création avec le rôle `staff`.
        """
        phone = format_phone_number(phone)
        now = datetime.now(timezone.utc)
        try:
            staff = await self.db.staffs.find_one({"phone": phone}, {"_id": 0})
            if staff:
                if staff.get("uid") != uid:
                    await self.db.staffs.update_one(
                        {"staff_id": staff["staff_id"]},
                        {"$set": {"uid": uid, "updated_at": now}},
                    )
                    staff["uid"] = uid
                    staff["updated_at"] = now
                return staff

            staff = {
                "staff_id":   _staff_id(),
                "uid":        uid,
                "name":       phone,   # mis à jour par un admin
                "phone":      phone,
                "role":       StaffRole.STAFF.value,
                "created_at": now,
                "updated_at": now,
            }
            try:
                await self.db.staffs.insert_one(staff)
            except DuplicateKeyError:
                # Premier login concurrent sur le même téléphone : l'autre requête a créé la fiche
                existing = await self.db.staffs.find_one({"phone": phone}, {"_id": 0})
                if not existing:
                    raise
                return existing
        except PyMongoError as e:
            raise StorageFailure(f"Fiche personnel indisponible : {e}") from e

        logger.info(f"Nouveau membre du personnel : {mask_phone(phone)}")
        return {k: v for k, v in staff.items() if k != "_id"}

    async def list(self, role: Optional[str] = None) -> list:
        query = {"role": role} if role else {}
        try:
            cursor = self.db.staffs.find(query, {"_id": 0}).sort("name", 1)
            return await cursor.to_list(length=500)
        except PyMongoError as e:
            raise StorageFailure(f"Lecture personnel impossible : {e}") from e

    async def create(self, data: StaffCreate) -> dict:
        phone = _normalized_phone(data.phone)
        now = datetime.now(timezone.utc)
        staff = {
            "staff_id":   _staff_id(),
            "uid":        data.uid,
            "name":       data.name,
            "phone":      phone,
            "role":       data.role.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            if await self.db.staffs.find_one({"$or": [{"uid": data.uid}, {"phone": phone}]}):
                raise ConflictError("Un membre avec cet UID ou ce téléphone existe déjà")
            await self.db.staffs.insert_one(staff)
        except DuplicateKeyError as e:
            raise ConflictError("Un membre avec cet UID ou ce téléphone existe déjà") from e
        except PyMongoError as e:
            raise StorageFailure(f"Création personnel impossible : {e}") from e
        return {k: v for k, v in staff.items() if k != "_id"}

    async def update(self, staff_id: str, data: StaffUpdate) -> dict:
        await self.get(staff_id)
        updates = data.model_dump(exclude_none=True)
        if "name" in updates:
            updates["name"] = updates["name"].strip()
            if not updates["name"]:
                raise ValidationError({"name": "Nom obligatoire"})
        if "phone" in updates:
            updates["phone"] = _normalized_phone(updates["phone"])
        if "role" in updates:
            updates["role"] = StaffRole(updates["role"]).value
        if not updates:
            return await self.get(staff_id)

        updates["updated_at"] = datetime.now(timezone.utc)
        try:
            await self.db.staffs.update_one({"staff_id": staff_id}, {"$set": updates})
        except DuplicateKeyError as e:
            raise ConflictError("Téléphone déjà attribué") from e
        except PyMongoError as e:
            raise StorageFailure(f"Mise à jour personnel impossible : {e}") from e
        return await self.get(staff_id)

    async def delete(self, staff_id: str) -> None:
        await self.get(staff_id)
        try:
            entries = await self.db.ledger.count_documents({"staff_id": staff_id})
            if entries:
                raise ConflictError(f"Membre rattaché à {entries} écriture(s) du ledger")
            await self.db.staffs.delete_one({"staff_id": staff_id})
        except PyMongoError as e:
            raise StorageFailure(f"Suppression personnel impossible : {e}") from e
        logger.info(f"Membre du personnel supprimé : {staff_id}")
