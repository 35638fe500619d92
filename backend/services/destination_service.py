"""
Service destinations : barème des frais de livraison (CRUD admin).
"""
import logging
import uuid
from datetime import datetime, timezone

from pymongo.errors import PyMongoError

from core.exceptions import ConflictError, NotFoundError, StorageFailure, ValidationError
from models.destination import DestinationCreate, DestinationUpdate

logger = logging.getLogger(__name__)


def _destination_id() -> str:
    return f"dst_{uuid.uuid4().hex[:12]}"


class DestinationService:
    def __init__(self, db):
        self.db = db

    async def get(self, destination_id: str) -> dict:
        try:
            destination = await self.db.destinations.find_one({"destination_id": destination_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageFailure(f"Lecture destination impossible : {e}") from e
        if not destination:
            raise NotFoundError("Destination")
        return destination

    async def list(self) -> list:
        try:
            cursor = self.db.destinations.find({}, {"_id": 0}).sort("name", 1)
            return await cursor.to_list(length=500)
        except PyMongoError as e:
            raise StorageFailure(f"Lecture destinations impossible : {e}") from e

    async def create(self, data: DestinationCreate) -> dict:
        errors = {}
        if not data.name.strip():
            errors["name"] = "Nom obligatoire"
        if not data.region.strip():
            errors["region"] = "Région obligatoire"
        if errors:
            raise ValidationError(errors)

        now = datetime.now(timezone.utc)
        destination = {
            "destination_id": _destination_id(),
            "name":           data.name.strip(),
            "region":         data.region.strip(),
            "base_fee":       float(data.base_fee),
            "created_at":     now,
            "updated_at":     now,
        }
        try:
            await self.db.destinations.insert_one(destination)
        except PyMongoError as e:
            raise StorageFailure(f"Création destination impossible : {e}") from e
        logger.info(f"Destination créée : {destination['name']} ({destination['base_fee']})")
        return {k: v for k, v in destination.items() if k != "_id"}

    async def update(self, destination_id: str, data: DestinationUpdate) -> dict:
        await self.get(destination_id)
        updates = data.model_dump(exclude_none=True)
        for field in ("name", "region"):
            if field in updates:
                updates[field] = updates[field].strip()
                if not updates[field]:
                    raise ValidationError({field: "Champ obligatoire"})
        if not updates:
            return await self.get(destination_id)

        updates["updated_at"] = datetime.now(timezone.utc)
        try:
            await self.db.destinations.update_one({"destination_id": destination_id}, {"$set": updates})
        except PyMongoError as e:
            raise StorageFailure(f"Mise à jour destination impossible : {e}") from e
        return await self.get(destination_id)

    async def delete(self, destination_id: str) -> None:
        await self.get(destination_id)
        try:
            in_use = await self.db.parcels.count_documents({"destination_id": destination_id})
            if in_use:
                raise ConflictError(f"Destination utilisée par {in_use} colis")
            await self.db.destinations.delete_one({"destination_id": destination_id})
        except PyMongoError as e:
            raise StorageFailure(f"Suppression destination impossible : {e}") from e
        logger.info(f"Destination supprimée : {destination_id}")
