"""
Service ledger : écritures financières append-only et wallet dérivé.

Le ledger est la seule source de vérité. Le champ `wallets.balance` n'est
qu'un cache, recalculé après chaque écriture et contrôlé à la lecture.
"""
import logging
import math
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from config import settings
from core.exceptions import ForbiddenError, NotFoundError, StorageFailure, ValidationError
from models.common import CREDIT_TYPES, DEBIT_TYPES, LedgerEntryType, StaffRole
from models.ledger import LedgerEntryCreate

logger = logging.getLogger(__name__)


def _entry_id() -> str:
    return f"led_{uuid.uuid4().hex[:12]}"


def _wallet_id() -> str:
    return f"wlt_{uuid.uuid4().hex[:12]}"


def signed_amount(entry: dict) -> float:
    entry_type = LedgerEntryType(entry["type"])
    if entry_type in CREDIT_TYPES:
        return entry["amount"]
    if entry_type in DEBIT_TYPES:
        return -entry["amount"]
    return 0.0


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Début de période pour les filtres 'today' / 'week' / 'month'."""
    now = now or datetime.now(timezone.utc)
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    raise ValidationError({"period": f"Période inconnue : {period}"})


class LedgerService:
    def __init__(self, db, currency: Optional[str] = None):
        self.db = db
        self.currency = currency or settings.CURRENCY

    # ── Validation ────────────────────────────────────────────────────────────
    @staticmethod
    def validate_entry(entry_type, amount, staff_id: str, parcel_id: Optional[str]) -> LedgerEntryType:
        errors = {}
        try:
            entry_type = LedgerEntryType(entry_type)
        except ValueError:
            errors["type"] = f"Type d'écriture inconnu : {entry_type}"
            entry_type = None

        if amount is None or not math.isfinite(amount) or amount < 0:
            errors["amount"] = "Le montant doit être un nombre positif ou nul"
        if not (staff_id or "").strip():
            errors["staff_id"] = "Membre du personnel obligatoire"

        if entry_type == LedgerEntryType.DELIVERY_FEE and not parcel_id:
            errors["parcel_id"] = "Colis obligatoire pour des frais de livraison"
        elif entry_type is not None and entry_type != LedgerEntryType.DELIVERY_FEE and parcel_id:
            errors["parcel_id"] = "Seuls les frais de livraison référencent un colis"

        if errors:
            raise ValidationError(errors)
        return entry_type

    # ── Écritures ─────────────────────────────────────────────────────────────
    async def append_entry(self, data: LedgerEntryCreate, actor: dict) -> dict:
        """Écriture manuelle (bonus, pénalité, retrait, frais oublié) : admin uniquement."""
        if actor.get("role") != StaffRole.ADMIN.value:
            raise ForbiddenError("Seul un administrateur peut passer une écriture")

        entry_type = self.validate_entry(data.type, data.amount, data.staff_id, data.parcel_id)
        try:
            staff = await self.db.staffs.find_one({"staff_id": data.staff_id}, {"_id": 0})
            if not staff:
                raise NotFoundError("Membre du personnel")

            if entry_type == LedgerEntryType.DELIVERY_FEE:
                parcel = await self.db.parcels.find_one({"parcel_id": data.parcel_id}, {"_id": 0})
                if not parcel:
                    raise NotFoundError("Colis")
                if await self.has_delivery_fee(data.parcel_id):
                    raise ValidationError({"parcel_id": "Frais de livraison déjà comptabilisés"})

            if entry_type == LedgerEntryType.WITHDRAWAL:
                balance = await self.balance_of(data.staff_id)
                if data.amount > balance:
                    raise ValidationError({"amount": "Solde insuffisant"})
        except PyMongoError as e:
            raise StorageFailure(f"Lecture ledger impossible : {e}") from e

        try:
            return await self._insert(
                entry_type, data.amount, data.staff_id, data.parcel_id,
                currency=data.currency, description=data.description,
                created_by=actor.get("staff_id"),
            )
        except DuplicateKeyError:
            raise ValidationError({"parcel_id": "Frais de livraison déjà comptabilisés"})

    async def post_delivery_fee(self, parcel_id: str, amount: float, staff_id: str,
                                description: Optional[str] = None) -> Optional[dict]:
        """
        Frais de livraison à la création d'un colis (appelé par la machine d'états).
        Retourne None si un autre écrivain a déjà comptabilisé les frais du colis.
        """
        entry_type = self.validate_entry(LedgerEntryType.DELIVERY_FEE, amount, staff_id, parcel_id)
        try:
            return await self._insert(
                entry_type, amount, staff_id, parcel_id,
                description=description or f"Frais de livraison {parcel_id}",
                created_by=staff_id,
            )
        except DuplicateKeyError:
            logger.info(f"Frais de livraison déjà comptabilisés pour {parcel_id}")
            return None

    async def has_delivery_fee(self, parcel_id: str) -> bool:
        existing = await self.db.ledger.find_one(
            {"parcel_id": parcel_id, "type": LedgerEntryType.DELIVERY_FEE.value}, {"_id": 0}
        )
        return existing is not None

    async def _insert(self, entry_type: LedgerEntryType, amount: float, staff_id: str,
                      parcel_id: Optional[str], currency: Optional[str] = None,
                      description: Optional[str] = None, created_by: Optional[str] = None) -> dict:
        entry = {
            "entry_id":    _entry_id(),
            "type":        entry_type.value,
            "amount":      float(amount),
            "currency":    currency or self.currency,
            "staff_id":    staff_id,
            "parcel_id":   parcel_id,
            "description": description,
            "created_by":  created_by,
            "created_at":  datetime.now(timezone.utc),
        }
        try:
            # Index unique partiel : un seul delivery_fee par colis
            await self.db.ledger.insert_one(entry)
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            raise StorageFailure(f"Écriture ledger impossible : {e}") from e
        logger.info(f"Ledger {entry_type.value} : staff={staff_id} montant={amount} {entry['currency']}")

        # L'écriture est faite : un cache non rafraîchi sera réparé par get_wallet
        try:
            await self.refresh_wallet(staff_id)
        except StorageFailure as e:
            logger.error(f"Cache wallet non rafraîchi pour staff={staff_id} : {e.detail}")
        return {k: v for k, v in entry.items() if k != "_id"}

    # ── Wallet ────────────────────────────────────────────────────────────────
    async def balance_of(self, staff_id: str) -> float:
        """Somme signée des écritures du membre : (frais + bonus) - (retraits + pénalités)."""
        total = 0.0
        try:
            async for entry in self.db.ledger.find({"staff_id": staff_id}, {"_id": 0}):
                total += signed_amount(entry)
        except PyMongoError as e:
            raise StorageFailure(f"Lecture ledger impossible : {e}") from e
        return round(total, 2)

    async def refresh_wallet(self, staff_id: str) -> float:
        balance = await self.balance_of(staff_id)
        now = datetime.now(timezone.utc)
        try:
            await self.db.wallets.update_one(
                {"staff_id": staff_id},
                {
                    "$set": {"balance": balance, "currency": self.currency, "updated_at": now},
                    "$setOnInsert": {"wallet_id": _wallet_id(), "created_at": now},
                },
                upsert=True,
            )
        except PyMongoError as e:
            raise StorageFailure(f"Mise à jour wallet impossible : {e}") from e
        return balance

    async def get_wallet(self, staff_id: str) -> dict:
        """Solde dérivé + contrôle du cache. Une divergence est une anomalie : on la répare."""
        balance = await self.balance_of(staff_id)
        try:
            wallet = await self.db.wallets.find_one({"staff_id": staff_id}, {"_id": 0})
        except PyMongoError as e:
            raise StorageFailure(f"Lecture wallet impossible : {e}") from e

        cached = wallet.get("balance", 0.0) if wallet else 0.0
        consistent = abs(cached - balance) < 0.005
        if not consistent:
            logger.error(
                f"Wallet incohérent : staff={staff_id} cache={cached} ledger={balance}, recalcul"
            )
            await self.refresh_wallet(staff_id)

        return {
            "staff_id":       staff_id,
            "balance":        balance,
            "cached_balance": cached,
            "consistent":     consistent,
            "currency":       (wallet or {}).get("currency", self.currency),
            "updated_at":     (wallet or {}).get("updated_at"),
        }

    # ── Lecture ───────────────────────────────────────────────────────────────
    async def list_entries(
        self,
        staff_id: Optional[str] = None,
        entry_type: Optional[str] = None,
        period: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> dict:
        """Page d'écritures (plus récentes d'abord) + totaux sur tout le filtre."""
        query: dict = {}
        if staff_id:
            query["staff_id"] = staff_id
        if entry_type:
            try:
                query["type"] = LedgerEntryType(entry_type).value
            except ValueError:
                raise ValidationError({"type": f"Type d'écriture inconnu : {entry_type}"})
        if period and period != "all":
            query["created_at"] = {"$gte": period_start(period)}

        try:
            cursor = self.db.ledger.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
            entries = await cursor.to_list(length=limit)
            total = await self.db.ledger.count_documents(query)
        except PyMongoError as e:
            raise StorageFailure(f"Lecture ledger impossible : {e}") from e
        return {"entries": entries, "total": total, "totals": await self.totals(query)}

    async def totals(self, query: dict) -> dict:
        """Recettes (frais + bonus), dépenses (retraits + pénalités) et net."""
        pipeline = [
            {"$match": query},
            {"$group": {"_id": "$type", "total": {"$sum": "$amount"}}},
        ]
        try:
            groups = await self.db.ledger.aggregate(pipeline).to_list(length=None)
        except PyMongoError as e:
            raise StorageFailure(f"Lecture ledger impossible : {e}") from e

        income = sum(g["total"] for g in groups if LedgerEntryType(g["_id"]) in CREDIT_TYPES)
        expenses = sum(g["total"] for g in groups if LedgerEntryType(g["_id"]) in DEBIT_TYPES)
        return {
            "income":   round(income, 2),
            "expenses": round(expenses, 2),
            "net":      round(income - expenses, 2),
        }

    async def with_staff_names(self, entries: list) -> list:
        """Ajoute `staff_name` à chaque écriture (vue admin du ledger)."""
        staff_ids = list({e["staff_id"] for e in entries})
        if not staff_ids:
            return entries
        names = {}
        async for staff in self.db.staffs.find({"staff_id": {"$in": staff_ids}}, {"_id": 0}):
            names[staff["staff_id"]] = staff.get("name")
        return [{**e, "staff_name": names.get(e["staff_id"], "Unknown Staff")} for e in entries]
