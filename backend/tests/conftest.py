"""
Configuration de test centralisée.

MongoDB est remplacé par une base en mémoire qui imite la partie de l'API
Motor utilisée par les services ; la passerelle SMS par une passerelle qui
enregistre les messages.
"""
import copy
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from httpx import AsyncClient, ASGITransport
from pymongo.errors import AutoReconnect, DuplicateKeyError

from core.dependencies import get_sms_gateway, limiter
from core.exceptions import DispatchFailure
from core.security import create_access_token
from database import get_db
from main import app
from models.notification import SmsResult
from services.events import EventBus
from services.ledger_service import LedgerService
from services.notification_service import NotificationService
from services.parcel_service import ParcelService
from services.sms_gateway import SmsGateway


# ── Fausse base Motor ─────────────────────────────────────────────────────────
def _matches(doc: dict, query: dict) -> bool:
    for key, cond in query.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key)
        if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op == "$in" and value not in arg:
                    return False
                if op == "$gte" and (value is None or value < arg):
                    return False
                if op == "$lt" and (value is None or value >= arg):
                    return False
                if op == "$ne" and value == arg:
                    return False
        elif value != cond:
            return False
    return True


def _project(doc: dict, projection) -> dict:
    out = copy.deepcopy(doc)
    if projection and projection.get("_id") == 0:
        out.pop("_id", None)
    return out


class MockCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: (d.get(key) is None, d.get(key)), reverse=direction == -1)
        return self

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


# Index uniques de database.create_indexes dont dépendent les services : (champ, filtre partiel)
UNIQUE_INDEXES = {
    "ledger": [("parcel_id", {"type": "delivery_fee"})],
    "staffs": [("phone", {})],
}


class MockCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.fail_on = set()   # opérations qui lèvent une erreur MongoDB
        self.unique = UNIQUE_INDEXES.get(name, [])

    def _check(self, op):
        if op in self.fail_on:
            raise AutoReconnect(f"{self.name}.{op} : panne simulée")

    async def create_indexes(self, indexes):
        return []

    async def insert_one(self, doc):
        self._check("insert_one")
        for field, partial in self.unique:
            if not _matches(doc, partial):
                continue
            if any(_matches(d, partial) and d.get(field) == doc.get(field) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error {self.name}.{field}", 11000)
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    def aggregate(self, pipeline):
        self._check("aggregate")
        docs = [copy.deepcopy(d) for d in self.docs]
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _matches(d, stage["$match"])]
            elif "$group" in stage:
                spec = stage["$group"]
                key_field = spec["_id"].lstrip("$") if spec["_id"] else None
                groups = {}
                for d in docs:
                    key = d.get(key_field) if key_field else None
                    group = groups.setdefault(key, {"_id": key})
                    for out, acc in spec.items():
                        if out != "_id":
                            group[out] = group.get(out, 0) + d.get(acc["$sum"].lstrip("$"), 0)
                docs = list(groups.values())
        return MockCursor(docs)

    async def find_one(self, query=None, projection=None):
        self._check("find_one")
        for doc in self.docs:
            if _matches(doc, query or {}):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        self._check("find")
        return MockCursor([_project(d, projection) for d in self.docs if _matches(d, query or {})])

    async def count_documents(self, query):
        self._check("count_documents")
        return sum(1 for d in self.docs if _matches(d, query))

    async def update_one(self, query, update, upsert=False):
        self._check("update_one")
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                for key, inc in update.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + inc
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
            doc.update(copy.deepcopy(update.get("$set", {})))
            doc["_id"] = ObjectId()
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def delete_one(self, query):
        self._check("delete_one")
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)


class MockDatabase:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = MockCollection(name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


# ── Fausse passerelle SMS ─────────────────────────────────────────────────────
class RecordingGateway(SmsGateway):
    provider = "recording"

    def __init__(self):
        self.sent = []
        self.fail = False

    async def _deliver(self, to, message):
        if self.fail:
            raise DispatchFailure("gateway down", self.provider)
        self.sent.append((to, message))
        return SmsResult(success=True, provider=self.provider)


# ── Fixtures services ─────────────────────────────────────────────────────────
@pytest.fixture
def db():
    return MockDatabase()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def ledger(db):
    return LedgerService(db, currency="KES")


@pytest.fixture
def notifications(db, gateway):
    return NotificationService(db, gateway, company_name="CourierPWA")


@pytest.fixture
def parcels(db, ledger, notifications):
    events = EventBus()
    events.subscribe(notifications.handle_lifecycle_event)
    return ParcelService(db, ledger, events)


async def _insert_staff(db, staff_id, phone, role):
    now = datetime.now(timezone.utc)
    doc = {
        "staff_id":   staff_id,
        "uid":        f"uid-{staff_id}",
        "name":       staff_id.replace("stf_", "").title(),
        "phone":      phone,
        "role":       role,
        "created_at": now,
        "updated_at": now,
    }
    await db.staffs.insert_one(doc)
    return {k: v for k, v in doc.items() if k != "_id"}


@pytest.fixture
async def staff(db):
    return await _insert_staff(db, "stf_jane", "+254700000001", "staff")


@pytest.fixture
async def admin(db):
    return await _insert_staff(db, "stf_boss", "+254700000009", "admin")


@pytest.fixture
async def destination(db):
    now = datetime.now(timezone.utc)
    doc = {
        "destination_id": "dst_nairobicbd",
        "name":           "Nairobi CBD",
        "region":         "Nairobi",
        "base_fee":       150.0,
        "created_at":     now,
        "updated_at":     now,
    }
    await db.destinations.insert_one(doc)
    return {k: v for k, v in doc.items() if k != "_id"}


# ── Client HTTP ───────────────────────────────────────────────────────────────
@pytest.fixture
async def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_sms_gateway] = lambda: gateway
    limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _auth_headers(staff_doc: dict) -> dict:
    token = create_access_token({"sub": staff_doc["staff_id"], "role": staff_doc["role"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers(staff):
    return _auth_headers(staff)


@pytest.fixture
def admin_headers(admin):
    return _auth_headers(admin)
