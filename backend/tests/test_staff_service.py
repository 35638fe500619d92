from datetime import datetime, timezone

import pytest

from core.exceptions import ConflictError
from services.staff_service import StaffService


@pytest.fixture
def staff_service(db):
    return StaffService(db)


class TestFirstLogin:
    async def test_creates_staff_record(self, db, staff_service):
        created = await staff_service.get_or_create_from_identity("uid-1", "0711111111")
        assert created["phone"] == "+254711111111"
        assert created["role"] == "staff"
        assert len(db.staffs.docs) == 1

    async def test_concurrent_first_login_returns_existing_record(self, db, staff_service):
        insert_staff = db.staffs.insert_one

        # L'autre requête crée la fiche juste avant notre insertion
        async def other_login_wins(doc):
            db.staffs.insert_one = insert_staff
            now = datetime.now(timezone.utc)
            await insert_staff({
                "staff_id": "stf_first", "uid": "uid-1", "name": doc["phone"],
                "phone": doc["phone"], "role": "staff", "created_at": now, "updated_at": now,
            })
            return await insert_staff(doc)
        db.staffs.insert_one = other_login_wins

        staff = await staff_service.get_or_create_from_identity("uid-1", "+254711111111")

        assert staff["staff_id"] == "stf_first"
        assert len(db.staffs.docs) == 1


class TestDelete:
    async def test_refused_while_ledger_entries_exist(self, db, ledger, staff_service, staff):
        await ledger.post_delivery_fee("prc_1", 100, staff["staff_id"])

        with pytest.raises(ConflictError):
            await staff_service.delete(staff["staff_id"])
        assert len(db.staffs.docs) == 1

    async def test_staff_without_entries_is_deleted(self, db, staff_service, staff):
        await staff_service.delete(staff["staff_id"])
        assert db.staffs.docs == []
