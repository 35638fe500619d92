import pytest

from core.exceptions import (
    DispatchFailure,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StorageFailure,
    ValidationError,
)
from models.parcel import ParcelCreate
from services.notification_service import SmsTemplates
from services.parcel_service import MAX_DESCRIPTION_LENGTH, validate_parcel_input


def parcel_input(**overrides) -> ParcelCreate:
    data = {
        "sender_name":       "John Sender",
        "sender_phone":      "0712345678",
        "recipient_name":    "Mary Recipient",
        "recipient_phone":   "0723456789",
        "destination_id":    "dst_nairobicbd",
        "short_description": "Box of books",
    }
    data.update(overrides)
    return ParcelCreate(**data)


async def create(parcels, staff, **overrides) -> dict:
    result = await parcels.create_parcel(parcel_input(**overrides), staff)
    return result["parcel"]


class TestInputValidation:
    def test_cleans_values(self):
        cleaned = validate_parcel_input(parcel_input(sender_name="  John  ", short_description=" Books "))
        assert cleaned["sender_name"] == "John"
        assert cleaned["short_description"] == "Books"
        assert cleaned["sender_phone"] == "+254712345678"
        assert cleaned["recipient_phone"] == "+254723456789"

    def test_all_errors_at_once(self):
        with pytest.raises(ValidationError) as exc:
            validate_parcel_input(ParcelCreate())
        assert set(exc.value.errors) == {
            "sender_name", "sender_phone", "recipient_name",
            "recipient_phone", "destination_id", "short_description",
        }

    def test_invalid_phone(self):
        with pytest.raises(ValidationError) as exc:
            validate_parcel_input(parcel_input(recipient_phone="12345"))
        assert set(exc.value.errors) == {"recipient_phone"}

    def test_description_length_after_trim(self):
        text = "x" * MAX_DESCRIPTION_LENGTH
        assert validate_parcel_input(parcel_input(short_description=f"  {text}  "))["short_description"] == text
        with pytest.raises(ValidationError) as exc:
            validate_parcel_input(parcel_input(short_description=text + "x"))
        assert "short_description" in exc.value.errors


class TestCreateParcel:
    async def test_creates_pending_parcel_with_fee_and_sms(self, db, gateway, parcels, staff, destination):
        result = await parcels.create_parcel(parcel_input(), staff)
        parcel = result["parcel"]

        assert result["warnings"] == []
        assert parcel["status"] == "pending"
        assert parcel["created_by"] == staff["staff_id"]
        assert parcel["ledger_posted"] is True
        assert len(parcel["tracking_code"]) == 12
        assert parcel["recipient_phone"] == "+254723456789"
        assert "_id" not in parcel

        assert len(db.ledger.docs) == 1
        fee = db.ledger.docs[0]
        assert fee["type"] == "delivery_fee"
        assert fee["amount"] == 150.0
        assert fee["staff_id"] == staff["staff_id"]
        assert fee["parcel_id"] == parcel["parcel_id"]

        assert gateway.sent == [(
            "+254723456789",
            SmsTemplates.received("Mary Recipient", parcel["tracking_code"], "CourierPWA"),
        )]
        timeline = await parcels.get_timeline(parcel["parcel_id"])
        assert [e["event_type"] for e in timeline] == ["PARCEL_CREATED"]

    async def test_invalid_input_writes_nothing(self, db, gateway, parcels, staff, destination):
        with pytest.raises(ValidationError):
            await parcels.create_parcel(parcel_input(sender_name="", recipient_phone="abc"), staff)
        assert db.parcels.docs == []
        assert db.ledger.docs == []
        assert gateway.sent == []

    async def test_unknown_destination(self, db, parcels, staff, destination):
        with pytest.raises(NotFoundError):
            await parcels.create_parcel(parcel_input(destination_id="dst_nowhere"), staff)
        assert db.parcels.docs == []
        assert db.ledger.docs == []

    async def test_requires_staff_role(self, db, parcels, destination):
        with pytest.raises(ForbiddenError):
            await parcels.create_parcel(parcel_input(), {"staff_id": "cust_1", "role": "customer"})
        assert db.parcels.docs == []

    async def test_sms_failure_is_a_warning(self, db, gateway, parcels, staff, destination):
        gateway.fail = True

        result = await parcels.create_parcel(parcel_input(), staff)

        assert len(result["warnings"]) == 1
        assert len(db.parcels.docs) == 1
        assert len(db.ledger.docs) == 1
        assert db.sms_logs.docs[0]["status"] == "failed"

    async def test_ledger_failure_leaves_parcel_to_reconcile(self, db, gateway, parcels, staff, admin, destination):
        db.ledger.fail_on.add("insert_one")
        with pytest.raises(StorageFailure):
            await parcels.create_parcel(parcel_input(), staff)

        assert db.parcels.docs[0]["ledger_posted"] is False
        assert gateway.sent == []

        db.ledger.fail_on.clear()
        report = await parcels.reconcile_ledger(admin)
        assert report == {"scanned": 1, "posted": 1, "relinked": 0, "skipped": []}
        assert db.parcels.docs[0]["ledger_posted"] is True
        assert db.ledger.docs[0]["amount"] == 150.0
        assert db.ledger.docs[0]["staff_id"] == staff["staff_id"]

        again = await parcels.reconcile_ledger(admin)
        assert again["scanned"] == 0
        assert len(db.ledger.docs) == 1

    async def test_missing_marker_is_relinked_without_second_fee(self, db, parcels, staff, admin, destination):
        db.parcels.fail_on.add("update_one")
        result = await parcels.create_parcel(parcel_input(), staff)
        assert result["parcel"]["ledger_posted"] is False

        db.parcels.fail_on.clear()
        report = await parcels.reconcile_ledger(admin)
        assert report["relinked"] == 1
        assert report["posted"] == 0
        assert len(db.ledger.docs) == 1

    async def test_reconcile_during_creation_posts_one_fee(self, db, parcels, staff, admin, destination):
        insert_parcel = db.parcels.insert_one
        reports = []

        # La réconciliation passe entre l'écriture du colis et celle des frais
        async def insert_then_reconcile(doc):
            result = await insert_parcel(doc)
            reports.append(await parcels.reconcile_ledger(admin))
            return result
        db.parcels.insert_one = insert_then_reconcile

        result = await parcels.create_parcel(parcel_input(), staff)

        assert reports[0]["posted"] == 1
        fees = [e for e in db.ledger.docs if e["parcel_id"] == result["parcel"]["parcel_id"]]
        assert len(fees) == 1
        assert result["parcel"]["ledger_posted"] is True
        assert await parcels.ledger.balance_of(staff["staff_id"]) == 150.0

    async def test_reconcile_is_admin_only(self, parcels, staff):
        with pytest.raises(ForbiddenError):
            await parcels.reconcile_ledger(staff)


class TestTransitions:
    async def test_full_lifecycle(self, db, gateway, parcels, staff, destination):
        parcel = await create(parcels, staff)
        code = parcel["tracking_code"]

        moved = await parcels.transition_status(parcel["parcel_id"], "in_transit", staff)
        assert moved["parcel"]["status"] == "in_transit"
        assert moved["warnings"] == []

        done = await parcels.transition_status(parcel["parcel_id"], "delivered", staff)
        assert done["parcel"]["status"] == "delivered"

        assert [message for _, message in gateway.sent] == [
            SmsTemplates.received("Mary Recipient", code, "CourierPWA"),
            SmsTemplates.in_transit(code),
            SmsTemplates.delivered(code),
        ]
        timeline = await parcels.get_timeline(parcel["parcel_id"])
        assert [(e["from_status"], e["to_status"]) for e in timeline] == [
            (None, "pending"), ("pending", "in_transit"), ("in_transit", "delivered"),
        ]
        # Les transitions ne touchent pas au ledger
        assert len(db.ledger.docs) == 1
        wallet = await parcels.ledger.get_wallet(staff["staff_id"])
        assert wallet["balance"] == 150.0

    async def test_same_status_is_noop(self, db, gateway, parcels, staff, destination):
        parcel = await create(parcels, staff)
        await parcels.transition_status(parcel["parcel_id"], "in_transit", staff)
        sent_before = len(gateway.sent)

        result = await parcels.transition_status(parcel["parcel_id"], "in_transit", staff)

        assert result["parcel"]["status"] == "in_transit"
        assert result["warnings"] == []
        assert len(gateway.sent) == sent_before
        assert len(db.parcel_events.docs) == 2

    async def test_noop_keeps_updated_at(self, parcels, staff, destination):
        parcel = await create(parcels, staff)
        before = await parcels.get_parcel(parcel["parcel_id"])

        await parcels.transition_status(parcel["parcel_id"], "pending", staff)

        after = await parcels.get_parcel(parcel["parcel_id"])
        assert after["updated_at"] == before["updated_at"]
        assert after["status"] == "pending"

    async def test_repeat_delivered_sends_nothing(self, db, gateway, parcels, staff, destination):
        parcel = await create(parcels, staff)
        await parcels.transition_status(parcel["parcel_id"], "in_transit", staff)
        await parcels.transition_status(parcel["parcel_id"], "delivered", staff)

        result = await parcels.transition_status(parcel["parcel_id"], "delivered", staff)

        assert result["parcel"]["status"] == "delivered"
        assert len(gateway.sent) == 3
        assert len(db.sms_logs.docs) == 3
        assert len(db.ledger.docs) == 1

    async def test_skipping_a_step_is_refused(self, db, gateway, parcels, staff, destination):
        parcel = await create(parcels, staff)

        with pytest.raises(InvalidTransitionError):
            await parcels.transition_status(parcel["parcel_id"], "delivered", staff)

        assert (await parcels.get_parcel(parcel["parcel_id"]))["status"] == "pending"
        assert len(gateway.sent) == 1

    async def test_backward_move_is_refused(self, db, gateway, parcels, staff, destination):
        parcel = await create(parcels, staff)
        await parcels.transition_status(parcel["parcel_id"], "in_transit", staff)
        await parcels.transition_status(parcel["parcel_id"], "delivered", staff)
        before = await parcels.get_parcel(parcel["parcel_id"])

        for target in ("pending", "in_transit"):
            with pytest.raises(InvalidTransitionError):
                await parcels.transition_status(parcel["parcel_id"], target, staff)

        after = await parcels.get_parcel(parcel["parcel_id"])
        assert after["status"] == "delivered"
        assert after["updated_at"] == before["updated_at"]
        assert len(gateway.sent) == 3

    async def test_unknown_status(self, parcels, staff, destination):
        parcel = await create(parcels, staff)
        with pytest.raises(ValidationError):
            await parcels.transition_status(parcel["parcel_id"], "lost", staff)

    async def test_unknown_parcel(self, parcels, staff):
        with pytest.raises(NotFoundError):
            await parcels.transition_status("prc_missing", "in_transit", staff)

    async def test_any_staff_can_move_any_parcel(self, parcels, staff, admin, destination):
        parcel = await create(parcels, staff)
        result = await parcels.transition_status(parcel["parcel_id"], "in_transit", admin)
        assert result["parcel"]["status"] == "in_transit"

    async def test_sms_failure_does_not_undo_transition(self, gateway, parcels, staff, destination):
        parcel = await create(parcels, staff)
        gateway.fail = True

        result = await parcels.transition_status(parcel["parcel_id"], "in_transit", staff)

        assert len(result["warnings"]) == 1
        assert (await parcels.get_parcel(parcel["parcel_id"]))["status"] == "in_transit"

    async def test_storage_failure_on_update(self, db, parcels, staff, destination):
        parcel = await create(parcels, staff)
        db.parcels.fail_on.add("update_one")
        with pytest.raises(StorageFailure):
            await parcels.transition_status(parcel["parcel_id"], "in_transit", staff)


class TestCustomSms:
    async def test_sends_to_recipient(self, db, gateway, parcels, notifications, staff, destination):
        parcel = await create(parcels, staff)

        result = await parcels.send_custom_sms(parcel["parcel_id"], " Call us ", staff, notifications)

        assert result == {"sent": True, "provider": "recording"}
        assert gateway.sent[-1] == ("+254723456789", "Call us")

    async def test_message_validation(self, parcels, notifications, staff, destination):
        parcel = await create(parcels, staff)
        with pytest.raises(ValidationError):
            await parcels.send_custom_sms(parcel["parcel_id"], "   ", staff, notifications)
        with pytest.raises(ValidationError):
            await parcels.send_custom_sms(parcel["parcel_id"], "x" * 161, staff, notifications)

    async def test_gateway_failure_is_raised(self, gateway, parcels, notifications, staff, destination):
        parcel = await create(parcels, staff)
        gateway.fail = True
        with pytest.raises(DispatchFailure):
            await parcels.send_custom_sms(parcel["parcel_id"], "Call us", staff, notifications)


class TestQueries:
    async def test_list_and_counts(self, parcels, staff, admin, destination):
        mine = await create(parcels, staff)
        await create(parcels, staff)
        await create(parcels, admin)
        await parcels.transition_status(mine["parcel_id"], "in_transit", staff)

        listed = await parcels.list_parcels(created_by=staff["staff_id"])
        assert listed["total"] == 2

        in_transit = await parcels.list_parcels(status="in_transit")
        assert [p["parcel_id"] for p in in_transit["parcels"]] == [mine["parcel_id"]]

        counts = await parcels.status_counts()
        assert counts == {"pending": 2, "in_transit": 1, "delivered": 0, "total": 3}
        assert (await parcels.status_counts(staff["staff_id"]))["total"] == 2

    async def test_lookup_by_tracking_code(self, parcels, staff, destination):
        parcel = await create(parcels, staff)
        found = await parcels.get_by_tracking_code(f" {parcel['tracking_code'].lower()} ")
        assert found["parcel_id"] == parcel["parcel_id"]

        with pytest.raises(NotFoundError):
            await parcels.get_by_tracking_code("NOPE")

    async def test_unknown_status_filter(self, parcels):
        with pytest.raises(ValidationError):
            await parcels.list_parcels(status="lost")
