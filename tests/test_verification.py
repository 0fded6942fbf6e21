# ============================================================================
# FILE: tests/test_verification.py
# ============================================================================
"""
Pharmacist queue ordering, decisions and concurrent edits
"""
from datetime import timedelta

import pytest

from app.helpers.exceptions import ConflictError
from app.helpers.time import utcnow
from app.prescription_engine import lifecycle
from app.prescription_engine.notifications import PrescriptionNotifier
from app.system_models.prescription_model.prescription_schemas import VerificationRequest
from app.system_services.prescription_services import commit_prescription, load_prescription
from app.system_services.verification_services import decide_verification, list_pending_verification

from conftest import create_prescription_record


def notifier_for(sender):
    return PrescriptionNotifier(sender, frontend_url="http://shop.test", admin_url="http://admin.test")


@pytest.mark.asyncio
async def test_queue_orders_by_priority_then_age(client, db, customer, pharmacist, pharmacist_headers):
    start = utcnow() - timedelta(hours=10)
    low = await create_prescription_record(db, customer, priority="low", created_at=start)
    high = await create_prescription_record(db, customer, priority="high", created_at=start + timedelta(hours=1))
    normal = await create_prescription_record(db, customer, priority="normal", created_at=start + timedelta(hours=2))
    later_high = await create_prescription_record(
        db, customer, priority="high", created_at=start + timedelta(hours=3)
    )
    await create_prescription_record(db, customer, status="verified", verified_by=pharmacist)

    response = await client.get("/api/prescriptions/admin/pending", headers=pharmacist_headers)

    assert response.status_code == 200
    ids = [p["id"] for p in response.json()["prescriptions"]]
    assert ids == [high.id, later_high.id, normal.id, low.id]


@pytest.mark.asyncio
async def test_queue_is_staff_only(client, customer_headers):
    response = await client.get("/api/prescriptions/admin/pending", headers=customer_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_urgent_jumps_the_queue(db, customer):
    first = await create_prescription_record(db, customer, created_at=utcnow() - timedelta(days=1))
    urgent = await create_prescription_record(db, customer, priority="urgent")

    queue = await list_pending_verification(db)
    assert [p.id for p in queue] == [urgent.id, first.id]


@pytest.mark.asyncio
async def test_rejection_email_carries_reason(db, customer, pharmacist, sender):
    record = await create_prescription_record(db, customer)
    decision = VerificationRequest(is_approved=False, rejection_reason="  Illegible dosage  ")

    prescription, outcome = await decide_verification(db, record.id, pharmacist, decision, notifier_for(sender))

    assert prescription.status == "rejected"
    assert prescription.rejection_reason == "Illegible dosage"
    assert prescription.is_approved is False
    assert outcome.delivered == 1
    assert sender.sent[0]["subject"] == "Prescription Requires Attention - MedCare"
    assert "Illegible dosage" in sender.sent[0]["html"]


@pytest.mark.asyncio
async def test_rejected_record_cannot_be_approved_without_resubmission(db, customer, pharmacist, sender):
    record = await create_prescription_record(db, customer)
    notifier = notifier_for(sender)
    await decide_verification(
        db, record.id, pharmacist, VerificationRequest(is_approved=False, rejection_reason="Unsigned"), notifier
    )

    with pytest.raises(ConflictError):
        await decide_verification(db, record.id, pharmacist, VerificationRequest(is_approved=True), notifier)

    assert (await load_prescription(db, record.id)).status == "rejected"


@pytest.mark.asyncio
async def test_expired_record_cannot_be_decided(db, customer, pharmacist, sender):
    record = await create_prescription_record(db, customer, status="expired")
    with pytest.raises(ConflictError):
        await decide_verification(
            db, record.id, pharmacist, VerificationRequest(is_approved=True), notifier_for(sender)
        )


@pytest.mark.asyncio
async def test_concurrent_edit_and_verify_conflict(session_factory, db, customer, pharmacist):
    record = await create_prescription_record(db, customer)

    async with session_factory() as editor_db, session_factory() as pharmacist_db:
        edited = await load_prescription(editor_db, record.id)
        verifying = await load_prescription(pharmacist_db, record.id)

        edited.diagnosis = "Bronchitis"
        await commit_prescription(editor_db)

        lifecycle.apply_transition(verifying, lifecycle.approve, by=pharmacist.id, at=utcnow(), notes=None)
        with pytest.raises(ConflictError):
            await commit_prescription(pharmacist_db)

    async with session_factory() as fresh:
        current = await load_prescription(fresh, record.id)
        assert current.diagnosis == "Bronchitis"
        assert current.status == "pending_verification"
        assert current.is_approved is False
