# ============================================================================
# FILE: tests/test_prescription_api.py
# ============================================================================
"""
HTTP tests for the prescription endpoints
"""
import json
from datetime import timedelta

import pytest

from app.helpers.time import add_years, utcnow
from app.system_services.prescription_services import load_prescription

from conftest import SAMPLE_OCR_TEXT, create_prescription_record

MEDICATIONS = [
    {"name": "Amoxicillin", "dosage": "250mg", "frequency": "Twice daily", "duration": "7 days",
     "quantity": 14, "refills": 2},
    {"name": "Ibuprofen", "dosage": "400mg", "frequency": "Three times daily", "duration": "5 days",
     "quantity": 15},
]


def form(**overrides):
    data = {
        "doctorName": "Dr. Sarah Johnson",
        "doctorLicenseNumber": "LIC-12345",
        "doctorClinic": json.dumps({"name": "City Medical Clinic", "phone": "+1 555 0100"}),
        "medications": json.dumps(MEDICATIONS),
        "diagnosis": "Acute sinusitis",
        "symptoms": json.dumps(["congestion", " headache ", ""]),
        "allergies": "penicillin-free, latex",
        "prescriptionDate": "2024-03-01T00:00:00Z",
    }
    data.update(overrides)
    return {k: v for k, v in data.items() if v is not None}


def image(name="rx.png", content=b"\x89PNG fake image bytes"):
    return ("prescriptionImages", (name, content, "image/png"))


# ============================================================================
# CREATE
# ============================================================================
@pytest.mark.asyncio
async def test_upload_with_image_runs_ocr_and_queues(client, customer_headers, pharmacist, extractor, sender):
    response = await client.post("/api/prescriptions", data=form(), files=[image()], headers=customer_headers)

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["prescriptionNumber"].startswith("RX")
    assert body["status"] == "pending_verification"
    assert body["extractedText"] == SAMPLE_OCR_TEXT
    assert body["ocrConfidence"] == 87
    assert body["expiryDate"].startswith("2025-03-01")
    assert body["remainingRefills"] == 2
    assert body["symptoms"] == ["congestion", "headache"]
    assert body["allergies"] == ["penicillin-free", "latex"]
    assert body["doctor"]["clinic"]["name"] == "City Medical Clinic"
    assert [m["name"] for m in body["medications"]] == ["Amoxicillin", "Ibuprofen"]
    assert body["images"][0]["url"].startswith("/media/prescriptions/")
    assert body["verification"]["isApproved"] is False

    assert extractor.calls == [body["images"][0]["url"]]
    assert [mail["to"] for mail in sender.sent] == [pharmacist.email]


@pytest.mark.asyncio
async def test_upload_without_images_skips_ocr(client, customer_headers, extractor):
    response = await client.post("/api/prescriptions", data=form(doctorClinic="Corner Clinic"),
                                 headers=customer_headers)

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["status"] == "pending_verification"
    assert body["extractedText"] is None
    assert body["doctor"]["clinic"]["name"] == "Corner Clinic"
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_ocr_failure_still_reaches_queue(client, customer_headers, extractor):
    extractor.fail = True
    response = await client.post("/api/prescriptions", data=form(), files=[image()], headers=customer_headers)

    assert response.status_code == 201
    assert response.json()["status"] == "pending_verification"
    assert response.json()["extractedText"] == ""


@pytest.mark.asyncio
async def test_pharmacist_email_failure_does_not_fail_upload(client, customer_headers, pharmacist, sender):
    sender.fail = True
    response = await client.post("/api/prescriptions", data=form(), headers=customer_headers)
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_upload_requires_auth(client):
    response = await client.post("/api/prescriptions", data=form())
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides, field", [
    ({"doctorName": None}, "doctorName"),
    ({"medications": "[]"}, "medications"),
    ({"medications": "not json"}, "medications"),
    ({"prescriptionDate": (utcnow() + timedelta(days=3)).isoformat()}, "prescriptionDate"),
    ({"doctorPhone": "call me maybe"}, "doctorPhone"),
])
async def test_upload_validation_errors(client, customer_headers, overrides, field):
    response = await client.post("/api/prescriptions", data=form(**overrides), headers=customer_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert any(err["field"].startswith(field) for err in body["errors"]), body


@pytest.mark.asyncio
async def test_upload_rejects_bad_file_type(client, customer_headers):
    files = [("prescriptionImages", ("notes.txt", b"hello", "text/plain"))]
    response = await client.post("/api/prescriptions", data=form(), files=files, headers=customer_headers)

    assert response.status_code == 400
    assert "notes.txt" in response.json()["detail"]


@pytest.mark.asyncio
async def test_expiry_before_prescription_date_rejected(client, customer_headers):
    response = await client.post(
        "/api/prescriptions", data=form(expiryDate="2024-01-01"), headers=customer_headers
    )
    assert response.status_code == 400


# ============================================================================
# READ
# ============================================================================
@pytest.mark.asyncio
async def test_list_is_newest_first_and_only_mine(client, db, customer, other_customer, customer_headers):
    older = await create_prescription_record(db, customer, created_at=utcnow() - timedelta(days=2))
    newer = await create_prescription_record(db, customer, created_at=utcnow() - timedelta(days=1))
    await create_prescription_record(db, other_customer)

    response = await client.get("/api/prescriptions", headers=customer_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [p["id"] for p in body["prescriptions"]] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_get_forbidden_for_other_customer_allowed_for_staff(
    client, db, customer, other_headers, pharmacist_headers, customer_headers
):
    record = await create_prescription_record(db, customer)

    assert (await client.get(f"/api/prescriptions/{record.id}", headers=other_headers)).status_code == 403
    assert (await client.get(f"/api/prescriptions/{record.id}", headers=pharmacist_headers)).status_code == 200
    assert (await client.get(f"/api/prescriptions/{record.id}", headers=customer_headers)).status_code == 200
    assert (await client.get("/api/prescriptions/99999", headers=customer_headers)).status_code == 404


@pytest.mark.asyncio
async def test_draft_parses_stored_text(client, customer_headers):
    created = await client.post("/api/prescriptions", data=form(), files=[image()], headers=customer_headers)
    prescription_id = created.json()["id"]

    response = await client.get(f"/api/prescriptions/{prescription_id}/draft", headers=customer_headers)

    assert response.status_code == 200
    draft = response.json()
    assert draft["diagnosis"] == "Acute sinusitis"
    assert draft["patientName"] == "John Doe"
    assert draft["medications"][0] == {
        "name": "Amoxicillin", "dosage": "250mg", "frequency": "Twice daily", "duration": "7 days"
    }


@pytest.mark.asyncio
async def test_extract_endpoint_returns_editable_draft(client, customer_headers, extractor):
    files = {"prescriptionImage": ("scan.png", b"\x89PNG data", "image/png")}
    response = await client.post("/api/prescriptions/extract", files=files, headers=customer_headers)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["extractionFailed"] is False
    assert body["ocrConfidence"] == 87
    assert body["draft"]["doctorName"] == "Dr. Sarah Johnson MD"
    assert len(body["draft"]["medications"]) == 2

    extractor.fail = True
    response = await client.post("/api/prescriptions/extract", files=files, headers=customer_headers)
    assert response.status_code == 200
    assert response.json()["extractionFailed"] is True
    assert response.json()["draft"]["medications"] == []


# ============================================================================
# UPDATE / DELETE
# ============================================================================
@pytest.mark.asyncio
async def test_owner_can_update_pending_record(client, db, customer, customer_headers):
    record = await create_prescription_record(db, customer)

    response = await client.put(
        f"/api/prescriptions/{record.id}",
        json={"diagnosis": "Otitis media", "medications": [MEDICATIONS[1]], "priority": "high"},
        headers=customer_headers,
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["diagnosis"] == "Otitis media"
    assert body["priority"] == "high"
    assert [m["name"] for m in body["medications"]] == ["Ibuprofen"]
    assert body["status"] == "pending_verification"


@pytest.mark.asyncio
async def test_update_cannot_set_status(client, db, session_factory, customer, customer_headers):
    record = await create_prescription_record(db, customer)

    response = await client.put(
        f"/api/prescriptions/{record.id}", json={"status": "verified"}, headers=customer_headers
    )

    assert response.status_code == 400
    async with session_factory() as fresh:
        assert (await load_prescription(fresh, record.id)).status == "pending_verification"


@pytest.mark.asyncio
async def test_update_verified_is_conflict(client, db, customer, pharmacist, customer_headers):
    record = await create_prescription_record(db, customer, status="verified", verified_by=pharmacist)

    response = await client.put(
        f"/api/prescriptions/{record.id}", json={"diagnosis": "changed"}, headers=customer_headers
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_update_by_non_owner_forbidden(client, db, customer, pharmacist_headers):
    record = await create_prescription_record(db, customer)
    response = await client.put(
        f"/api/prescriptions/{record.id}", json={"diagnosis": "changed"}, headers=pharmacist_headers
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_updating_rejected_record_resubmits_it(client, db, customer, pharmacist, customer_headers):
    record = await create_prescription_record(db, customer, status="rejected", verified_by=pharmacist)

    response = await client.put(
        f"/api/prescriptions/{record.id}", json={"doctorLicenseNumber": "LIC-99999"}, headers=customer_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending_verification"
    assert body["verification"]["rejectionReason"] is None
    assert body["doctor"]["licenseNumber"] == "LIC-99999"


@pytest.mark.asyncio
async def test_delete_rules(client, db, customer, pharmacist, customer_headers, other_headers):
    pending = await create_prescription_record(db, customer)
    verified = await create_prescription_record(db, customer, status="verified", verified_by=pharmacist)

    assert (await client.delete(f"/api/prescriptions/{pending.id}", headers=other_headers)).status_code == 403
    assert (await client.delete(f"/api/prescriptions/{verified.id}", headers=customer_headers)).status_code == 409

    response = await client.delete(f"/api/prescriptions/{pending.id}", headers=customer_headers)
    assert response.status_code == 200
    assert (await client.get(f"/api/prescriptions/{pending.id}", headers=customer_headers)).status_code == 404


# ============================================================================
# VERIFY
# ============================================================================
@pytest.mark.asyncio
async def test_approve_then_reapprove_conflicts(client, db, customer, pharmacist, pharmacist_headers, sender):
    record = await create_prescription_record(db, customer)

    response = await client.patch(
        f"/api/prescriptions/{record.id}/verify",
        json={"isApproved": True, "notes": "Checked with prescriber"},
        headers=pharmacist_headers,
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["prescription"]["status"] == "verified"
    assert body["prescription"]["verification"]["verifiedBy"] == pharmacist.id
    assert body["prescription"]["verification"]["notes"] == "Checked with prescriber"
    assert body["notification"] == {"attempted": 1, "delivered": 1, "failed": 0}
    assert sender.sent[-1]["to"] == customer.email
    assert sender.sent[-1]["subject"] == "Prescription Approved - MedCare"
    verified_at = body["prescription"]["verification"]["verifiedAt"]

    again = await client.patch(
        f"/api/prescriptions/{record.id}/verify", json={"isApproved": True}, headers=pharmacist_headers
    )
    assert again.status_code == 409
    assert again.json()["code"] == "CONFLICT"

    current = await client.get(f"/api/prescriptions/{record.id}", headers=pharmacist_headers)
    assert current.json()["status"] == "verified"
    assert current.json()["verification"]["verifiedAt"] == verified_at


@pytest.mark.asyncio
async def test_reject_requires_reason(client, db, customer, pharmacist_headers):
    record = await create_prescription_record(db, customer)

    response = await client.patch(
        f"/api/prescriptions/{record.id}/verify", json={"isApproved": False}, headers=pharmacist_headers
    )
    assert response.status_code == 400

    response = await client.patch(
        f"/api/prescriptions/{record.id}/verify",
        json={"isApproved": False, "rejectionReason": "Signature missing"},
        headers=pharmacist_headers,
    )
    assert response.status_code == 200
    assert response.json()["prescription"]["status"] == "rejected"
    assert response.json()["prescription"]["verification"]["rejectionReason"] == "Signature missing"


@pytest.mark.asyncio
async def test_decision_survives_email_failure(client, db, customer, pharmacist_headers, sender):
    record = await create_prescription_record(db, customer)
    sender.fail = True

    response = await client.patch(
        f"/api/prescriptions/{record.id}/verify", json={"isApproved": True}, headers=pharmacist_headers
    )

    assert response.status_code == 200
    assert response.json()["prescription"]["status"] == "verified"
    assert response.json()["notification"] == {"attempted": 1, "delivered": 0, "failed": 1}


@pytest.mark.asyncio
async def test_customers_cannot_verify(client, db, customer, customer_headers):
    record = await create_prescription_record(db, customer)
    response = await client.patch(
        f"/api/prescriptions/{record.id}/verify", json={"isApproved": True}, headers=customer_headers
    )
    assert response.status_code == 403


# ============================================================================
# REPROCESS / STATS / EXPIRY
# ============================================================================
@pytest.mark.asyncio
async def test_reprocess_overwrites_text_but_not_status(client, customer_headers, pharmacist_headers, extractor):
    created = await client.post("/api/prescriptions", data=form(), files=[image()], headers=customer_headers)
    prescription_id = created.json()["id"]

    extractor.text, extractor.confidence = "Paracetamol 500mg tablet", 91
    response = await client.post(f"/api/prescriptions/{prescription_id}/reprocess", headers=pharmacist_headers)

    assert response.status_code == 200
    assert response.json()["extractedText"] == "Paracetamol 500mg tablet"
    assert response.json()["ocrConfidence"] == 91
    assert response.json()["status"] == "pending_verification"


@pytest.mark.asyncio
async def test_reprocess_failure_is_500_and_leaves_record(client, customer_headers, pharmacist_headers, extractor):
    created = await client.post("/api/prescriptions", data=form(), files=[image()], headers=customer_headers)
    prescription_id = created.json()["id"]

    extractor.fail = True
    response = await client.post(f"/api/prescriptions/{prescription_id}/reprocess", headers=pharmacist_headers)

    assert response.status_code == 500
    assert response.json()["code"] == "EXTRACTION_FAILED"
    current = await client.get(f"/api/prescriptions/{prescription_id}", headers=customer_headers)
    assert current.json()["extractedText"] == SAMPLE_OCR_TEXT


@pytest.mark.asyncio
async def test_reprocess_without_images(client, db, customer, pharmacist_headers):
    record = await create_prescription_record(db, customer)
    response = await client.post(f"/api/prescriptions/{record.id}/reprocess", headers=pharmacist_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_stats_counts_every_status(client, db, customer, pharmacist, pharmacist_headers):
    await create_prescription_record(db, customer)
    await create_prescription_record(db, customer)
    await create_prescription_record(db, customer, status="verified", verified_by=pharmacist)

    response = await client.get("/api/prescriptions/admin/stats", headers=pharmacist_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["pendingVerification"] == 2
    assert body["byStatus"]["verified"] == 1
    assert body["byStatus"]["fulfilled"] == 0


@pytest.mark.asyncio
async def test_expiry_sweep_is_admin_only(client, db, customer, admin_headers, pharmacist_headers):
    past = utcnow() - timedelta(days=400)
    stale = await create_prescription_record(
        db, customer, prescription_date=past, expiry_date=past + timedelta(days=30)
    )
    fresh = await create_prescription_record(db, customer)

    assert (await client.post("/api/prescriptions/admin/expire", headers=pharmacist_headers)).status_code == 403

    response = await client.post("/api/prescriptions/admin/expire", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"expired": 1, "prescriptionNumbers": [stale.prescription_number]}

    current = await client.get(f"/api/prescriptions/{fresh.id}", headers=admin_headers)
    assert current.json()["status"] == "pending_verification"
    expired = await client.get(f"/api/prescriptions/{stale.id}", headers=admin_headers)
    assert expired.json()["status"] == "expired"
    assert expired.json()["isValid"] is False



@pytest.mark.asyncio
async def test_clearing_expiry_falls_back_to_default_validity(client, db, customer, customer_headers):
    record = await create_prescription_record(db, customer)

    response = await client.put(
        f"/api/prescriptions/{record.id}", json={"expiryDate": None}, headers=customer_headers
    )

    assert response.status_code == 200, response.text
    expected = add_years(record.prescription_date, 1)
    assert response.json()["expiryDate"].startswith(expected.date().isoformat())


@pytest.mark.asyncio
async def test_new_date_with_cleared_expiry_recomputes(client, db, customer, customer_headers):
    record = await create_prescription_record(db, customer)

    response = await client.put(
        f"/api/prescriptions/{record.id}",
        json={"prescriptionDate": "2024-06-15T00:00:00Z", "expiryDate": None},
        headers=customer_headers,
    )

    assert response.status_code == 200, response.text
    assert response.json()["expiryDate"].startswith("2025-06-15")
