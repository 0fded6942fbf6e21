# app/system_services/prescription_routes.py
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import get_db
from app.helpers.exception_handlers import field_errors
from app.helpers.exceptions import ValidationError
from app.prescription_engine.image_ingestion import ImageIngestor
from app.prescription_engine.notifications import PrescriptionNotifier
from app.prescription_engine.providers import (
    get_image_ingestor,
    get_notifier,
    get_prescription_settings,
    get_text_extractor,
)
from app.prescription_engine.text_extractor import TextExtractor
from app.system_models.prescription_model.prescription_schemas import (
    ExpirySweepResponse,
    ExtractionDraftResponse,
    NotificationSummary,
    PrescriptionCreate,
    PrescriptionDraft,
    PrescriptionListResponse,
    PrescriptionResponse,
    PrescriptionStats,
    PrescriptionUpdate,
    VerificationDecisionResponse,
    VerificationRequest,
)
from app.system_services import prescription_services, verification_services
from app.users.auth_dependencies import get_current_admin, get_current_staff, get_current_user
from app.users.user_models.user_model import User
from config.prescriptionconfig import PrescriptionSettings

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_json(raw: Optional[str], field: str):
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError.for_field(field, f"{field} must be valid JSON")


def _parse_list(raw: Optional[str], field: str) -> list:
    """JSON array, or a comma separated string for hand-filled forms."""
    if raw is None or not raw.strip():
        return []
    if raw.strip().startswith("["):
        value = _parse_json(raw, field)
        if not isinstance(value, list):
            raise ValidationError.for_field(field, f"{field} must be an array")
        return value
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_clinic(raw: Optional[str]):
    if raw is None or not raw.strip():
        return None
    if raw.strip().startswith("{"):
        return _parse_json(raw, "doctorClinic")
    return {"name": raw.strip()}


async def prescription_form(
    doctor_name: Optional[str] = Form(None, alias="doctorName"),
    doctor_license_number: Optional[str] = Form(None, alias="doctorLicenseNumber"),
    doctor_phone: Optional[str] = Form(None, alias="doctorPhone"),
    doctor_email: Optional[str] = Form(None, alias="doctorEmail"),
    doctor_clinic: Optional[str] = Form(None, alias="doctorClinic"),
    medications: Optional[str] = Form(None),
    diagnosis: Optional[str] = Form(None),
    symptoms: Optional[str] = Form(None),
    allergies: Optional[str] = Form(None),
    instructions: Optional[str] = Form(None),
    prescription_date: Optional[str] = Form(None, alias="prescriptionDate"),
    expiry_date: Optional[str] = Form(None, alias="expiryDate"),
    priority: Optional[str] = Form(None),
) -> PrescriptionCreate:
    """Multipart text fields -> PrescriptionCreate, with 400s shaped like every other validation error."""
    payload = {
        "doctorName": doctor_name,
        "doctorLicenseNumber": doctor_license_number,
        "doctorPhone": doctor_phone or None,
        "doctorEmail": doctor_email or None,
        "doctorClinic": _parse_clinic(doctor_clinic),
        "medications": _parse_json(medications, "medications") if medications else None,
        "diagnosis": diagnosis or None,
        "symptoms": _parse_list(symptoms, "symptoms"),
        "allergies": _parse_list(allergies, "allergies"),
        "instructions": instructions or None,
        "prescriptionDate": prescription_date,
        "expiryDate": expiry_date or None,
    }
    if priority:
        payload["priority"] = priority

    try:
        return PrescriptionCreate.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid prescription data", errors=field_errors(e.errors()))


# ============================================================
# ✅ UPLOAD PRESCRIPTION
# ============================================================
@router.post("", response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
async def upload_prescription(
    current_user: User = Depends(get_current_user),
    data: PrescriptionCreate = Depends(prescription_form),
    prescription_images: Optional[List[UploadFile]] = File(None, alias="prescriptionImages"),
    db: AsyncSession = Depends(get_db),
    ingestor: ImageIngestor = Depends(get_image_ingestor),
    extractor: TextExtractor = Depends(get_text_extractor),
    notifier: PrescriptionNotifier = Depends(get_notifier),
    cfg: PrescriptionSettings = Depends(get_prescription_settings),
):
    files = await ingestor.read_uploads(prescription_images)
    prescription = await prescription_services.create_prescription(
        db,
        current_user,
        data,
        files,
        ingestor,
        extractor,
        notifier,
        validity_years=cfg.PRESCRIPTION_VALIDITY_YEARS,
    )
    return PrescriptionResponse.from_record(prescription)


# ============================================================
# ✅ OCR DRAFT (single image, nothing persisted but the file)
# ============================================================
@router.post("/extract", response_model=ExtractionDraftResponse)
async def extract_draft(
    current_user: User = Depends(get_current_user),
    prescription_image: UploadFile = File(..., alias="prescriptionImage"),
    ingestor: ImageIngestor = Depends(get_image_ingestor),
    extractor: TextExtractor = Depends(get_text_extractor),
):
    files = await ingestor.read_uploads([prescription_image])
    return await prescription_services.extract_prescription_draft(files, ingestor, extractor)


# ============================================================
# ✅ STAFF: QUEUE, STATS, EXPIRY SWEEP
# ============================================================
@router.get("/admin/pending", response_model=PrescriptionListResponse)
async def pending_verification(
    staff: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    prescriptions = await verification_services.list_pending_verification(db)
    return PrescriptionListResponse(
        count=len(prescriptions),
        prescriptions=[PrescriptionResponse.from_record(p) for p in prescriptions],
    )


@router.get("/admin/stats", response_model=PrescriptionStats)
async def stats(
    staff: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
):
    return await prescription_services.prescription_stats(db)


@router.post("/admin/expire", response_model=ExpirySweepResponse)
async def expire_prescriptions(
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    expired = await prescription_services.expire_due_prescriptions(db)
    return ExpirySweepResponse(expired=len(expired), prescription_numbers=expired)


# ============================================================
# ✅ PATIENT: LIST / READ / DRAFT
# ============================================================
@router.get("", response_model=PrescriptionListResponse)
async def my_prescriptions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prescriptions = await prescription_services.list_patient_prescriptions(db, current_user)
    return PrescriptionListResponse(
        count=len(prescriptions),
        prescriptions=[PrescriptionResponse.from_record(p) for p in prescriptions],
    )


@router.get("/{prescription_id}", response_model=PrescriptionResponse)
async def get_prescription(
    prescription_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prescription = await prescription_services.get_prescription_for_user(db, prescription_id, current_user)
    return PrescriptionResponse.from_record(prescription)


@router.get("/{prescription_id}/draft", response_model=PrescriptionDraft)
async def get_prescription_draft(
    prescription_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prescription = await prescription_services.get_prescription_for_user(db, prescription_id, current_user)
    return prescription_services.prescription_draft(prescription)


# ============================================================
# ✅ PATIENT: UPDATE / DELETE
# ============================================================
@router.put("/{prescription_id}", response_model=PrescriptionResponse)
async def update_prescription(
    prescription_id: int,
    data: PrescriptionUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cfg: PrescriptionSettings = Depends(get_prescription_settings),
):
    prescription = await prescription_services.update_prescription(
        db, prescription_id, current_user, data, validity_years=cfg.PRESCRIPTION_VALIDITY_YEARS
    )
    return PrescriptionResponse.from_record(prescription)


@router.delete("/{prescription_id}")
async def delete_prescription(
    prescription_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await prescription_services.delete_prescription(db, prescription_id, current_user)
    return {"message": "Prescription deleted successfully"}


# ============================================================
# ✅ STAFF: VERIFY / REPROCESS
# ============================================================
@router.patch("/{prescription_id}/verify", response_model=VerificationDecisionResponse)
async def verify_prescription(
    prescription_id: int,
    decision: VerificationRequest,
    staff: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
    notifier: PrescriptionNotifier = Depends(get_notifier),
):
    prescription, outcome = await verification_services.decide_verification(
        db, prescription_id, staff, decision, notifier
    )
    return VerificationDecisionResponse(
        prescription=PrescriptionResponse.from_record(prescription),
        notification=NotificationSummary(
            attempted=outcome.attempted, delivered=outcome.delivered, failed=outcome.failed
        ),
    )


@router.post("/{prescription_id}/reprocess", response_model=PrescriptionResponse)
async def reprocess_prescription(
    prescription_id: int,
    staff: User = Depends(get_current_staff),
    db: AsyncSession = Depends(get_db),
    extractor: TextExtractor = Depends(get_text_extractor),
):
    prescription = await prescription_services.reprocess_prescription(db, prescription_id, extractor)
    return PrescriptionResponse.from_record(prescription)
