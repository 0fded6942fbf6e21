# app/system_services/prescription_services.py
import logging
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.helpers.exceptions import ConflictError, ExtractionError, ForbiddenError, NotFoundError, ValidationError
from app.helpers.references import prescription_number
from app.helpers.time import add_years, as_utc, utcnow
from app.prescription_engine import lifecycle
from app.prescription_engine.field_parser import parse_prescription_text
from app.prescription_engine.image_ingestion import ImageDescriptor, ImageIngestor, IncomingFile
from app.prescription_engine.notifications import NotificationOutcome, PrescriptionNotifier
from app.prescription_engine.text_extractor import TextExtractor
from app.system_models.prescription_model.prescription_model import (
    PRESCRIPTION_STATUSES,
    Prescription,
    PrescriptionImage,
    PrescriptionMedication,
)
from app.system_models.prescription_model.prescription_schemas import (
    ClinicInfo,
    ExtractionDraftResponse,
    ImageResponse,
    MedicationInput,
    PrescriptionCreate,
    PrescriptionDraft,
    PrescriptionStats,
    PrescriptionUpdate,
)
from app.users.user_models.user_model import User

logger = logging.getLogger(__name__)


# ============================================================
# ✅ LOADING & ACCESS
# ============================================================
async def load_prescription(db: AsyncSession, prescription_id: int) -> Prescription:
    """Fetch a prescription with every relationship freshly loaded."""
    result = await db.execute(
        select(Prescription)
        .where(Prescription.id == prescription_id)
        .execution_options(populate_existing=True)
    )
    prescription = result.scalars().first()
    if not prescription:
        raise NotFoundError("Prescription not found")
    return prescription


def ensure_can_view(prescription: Prescription, user: User) -> None:
    if prescription.patient_id != user.id and not user.is_staff:
        raise ForbiddenError("Not authorized to access this prescription")


def ensure_owner(prescription: Prescription, user: User) -> None:
    if prescription.patient_id != user.id:
        raise ForbiddenError("Only the patient who uploaded this prescription can change it")


async def commit_prescription(db: AsyncSession) -> None:
    """Commit, turning a lost version race into a 409."""
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise ConflictError("Prescription was changed by another request. Reload it and try again.")


def _medication_rows(medications: Sequence[MedicationInput]) -> List[PrescriptionMedication]:
    return [
        PrescriptionMedication(
            position=position,
            name=med.name,
            dosage=med.dosage,
            frequency=med.frequency,
            duration=med.duration,
            instructions=med.instructions,
            quantity=med.quantity,
            refills=med.refills,
            product_id=med.product_id,
        )
        for position, med in enumerate(medications)
    ]


def _image_rows(images: Sequence[ImageDescriptor]) -> List[PrescriptionImage]:
    return [
        PrescriptionImage(
            position=position,
            url=image.url,
            storage_key=image.storage_key,
            original_name=image.original_name,
            size=image.size,
            mime_type=image.mime_type,
        )
        for position, image in enumerate(images)
    ]


def _apply_clinic(prescription: Prescription, clinic: Optional[ClinicInfo]) -> None:
    clinic = clinic or ClinicInfo()
    prescription.clinic_name = clinic.name
    prescription.clinic_address = clinic.address
    prescription.clinic_phone = clinic.phone


# ============================================================
# ✅ CREATE PRESCRIPTION
# ============================================================
async def create_prescription(
    db: AsyncSession,
    patient: User,
    data: PrescriptionCreate,
    files: Sequence[IncomingFile],
    ingestor: ImageIngestor,
    extractor: TextExtractor,
    notifier: PrescriptionNotifier,
    validity_years: int = 1,
) -> Prescription:
    """
    Store images, persist the record, OCR the first image and queue it for
    verification. OCR failures leave empty text; the record still reaches
    pending_verification.
    """
    images = await ingestor.ingest(files, "prescription")

    prescription = Prescription(
        prescription_number=prescription_number(),
        patient_id=patient.id,
        doctor_name=data.doctor_name,
        doctor_license_number=data.doctor_license_number,
        doctor_phone=data.doctor_phone,
        doctor_email=data.doctor_email,
        diagnosis=data.diagnosis,
        symptoms=data.symptoms,
        allergies=data.allergies,
        instructions=data.instructions,
        prescription_date=data.prescription_date,
        expiry_date=data.expiry_date or add_years(data.prescription_date, validity_years),
        priority=data.priority,
        status=lifecycle.PendingUpload.status,
        medications=_medication_rows(data.medications),
        images=_image_rows(images),
    )
    _apply_clinic(prescription, data.doctor_clinic)
    lifecycle.apply_transition(prescription, lifecycle.mark_uploaded)

    db.add(prescription)
    await db.commit()
    logger.info(f"📝 Prescription {prescription.prescription_number} created for {patient.email}")

    if images:
        lifecycle.apply_transition(prescription, lifecycle.begin_processing)
        await db.commit()

        try:
            result = await extractor.extract(
                images[0].url,
                progress=lambda pct: logger.debug(f"OCR {prescription.prescription_number}: {pct}%"),
            )
            prescription.extracted_text = result.text
            prescription.ocr_confidence = result.confidence
        except ExtractionError as e:
            logger.error(f"❌ OCR failed for {prescription.prescription_number}, continuing without text: {e.message}")
            prescription.extracted_text = ""
            prescription.ocr_confidence = None

        lifecycle.apply_transition(prescription, lifecycle.finish_processing)
    else:
        lifecycle.apply_transition(prescription, lifecycle.submit_without_images)
    await db.commit()

    prescription = await load_prescription(db, prescription.id)
    await notify_pharmacists(db, prescription, patient, notifier)
    return prescription


async def notify_pharmacists(
    db: AsyncSession, prescription: Prescription, patient: User, notifier: PrescriptionNotifier
) -> NotificationOutcome:
    result = await db.execute(
        select(User).where(User.role == "pharmacist", User.is_active.is_(True))
    )
    pharmacists = result.scalars().all()
    try:
        return await notifier.new_prescription(prescription, patient, pharmacists)
    except Exception as e:
        logger.error(f"❌ Could not notify pharmacists about {prescription.prescription_number}: {e}")
        return NotificationOutcome(attempted=len(pharmacists), failed=len(pharmacists), errors=[str(e)])


# ============================================================
# ✅ DRAFT FROM A SINGLE IMAGE
# ============================================================
async def extract_prescription_draft(
    files: Sequence[IncomingFile],
    ingestor: ImageIngestor,
    extractor: TextExtractor,
) -> ExtractionDraftResponse:
    """Store one image and return the parser's draft for the client to correct."""
    if len(files) != 1:
        raise ValidationError.for_field("prescriptionImage", "Upload exactly one prescription image")

    images = await ingestor.ingest(files, "prescription")

    extraction_failed = False
    text, confidence = "", None
    try:
        result = await extractor.extract(images[0].url)
        text, confidence = result.text, result.confidence
    except ExtractionError as e:
        extraction_failed = True
        logger.warning(f"⚠️ Draft extraction failed for {images[0].original_name}: {e.message}")

    parsed = parse_prescription_text(text)
    return ExtractionDraftResponse(
        images=[ImageResponse.model_validate(image, from_attributes=True) for image in images],
        extracted_text=text,
        ocr_confidence=confidence,
        extraction_failed=extraction_failed,
        draft=PrescriptionDraft.model_validate(parsed.to_dict()),
    )


def prescription_draft(prescription: Prescription) -> PrescriptionDraft:
    return PrescriptionDraft.model_validate(parse_prescription_text(prescription.extracted_text).to_dict())


# ============================================================
# ✅ READ
# ============================================================
async def list_patient_prescriptions(db: AsyncSession, patient: User) -> List[Prescription]:
    result = await db.execute(
        select(Prescription)
        .where(Prescription.patient_id == patient.id)
        .order_by(Prescription.created_at.desc(), Prescription.id.desc())
    )
    return list(result.scalars().all())


async def get_prescription_for_user(db: AsyncSession, prescription_id: int, user: User) -> Prescription:
    prescription = await load_prescription(db, prescription_id)
    ensure_can_view(prescription, user)
    return prescription


# ============================================================
# ✅ UPDATE (owner, before verification or after rejection)
# ============================================================
async def update_prescription(
    db: AsyncSession,
    prescription_id: int,
    user: User,
    data: PrescriptionUpdate,
    validity_years: int = 1,
) -> Prescription:
    prescription = await load_prescription(db, prescription_id)
    ensure_owner(prescription, user)
    state = lifecycle.state_of(prescription)
    lifecycle.ensure_editable(state)

    changes = data.model_dump(exclude_unset=True)
    medications = changes.pop("medications", None)
    clinic_set = "doctor_clinic" in changes
    changes.pop("doctor_clinic", None)

    for field_name, value in changes.items():
        if value is None and field_name in ("doctor_name", "doctor_license_number", "prescription_date", "priority"):
            raise ValidationError.for_field(field_name, f"{field_name} cannot be cleared")
        setattr(prescription, field_name, value)

    if medications is not None:
        prescription.medications = _medication_rows(data.medications)
    if clinic_set:
        _apply_clinic(prescription, data.doctor_clinic)

    # A new date without an expiry, or a cleared expiry, falls back to the default validity
    if changes.get("expiry_date") is None and ("prescription_date" in changes or "expiry_date" in changes):
        prescription.expiry_date = add_years(as_utc(prescription.prescription_date), validity_years)
    if as_utc(prescription.expiry_date) < as_utc(prescription.prescription_date):
        raise ValidationError.for_field("expiryDate", "Expiry date cannot be before the prescription date")

    if isinstance(state, lifecycle.Rejected):
        lifecycle.apply_transition(prescription, lifecycle.resubmit)

    prescription.updated_at = utcnow()
    await commit_prescription(db)
    logger.info(f"✏️ Prescription {prescription.prescription_number} updated by {user.email}")
    return await load_prescription(db, prescription.id)


# ============================================================
# ✅ DELETE
# ============================================================
async def delete_prescription(db: AsyncSession, prescription_id: int, user: User) -> None:
    prescription = await load_prescription(db, prescription_id)
    ensure_owner(prescription, user)
    lifecycle.ensure_deletable(lifecycle.state_of(prescription), len(prescription.orders))

    await db.delete(prescription)
    await commit_prescription(db)
    logger.info(f"🗑️ Prescription {prescription.prescription_number} deleted by {user.email}")


# ============================================================
# ✅ REPROCESS (staff)
# ============================================================
async def reprocess_prescription(
    db: AsyncSession, prescription_id: int, extractor: TextExtractor
) -> Prescription:
    """Re-run OCR on the first stored image. Status is left as it is."""
    prescription = await load_prescription(db, prescription_id)
    if not prescription.images:
        raise ValidationError.for_field("images", "Prescription has no images to process")

    # ExtractionError propagates with the record untouched
    result = await extractor.extract(prescription.images[0].url)

    prescription.extracted_text = result.text
    prescription.ocr_confidence = result.confidence
    await commit_prescription(db)
    logger.info(f"🔄 Reprocessed {prescription.prescription_number}: confidence {result.confidence}%")
    return await load_prescription(db, prescription.id)


# ============================================================
# ✅ STATS & EXPIRY SWEEP (staff/admin)
# ============================================================
async def prescription_stats(db: AsyncSession) -> PrescriptionStats:
    result = await db.execute(
        select(Prescription.status, func.count(Prescription.id)).group_by(Prescription.status)
    )
    by_status = {status: 0 for status in PRESCRIPTION_STATUSES}
    for status, count in result.all():
        by_status[status] = count

    return PrescriptionStats(
        total=sum(by_status.values()),
        by_status=by_status,
        pending_verification=by_status["pending_verification"],
    )


async def expire_due_prescriptions(db: AsyncSession, now=None) -> List[str]:
    """Move every live record past its expiry date to expired."""
    now = now or utcnow()
    result = await db.execute(
        select(Prescription).where(
            Prescription.status.not_in(["expired", "fulfilled"]),
            Prescription.expiry_date < now,
        )
    )
    expired = []
    for prescription in result.scalars().all():
        lifecycle.apply_transition(prescription, lifecycle.expire)
        expired.append(prescription.prescription_number)

    if expired:
        await commit_prescription(db)
    logger.info(f"⌛ Expiry sweep: {len(expired)} prescription(s) expired")
    return expired
