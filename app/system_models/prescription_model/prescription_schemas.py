# app/system_models/prescription_model/prescription_schemas.py
import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.helpers.time import as_utc, utcnow

PRIORITY = Literal["low", "normal", "high", "urgent"]
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]+$")


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _parse_when(v):
    # Accept bare dates ("2024-03-01") and trailing "Z"
    if isinstance(v, str):
        v = datetime.fromisoformat(v.strip())
    if isinstance(v, datetime):
        return as_utc(v)
    return v


def _check_phone(v: Optional[str]) -> Optional[str]:
    if v is not None and not PHONE_PATTERN.match(v):
        raise ValueError("Invalid phone number")
    return v


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================
class MedicationInput(CamelModel):
    name: str = Field(..., min_length=2, max_length=200)
    dosage: str = Field(..., min_length=1)
    frequency: str = Field(..., min_length=1)
    duration: str = Field(..., min_length=1)
    instructions: Optional[str] = Field(None, max_length=500)
    quantity: int = Field(..., ge=1)
    refills: int = Field(0, ge=0, le=12)
    product_id: Optional[int] = None

    @field_validator("name", "dosage", "frequency", "duration", "instructions", mode="before")
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class ClinicInfo(CamelModel):
    name: Optional[str] = Field(None, max_length=200)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = None

    @field_validator("phone")
    def valid_phone(cls, v):
        return _check_phone(v)


class PrescriptionCreate(CamelModel):
    doctor_name: str = Field(..., min_length=2, max_length=100)
    doctor_license_number: str = Field(..., min_length=5, max_length=50)
    doctor_phone: Optional[str] = None
    doctor_email: Optional[EmailStr] = None
    doctor_clinic: Optional[ClinicInfo] = None
    medications: List[MedicationInput] = Field(..., min_length=1)
    diagnosis: Optional[str] = Field(None, max_length=500)
    symptoms: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    instructions: Optional[str] = Field(None, max_length=1000)
    prescription_date: datetime
    expiry_date: Optional[datetime] = None
    priority: PRIORITY = "normal"

    @field_validator("doctor_name", "doctor_license_number", mode="before")
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("doctor_email", mode="before")
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) and v.strip() else None

    @field_validator("doctor_phone")
    def valid_phone(cls, v):
        return _check_phone(v)

    @field_validator("symptoms", "allergies")
    def clean_list(cls, v):
        items = [item.strip() for item in v if item and item.strip()]
        if any(len(item) > 100 for item in items):
            raise ValueError("Entries must be at most 100 characters")
        return items

    @field_validator("prescription_date", "expiry_date", mode="before")
    def parse_dates(cls, v):
        return _parse_when(v)

    @field_validator("prescription_date")
    def not_in_future(cls, v):
        if v > utcnow():
            raise ValueError("Prescription date cannot be in the future")
        return v

    @model_validator(mode="after")
    def expiry_after_prescription(self):
        if self.expiry_date is not None and self.expiry_date < self.prescription_date:
            raise ValueError("Expiry date cannot be before the prescription date")
        return self


class PrescriptionUpdate(CamelModel):
    """Owner edits before verification. Status is not part of this payload."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    doctor_name: Optional[str] = Field(None, min_length=2, max_length=100)
    doctor_license_number: Optional[str] = Field(None, min_length=5, max_length=50)
    doctor_phone: Optional[str] = None
    doctor_email: Optional[EmailStr] = None
    doctor_clinic: Optional[ClinicInfo] = None
    medications: Optional[List[MedicationInput]] = Field(None, min_length=1)
    diagnosis: Optional[str] = Field(None, max_length=500)
    symptoms: Optional[List[str]] = None
    allergies: Optional[List[str]] = None
    instructions: Optional[str] = Field(None, max_length=1000)
    prescription_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    priority: Optional[PRIORITY] = None

    @field_validator("doctor_name", "doctor_license_number", mode="before")
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("doctor_email", mode="before")
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) and v.strip() else None

    @field_validator("doctor_phone")
    def valid_phone(cls, v):
        return _check_phone(v)

    @field_validator("symptoms", "allergies")
    def clean_list(cls, v):
        if v is None:
            return v
        return [item.strip() for item in v if item and item.strip()]

    @field_validator("prescription_date", "expiry_date", mode="before")
    def parse_dates(cls, v):
        return _parse_when(v)

    @field_validator("prescription_date")
    def not_in_future(cls, v):
        if v is not None and v > utcnow():
            raise ValueError("Prescription date cannot be in the future")
        return v


class VerificationRequest(CamelModel):
    is_approved: bool
    notes: Optional[str] = Field(None, max_length=1000)
    rejection_reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def reason_required_on_reject(self):
        if not self.is_approved and not (self.rejection_reason and self.rejection_reason.strip()):
            raise ValueError("A rejection reason is required when rejecting a prescription")
        return self


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================
class MedicationResponse(CamelModel):
    name: str
    dosage: str
    frequency: str
    duration: str
    instructions: Optional[str] = None
    quantity: int
    refills: int
    product_id: Optional[int] = None
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ImageResponse(CamelModel):
    url: str
    original_name: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = None
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DoctorResponse(CamelModel):
    name: str
    license_number: str
    phone: Optional[str] = None
    email: Optional[str] = None
    clinic: Optional[ClinicInfo] = None


class VerificationResponse(CamelModel):
    is_approved: bool
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class PrescriptionResponse(CamelModel):
    id: int
    prescription_number: str
    patient_id: int
    doctor: DoctorResponse
    medications: List[MedicationResponse]
    diagnosis: Optional[str] = None
    symptoms: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    instructions: Optional[str] = None
    images: List[ImageResponse] = Field(default_factory=list)
    extracted_text: Optional[str] = None
    ocr_confidence: Optional[int] = None
    status: str
    verification: VerificationResponse
    prescription_date: datetime
    expiry_date: datetime
    is_valid: bool
    is_expired: bool
    refills_used: int
    remaining_refills: int
    order_ids: List[int] = Field(default_factory=list)
    priority: PRIORITY
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, p) -> "PrescriptionResponse":
        clinic = None
        if p.clinic_name or p.clinic_address or p.clinic_phone:
            clinic = ClinicInfo(name=p.clinic_name, address=p.clinic_address, phone=p.clinic_phone)

        return cls(
            id=p.id,
            prescription_number=p.prescription_number,
            patient_id=p.patient_id,
            doctor=DoctorResponse(
                name=p.doctor_name,
                license_number=p.doctor_license_number,
                phone=p.doctor_phone,
                email=p.doctor_email,
                clinic=clinic,
            ),
            medications=[MedicationResponse.model_validate(m) for m in p.medications],
            diagnosis=p.diagnosis,
            symptoms=p.symptoms or [],
            allergies=p.allergies or [],
            instructions=p.instructions,
            images=[ImageResponse.model_validate(i) for i in p.images],
            extracted_text=p.extracted_text,
            ocr_confidence=p.ocr_confidence,
            status=p.status,
            verification=VerificationResponse(
                is_approved=p.is_approved,
                verified_by=p.verified_by_id,
                verified_at=as_utc(p.verified_at),
                notes=p.verification_notes,
                rejection_reason=p.rejection_reason,
            ),
            prescription_date=as_utc(p.prescription_date),
            expiry_date=as_utc(p.expiry_date),
            is_valid=p.is_valid,
            is_expired=p.is_expired,
            refills_used=p.refills_used,
            remaining_refills=p.remaining_refills,
            order_ids=[o.id for o in p.orders],
            priority=p.priority,
            created_at=as_utc(p.created_at),
            updated_at=as_utc(p.updated_at),
        )


class PrescriptionListResponse(CamelModel):
    count: int
    prescriptions: List[PrescriptionResponse]


class DraftMedication(CamelModel):
    name: str
    dosage: str
    frequency: str
    duration: str


class PrescriptionDraft(CamelModel):
    """Parser output: a first-pass draft for a human to correct."""
    doctor_name: Optional[str] = None
    patient_name: Optional[str] = None
    date: Optional[str] = None
    diagnosis: Optional[str] = None
    instructions: Optional[str] = None
    medications: List[DraftMedication] = Field(default_factory=list)


class ExtractionDraftResponse(CamelModel):
    images: List[ImageResponse]
    extracted_text: str
    ocr_confidence: Optional[int] = None
    extraction_failed: bool = False
    draft: PrescriptionDraft


class NotificationSummary(CamelModel):
    attempted: int
    delivered: int
    failed: int


class VerificationDecisionResponse(CamelModel):
    prescription: PrescriptionResponse
    notification: NotificationSummary


class PrescriptionStats(CamelModel):
    total: int
    by_status: dict
    pending_verification: int


class ExpirySweepResponse(CamelModel):
    expired: int
    prescription_numbers: List[str]
