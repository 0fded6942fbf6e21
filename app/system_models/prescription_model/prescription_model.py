# app/system_models/prescription_model/prescription_model.py
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship

from app.database.connection import Base
from app.helpers.time import as_utc, utcnow

PRESCRIPTION_STATUSES = (
    "pending_upload",
    "uploaded",
    "processing",
    "pending_verification",
    "verified",
    "rejected",
    "expired",
    "fulfilled",
)
PRIORITIES = ("low", "normal", "high", "urgent")


prescription_orders = Table(
    "prescription_orders",
    Base.metadata,
    Column("prescription_id", Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True),
)


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    prescription_number = Column(String, unique=True, nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Prescribing doctor
    doctor_name = Column(String, nullable=False)
    doctor_license_number = Column(String, nullable=False, index=True)
    doctor_phone = Column(String, nullable=True)
    doctor_email = Column(String, nullable=True)
    clinic_name = Column(String, nullable=True)
    clinic_address = Column(String, nullable=True)
    clinic_phone = Column(String, nullable=True)

    diagnosis = Column(Text, nullable=True)
    symptoms = Column(JSON, default=list, nullable=False)
    allergies = Column(JSON, default=list, nullable=False)
    instructions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    extracted_text = Column(Text, nullable=True)
    ocr_confidence = Column(Integer, nullable=True)

    # Written only by app.prescription_engine.lifecycle
    status = Column(String, default="pending_upload", nullable=False, index=True)
    is_approved = Column(Boolean, default=False, nullable=False)
    verified_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verification_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    prescription_date = Column(DateTime(timezone=True), nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=False)
    is_valid = Column(Boolean, default=True, nullable=False)
    refills_used = Column(Integer, default=0, nullable=False)
    priority = Column(String, default="normal", nullable=False)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    patient = relationship("User", back_populates="prescriptions", foreign_keys=[patient_id], lazy="selectin")
    verified_by = relationship("User", foreign_keys=[verified_by_id], lazy="selectin")
    medications = relationship(
        "PrescriptionMedication",
        back_populates="prescription",
        cascade="all, delete-orphan",
        order_by="PrescriptionMedication.position",
        lazy="selectin",
    )
    images = relationship(
        "PrescriptionImage",
        back_populates="prescription",
        cascade="all, delete-orphan",
        order_by="PrescriptionImage.position",
        lazy="selectin",
    )
    orders = relationship("Order", secondary=prescription_orders, back_populates="prescriptions", lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_upload', 'uploaded', 'processing', 'pending_verification', "
            "'verified', 'rejected', 'expired', 'fulfilled')",
            name="check_prescription_status",
        ),
        CheckConstraint("priority IN ('low', 'normal', 'high', 'urgent')", name="check_prescription_priority"),
        CheckConstraint("ocr_confidence IS NULL OR (ocr_confidence >= 0 AND ocr_confidence <= 100)",
                        name="check_ocr_confidence"),
        CheckConstraint("refills_used >= 0", name="check_refills_used"),
        CheckConstraint("expiry_date >= prescription_date", name="check_expiry_after_prescription"),
        Index("ix_prescriptions_patient_created", "patient_id", "created_at"),
    )

    @property
    def remaining_refills(self) -> int:
        total = sum(med.refills or 0 for med in self.medications)
        return max(0, total - (self.refills_used or 0))

    @property
    def is_expired(self) -> bool:
        return utcnow() > as_utc(self.expiry_date)

    @property
    def medication_names(self) -> list[str]:
        return [med.name for med in self.medications if med.name]

    def __repr__(self):
        return f"<Prescription {self.prescription_number} [{self.status}]>"


class PrescriptionMedication(Base):
    __tablename__ = "prescription_medications"

    id = Column(Integer, primary_key=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)

    name = Column(String, nullable=False)
    dosage = Column(String, nullable=False)
    frequency = Column(String, nullable=False)
    duration = Column(String, nullable=False)
    instructions = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False)
    refills = Column(Integer, default=0, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)

    prescription = relationship("Prescription", back_populates="medications")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="check_medication_quantity"),
        CheckConstraint("refills >= 0", name="check_medication_refills"),
    )


class PrescriptionImage(Base):
    __tablename__ = "prescription_images"

    id = Column(Integer, primary_key=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, default=0, nullable=False)

    url = Column(String, nullable=False)
    storage_key = Column(String, nullable=True)
    original_name = Column(String, nullable=True)
    size = Column(Integer, nullable=True)
    mime_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    prescription = relationship("Prescription", back_populates="images")
