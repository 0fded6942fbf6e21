# app/prescription_engine/providers.py
"""
FastAPI dependency providers for the prescription pipeline.

Routes ask for components through these functions, so tests swap any of them
with app.dependency_overrides.
"""
from fastapi import Depends

from app.prescription_engine.image_ingestion import ImageIngestor, policies_from_settings
from app.prescription_engine.notifications import (
    ConsoleEmailSender,
    EmailSender,
    PrescriptionNotifier,
    ResendEmailSender,
)
from app.prescription_engine.order_gate import OrderGate
from app.prescription_engine.storage import LocalObjectStorage, ObjectStorage
from app.prescription_engine.text_extractor import TextExtractor
from config.appconfig import AppSettings, settings
from config.prescriptionconfig import PrescriptionSettings, prescription_settings


def get_app_settings() -> AppSettings:
    return settings


def get_prescription_settings() -> PrescriptionSettings:
    return prescription_settings


def get_object_storage(cfg: PrescriptionSettings = Depends(get_prescription_settings)) -> ObjectStorage:
    return LocalObjectStorage(cfg.MEDIA_ROOT, cfg.MEDIA_URL)


def get_image_ingestor(
    storage: ObjectStorage = Depends(get_object_storage),
    cfg: PrescriptionSettings = Depends(get_prescription_settings),
) -> ImageIngestor:
    return ImageIngestor(storage, policies_from_settings(cfg))


def get_text_extractor(
    storage: ObjectStorage = Depends(get_object_storage),
    cfg: PrescriptionSettings = Depends(get_prescription_settings),
) -> TextExtractor:
    return TextExtractor(storage, cfg)


def get_email_sender(cfg: AppSettings = Depends(get_app_settings)) -> EmailSender:
    if cfg.effective_email_backend == "resend":
        return ResendEmailSender(cfg.RESEND_API_KEY, cfg.EMAIL_FROM)
    return ConsoleEmailSender()


def get_notifier(
    sender: EmailSender = Depends(get_email_sender),
    cfg: AppSettings = Depends(get_app_settings),
) -> PrescriptionNotifier:
    return PrescriptionNotifier(sender, cfg.FRONTEND_URL, cfg.ADMIN_URL)


def get_order_gate(cfg: PrescriptionSettings = Depends(get_prescription_settings)) -> OrderGate:
    return OrderGate(require_verified=cfg.ORDER_GATE_REQUIRE_VERIFIED)
