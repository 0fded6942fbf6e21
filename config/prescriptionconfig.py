# config/prescriptionconfig.py
"""
Prescription Pipeline Configuration
Upload limits, storage location, OCR engine and order-gate policy
"""
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent


class PrescriptionSettings(BaseSettings):
    """Settings injected into the ingestion, OCR and order-gate components."""

    # ========================================================================
    # UPLOAD LIMITS (prescription context)
    # ========================================================================
    MAX_PRESCRIPTION_IMAGES: int = 5
    MAX_PRESCRIPTION_IMAGE_BYTES: int = 10 * 1024 * 1024  # 10MB
    PRESCRIPTION_MIME_TYPES: List[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "application/pdf",
    ]

    # Product and avatar contexts
    MAX_PRODUCT_IMAGES: int = 10
    MAX_PRODUCT_IMAGE_BYTES: int = 5 * 1024 * 1024
    MAX_AVATAR_IMAGE_BYTES: int = 2 * 1024 * 1024
    CATALOG_MIME_TYPES: List[str] = ["image/jpeg", "image/jpg", "image/png"]

    # ========================================================================
    # STORAGE
    # ========================================================================
    MEDIA_ROOT: Path = BASE_DIR / "media"
    MEDIA_URL: str = "/media"

    # ========================================================================
    # OCR (Tesseract)
    # ========================================================================
    OCR_LANGUAGE: str = "eng"
    OCR_TIMEOUT_SECONDS: int = 0  # 0 = engine default, no timeout
    OCR_PDF_DPI: int = 200
    TESSERACT_CMD: str = ""  # empty = tesseract on PATH

    # ========================================================================
    # RECORD POLICY
    # ========================================================================
    PRESCRIPTION_VALIDITY_YEARS: int = 1
    MAX_REFILLS_PER_MEDICATION: int = 12

    # Gate only accepts verified prescriptions when True
    ORDER_GATE_REQUIRE_VERIFIED: bool = True

    # ========================================================================
    # ORDER PRICING
    # ========================================================================
    TAX_RATE: float = 0.08
    FREE_SHIPPING_THRESHOLD: float = 50.0
    SHIPPING_FEE: float = 5.99

    class Config:
        env_file = ".env"
        extra = "ignore"


prescription_settings = PrescriptionSettings()
