# ============================================================================
# FILE: tests/conftest.py
# ============================================================================
"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite file, its own media directory and fake
OCR / e-mail collaborators wired in through app.dependency_overrides.
"""
import os
import tempfile

os.environ["ENVIRONMENT"] = "test"
os.environ["EMAIL_BACKEND"] = "console"
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="medcare-media-"))

from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database.connection import Base, get_db
from app.helpers.exceptions import ExtractionError
from app.helpers.references import prescription_number
from app.helpers.time import utcnow
from app.main import app
from app.prescription_engine.image_ingestion import ImageIngestor, policies_from_settings
from app.prescription_engine.notifications import EmailSender
from app.prescription_engine.providers import get_email_sender, get_object_storage, get_text_extractor
from app.prescription_engine.storage import LocalObjectStorage
from app.prescription_engine.text_extractor import ExtractionResult
from app.system_models.prescription_model.prescription_model import Prescription, PrescriptionMedication
from app.system_models.product_model.product_model import Product
from app.users.security import create_access_token, get_password_hash, token_claims
from app.users.user_models.user_model import User
from config.prescriptionconfig import prescription_settings

SAMPLE_OCR_TEXT = """Dr. Sarah Johnson MD
City Medical Clinic
Patient: John Doe
Date: 2024-03-01
Diagnosis: Acute sinusitis
Amoxicillin 250mg tablet twice daily for 7 days
Ibuprofen 400mg tab tid for 5 days
Instructions: take after meals"""


class FakeExtractor:
    """Stands in for TextExtractor; records every URL it was asked to read."""

    def __init__(self, text: str = SAMPLE_OCR_TEXT, confidence: int = 87):
        self.text = text
        self.confidence = confidence
        self.fail = False
        self.calls: List[str] = []

    async def extract(self, url, progress=None):
        self.calls.append(url)
        if progress:
            progress(0)
        if self.fail:
            raise ExtractionError("Tesseract is not installed")
        if progress:
            progress(100)
        return ExtractionResult(text=self.text, confidence=self.confidence, word_count=len(self.text.split()))


class RecordingSender(EmailSender):
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to, subject, html_body):
        if self.fail:
            raise RuntimeError("resend is down")
        self.sent.append({"to": to, "subject": subject, "html": html_body})


# ============================================================================
# DATABASE
# ============================================================================
@pytest_asyncio.fixture
async def engine(tmp_path):
    import app.model_registry  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# COLLABORATORS
# ============================================================================
@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(tmp_path / "media", "/media")


@pytest.fixture
def ingestor(storage):
    return ImageIngestor(storage, policies_from_settings(prescription_settings))


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest_asyncio.fixture
async def client(session_factory, storage, extractor, sender):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_object_storage] = lambda: storage
    app.dependency_overrides[get_text_extractor] = lambda: extractor
    app.dependency_overrides[get_email_sender] = lambda: sender

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# USERS
# ============================================================================
async def create_user(db, email: str, role: str = "customer", password: str = "password123") -> User:
    user = User(
        email=email,
        hashed_password=get_password_hash(password),
        first_name=email.split("@")[0].title(),
        last_name="Tester",
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def auth_headers(db, user: User) -> dict:
    token = await create_access_token(data=token_claims(user), db=db)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def customer(db):
    return await create_user(db, "jane@example.com")


@pytest_asyncio.fixture
async def other_customer(db):
    return await create_user(db, "mallory@example.com")


@pytest_asyncio.fixture
async def pharmacist(db):
    return await create_user(db, "pharma@example.com", role="pharmacist")


@pytest_asyncio.fixture
async def admin(db):
    return await create_user(db, "admin@example.com", role="admin")


@pytest_asyncio.fixture
async def customer_headers(db, customer):
    return await auth_headers(db, customer)


@pytest_asyncio.fixture
async def other_headers(db, other_customer):
    return await auth_headers(db, other_customer)


@pytest_asyncio.fixture
async def pharmacist_headers(db, pharmacist):
    return await auth_headers(db, pharmacist)


@pytest_asyncio.fixture
async def admin_headers(db, admin):
    return await auth_headers(db, admin)


# ============================================================================
# RECORDS
# ============================================================================
async def create_prescription_record(
    db,
    patient: User,
    status: str = "pending_verification",
    priority: str = "normal",
    medications: Optional[List[str]] = None,
    created_at=None,
    prescription_date=None,
    expiry_date=None,
    verified_by: Optional[User] = None,
) -> Prescription:
    """Insert a record in a given state, bypassing the upload pipeline."""
    prescription_date = prescription_date or utcnow() - timedelta(days=2)
    prescription = Prescription(
        prescription_number=prescription_number(),
        patient_id=patient.id,
        doctor_name="Dr. Sarah Johnson",
        doctor_license_number="LIC-12345",
        symptoms=[],
        allergies=[],
        prescription_date=prescription_date,
        expiry_date=expiry_date or prescription_date + timedelta(days=365),
        status=status,
        priority=priority,
        is_approved=status in ("verified", "fulfilled"),
        verified_by_id=verified_by.id if verified_by else None,
        verified_at=utcnow() if verified_by else None,
        created_at=created_at or utcnow(),
        medications=[
            PrescriptionMedication(
                position=i, name=name, dosage="250mg", frequency="Twice daily", duration="7 days", quantity=1
            )
            for i, name in enumerate(medications or ["Amoxicillin"])
        ],
    )
    db.add(prescription)
    await db.commit()
    return prescription


async def create_product(db, name: str, price: str = "12.50", prescription_required: bool = False,
                         stock: int = 100) -> Product:
    product = Product(
        name=name,
        price=Decimal(price),
        prescription_required=prescription_required,
        stock_quantity=stock,
        stock_reserved=0,
        is_active=True,
    )
    db.add(product)
    await db.commit()
    await db.refresh(product)
    return product
