# app/system_services/verification_services.py
import logging
from typing import List, Tuple

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.helpers.time import utcnow
from app.prescription_engine import lifecycle
from app.prescription_engine.notifications import NotificationOutcome, PrescriptionNotifier
from app.system_models.prescription_model.prescription_model import Prescription
from app.system_models.prescription_model.prescription_schemas import VerificationRequest
from app.system_services.prescription_services import commit_prescription, load_prescription
from app.users.user_models.user_model import User

logger = logging.getLogger(__name__)

PRIORITY_RANK = case(
    {"urgent": 4, "high": 3, "normal": 2, "low": 1},
    value=Prescription.priority,
    else_=0,
)


# ============================================================
# ✅ PHARMACIST QUEUE
# ============================================================
async def list_pending_verification(db: AsyncSession) -> List[Prescription]:
    """Most urgent first, then oldest submission first."""
    result = await db.execute(
        select(Prescription)
        .where(Prescription.status == lifecycle.PendingVerification.status)
        .order_by(PRIORITY_RANK.desc(), Prescription.created_at.asc(), Prescription.id.asc())
    )
    return list(result.scalars().all())


# ============================================================
# ✅ APPROVE / REJECT
# ============================================================
async def decide_verification(
    db: AsyncSession,
    prescription_id: int,
    pharmacist: User,
    decision: VerificationRequest,
    notifier: PrescriptionNotifier,
) -> Tuple[Prescription, NotificationOutcome]:
    """
    Record the pharmacist's decision, then tell the patient.

    The decision is committed before the e-mail goes out; a failed e-mail
    only shows up in the returned NotificationOutcome.
    """
    prescription = await load_prescription(db, prescription_id)

    if decision.is_approved:
        lifecycle.apply_transition(
            prescription, lifecycle.approve, by=pharmacist.id, at=utcnow(), notes=decision.notes
        )
    else:
        lifecycle.apply_transition(
            prescription,
            lifecycle.reject,
            by=pharmacist.id,
            at=utcnow(),
            reason=decision.rejection_reason,
            notes=decision.notes,
        )

    prescription.updated_at = utcnow()
    await commit_prescription(db)
    logger.info(
        f"🩺 {prescription.prescription_number} {prescription.status} by {pharmacist.email}"
    )

    prescription = await load_prescription(db, prescription.id)
    try:
        outcome = await notifier.verification_decision(prescription, prescription.patient)
    except Exception as e:
        logger.error(f"❌ Decision e-mail for {prescription.prescription_number} failed: {e}")
        outcome = NotificationOutcome(attempted=1, failed=1, errors=[str(e)])
    return prescription, outcome
