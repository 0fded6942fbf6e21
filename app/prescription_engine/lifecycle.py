# app/prescription_engine/lifecycle.py

"""
Prescription Lifecycle - explicit state machine for prescription records.

    pending_upload -> uploaded -> processing -> pending_verification -> verified
                              \\_____________________/        |       \\-> fulfilled
                                                           rejected -> (resubmit) pending_verification
    any live state -> expired

Each state is a frozen dataclass; the transition functions below take the
current state and return the next one, raising ConflictError for anything
else. A blank rejection reason is a ValidationError. `apply_transition` is the only code that writes `Prescription.status`
and the verification columns.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, ClassVar, Optional, Union

from app.helpers.exceptions import ConflictError, ValidationError
from app.helpers.time import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingUpload:
    status: ClassVar[str] = "pending_upload"


@dataclass(frozen=True)
class Uploaded:
    status: ClassVar[str] = "uploaded"


@dataclass(frozen=True)
class Processing:
    status: ClassVar[str] = "processing"


@dataclass(frozen=True)
class PendingVerification:
    status: ClassVar[str] = "pending_verification"


@dataclass(frozen=True)
class Verified:
    verified_by: int
    verified_at: datetime
    notes: Optional[str] = None
    status: ClassVar[str] = "verified"


@dataclass(frozen=True)
class Rejected:
    rejected_by: int
    rejected_at: datetime
    reason: str
    notes: Optional[str] = None
    status: ClassVar[str] = "rejected"


@dataclass(frozen=True)
class Expired:
    status: ClassVar[str] = "expired"


@dataclass(frozen=True)
class Fulfilled:
    status: ClassVar[str] = "fulfilled"


PrescriptionState = Union[
    PendingUpload, Uploaded, Processing, PendingVerification, Verified, Rejected, Expired, Fulfilled
]

PRE_VERIFICATION = (PendingUpload, Uploaded, Processing, PendingVerification)
TERMINAL = (Expired, Fulfilled)


def _illegal(state: PrescriptionState, action: str) -> ConflictError:
    return ConflictError(f"Cannot {action} a prescription in status '{state.status}'")


# ============================================================================
# TRANSITIONS (pure: state in, state out)
# ============================================================================
def mark_uploaded(state: PrescriptionState) -> Uploaded:
    if not isinstance(state, PendingUpload):
        raise _illegal(state, "mark as uploaded")
    return Uploaded()


def begin_processing(state: PrescriptionState) -> Processing:
    if not isinstance(state, Uploaded):
        raise _illegal(state, "start processing")
    return Processing()


def finish_processing(state: PrescriptionState) -> PendingVerification:
    """processing -> pending_verification, whether OCR succeeded or not."""
    if not isinstance(state, Processing):
        raise _illegal(state, "finish processing")
    return PendingVerification()


def submit_without_images(state: PrescriptionState) -> PendingVerification:
    """uploaded -> pending_verification for manually entered prescriptions."""
    if not isinstance(state, Uploaded):
        raise _illegal(state, "submit for verification")
    return PendingVerification()


def approve(
    state: PrescriptionState, *, by: int, at: datetime, notes: Optional[str] = None
) -> Verified:
    if isinstance(state, Verified):
        raise ConflictError("Prescription is already verified")
    if not isinstance(state, PendingVerification):
        raise _illegal(state, "approve")
    return Verified(verified_by=by, verified_at=at, notes=notes)


def reject(
    state: PrescriptionState, *, by: int, at: datetime, reason: str, notes: Optional[str] = None
) -> Rejected:
    if isinstance(state, Verified):
        raise ConflictError("Prescription is already verified")
    if not isinstance(state, PendingVerification):
        raise _illegal(state, "reject")
    if not reason or not reason.strip():
        raise ValidationError.for_field("rejectionReason", "A rejection needs a reason")
    return Rejected(rejected_by=by, rejected_at=at, reason=reason.strip(), notes=notes)


def resubmit(state: PrescriptionState) -> PendingVerification:
    """rejected -> pending_verification after the patient corrects the record."""
    if not isinstance(state, Rejected):
        raise _illegal(state, "resubmit")
    return PendingVerification()


def expire(state: PrescriptionState) -> Expired:
    if isinstance(state, TERMINAL):
        raise _illegal(state, "expire")
    return Expired()


def fulfil(state: PrescriptionState) -> Fulfilled:
    if not isinstance(state, Verified):
        raise _illegal(state, "fulfil")
    return Fulfilled()


# ============================================================================
# GUARDS
# ============================================================================
def ensure_editable(state: PrescriptionState) -> None:
    """Patient edits are allowed before verification and after a rejection."""
    if isinstance(state, Verified):
        raise ConflictError("Cannot update verified prescription")
    if not isinstance(state, PRE_VERIFICATION + (Rejected,)):
        raise _illegal(state, "update")


def ensure_deletable(state: PrescriptionState, linked_orders: int) -> None:
    if linked_orders > 0:
        raise ConflictError("Cannot delete prescription with associated orders")
    if isinstance(state, Verified):
        raise ConflictError("Cannot delete verified prescription")


# ============================================================================
# RECORD <-> STATE
# ============================================================================
_SIMPLE_STATES = {
    cls.status: cls
    for cls in (PendingUpload, Uploaded, Processing, PendingVerification, Expired, Fulfilled)
}


def state_of(record) -> PrescriptionState:
    """Rebuild the tagged state from a Prescription row."""
    if record.status == Verified.status:
        return Verified(
            verified_by=record.verified_by_id,
            verified_at=as_utc(record.verified_at),
            notes=record.verification_notes,
        )
    if record.status == Rejected.status:
        return Rejected(
            rejected_by=record.verified_by_id,
            rejected_at=as_utc(record.verified_at),
            reason=record.rejection_reason or "",
            notes=record.verification_notes,
        )
    try:
        return _SIMPLE_STATES[record.status or PendingUpload.status]()
    except KeyError:
        raise ConflictError(f"Unknown prescription status '{record.status}'")


def _write_state(record, state: PrescriptionState) -> None:
    record.status = state.status

    if isinstance(state, Verified):
        record.is_approved = True
        record.verified_by_id = state.verified_by
        record.verified_at = state.verified_at
        record.verification_notes = state.notes
        record.rejection_reason = None
    elif isinstance(state, Rejected):
        record.is_approved = False
        record.verified_by_id = state.rejected_by
        record.verified_at = state.rejected_at
        record.verification_notes = state.notes
        record.rejection_reason = state.reason
    elif isinstance(state, PRE_VERIFICATION):
        record.is_approved = False
        record.verified_by_id = None
        record.verified_at = None
        record.verification_notes = None
        record.rejection_reason = None
    elif isinstance(state, Expired):
        record.is_valid = False


def apply_transition(record, transition: Callable[..., PrescriptionState], **kwargs) -> PrescriptionState:
    """Run `transition` against the record's current state and persist the result on the row."""
    current = state_of(record)
    new_state = transition(current, **kwargs)
    _write_state(record, new_state)
    logger.info(
        f"🔁 {record.prescription_number or 'new prescription'}: {current.status} -> {new_state.status}"
    )
    return new_state
