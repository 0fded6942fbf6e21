# app/prescription_engine/order_gate.py
"""
Order Gate - no prescription-required product leaves without a prescription
that covers it.

A cart line is covered when one of the supplied, eligible prescriptions has a
medication whose name contains the product name or is contained by it
(case-insensitive). One uncovered line fails the whole order.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from app.helpers.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    product_id: int
    name: str
    prescription_required: bool
    quantity: int = 1


def names_match(product_name: Optional[str], medication_name: Optional[str]) -> bool:
    product = (product_name or "").strip().lower()
    medication = (medication_name or "").strip().lower()
    if not product or not medication:
        return False
    return product in medication or medication in product


class OrderGate:
    def __init__(self, require_verified: bool = True):
        self.require_verified = require_verified

    def ineligibility(self, prescription, customer_id: int) -> Optional[str]:
        """Why a supplied prescription cannot back an order, or None."""
        if prescription.patient_id != customer_id:
            return "belongs to another customer"
        if prescription.is_expired or prescription.status == "expired":
            return "has expired"
        if self.require_verified and prescription.status != "verified":
            return f"is not verified (status: {prescription.status})"
        if prescription.status == "rejected":
            return "was rejected"
        return None

    def covering_prescription(self, line: CartLine, prescriptions: Iterable):
        for prescription in prescriptions:
            if any(names_match(line.name, med.name) for med in prescription.medications):
                return prescription
        return None

    def check(self, lines: Sequence[CartLine], prescriptions: Sequence, customer_id: int) -> List:
        """
        Validate every prescription-required line before anything is reserved.

        Args:
            lines: Cart lines with their catalog flags resolved
            prescriptions: Prescription records the customer attached
            customer_id: The ordering user

        Returns:
            The prescriptions that covered at least one line

        Raises:
            ValidationError: listing every uncovered product
        """
        eligible = []
        skipped = []
        for prescription in prescriptions:
            reason = self.ineligibility(prescription, customer_id)
            if reason:
                skipped.append(f"{prescription.prescription_number} {reason}")
            else:
                eligible.append(prescription)

        used = {}
        errors = []
        for line in lines:
            if not line.prescription_required:
                continue
            match = self.covering_prescription(line, eligible)
            if match is None:
                errors.append({"field": f"product:{line.product_id}", "message": f"Prescription required for {line.name}"})
            else:
                used[match.id] = match

        if errors:
            names = ", ".join(e["message"].replace("Prescription required for ", "") for e in errors)
            logger.warning(f"🚫 Order gate rejected cart: uncovered [{names}]; skipped {skipped or 'none'}")
            message = f"Prescription required for {names}"
            if skipped:
                message += f" ({'; '.join(skipped)})"
            raise ValidationError(message, errors=errors)

        return list(used.values())
