# app/prescription_engine/notifications.py
"""
E-mail notifications for the prescription pipeline.

Every send is best effort: failures are logged and counted in the returned
NotificationOutcome, never raised, so a verification decision or an order is
never rolled back because an e-mail bounced.
"""
import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List

import resend
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


@dataclass
class NotificationOutcome:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def merge(self, other: "NotificationOutcome") -> "NotificationOutcome":
        return NotificationOutcome(
            attempted=self.attempted + other.attempted,
            delivered=self.delivered + other.delivered,
            failed=self.failed + other.failed,
            errors=self.errors + other.errors,
        )


# ============================================================================
# SENDERS
# ============================================================================
class EmailSender(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> None:
        """Deliver one message or raise."""


class ResendEmailSender(EmailSender):
    def __init__(self, api_key: str, sender: str):
        resend.api_key = api_key
        self.sender = sender

    async def send(self, to: str, subject: str, html_body: str) -> None:
        await run_in_threadpool(
            resend.Emails.send,
            {"from": self.sender, "to": to, "subject": subject, "html": html_body},
        )


class ConsoleEmailSender(EmailSender):
    """Development sender: logs instead of delivering."""

    async def send(self, to: str, subject: str, html_body: str) -> None:
        logger.info(f"📧 [console e-mail] to={to} subject={subject!r}")


# ============================================================================
# TEMPLATES
# ============================================================================
FOOTER = "<p><strong> MedCare Pharmacy </strong></p>"


def new_prescription_email(pharmacist_name, patient_name, prescription_number, review_url):
    return (
        f"New Prescription for Verification - {prescription_number}",
        f"<p>Hello {html.escape(pharmacist_name or 'Pharmacist')},</p>"
        f"<p>{html.escape(patient_name)} submitted prescription {prescription_number} and it is waiting "
        f"for verification.</p>"
        f"<p><a href='{review_url}'>Review prescription</a></p>"
        f"{FOOTER}",
    )


def prescription_approved_email(patient_name, prescription_number, notes=None):
    notes_html = f"<p>Pharmacist notes: {html.escape(notes)}</p>" if notes else ""
    return (
        "Prescription Approved - MedCare",
        f"<p>Hello {html.escape(patient_name or 'there')},</p>"
        f"<p>Your prescription {prescription_number} has been verified. You can now order the "
        f"medicines it covers.</p>"
        f"{notes_html}{FOOTER}",
    )


def prescription_rejected_email(patient_name, prescription_number, reason, notes=None):
    notes_html = f"<p>Pharmacist notes: {html.escape(notes)}</p>" if notes else ""
    return (
        "Prescription Requires Attention - MedCare",
        f"<p>Hello {html.escape(patient_name or 'there')},</p>"
        f"<p>We could not verify prescription {prescription_number}.</p>"
        f"<p><strong>Reason:</strong> {html.escape(reason or '')}</p>"
        f"{notes_html}"
        f"<p>Update the prescription details or upload a clearer image to resubmit it.</p>"
        f"{FOOTER}",
    )


def order_confirmation_email(customer_name, order_number, total, items, tracking_url):
    rows = "".join(
        f"<li>{html.escape(item.name)} - Quantity: {item.quantity} - ${float(item.price) * item.quantity:.2f}</li>"
        for item in items
    )
    return (
        f"Order Confirmation #{order_number} - MedCare",
        f"<p>Hello {html.escape(customer_name or 'there')},</p>"
        f"<p>Thank you for your order! We've received it and it's being processed.</p>"
        f"<p><strong>Order Number:</strong> {order_number}<br>"
        f"<strong>Total:</strong> ${float(total):.2f}</p>"
        f"<ul>{rows}</ul>"
        f"<p><a href='{tracking_url}'>Track your order</a></p>"
        f"{FOOTER}",
    )


# ============================================================================
# NOTIFIER
# ============================================================================
class PrescriptionNotifier:
    def __init__(self, sender: EmailSender, frontend_url: str, admin_url: str):
        self.sender = sender
        self.frontend_url = frontend_url.rstrip("/")
        self.admin_url = admin_url.rstrip("/")

    async def _deliver(self, recipients: Iterable[str], subject: str, html_body: str) -> NotificationOutcome:
        outcome = NotificationOutcome()
        for to in recipients:
            outcome.attempted += 1
            try:
                await self.sender.send(to, subject, html_body)
                outcome.delivered += 1
            except Exception as e:
                outcome.failed += 1
                outcome.errors.append(f"{to}: {e}")
                logger.error(f"❌ E-mail '{subject}' to {to} failed: {e}")
        return outcome

    async def new_prescription(self, prescription, patient, pharmacists) -> NotificationOutcome:
        """Tell every active pharmacist a record joined the verification queue."""
        outcome = NotificationOutcome()
        review_url = f"{self.admin_url}/prescriptions/{prescription.id}"
        for pharmacist in pharmacists:
            subject, body = new_prescription_email(
                pharmacist.first_name, patient.full_name, prescription.prescription_number, review_url
            )
            outcome = outcome.merge(await self._deliver([pharmacist.email], subject, body))

        logger.info(
            f"📨 New prescription {prescription.prescription_number}: "
            f"{outcome.delivered}/{outcome.attempted} pharmacist e-mails sent"
        )
        return outcome

    async def verification_decision(self, prescription, patient) -> NotificationOutcome:
        if prescription.status == "verified":
            subject, body = prescription_approved_email(
                patient.first_name, prescription.prescription_number, prescription.verification_notes
            )
        else:
            subject, body = prescription_rejected_email(
                patient.first_name,
                prescription.prescription_number,
                prescription.rejection_reason,
                prescription.verification_notes,
            )
        return await self._deliver([patient.email], subject, body)

    async def order_confirmation(self, order, customer) -> NotificationOutcome:
        subject, body = order_confirmation_email(
            customer.first_name,
            order.order_number,
            order.total,
            order.items,
            f"{self.frontend_url}/orders/{order.id}",
        )
        return await self._deliver([customer.email], subject, body)
