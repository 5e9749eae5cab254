"""
This module defines the `InvoiceService`, which turns appointments into invoices and
manages invoice payment status.

It provides:
- Idempotent invoice generation: an appointment yields at most one invoice, and asking
  again returns the existing one unchanged.
- Invoice numbering as `INV-<YYYYMM>-<seq>`, where `<seq>` is the number of stored
  invoices plus one. The sequence is global, not restarted each month.
- A status workflow over `unpaid`, `paid` and `void`, driven by an explicit table of
  allowed transitions.

The `InvoiceService` works on the store of its owning `ClinicService` and records its
changes in the same activity log.
"""
# clinicdesk/invoices.py

import itertools
import logging
from datetime import datetime
from typing import Dict, List, Optional

from clinicdesk.errors import NotFoundError, ValidationError
from clinicdesk.models import Invoice, format_timestamp
from clinicdesk.storage import INVOICES

logger = logging.getLogger(__name__)

UNPAID = "unpaid"
PAID = "paid"
VOID = "void"
STATUSES = Invoice.STATUSES

# Every (from, to) pair is currently allowed. Remove pairs here to tighten the workflow.
INVOICE_STATUS_TRANSITIONS = frozenset(itertools.product(STATUSES, STATUSES))


def format_invoice_number(moment: datetime, sequence: int) -> str:
    """Builds `INV-<YYYYMM>-<sequence padded to 4 digits>`.

    Raises:
        ValidationError: If `sequence` is not a positive integer.
    """
    if not isinstance(sequence, int) or isinstance(sequence, bool) or sequence <= 0:
        raise ValidationError(f"Invalid invoice sequence: {sequence!r}", field="invoiceNumber")
    return f"INV-{moment.year:04d}{moment.month:02d}-{sequence:04d}"


class InvoiceService:
    """Manages invoices derived from appointments."""

    def __init__(self, clinic_service) -> None:
        """Initializes the InvoiceService with a reference to the owning ClinicService."""
        self._service = clinic_service

    @property
    def _store(self):
        return self._service.store

    def all_invoices(self) -> List[Dict]:
        return self._store.load(INVOICES)

    def get_invoice(self, invoice_id: int) -> Dict:
        for invoice in self.all_invoices():
            if invoice.get("id") == invoice_id:
                return invoice
        raise NotFoundError("Invoice", invoice_id)

    def get_invoice_for_appointment(self, appointment_id: int) -> Optional[Dict]:
        """Returns the invoice generated from `appointment_id`, or None."""
        for invoice in self.all_invoices():
            if invoice.get("appointmentId") == appointment_id:
                return invoice
        return None

    def generate_invoice(self, appointment) -> Dict:
        """Creates the invoice for an appointment, or returns the one that already exists.

        Args:
            appointment: The stored appointment dictionary, or its ID.

        Returns:
            The invoice dictionary.

        Raises:
            NotFoundError: If an appointment ID is given and does not exist.
        """
        if not isinstance(appointment, dict):
            appointment = self._service.get_appointment(appointment)

        existing = self.get_invoice_for_appointment(appointment.get("id"))
        if existing is not None:
            logger.info("Appointment %s already has invoice %s", appointment.get("id"), existing.get("invoiceNumber"))
            return existing

        invoices = self.all_invoices()
        now = self._service.now()
        invoice = Invoice(
            invoice_number=format_invoice_number(now, len(invoices) + 1),
            appointment=appointment,
            created_at=format_timestamp(now),
            id=self._store.next_id(INVOICES),
        ).to_record()
        invoices.append(invoice)
        self._store.save(INVOICES, invoices)
        logger.info("Generated invoice %s for appointment %s", invoice["invoiceNumber"], invoice["appointmentId"])

        self._service.activity.record(
            "invoice_created",
            target_id=invoice["id"],
            target_name=f"Appointment {invoice['appointmentId']}",
            patient_id=invoice["patientId"],
            patient_name=invoice["patientName"],
            operator_name=invoice["operatorName"],
        )
        return invoice

    def _replace(self, invoice_id: int, change) -> Dict:
        invoices = self.all_invoices()
        for index, invoice in enumerate(invoices):
            if invoice.get("id") == invoice_id:
                change(invoice)
                invoice["updated_at"] = format_timestamp(self._service.now())
                invoices[index] = invoice
                self._store.save(INVOICES, invoices)
                return invoice
        raise NotFoundError("Invoice", invoice_id)

    def set_status(self, invoice_id: int, new_status: str) -> Dict:
        """Moves an invoice to `new_status` and stamps `updated_at`.

        Raises:
            ValidationError: If the status is unknown or the transition is not allowed.
            NotFoundError: If the invoice does not exist.
        """
        if new_status not in STATUSES:
            raise ValidationError(f"Unknown invoice status: {new_status}", field="status")
        current = self.get_invoice(invoice_id).get("status")
        if (current, new_status) not in INVOICE_STATUS_TRANSITIONS:
            raise ValidationError(f"Cannot change invoice status from {current} to {new_status}", field="status")

        def change(invoice):
            invoice["status"] = new_status

        invoice = self._replace(invoice_id, change)
        logger.info("Invoice %s status %s -> %s", invoice.get("invoiceNumber"), current, new_status)
        if new_status == PAID:
            self._service.activity.record(
                "invoice_paid", target_id=invoice_id, patient_id=invoice.get("patientId"), patient_name=invoice.get("patientName")
            )
        else:
            self._service.activity.record(
                "invoice_status",
                target_id=invoice_id,
                patient_id=invoice.get("patientId"),
                patient_name=invoice.get("patientName"),
                status=new_status,
            )
        return invoice

    def update_treatment_notes(self, invoice_id: int, treatment_id: int, notes: str) -> Dict:
        """Sets the notes of one treatment line on the invoice only.

        Raises:
            NotFoundError: If the invoice or the treatment line does not exist.
        """
        def change(invoice):
            for line in invoice.get("treatments") or []:
                if line.get("id") == treatment_id:
                    line["notes"] = (notes or "").strip()
                    return
            raise NotFoundError("Invoice treatment", treatment_id)

        invoice = self._replace(invoice_id, change)
        self._service.activity.record(
            "invoice_updated", target_id=invoice_id, patient_id=invoice.get("patientId"), patient_name=invoice.get("patientName")
        )
        return invoice

    def delete_invoice(self, invoice_id: int) -> None:
        """Logs and removes an invoice. The originating appointment is left untouched."""
        invoice = self.get_invoice(invoice_id)
        self._service.activity.record(
            "invoice_deleted", target_id=invoice_id, patient_id=invoice.get("patientId"), patient_name=invoice.get("patientName")
        )
        self._store.save(INVOICES, [i for i in self.all_invoices() if i.get("id") != invoice_id])
        logger.info("Deleted invoice %s", invoice.get("invoiceNumber"))

    def delete_for_appointment(self, appointment_id: int) -> int:
        """Removes any invoice generated from `appointment_id`. Returns how many were removed."""
        invoices = self.all_invoices()
        remaining = [i for i in invoices if i.get("appointmentId") != appointment_id]
        removed = len(invoices) - len(remaining)
        if removed:
            self._store.save(INVOICES, remaining)
            logger.info("Removed %d invoice(s) of deleted appointment %s", removed, appointment_id)
        return removed
