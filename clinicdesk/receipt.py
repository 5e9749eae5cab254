"""
Plain-text treatment receipts printed from an invoice.

The clinic header and the closing footer are configurable and persisted under the
`receipt_config` store key as `{"header": ..., "footer": ...}`. Everything between
them is built from the invoice and, when it still exists, the patient record.
"""
# clinicdesk/receipt.py

from typing import Dict, Optional

from clinicdesk.errors import ValidationError
from clinicdesk.models import parse_timestamp

DEFAULT_HEADER = "BSP CENTER PHYSIOTHERAPY CLINIC\nRuko Rose Garden 7 No.11, JakaSetia, Bekasi Selatan 17148"
DEFAULT_FOOTER = "Thank you for your visit!\nSemoga kesehatan selalu menyertai anda"
RULE = "═" * 50


def default_config() -> Dict[str, str]:
    return {"header": DEFAULT_HEADER, "footer": DEFAULT_FOOTER}


def validate_config(config: Dict) -> Dict[str, str]:
    """Returns a cleaned copy of `config`.

    Raises:
        ValidationError: If the header or the footer is empty.
    """
    header = str((config or {}).get("header") or "").strip()
    footer = str((config or {}).get("footer") or "").strip()
    if not header:
        raise ValidationError("Header cannot be empty", field="header")
    if not footer:
        raise ValidationError("Footer cannot be empty", field="footer")
    return {"header": header, "footer": footer}


def format_amount(amount) -> str:
    """150000 -> '150.000'."""
    return f"{int(amount or 0):,}".replace(",", ".")


def _print_date(value) -> str:
    moment = parse_timestamp(value)
    return moment.strftime("%d/%m/%Y %H:%M") if moment else ""


def _treatment_lines(treatments) -> str:
    lines = []
    for treatment in treatments or []:
        line = f"- {(treatment.get('name') or '').upper()}"
        if treatment.get("price"):
            line += f" - RP {format_amount(treatment['price'])}"
        notes = (treatment.get("notes") or "").strip()
        if notes:
            line += f"\n  Notes: {notes}"
        lines.append(line)
    return "\n".join(lines)


def receipt_text(invoice: Dict, patient: Optional[Dict] = None, config: Optional[Dict] = None) -> str:
    """Builds the printable receipt for `invoice`.

    Args:
        invoice: The stored invoice.
        patient: The billed patient, or None if the record no longer exists.
        config: Receipt header and footer; defaults to `default_config()`.

    Returns:
        The receipt as newline-separated text.
    """
    config = config or default_config()
    patient = patient or {}
    return "\n".join([
        config.get("header") or DEFAULT_HEADER,
        "",
        "TREATMENT RECEIPT",
        "",
        RULE,
        f"DATE: {_print_date(invoice.get('date'))}",
        f"RECORD NUMBER: {patient.get('record_number') or 'N/A'}",
        f"Patient Name: {invoice.get('patientName') or ''}",
        f"Address: {patient.get('address') or 'No address recorded'}",
        RULE,
        "",
        "TREATMENTS:",
        _treatment_lines(invoice.get("treatments")),
        "",
        RULE,
        f"TOTAL: RP {format_amount(invoice.get('totalAmount'))}",
        "",
        f"INVOICE NUMBER: {invoice.get('invoiceNumber') or ''}",
        f"OPERATOR: {invoice.get('operatorName') or ''}",
        f"STATUS: {(invoice.get('status') or '').upper()}",
        "",
        RULE,
        "",
        config.get("footer") or DEFAULT_FOOTER,
    ])
