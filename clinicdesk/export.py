"""
Tabular views of the record collections for spreadsheet export.

These helpers build pandas DataFrames with human-readable column headings from a
`ClinicService` snapshot. Writing the frames to a file, or offering them as a download,
is left to the caller.
"""
# clinicdesk/export.py

import json

import pandas as pd

from clinicdesk.errors import ValidationError
from clinicdesk.models import parse_timestamp

PATIENT_COLUMNS = {
    "record_number": "Record Number",
    "name": "Name",
    "age": "Age",
    "address": "Address",
    "phone": "Phone Number",
    "initial_diagnosis": "Initial Diagnosis",
    "created_at": "Created At",
}

INVOICE_COLUMNS = {
    "invoiceNumber": "Invoice Number",
    "patientName": "Patient Name",
    "operatorName": "Operator Name",
    "date": "Invoice Date",
    "appointmentDate": "Appointment Date",
    "totalAmount": "Total Amount",
    "status": "Status",
    "bloodPressure": "Vital Signs - BP",
    "respirationRate": "Vital Signs - RR",
    "heartRate": "Vital Signs - HR",
    "borgScale": "Vital Signs - Borg",
    "treatmentsCount": "Treatments Count",
    "treatments": "Treatments",
}


def _display_time(value) -> str:
    moment = parse_timestamp(value)
    return moment.strftime("%d/%m/%Y %H:%M") if moment else ""


def _frame(records, columns) -> pd.DataFrame:
    df = pd.DataFrame(records)
    # Ensure all desired columns exist before exporting.
    for col in columns:
        if col not in df.columns:
            df[col] = None
    return df[list(columns)].rename(columns=columns)


def patients_frame(patients) -> pd.DataFrame:
    """One row per patient, with the creation time formatted for display."""
    rows = []
    for p in patients:
        row = dict(p)
        row["created_at"] = _display_time(p.get("created_at"))
        rows.append(row)
    return _frame(rows, PATIENT_COLUMNS)


def invoices_frame(invoices) -> pd.DataFrame:
    """One row per invoice; treatment lines are joined into a single cell."""
    rows = []
    for i in invoices:
        row = dict(i)
        vitals = i.get("vitalSigns") or {}
        treatments = i.get("treatments") or []
        row["date"] = _display_time(i.get("date"))
        row["appointmentDate"] = _display_time(i.get("appointmentDate"))
        for key in ("bloodPressure", "respirationRate", "heartRate", "borgScale"):
            row[key] = vitals.get(key) or ""
        row["treatmentsCount"] = len(treatments)
        row["treatments"] = ", ".join(t.get("name") or "" for t in treatments)
        rows.append(row)
    return _frame(rows, INVOICE_COLUMNS)


def to_csv_bytes(df: pd.DataFrame) -> bytes:
    return df.to_csv(index=False).encode("utf-8")


def backup_json(snapshot: dict) -> str:
    """Serializes a snapshot as the JSON backup document."""
    return json.dumps(snapshot, indent=2, ensure_ascii=False)


def load_backup(data) -> dict:
    """Parses an uploaded backup document.

    Raises:
        ValidationError: If the document is not valid JSON.
    """
    try:
        return json.loads(data)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid backup file: {e}") from e
