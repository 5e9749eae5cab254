"""
This module defines the record types managed by ClinicDesk.

Each class validates its own fields and converts to and from the plain dictionaries
kept in the record store (`to_record` / `from_record`). Stored keys follow the
front-desk data layout: snake_case for patients, operators and treatments, camelCase
for appointments, invoices and activity log entries.

Name fields copied onto appointments and invoices (`patient_name`, `operator_name`)
are snapshots taken when the record is created. They are not kept in sync with the
source patient or operator.
"""
# clinicdesk/models.py

import copy
from datetime import date, datetime, timezone

from clinicdesk.errors import ValidationError

NOT_RECORDED = "Not recorded"
TARGET_TYPES = ("patient", "appointment", "invoice")

_EPOCH = datetime(1970, 1, 1)


def format_timestamp(moment: datetime) -> str:
    """Formats `moment` as an ISO-8601 UTC string with millisecond precision and a 'Z' suffix."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat(timespec="milliseconds") + "Z"


def parse_timestamp(value):
    """Parses a stored date or timestamp into a naive UTC datetime.

    Accepts ISO dates ("2025-03-01"), ISO timestamps with or without an offset or 'Z',
    and `date`/`datetime` objects. Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def to_epoch_ms(value) -> float:
    """Milliseconds since the epoch for a stored date, or 0 if it cannot be parsed."""
    moment = parse_timestamp(value)
    if moment is None:
        return 0
    return (moment - _EPOCH).total_seconds() * 1000


def _require_text(value, field: str, label: str) -> str:
    text = (value or "").strip() if isinstance(value, str) or value is None else str(value).strip()
    if not text:
        raise ValidationError(f"{label} is required", field=field)
    return text


def _require_positive_int(value, field: str, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a positive whole number", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a positive whole number", field=field)
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{label} must be a positive whole number", field=field)
    if number <= 0:
        raise ValidationError(f"{label} must be greater than zero", field=field)
    return number


class Patient:
    """A registered patient.

    Attributes:
        name (str): Full name.
        age (int): Age in years, greater than zero.
        phone (str): Contact phone number.
        address (str): Optional postal address.
        initial_diagnosis (str): Optional diagnosis noted at registration.
        record_number (str): `PT<year><6-digit-seq>`; assigned by the service if empty.
        id (int): Assigned by the service on creation.
        created_at (str): ISO timestamp, assigned on creation.
    """
    def __init__(self, name, age, phone, address=None, initial_diagnosis=None, record_number=None, id=None, created_at=None):
        self.id = id
        self.record_number = record_number
        self.name = name
        self.age = age
        self.phone = phone
        self.address = address
        self.initial_diagnosis = initial_diagnosis
        self.created_at = created_at

    def validate(self):
        self.name = _require_text(self.name, "name", "Name")
        self.phone = _require_text(self.phone, "phone", "Phone number")
        self.age = _require_positive_int(self.age, "age", "Age")

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "record_number": self.record_number,
            "name": self.name,
            "age": self.age,
            "phone": self.phone,
            "address": self.address,
            "initial_diagnosis": self.initial_diagnosis,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Patient":
        return cls(
            name=record.get("name"),
            age=record.get("age"),
            phone=record.get("phone"),
            address=record.get("address"),
            initial_diagnosis=record.get("initial_diagnosis"),
            record_number=record.get("record_number"),
            id=record.get("id"),
            created_at=record.get("created_at"),
        )


class Operator:
    """A staff member who performs appointments. `role` is a free-text label."""
    def __init__(self, name, role, id=None, created_at=None):
        self.id = id
        self.name = name
        self.role = role
        self.created_at = created_at

    def validate(self):
        self.name = _require_text(self.name, "name", "Operator name")
        self.role = _require_text(self.role, "role", "Role")

    def to_record(self) -> dict:
        return {"id": self.id, "name": self.name, "role": self.role, "created_at": self.created_at}

    @classmethod
    def from_record(cls, record: dict) -> "Operator":
        return cls(record.get("name"), record.get("role"), id=record.get("id"), created_at=record.get("created_at"))


class Treatment:
    """A billable treatment. `price` is a positive integer in minor currency units."""
    def __init__(self, name, description, price, id=None, created_at=None):
        self.id = id
        self.name = name
        self.description = description
        self.price = price
        self.created_at = created_at

    def validate(self):
        self.name = _require_text(self.name, "name", "Treatment name")
        self.description = _require_text(self.description, "description", "Description")
        self.price = _require_positive_int(self.price, "price", "Price")

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Treatment":
        return cls(
            record.get("name"),
            record.get("description"),
            record.get("price"),
            id=record.get("id"),
            created_at=record.get("created_at"),
        )


class CustomExamination:
    """An extra measurement recorded alongside the standard vital signs."""
    def __init__(self, name, unit, id=None, created_at=None):
        self.id = id
        self.name = name
        self.unit = unit
        self.created_at = created_at

    def validate(self):
        self.name = _require_text(self.name, "name", "Examination name")
        self.unit = _require_text(self.unit, "unit", "Unit")

    @property
    def key(self) -> str:
        return f"custom_{self.id}"

    def to_record(self) -> dict:
        return {"id": self.id, "name": self.name, "unit": self.unit, "created_at": self.created_at}

    @classmethod
    def from_record(cls, record: dict) -> "CustomExamination":
        return cls(record.get("name"), record.get("unit"), id=record.get("id"), created_at=record.get("created_at"))


def build_vital_signs(values: dict = None, examinations=()) -> dict:
    """Validates raw vital-sign input and returns the stored `vitalSigns` mapping.

    Args:
        values: Raw input keyed by `bloodPressure`, `respirationRate`, `heartRate`,
            `borgScale` and `custom_<id>` for custom examinations. All are optional.
        examinations: `CustomExamination` objects whose values should be recorded.

    Raises:
        ValidationError: If a rate is not positive or the Borg scale is outside 1..10.
    """
    values = values or {}

    def _optional_int(key, label):
        raw = values.get(key)
        if raw is None or raw == "" or raw == 0:
            return 0
        if isinstance(raw, bool):
            raise ValidationError(f"Please enter a valid {label}", field=key)
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Please enter a valid {label}", field=key)

    respiration_rate = _optional_int("respirationRate", "respiration rate")
    heart_rate = _optional_int("heartRate", "heart rate")
    borg_scale = _optional_int("borgScale", "Borg scale")
    if respiration_rate < 0:
        raise ValidationError("Please enter a valid respiration rate", field="respirationRate")
    if heart_rate < 0:
        raise ValidationError("Please enter a valid heart rate", field="heartRate")
    if borg_scale and not 1 <= borg_scale <= 10:
        raise ValidationError("Borg scale must be between 1 and 10", field="borgScale")

    blood_pressure = str(values.get("bloodPressure") or "").strip()
    vital_signs = {
        "bloodPressure": blood_pressure or NOT_RECORDED,
        "respirationRate": respiration_rate,
        "heartRate": heart_rate,
        "borgScale": borg_scale,
    }
    for exam in examinations:
        raw = str(values.get(exam.key) or "").strip()
        vital_signs[exam.key] = {"name": exam.name, "unit": exam.unit, "value": raw or NOT_RECORDED}
    return vital_signs


def treatment_line(treatment: dict, notes=None) -> dict:
    """Copies the billable fields of a stored treatment into an appointment line."""
    line = {"id": treatment.get("id"), "name": treatment.get("name"), "price": treatment.get("price")}
    if notes:
        line["notes"] = notes
    return line


class Appointment:
    """A clinical visit.

    `patient_name` and `operator_name` are snapshots of the referenced records at
    creation time and are not updated when those records change.
    `total_price` always equals the sum of the treatment line prices.
    """
    def __init__(self, patient_id, patient_name, operator_id, operator_name, date, vital_signs, treatments, id=None, created_at=None):
        self.id = id
        self.patient_id = patient_id
        self.patient_name = patient_name
        self.operator_id = operator_id
        self.operator_name = operator_name
        self.date = date
        self.vital_signs = vital_signs
        self.treatments = treatments
        self.created_at = created_at

    @property
    def total_price(self) -> int:
        return sum(t.get("price") or 0 for t in self.treatments)

    def validate(self):
        if not self.treatments:
            raise ValidationError("Please select a treatment", field="treatments")
        moment = parse_timestamp(self.date)
        if moment is None:
            raise ValidationError("Appointment date is invalid", field="date")
        # Stored dates are always ISO strings.
        if isinstance(self.date, datetime):
            self.date = format_timestamp(self.date)
        elif isinstance(self.date, date):
            self.date = moment.date().isoformat()

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "operatorId": self.operator_id,
            "operatorName": self.operator_name,
            "date": self.date,
            "vitalSigns": copy.deepcopy(self.vital_signs),
            "treatments": copy.deepcopy(self.treatments),
            "totalPrice": self.total_price,
            "created_at": self.created_at,
        }


class Invoice:
    """A billing document derived from exactly one appointment.

    Vital signs and treatment lines are deep copies of the appointment's, so notes
    edited on the invoice never reach the appointment and vice versa.
    """
    STATUSES = ("unpaid", "paid", "void")

    def __init__(self, invoice_number, appointment: dict, created_at: str, id=None):
        self.id = id
        self.invoice_number = invoice_number
        self.appointment_id = appointment.get("id")
        self.patient_id = appointment.get("patientId")
        self.patient_name = appointment.get("patientName")
        self.operator_id = appointment.get("operatorId")
        self.operator_name = appointment.get("operatorName")
        self.date = created_at
        self.appointment_date = appointment.get("date")
        self.vital_signs = copy.deepcopy(appointment.get("vitalSigns") or {})
        self.treatments = copy.deepcopy(appointment.get("treatments") or [])
        self.total_amount = appointment.get("totalPrice") or 0
        self.status = "unpaid"
        self.created_at = created_at

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "appointmentId": self.appointment_id,
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "operatorId": self.operator_id,
            "operatorName": self.operator_name,
            "date": self.date,
            "appointmentDate": self.appointment_date,
            "vitalSigns": self.vital_signs,
            "treatments": self.treatments,
            "totalAmount": self.total_amount,
            "status": self.status,
            "created_at": self.created_at,
        }


class LogEntry:
    """One line of the operator activity log.

    Attributes:
        id (int): Monotonic within the log; recovered from storage on start-up.
        action (str): Free-text sentence, e.g. "created a new appointment for Jane Smith".
        operator_name (str): Free-text label of whoever performed the action.
        target_type (str): One of 'patient', 'appointment' or 'invoice'.
        target_id (int): Optional ID of the record acted upon.
        target_name (str): Optional display name of the target.
        patient_id (int): Optional ID of the patient the action concerns.
        patient_name (str): Optional name of that patient, as it appears in `action`.
        timestamp (str): ISO timestamp of the action.
        details (str): Optional free-text details.
    """
    def __init__(self, id, action, operator_name, target_type, timestamp, target_id=None, target_name=None, patient_id=None, patient_name=None, details=None):
        if target_type not in TARGET_TYPES:
            raise ValidationError(f"Unknown log target type: {target_type}", field="targetType")
        self.id = id
        self.action = action
        self.operator_name = operator_name
        self.target_type = target_type
        self.target_id = target_id
        self.target_name = target_name
        self.patient_id = patient_id
        self.patient_name = patient_name
        self.timestamp = timestamp
        self.details = details

    def to_record(self) -> dict:
        record = {
            "id": self.id,
            "action": self.action,
            "operatorName": self.operator_name,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "targetName": self.target_name,
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "timestamp": self.timestamp,
        }
        if self.details:
            record["details"] = self.details
        return record

    @classmethod
    def from_record(cls, record: dict) -> "LogEntry":
        return cls(
            id=record.get("id"),
            action=record.get("action") or "",
            operator_name=record.get("operatorName"),
            target_type=record.get("targetType"),
            timestamp=record.get("timestamp"),
            target_id=record.get("targetId"),
            target_name=record.get("targetName"),
            patient_id=record.get("patientId"),
            patient_name=record.get("patientName"),
            details=record.get("details"),
        )
