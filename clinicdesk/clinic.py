"""
This module provides the core business logic of the ClinicDesk front desk.

It defines the `ClinicService` class, which is responsible for:
- Creating, updating and deleting patients, operators, treatments, custom
  examinations and appointments in the record store.
- Keeping the denormalized collections consistent by convention: deleting a patient
  leaves its appointments and invoices alone, while deleting an appointment also
  removes the invoice generated from it.
- Recording every patient, appointment and invoice change in the activity log.
- Serving list queries and reports over the current collections.
- Taking and restoring whole-store snapshots for backup tooling.
"""
# clinicdesk/clinic.py

import copy
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from clinicdesk import query as list_query
from clinicdesk import receipt, reports
from clinicdesk.activity import ActivityLog
from clinicdesk.errors import NotFoundError, ValidationError
from clinicdesk.invoices import InvoiceService
from clinicdesk.models import (
    Appointment,
    CustomExamination,
    Operator,
    Patient,
    Treatment,
    build_vital_signs,
    format_timestamp,
    treatment_line,
)
from clinicdesk.storage import (
    APPOINTMENTS,
    CUSTOM_EXAMINATIONS,
    INVOICES,
    OPERATORS,
    PATIENTS,
    RECEIPT_CONFIG,
    TREATMENTS,
    open_store,
)

logger = logging.getLogger(__name__)

# Snapshot section name -> store key. A restore must provide all of them.
SNAPSHOT_COLLECTIONS = {
    "operators": OPERATORS,
    "treatments": TREATMENTS,
    "patients": PATIENTS,
    "appointments": APPOINTMENTS,
    "invoices": INVOICES,
}
SNAPSHOT_VERSION = "1.0"

PATIENT_FIELDS = ("record_number", "name", "age", "phone", "address", "initial_diagnosis")


class ClinicService:
    """Manages all front-desk records and their derived views."""

    def __init__(self, store=None, operator_name: str = None, clock: Callable[[], datetime] = None):
        """Initializes the service and its sub-services.

        Args:
            store: A `RecordStore`; defaults to the file store configured in `clinicdesk.config`.
            operator_name: Label stamped on activity log entries.
            clock: Returns the current time; defaults to `datetime.now(timezone.utc)`.
        """
        self.store = store or open_store()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.activity = ActivityLog(self.store, operator_name=operator_name, clock=self._clock)
        self.invoices = InvoiceService(self)

    def now(self) -> datetime:
        return self._clock()

    def _find(self, collection: str, record_id, entity: str):
        records = self.store.load(collection)
        for index, record in enumerate(records):
            if record.get("id") == record_id:
                return records, index
        raise NotFoundError(entity, record_id)

    def _get(self, collection: str, record_id, entity: str) -> Dict:
        records, index = self._find(collection, record_id, entity)
        return records[index]

    def _remove(self, collection: str, record_id, entity: str) -> Dict:
        records, index = self._find(collection, record_id, entity)
        removed = records.pop(index)
        self.store.save(collection, records)
        return removed

    def _insert(self, collection: str, record: Dict) -> Dict:
        records = self.store.load(collection)
        records.append(record)
        self.store.save(collection, records)
        return record

    # Patients

    def generate_record_number(self) -> str:
        """Returns the next `PT<year><6-digit-seq>` record number."""
        sequence = self.store.next_sequence("patient_record")
        return f"PT{self.now().year}{sequence:06d}"

    def create_patient(self, patient: Patient) -> Dict:
        """Validates and stores a new patient, assigning its ID, record number and creation time.

        Raises:
            ValidationError: If a required field is empty, the age is not positive, or the
                record number is already in use.
        """
        patient.validate()
        patients = self.store.load(PATIENTS)
        if patient.record_number:
            self._check_record_number(patients, patient.record_number)
        else:
            patient.record_number = self.generate_record_number()
            while any(p.get("record_number") == patient.record_number for p in patients):
                patient.record_number = self.generate_record_number()
        patient.id = self.store.next_id(PATIENTS)
        patient.created_at = format_timestamp(self.now())
        record = self._insert(PATIENTS, patient.to_record())
        logger.info("Created patient %s (%s)", record["id"], record["record_number"])
        self.activity.record("patient_created", target_id=record["id"], target_name=record["name"], patient_id=record["id"], patient_name=record["name"])
        return record

    def _check_record_number(self, patients, record_number, exclude_id=None):
        for p in patients:
            if p.get("record_number") == record_number and p.get("id") != exclude_id:
                raise ValidationError(f"Record number {record_number} is already in use", field="record_number")

    def get_patient(self, patient_id: int) -> Dict:
        return self._get(PATIENTS, patient_id, "Patient")

    def all_patients(self) -> List[Dict]:
        """All patients, newest first."""
        return sorted(self.store.load(PATIENTS), key=lambda p: p.get("id") or 0, reverse=True)

    def update_patient(self, patient_id: int, details: Dict) -> Dict:
        """Updates a patient's editable fields. ID and creation time are preserved.

        Names already copied onto appointments and invoices are not changed.
        """
        patients, index = self._find(PATIENTS, patient_id, "Patient")
        merged = dict(patients[index])
        merged.update({k: v for k, v in details.items() if k in PATIENT_FIELDS})
        patient = Patient.from_record(merged)
        patient.validate()
        if not patient.record_number:
            raise ValidationError("Record number is required", field="record_number")
        self._check_record_number(patients, patient.record_number, exclude_id=patient_id)
        patients[index] = patient.to_record()
        self.store.save(PATIENTS, patients)
        logger.info("Updated patient %s", patient_id)
        self.activity.record("patient_updated", target_id=patient_id, target_name=patient.name, patient_id=patient_id, patient_name=patient.name)
        return patients[index]

    def delete_patient(self, patient_id: int) -> None:
        """Deletes a patient. Their appointments and invoices are kept."""
        patient = self.get_patient(patient_id)
        self.activity.record("patient_deleted", target_id=patient_id, target_name=patient.get("name"), patient_id=patient_id, patient_name=patient.get("name"))
        self._remove(PATIENTS, patient_id, "Patient")
        logger.info("Deleted patient %s", patient_id)

    def list_patients(self, search_term="", sort_field=None, sort_direction="asc", page=1, page_size=None, date_range=None):
        return list_query.query(
            self.all_patients(),
            search_term=search_term,
            search_fields=list_query.PATIENT_SEARCH_FIELDS,
            date_field="created_at",
            date_range=date_range,
            sort_field=sort_field,
            sort_direction=sort_direction,
            page=page,
            page_size=page_size,
        )

    # Operators, treatments and custom examinations

    def _create_simple(self, collection: str, item) -> Dict:
        item.validate()
        item.id = self.store.next_id(collection)
        item.created_at = format_timestamp(self.now())
        record = self._insert(collection, item.to_record())
        logger.info("Created %s %s", collection, record["id"])
        return record

    def _update_simple(self, collection: str, record_id: int, details: Dict, model, entity: str) -> Dict:
        records, index = self._find(collection, record_id, entity)
        merged = dict(records[index])
        merged.update({k: v for k, v in details.items() if k not in ("id", "created_at")})
        item = model.from_record(merged)
        item.validate()
        records[index] = item.to_record()
        self.store.save(collection, records)
        logger.info("Updated %s %s", collection, record_id)
        return records[index]

    def create_operator(self, operator: Operator) -> Dict:
        return self._create_simple(OPERATORS, operator)

    def get_operator(self, operator_id: int) -> Dict:
        return self._get(OPERATORS, operator_id, "Operator")

    def all_operators(self) -> List[Dict]:
        return self.store.load(OPERATORS)

    def update_operator(self, operator_id: int, details: Dict) -> Dict:
        return self._update_simple(OPERATORS, operator_id, details, Operator, "Operator")

    def delete_operator(self, operator_id: int) -> None:
        self._remove(OPERATORS, operator_id, "Operator")

    def create_treatment(self, treatment: Treatment) -> Dict:
        return self._create_simple(TREATMENTS, treatment)

    def get_treatment(self, treatment_id: int) -> Dict:
        return self._get(TREATMENTS, treatment_id, "Treatment")

    def all_treatments(self) -> List[Dict]:
        return self.store.load(TREATMENTS)

    def update_treatment(self, treatment_id: int, details: Dict) -> Dict:
        return self._update_simple(TREATMENTS, treatment_id, details, Treatment, "Treatment")

    def delete_treatment(self, treatment_id: int) -> None:
        self._remove(TREATMENTS, treatment_id, "Treatment")

    def _check_examination_name(self, name: str, exclude_id=None):
        lowered = (name or "").strip().lower()
        for exam in self.store.load(CUSTOM_EXAMINATIONS):
            if (exam.get("name") or "").lower() == lowered and exam.get("id") != exclude_id:
                raise ValidationError("An examination with this name already exists", field="name")

    def create_custom_examination(self, examination: CustomExamination) -> Dict:
        self._check_examination_name(examination.name)
        return self._create_simple(CUSTOM_EXAMINATIONS, examination)

    def all_custom_examinations(self) -> List[Dict]:
        return self.store.load(CUSTOM_EXAMINATIONS)

    def update_custom_examination(self, examination_id: int, details: Dict) -> Dict:
        if "name" in details:
            self._check_examination_name(details["name"], exclude_id=examination_id)
        return self._update_simple(CUSTOM_EXAMINATIONS, examination_id, details, CustomExamination, "Custom examination")

    def delete_custom_examination(self, examination_id: int) -> None:
        self._remove(CUSTOM_EXAMINATIONS, examination_id, "Custom examination")

    # Appointments

    def _treatment_lines(self, treatment_ids: Iterable[int]) -> List[Dict]:
        catalogue = {t.get("id"): t for t in self.all_treatments()}
        lines = []
        for treatment_id in treatment_ids:
            if treatment_id not in catalogue:
                raise NotFoundError("Treatment", treatment_id)
            lines.append(treatment_line(catalogue[treatment_id]))
        return lines

    def _examinations(self) -> List[CustomExamination]:
        return [CustomExamination.from_record(r) for r in self.all_custom_examinations()]

    def create_appointment(self, patient_id: int, operator_id: int, treatment_ids: Iterable[int], vital_signs: Dict = None, date: Optional[str] = None) -> Dict:
        """Records a visit.

        Patient and operator names are copied onto the appointment as they are now.

        Args:
            patient_id: The visiting patient.
            operator_id: The operator performing the visit.
            treatment_ids: IDs of the treatments given, at least one.
            vital_signs: Raw vital-sign input, see `build_vital_signs`.
            date: ISO date of the visit, or a `date`/`datetime`; defaults to today.

        Raises:
            NotFoundError: If the patient, operator or a treatment does not exist.
            ValidationError: If no treatment is given or a vital sign is invalid.
        """
        patient = self.get_patient(patient_id)
        operator = self.get_operator(operator_id)
        appointment = Appointment(
            patient_id=patient_id,
            patient_name=patient.get("name"),
            operator_id=operator_id,
            operator_name=operator.get("name"),
            date=date or self.now().date().isoformat(),
            vital_signs=build_vital_signs(vital_signs, self._examinations()),
            treatments=self._treatment_lines(treatment_ids),
        )
        appointment.validate()
        appointment.id = self.store.next_id(APPOINTMENTS)
        appointment.created_at = format_timestamp(self.now())
        record = self._insert(APPOINTMENTS, appointment.to_record())
        logger.info("Created appointment %s for patient %s", record["id"], patient_id)
        self.activity.record("appointment_created", target_id=record["id"], patient_id=patient_id, patient_name=record["patientName"])
        return record

    def get_appointment(self, appointment_id: int) -> Dict:
        return self._get(APPOINTMENTS, appointment_id, "Appointment")

    def all_appointments(self) -> List[Dict]:
        return self.store.load(APPOINTMENTS)

    def update_appointment(self, appointment_id: int, details: Dict) -> Dict:
        """Updates the date, operator, vital signs or treatments of an appointment.

        `details` may hold `date`, `operator_id`, `vital_signs` (raw input) and
        `treatment_ids`. Changing treatments recomputes `totalPrice`. An existing
        invoice keeps its own copies.
        """
        appointments, index = self._find(APPOINTMENTS, appointment_id, "Appointment")
        record = copy.deepcopy(appointments[index])
        if "operator_id" in details:
            operator = self.get_operator(details["operator_id"])
            record["operatorId"] = operator.get("id")
            record["operatorName"] = operator.get("name")
        if "treatment_ids" in details:
            record["treatments"] = self._treatment_lines(details["treatment_ids"])
        if "vital_signs" in details:
            record["vitalSigns"] = build_vital_signs(details["vital_signs"], self._examinations())

        appointment = Appointment(
            patient_id=record.get("patientId"),
            patient_name=record.get("patientName"),
            operator_id=record.get("operatorId"),
            operator_name=record.get("operatorName"),
            date=details.get("date", record.get("date")),
            vital_signs=record.get("vitalSigns") or {},
            treatments=record.get("treatments") or [],
            id=appointment_id,
            created_at=record.get("created_at"),
        )
        appointment.validate()
        appointments[index] = appointment.to_record()
        self.store.save(APPOINTMENTS, appointments)
        logger.info("Updated appointment %s", appointment_id)
        self.activity.record("appointment_updated", target_id=appointment_id, patient_id=appointment.patient_id, patient_name=appointment.patient_name)
        return appointments[index]

    def update_appointment_treatment_notes(self, appointment_id: int, treatment_id: int, notes: str) -> Dict:
        """Sets the notes of one treatment line on the appointment only."""
        appointments, index = self._find(APPOINTMENTS, appointment_id, "Appointment")
        appointment = appointments[index]
        for line in appointment.get("treatments") or []:
            if line.get("id") == treatment_id:
                line["notes"] = (notes or "").strip()
                break
        else:
            raise NotFoundError("Appointment treatment", treatment_id)
        self.store.save(APPOINTMENTS, appointments)
        return appointment

    def delete_appointment(self, appointment_id: int) -> None:
        """Deletes an appointment and the invoice generated from it, if any.

        The deletion is logged before anything is removed.
        """
        appointment = self.get_appointment(appointment_id)
        self.activity.record(
            "appointment_deleted",
            target_id=appointment_id,
            patient_id=appointment.get("patientId"),
            patient_name=appointment.get("patientName"),
        )
        self._remove(APPOINTMENTS, appointment_id, "Appointment")
        self.invoices.delete_for_appointment(appointment_id)
        logger.info("Deleted appointment %s", appointment_id)

    def list_appointments(self, search_term="", date_range=None, sort_field=None, sort_direction="asc", page=1, page_size=None):
        return list_query.query(
            self.all_appointments(),
            search_term=search_term,
            search_fields=list_query.APPOINTMENT_SEARCH_FIELDS,
            date_field="date",
            date_range=date_range,
            sort_field=sort_field,
            sort_direction=sort_direction,
            page=page,
            page_size=page_size,
        )

    def list_invoices(self, search_term="", date_range=None, sort_field=None, sort_direction="asc", page=1, page_size=None):
        return list_query.query(
            self.invoices.all_invoices(),
            search_term=search_term,
            search_fields=list_query.INVOICE_SEARCH_FIELDS,
            date_field="date",
            date_range=date_range,
            sort_field=sort_field,
            sort_direction=sort_direction,
            page=page,
            page_size=page_size,
        )

    # Reports

    def dashboard(self) -> Dict:
        """Headline figures plus the six-month trend series."""
        patients, appointments = self.store.load(PATIENTS), self.all_appointments()
        invoices = self.invoices.all_invoices()
        now = self.now()
        return {
            "summary": reports.dashboard_summary(patients, appointments, invoices, now),
            "trends": reports.monthly_trends(patients, appointments, invoices, now),
        }

    def operator_report(self, year: int, month: Optional[int] = None, operator_ids: Iterable[int] = ()):
        return reports.operator_performance(
            self.all_appointments(), self.invoices.all_invoices(), self.all_operators(), year, month, operator_ids
        )

    def operator_invoices(self, operator_id: int, year: int, month: Optional[int] = None) -> List[Dict]:
        return reports.operator_invoices(self.invoices.all_invoices(), operator_id, year, month)

    def patient_vital_trend(self, patient_id: int) -> List[Dict]:
        return reports.vital_sign_trend(self.all_appointments(), patient_id)

    # Receipts

    def receipt_config(self) -> Dict:
        """Returns the stored receipt header and footer, falling back to the defaults."""
        config = receipt.default_config()
        stored = self.store.load_value(RECEIPT_CONFIG, {})
        if isinstance(stored, dict):
            config.update({k: v for k, v in stored.items() if k in config and isinstance(v, str) and v.strip()})
        return config

    def save_receipt_config(self, config: Dict) -> Dict:
        """Validates and stores a receipt header and footer.

        Raises:
            ValidationError: If the header or the footer is empty.
        """
        cleaned = receipt.validate_config(config)
        self.store.save_value(RECEIPT_CONFIG, cleaned)
        logger.info("Saved receipt configuration")
        return cleaned

    def invoice_receipt(self, invoice_id: int) -> str:
        """Builds the printable receipt of an invoice. A deleted patient prints as unknown."""
        invoice = self.invoices.get_invoice(invoice_id)
        try:
            patient = self.get_patient(invoice.get("patientId"))
        except NotFoundError:
            patient = None
        return receipt.receipt_text(invoice, patient, self.receipt_config())

    # Backup

    def snapshot(self) -> Dict:
        """Returns all five backed-up collections plus backup metadata."""
        data = {name: self.store.load(key) for name, key in SNAPSHOT_COLLECTIONS.items()}
        data["backupDate"] = format_timestamp(self.now())
        data["version"] = SNAPSHOT_VERSION
        return data

    def restore(self, snapshot: Dict) -> None:
        """Replaces the backed-up collections wholesale with those in `snapshot`.

        Raises:
            ValidationError: If the snapshot is not a mapping, lacks any of the five
                collections or holds a record that is not an object. The store is left
                untouched in that case.
        """
        if not isinstance(snapshot, dict):
            raise ValidationError("Invalid backup file structure")
        missing = [name for name in SNAPSHOT_COLLECTIONS if not isinstance(snapshot.get(name), list)]
        if missing:
            raise ValidationError(f"Invalid backup file structure: missing {', '.join(missing)}")
        malformed = [
            name for name in SNAPSHOT_COLLECTIONS
            if not all(isinstance(record, dict) for record in snapshot[name])
        ]
        if malformed:
            raise ValidationError(f"Invalid backup file structure: malformed records in {', '.join(malformed)}")
        for name, key in SNAPSHOT_COLLECTIONS.items():
            self.store.save(key, snapshot[name])
        logger.info("Restored backup from %s", snapshot.get("backupDate", "unknown date"))
