"""
Unit tests for the ClinicDesk core.

These tests focus on individual modules in isolation: the record store and its
backends, the encryption helpers, entity validation, the list query engine, the
activity log, log message parsing, the report aggregates, invoice numbering and the
export frames.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from clinicdesk import config
from clinicdesk import encryption as encryption_module
from clinicdesk import export as export_module
from clinicdesk import invoices as invoices_module
from clinicdesk import linkify
from clinicdesk import query as query_module
from clinicdesk import receipt as receipt_module
from clinicdesk import reports
from clinicdesk.activity import ActivityLog
from clinicdesk.errors import NotFoundError, StorageCorruptError, ValidationError
from clinicdesk.models import (
    NOT_RECORDED,
    Appointment,
    CustomExamination,
    LogEntry,
    Patient,
    Treatment,
    build_vital_signs,
    format_timestamp,
    parse_timestamp,
    to_epoch_ms,
)
from clinicdesk.storage import (
    ACTIVITY_LOGS,
    APPOINTMENTS,
    ID_SEQUENCES,
    LOGS_LAST_SEEN,
    PATIENTS,
    JsonFileBackend,
    RecordStore,
)

from conftest import NOW


def _log_entry(entry_id, action="created a new patient record", target_type="patient"):
    return {
        "id": entry_id,
        "action": action,
        "operatorName": "Admin",
        "targetType": target_type,
        "timestamp": "2025-03-01T08:00:00.000Z",
    }


# Record store


def test_store_load_missing_collection_is_empty(store):
    assert store.load(APPOINTMENTS) == []


def test_store_treats_malformed_json_as_empty(store, memory_backend):
    memory_backend.save_raw(APPOINTMENTS, "{not json")
    assert store.load(APPOINTMENTS) == []


def test_store_treats_non_list_value_as_empty(store):
    store.save_value(APPOINTMENTS, {"id": 1})
    assert store.load(APPOINTMENTS) == []


def test_store_skips_items_that_are_not_records(store, service):
    store.save(PATIENTS, [None, {"id": 1, "name": "Jane Smith"}, 7, "x"])
    assert store.load(PATIENTS) == [{"id": 1, "name": "Jane Smith"}]
    assert [p["name"] for p in service.all_patients()] == ["Jane Smith"]
    assert service.list_patients(search_term="jane").total_items == 1


def test_store_save_replaces_collection(store):
    store.save(PATIENTS, [{"id": 1}, {"id": 2}])
    store.save(PATIENTS, [{"id": 3}])
    assert store.load(PATIENTS) == [{"id": 3}]


def test_memory_backend_raises_storage_corrupt(memory_backend):
    memory_backend.save_raw("operators", "[1, 2")
    with pytest.raises(StorageCorruptError) as excinfo:
        memory_backend.load("operators")
    assert excinfo.value.key == "operators"


def test_file_backend_corrupt_file_is_empty(file_store):
    path = file_store.backend.data_dir / f"{APPOINTMENTS}.json"
    path.write_text("garbage {", encoding="utf-8")
    assert file_store.load(APPOINTMENTS) == []


def test_file_backend_writes_one_json_file_per_key(file_store):
    file_store.save(APPOINTMENTS, [{"id": 1, "patientName": "Jane Smith"}])
    names = sorted(p.name for p in file_store.backend.data_dir.iterdir())
    assert names == [f"{APPOINTMENTS}.json"]
    assert file_store.load(APPOINTMENTS) == [{"id": 1, "patientName": "Jane Smith"}]


def test_file_backend_encrypted_round_trip(tmp_path):
    encryptor = encryption_module.get_encryptor(tmp_path / "secret.key")
    backend = JsonFileBackend(tmp_path / "data", encryptor=encryptor)
    store = RecordStore(backend)
    store.save(PATIENTS, [{"id": 1, "name": "Jane Smith"}])

    raw = (tmp_path / "data" / f"{PATIENTS}.json").read_bytes()
    assert b"Jane Smith" not in raw
    assert store.load(PATIENTS) == [{"id": 1, "name": "Jane Smith"}]


def test_file_backend_wrong_key_is_treated_as_corrupt(tmp_path):
    first = JsonFileBackend(tmp_path / "data", encryptor=encryption_module.get_encryptor(tmp_path / "a.key"))
    RecordStore(first).save(PATIENTS, [{"id": 1}])

    second = JsonFileBackend(tmp_path / "data", encryptor=encryption_module.get_encryptor(tmp_path / "b.key"))
    with pytest.raises(StorageCorruptError):
        second.load(PATIENTS)
    assert RecordStore(second).load(PATIENTS) == []


def test_get_encryptor_reuses_existing_key(tmp_path):
    key_path = tmp_path / "secret.key"
    token = encryption_module.get_encryptor(key_path).encrypt(b"hello")
    assert key_path.exists()
    assert encryption_module.get_encryptor(key_path).decrypt(token) == b"hello"
    assert encryption_module.load_key(key_path) == key_path.read_bytes().strip()


def test_next_id_follows_highest_stored_id(store):
    store.save(PATIENTS, [{"id": 5}, {"id": 2}])
    assert store.next_id(PATIENTS) == 6
    assert store.next_id(PATIENTS) == 7


def test_next_id_never_reuses_after_deletion(store):
    store.save(PATIENTS, [{"id": 1}])
    assert store.next_id(PATIENTS) == 2
    store.save(PATIENTS, [])
    assert store.next_id(PATIENTS) == 3


def test_next_id_recovers_from_corrupt_sequences(store, memory_backend):
    store.save(PATIENTS, [{"id": 3}])
    memory_backend.save_raw(ID_SEQUENCES, "not json")
    assert store.next_id(PATIENTS) == 4


def test_sequences_are_per_collection(store):
    assert store.next_id(PATIENTS) == 1
    assert store.next_id(APPOINTMENTS) == 1
    assert store.next_sequence("patient_record") == 1
    assert store.next_id(PATIENTS) == 2


# Models


def test_timestamp_helpers():
    assert format_timestamp(NOW) == "2025-03-15T10:30:00.000Z"
    assert parse_timestamp("2025-03-15T10:30:00.000Z") == datetime(2025, 3, 15, 10, 30)
    assert parse_timestamp("2025-03-15T17:30:00+07:00") == datetime(2025, 3, 15, 10, 30)
    assert parse_timestamp(date(2025, 3, 15)) == datetime(2025, 3, 15)
    assert parse_timestamp("not a date") is None
    assert parse_timestamp("") is None
    assert to_epoch_ms("garbage") == 0
    assert to_epoch_ms("1970-01-01T00:00:01.000Z") == 1000


@pytest.mark.parametrize(
    "kwargs, field",
    [
        (dict(name="", age=30, phone="0812"), "name"),
        (dict(name="Jane", age=0, phone="0812"), "age"),
        (dict(name="Jane", age=4.5, phone="0812"), "age"),
        (dict(name="Jane", age="abc", phone="0812"), "age"),
        (dict(name="Jane", age=30, phone="   "), "phone"),
    ],
)
def test_patient_validation_rejects(kwargs, field):
    with pytest.raises(ValidationError) as excinfo:
        Patient(**kwargs).validate()
    assert excinfo.value.field == field


def test_patient_validation_normalizes():
    patient = Patient("  Jane Smith ", "45", "0812")
    patient.validate()
    assert patient.name == "Jane Smith"
    assert patient.age == 45


def test_treatment_price_must_be_positive():
    with pytest.raises(ValidationError):
        Treatment("Massage", "Deep tissue", 0).validate()
    with pytest.raises(ValidationError):
        Treatment("Massage", "Deep tissue", True).validate()
    Treatment("Massage", "Deep tissue", 150000).validate()


def test_build_vital_signs_defaults():
    assert build_vital_signs({}) == {
        "bloodPressure": NOT_RECORDED,
        "respirationRate": 0,
        "heartRate": 0,
        "borgScale": 0,
    }


def test_build_vital_signs_custom_examinations():
    exam = CustomExamination("SpO2", "%", id=4)
    vitals = build_vital_signs({"bloodPressure": "120/80", "heartRate": "72", "custom_4": "98"}, [exam])
    assert vitals["bloodPressure"] == "120/80"
    assert vitals["heartRate"] == 72
    assert vitals["custom_4"] == {"name": "SpO2", "unit": "%", "value": "98"}

    empty = build_vital_signs({}, [exam])
    assert empty["custom_4"]["value"] == NOT_RECORDED


@pytest.mark.parametrize(
    "values",
    [
        {"borgScale": 11},
        {"heartRate": -5},
        {"respirationRate": "fast"},
    ],
)
def test_build_vital_signs_rejects(values):
    with pytest.raises(ValidationError):
        build_vital_signs(values)


def test_appointment_total_price_and_validation():
    lines = [{"id": 1, "name": "Massage", "price": 150000}, {"id": 2, "name": "Exercise", "price": 75000}]
    appointment = Appointment(1, "Jane Smith", 1, "Dr. Sari", "2025-03-15", {}, lines)
    appointment.validate()
    assert appointment.to_record()["totalPrice"] == 225000

    with pytest.raises(ValidationError):
        Appointment(1, "Jane Smith", 1, "Dr. Sari", "2025-03-15", {}, []).validate()
    with pytest.raises(ValidationError):
        Appointment(1, "Jane Smith", 1, "Dr. Sari", "someday", {}, lines).validate()


def test_appointment_dates_are_stored_as_iso_text():
    lines = [{"id": 1, "name": "Massage", "price": 150000}]
    by_day = Appointment(1, "Jane Smith", 1, "Dr. Sari", date(2025, 3, 1), {}, lines)
    by_day.validate()
    assert by_day.to_record()["date"] == "2025-03-01"

    by_moment = Appointment(1, "Jane Smith", 1, "Dr. Sari", datetime(2025, 3, 1, 16, 0, tzinfo=timezone(timedelta(hours=7))), {}, lines)
    by_moment.validate()
    assert by_moment.to_record()["date"] == "2025-03-01T09:00:00.000Z"


def test_log_entry_rejects_unknown_target_type():
    with pytest.raises(ValidationError):
        LogEntry(1, "created an operator", "Admin", "operator", "2025-03-15T10:30:00.000Z")


# List query engine


def test_query_sort_is_stable_in_both_directions():
    records = [
        {"id": 1, "name": "Alpha", "age": 30},
        {"id": 2, "name": "Bravo", "age": 30},
        {"id": 3, "name": "Charlie", "age": 20},
    ]
    asc = query_module.query(records, sort_field="age", sort_direction="asc")
    desc = query_module.query(records, sort_field="age", sort_direction="desc")
    assert [r["id"] for r in asc.items] == [3, 1, 2]
    assert [r["id"] for r in desc.items] == [1, 2, 3]


def test_query_sorts_dates_by_instant_not_text():
    records = [
        {"id": 1, "date": "2025-02-28T20:00:00.000Z"},
        {"id": 2, "date": "2025-03-01T01:00:00+07:00"},
    ]
    result = query_module.query(records, sort_field="date")
    assert [r["id"] for r in result.items] == [2, 1]


def test_query_sort_puts_missing_values_first():
    records = [{"id": 1, "name": "Bravo"}, {"id": 2}, {"id": 3, "name": "Alpha"}]
    result = query_module.query(records, sort_field="name")
    assert [r["id"] for r in result.items] == [2, 3, 1]


def test_query_date_range_is_inclusive_to_the_millisecond():
    records = [
        {"id": 1, "date": "2025-02-28T23:59:59.999Z"},
        {"id": 2, "date": "2025-03-01T00:00:00.000Z"},
        {"id": 3, "date": "2025-03-31T23:59:59.999Z"},
        {"id": 4, "date": "2025-03-31T23:59:59.999001+00:00"},
        {"id": 5, "date": ""},
    ]
    result = query_module.query(records, date_field="date", date_range=(date(2025, 3, 1), date(2025, 3, 31)))
    assert [r["id"] for r in result.items] == [2, 3]


def test_query_date_range_accepts_open_bounds_and_strings():
    records = [{"id": 1, "date": "2025-01-10"}, {"id": 2, "date": "2025-03-10"}]
    result = query_module.query(records, date_field="date", date_range=("2025-02-01", None))
    assert [r["id"] for r in result.items] == [2]
    assert query_module.query(records, date_field="date", date_range=(None, None)).total_items == 2


def test_query_rejects_bad_arguments():
    with pytest.raises(ValidationError):
        query_module.query([{"date": "2025-03-01"}], date_field="date", date_range=("yesterday", None))
    with pytest.raises(ValidationError):
        query_module.query([], sort_field="name", sort_direction="sideways")


def test_query_search_is_case_insensitive_across_fields():
    records = [
        {"id": 1, "name": "Jane Smith", "record_number": "PT2025000001", "phone": "0812", "address": "Jl. Melati"},
        {"id": 2, "name": "John Doe", "record_number": "PT2025000002", "phone": "0813", "address": None},
    ]
    fields = query_module.PATIENT_SEARCH_FIELDS
    assert [r["id"] for r in query_module.query(records, "jane", fields).items] == [1]
    assert [r["id"] for r in query_module.query(records, "000002", fields).items] == [2]
    assert [r["id"] for r in query_module.query(records, "MELATI", fields).items] == [1]
    assert query_module.query(records, "   ", fields).total_items == 2


def test_query_paginates_exact_slices():
    records = [{"id": i} for i in range(1, 24)]
    last = query_module.query(records, page=3, page_size=10)
    assert [r["id"] for r in last.items] == [21, 22, 23]
    assert last.total_items == 23
    assert last.total_pages == 3

    beyond = query_module.query(records, page=5, page_size=10)
    assert beyond.items == []
    assert beyond.total_items == 23

    assert len(query_module.query(records).items) == config.PAGE_SIZE


def test_query_does_not_mutate_input():
    records = [{"id": 2, "name": "B"}, {"id": 1, "name": "A"}]
    query_module.query(records, sort_field="name")
    assert [r["id"] for r in records] == [2, 1]


# Activity log


def test_activity_log_recovers_next_id(store):
    store.save(ACTIVITY_LOGS, [_log_entry(9), _log_entry(7), _log_entry(3)])
    log = ActivityLog(store)
    assert log.next_id == 10
    entry = log.append("created a new patient record", "patient")
    assert entry["id"] == 10
    assert log.entries()[0]["id"] == 10


def test_activity_log_starts_at_one(store):
    log = ActivityLog(store)
    assert log.next_id == 1


def test_activity_log_prepends_and_caps_retention(store):
    log = ActivityLog(store, retention=5)
    for _ in range(7):
        log.append("created a new patient record", "patient")
    assert [e["id"] for e in log.entries()] == [7, 6, 5, 4, 3]


def test_activity_log_default_retention(store):
    store.save(ACTIVITY_LOGS, [_log_entry(i) for i in range(500, 0, -1)])
    log = ActivityLog(store)
    log.append("created a new patient record", "patient")
    entries = log.entries()
    assert len(entries) == config.LOG_RETENTION == 500
    assert entries[0]["id"] == 501
    assert entries[-1]["id"] == 2


def test_activity_log_clear_old_logs(store):
    store.save(ACTIVITY_LOGS, [_log_entry(i) for i in range(150, 0, -1)])
    log = ActivityLog(store)
    assert log.clear_old_logs() == 50
    assert len(log.entries()) == config.LOG_CLEANUP_KEEP
    assert log.entries()[0]["id"] == 150
    assert log.clear_old_logs() == 0


def test_activity_log_unread_tracking(store):
    store.save(ACTIVITY_LOGS, [_log_entry(3), _log_entry(2), _log_entry(1)])
    log = ActivityLog(store)
    assert log.unread_count() == 3
    assert log.mark_as_read() == 3
    assert store.load_value(LOGS_LAST_SEEN) == 3
    assert log.unread_count() == 0

    log.append("created a new patient record", "patient")
    assert log.poll() == 1


def test_activity_log_mark_as_read_on_empty_log(store):
    log = ActivityLog(store)
    assert log.mark_as_read() == 0
    assert store.load_value(LOGS_LAST_SEEN) is None


def test_activity_log_subscribers(store):
    log = ActivityLog(store)
    received = []
    unsubscribe = log.subscribe(received.append)

    def broken(entry):
        raise RuntimeError("boom")

    log.subscribe(broken)
    first = log.append("created a new patient record", "patient")
    unsubscribe()
    log.append("created a new patient record", "patient")
    assert received == [first]
    assert len(log.entries()) == 2


def test_activity_log_record_uses_templates(store, clock):
    log = ActivityLog(store, operator_name="Front Desk", clock=clock)
    entry = log.record("appointment_created", target_id=12, patient_id=3, patient_name="Jane Smith")
    assert entry["action"] == "created a new appointment for Jane Smith"
    assert entry["targetType"] == "appointment"
    assert entry["operatorName"] == "Front Desk"
    assert entry["timestamp"] == "2025-03-15T10:30:00.000Z"

    status = log.record("invoice_status", target_id=1, patient_name="Jane Smith", status="void")
    assert status["action"] == "updated invoice status to void for Jane Smith"

    with pytest.raises(ValidationError):
        log.record("operator_created")


# Log message parsing


def test_parse_log_message_links_patient_and_target():
    entry = {
        "action": "created a new appointment for Jane Smith",
        "targetType": "appointment",
        "targetId": 12,
        "patientId": 3,
        "patientName": "Jane Smith",
    }
    spans = linkify.parse_log_message(entry)
    assert [s.kind for s in spans] == ["text", "text", "text", "entity-ref", "text", "patient-ref"]
    assert spans[3] == linkify.Span("entity-ref", "appointment", True, "appointment", 12)
    assert spans[5] == linkify.Span("patient-ref", "Jane Smith", True, "patient", 3)
    assert linkify.render_plain(spans) == entry["action"]


def test_parse_log_message_destructive_action_has_no_links():
    entry = {
        "action": "deleted appointment of Jane Smith",
        "targetType": "appointment",
        "targetId": 12,
        "patientId": 3,
        "patientName": "Jane Smith",
    }
    spans = linkify.parse_log_message(entry)
    assert [s.kind for s in spans] == ["text", "entity-ref", "text", "patient-ref"]
    assert not any(s.linkable for s in spans)


def test_parse_log_message_matches_name_once_case_insensitively():
    entry = {
        "action": "updated Jane for jane",
        "targetType": "patient",
        "targetId": 3,
        "patientId": 3,
        "patientName": "jane",
    }
    spans = linkify.parse_log_message(entry)
    assert [s.kind for s in spans] == ["text", "patient-ref", "text", "text"]


def test_parse_log_message_only_links_the_target_type():
    entry = LogEntry(
        1,
        "created an invoice from appointment of Jane Smith",
        "Admin",
        "invoice",
        "2025-03-15T10:30:00.000Z",
        target_id=4,
        patient_id=3,
        patient_name="Jane Smith",
    )
    spans = linkify.parse_log_message(entry)
    refs = [s for s in spans if s.kind == linkify.ENTITY_REF]
    assert [(s.value, s.target_id) for s in refs] == [("invoice", 4)]


def test_parse_log_message_without_target_id():
    entry = {"action": "created a new patient record", "targetType": "patient"}
    spans = linkify.parse_log_message(entry)
    assert all(s.kind == linkify.TEXT for s in spans)


def test_parse_log_message_patient_without_id_is_not_linkable():
    entry = {"action": "created a new appointment for Jane Smith", "targetType": "appointment", "patientName": "Jane Smith"}
    spans = linkify.parse_log_message(entry)
    assert spans[-1].kind == linkify.PATIENT_REF
    assert spans[-1].linkable is False


@pytest.mark.parametrize(
    "action, expected",
    [
        ("Edited patient record", True),
        ("removed a treatment", True),
        ("marked invoice as paid for Jane Smith", False),
        ("created a new patient record", False),
    ],
)
def test_is_destructive(action, expected):
    assert linkify.is_destructive(action) is expected


# Reports

OPERATORS = [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}, {"id": 3, "name": "C"}]


def _appointment(operator_id, day, patient_id=1, **vitals):
    return {"operatorId": operator_id, "operatorName": "snap", "patientId": patient_id, "date": day, "vitalSigns": vitals}


def _invoice(operator_id, day, amount, status="paid"):
    return {"operatorId": operator_id, "operatorName": "snap", "date": day, "totalAmount": amount, "status": status}


def test_operator_performance_keeps_selected_operators_without_activity():
    appointments = [_appointment(1, "2025-03-02"), _appointment(1, "2025-03-10"), _appointment(1, "2025-03-28"), _appointment(2, "2025-02-27")]
    invoices = [
        _invoice(1, "2025-03-02T09:00:00.000Z", 200),
        _invoice(1, "2025-03-10T09:00:00.000Z", 300),
        _invoice(1, "2025-03-28T09:00:00.000Z", 999, status="unpaid"),
        _invoice(2, "2025-02-27T09:00:00.000Z", 100),
    ]
    rows = reports.operator_performance(appointments, invoices, OPERATORS, 2025, 3, [1, 2])
    assert [(r.operator_name, r.appointment_count, r.revenue) for r in rows] == [("A", 3, 500), ("B", 0, 0)]
    assert reports.report_totals(rows) == (3, 500)


def test_operator_performance_all_operators_for_a_year():
    appointments = [_appointment(2, "2025-02-27"), _appointment(4, "2025-05-01")]
    invoices = [_invoice(2, "2025-02-27T09:00:00.000Z", 100), _invoice(1, "2024-12-31T23:00:00.000Z", 700)]
    rows = reports.operator_performance(appointments, invoices, OPERATORS, 2025)
    assert [r.operator_name for r in rows] == ["B", "A", "C", "snap"]
    assert rows[0].revenue == 100
    assert rows[-1].appointment_count == 1


def test_operator_performance_validates_period():
    with pytest.raises(ValidationError):
        reports.operator_performance([], [], OPERATORS, None)
    with pytest.raises(ValidationError):
        reports.operator_performance([], [], OPERATORS, 2025, 13)


def test_operator_invoices_newest_first():
    invoices = [
        _invoice(1, "2025-03-02T09:00:00.000Z", 200, status="unpaid"),
        _invoice(1, "2025-03-20T09:00:00.000Z", 300),
        _invoice(2, "2025-03-05T09:00:00.000Z", 100),
    ]
    result = reports.operator_invoices(invoices, 1, 2025, 3)
    assert [i["totalAmount"] for i in result] == [300, 200]


def test_month_window():
    assert reports.month_window(NOW) == [(2024, 10), (2024, 11), (2024, 12), (2025, 1), (2025, 2), (2025, 3)]


def test_monthly_trends_and_summary():
    patients = [{"created_at": "2025-03-01T00:00:00.000Z"}, {"created_at": "2024-10-31T23:59:59.999Z"}, {"created_at": "2024-09-30T12:00:00.000Z"}]
    appointments = [_appointment(1, "2025-03-15"), _appointment(1, "2025-01-03")]
    invoices = [_invoice(1, "2025-03-15T10:00:00.000Z", 150000), _invoice(1, "2025-03-15T11:00:00.000Z", 5, status="void")]

    trends = reports.monthly_trends(patients, appointments, invoices, NOW)
    assert [b.label for b in trends["patients"]] == ["Oct", "Nov", "Dec", "Jan", "Feb", "Mar"]
    assert [b.value for b in trends["patients"]] == [1, 0, 0, 0, 0, 1]
    assert [b.value for b in trends["appointments"]] == [0, 0, 0, 1, 0, 1]
    assert trends["revenue"][-1].value == 150000

    summary = reports.dashboard_summary(patients, appointments, invoices, NOW)
    assert summary == {
        "totalPatients": 3,
        "newPatientsThisMonth": 1,
        "totalAppointments": 2,
        "appointmentsThisMonth": 1,
        "totalRevenue": 150000,
        "revenueThisMonth": 150000,
    }


def test_vital_sign_trend_sorted_by_date():
    appointments = [
        _appointment(1, "2025-03-10", heartRate=80, borgScale=4),
        _appointment(1, "2025-03-01", heartRate=72, bloodPressure="120/80"),
        _appointment(1, "2025-03-05", patient_id=2, heartRate=60),
    ]
    trend = reports.vital_sign_trend(appointments, 1)
    assert [p["date"] for p in trend] == ["2025-03-01", "2025-03-10"]
    assert trend[0] == {"date": "2025-03-01", "bloodPressure": "120/80", "heartRate": 72, "respirationRate": 0, "borgScale": 0}


def test_borg_scale_label():
    assert reports.borg_scale_label(0) == "Not recorded"
    assert reports.borg_scale_label(2) == "Light exertion"
    assert reports.borg_scale_label(5) == "Moderate exertion"
    assert reports.borg_scale_label(9) == "High exertion"


# Invoices


def test_format_invoice_number():
    assert invoices_module.format_invoice_number(datetime(2025, 3, 15), 7) == "INV-202503-0007"
    assert invoices_module.format_invoice_number(datetime(2025, 11, 1), 12345) == "INV-202511-12345"


@pytest.mark.parametrize("sequence", [0, -1, "3", None, True])
def test_format_invoice_number_rejects_bad_sequence(sequence):
    with pytest.raises(ValidationError):
        invoices_module.format_invoice_number(datetime(2025, 3, 15), sequence)


def test_status_transition_table_is_permissive():
    statuses = invoices_module.STATUSES
    assert len(invoices_module.INVOICE_STATUS_TRANSITIONS) == len(statuses) ** 2
    assert ("paid", "unpaid") in invoices_module.INVOICE_STATUS_TRANSITIONS


def test_errors_carry_context():
    error = NotFoundError("Patient", 42)
    assert str(error) == "Patient 42 not found"
    assert error.entity_id == 42


# Export


def test_patients_frame_columns():
    df = export_module.patients_frame([
        {"id": 1, "record_number": "PT2025000001", "name": "Jane Smith", "age": 34, "phone": "0812", "created_at": "2025-03-15T10:30:00.000Z"},
    ])
    assert list(df.columns) == list(export_module.PATIENT_COLUMNS.values())
    assert df.iloc[0]["Created At"] == "15/03/2025 10:30"
    assert df.iloc[0]["Address"] is None


def test_invoices_frame_joins_treatments():
    df = export_module.invoices_frame([
        {
            "invoiceNumber": "INV-202503-0001",
            "patientName": "Jane Smith",
            "treatments": [{"name": "Massage"}, {"name": "Exercise therapy"}],
            "totalAmount": 225000,
            "status": "paid",
        },
    ])
    assert df.iloc[0]["Treatments"] == "Massage, Exercise therapy"
    assert export_module.to_csv_bytes(df).startswith(b"Invoice Number,")


def test_invoices_frame_counts_treatments_and_lists_vitals():
    df = export_module.invoices_frame([
        {
            "invoiceNumber": "INV-202503-0001",
            "treatments": [{"name": "Massage"}, {"name": "Exercise therapy"}],
            "vitalSigns": {"bloodPressure": "120/80", "respirationRate": 18, "heartRate": 72, "borgScale": 3},
            "totalAmount": 225000,
            "status": "paid",
        },
        {"invoiceNumber": "INV-202503-0002", "totalAmount": 0, "status": "unpaid"},
    ])
    assert list(df["Treatments Count"]) == [2, 0]
    assert list(df["Vital Signs - BP"]) == ["120/80", ""]
    assert df.iloc[0]["Vital Signs - HR"] == 72


# Receipts


def _receipt_invoice(**overrides):
    invoice = {
        "invoiceNumber": "INV-202503-0001",
        "patientName": "Jane Smith",
        "operatorName": "Dr. Sari",
        "date": "2025-03-15T10:30:00.000Z",
        "treatments": [
            {"id": 1, "name": "Massage", "price": 150000, "notes": "Lower back"},
            {"id": 2, "name": "Exercise therapy", "price": 75000},
        ],
        "totalAmount": 225000,
        "status": "unpaid",
    }
    invoice.update(overrides)
    return invoice


def test_receipt_text_lists_invoice_and_patient():
    patient = {"record_number": "PT202503150001", "address": "Jl. Melati 4"}
    text = receipt_module.receipt_text(_receipt_invoice(), patient)
    lines = text.split("\n")
    assert lines[0] == "BSP CENTER PHYSIOTHERAPY CLINIC"
    assert "DATE: 15/03/2025 10:30" in lines
    assert "RECORD NUMBER: PT202503150001" in lines
    assert "Address: Jl. Melati 4" in lines
    assert "- MASSAGE - RP 150.000" in lines
    assert "  Notes: Lower back" in lines
    assert "- EXERCISE THERAPY - RP 75.000" in lines
    assert "TOTAL: RP 225.000" in lines
    assert "STATUS: UNPAID" in lines
    assert lines[-1] == "Semoga kesehatan selalu menyertai anda"


def test_receipt_text_without_patient_record():
    text = receipt_module.receipt_text(_receipt_invoice(), None, {"header": "My Clinic", "footer": "Bye"})
    assert text.startswith("My Clinic\n")
    assert text.endswith("\nBye")
    assert "RECORD NUMBER: N/A" in text
    assert "Address: No address recorded" in text


def test_format_amount_uses_dot_thousands():
    assert receipt_module.format_amount(150000) == "150.000"
    assert receipt_module.format_amount(1250000) == "1.250.000"
    assert receipt_module.format_amount(None) == "0"


@pytest.mark.parametrize(
    "config, field",
    [
        ({"header": "  ", "footer": "Bye"}, "header"),
        ({"header": "My Clinic", "footer": ""}, "footer"),
        ({}, "header"),
    ],
)
def test_receipt_config_requires_header_and_footer(config, field):
    with pytest.raises(ValidationError) as excinfo:
        receipt_module.validate_config(config)
    assert excinfo.value.field == field


def test_receipt_config_is_stripped():
    assert receipt_module.validate_config({"header": " My Clinic \n", "footer": " Bye "}) == {"header": "My Clinic", "footer": "Bye"}


def test_load_backup_rejects_invalid_json():
    with pytest.raises(ValidationError):
        export_module.load_backup(b"{oops")
    assert export_module.load_backup(export_module.backup_json({"patients": []})) == {"patients": []}
