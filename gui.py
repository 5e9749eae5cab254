"""
This module defines the Streamlit front end of the ClinicDesk application.

It only renders data and forwards user actions to `ClinicService`; all record keeping,
billing, reporting and activity logging happens in the `clinicdesk` package.

The entry point is `show_main_app`, which renders the sidebar navigation and routes to
the selected page. Links inside the activity log use query parameters
(`?page=patient&id=3`) so that a log line can open the record it mentions.
"""
# gui.py

import datetime

import pandas as pd
import streamlit as st
from streamlit_autorefresh import st_autorefresh

from clinicdesk import config, export
from clinicdesk.errors import ClinicDeskError
from clinicdesk.linkify import ENTITY_REF, PATIENT_REF, parse_log_message
from clinicdesk.models import CustomExamination, Operator, Patient, Treatment, parse_timestamp
from clinicdesk.reports import borg_scale_label, report_totals

PAGES = ["Dashboard", "Patients", "Appointments", "Invoices", "Reports", "Activity Log", "Settings"]
DETAIL_PAGES = {"patient": "Patients", "appointment": "Appointments", "invoice": "Invoices"}
MONTH_NAMES = ["January", "February", "March", "April", "May", "June", "July",
               "August", "September", "October", "November", "December"]


def _format_currency(amount) -> str:
    """Formats an amount in minor units as Rupiah, e.g. 150000 -> 'Rp 150.000'."""
    return "Rp " + f"{int(amount or 0):,}".replace(",", ".")


def _format_timestamp(value, with_time=True) -> str:
    """Formats a stored date or timestamp as 'dd/mm/yyyy hh:mm', or returns it unchanged."""
    moment = parse_timestamp(value)
    if moment is None:
        return value or "Unknown time"
    return moment.strftime("%d/%m/%Y %H:%M" if with_time else "%d/%m/%Y")


def _log_message_markdown(entry) -> str:
    """Renders an activity log entry as markdown. Linkable references become links
    and suppressed references in destructive actions are shown in bold."""
    parts = []
    for span in parse_log_message(entry):
        if span.kind in (PATIENT_REF, ENTITY_REF):
            if span.linkable:
                parts.append(f"[{span.value}](?page={span.target_type}&id={span.target_id})")
            else:
                parts.append(f"**{span.value}**")
        else:
            parts.append(span.value)
    return " ".join(parts)


def _show_error(error: ClinicDeskError):
    st.error(str(error))


def _open_detail(kind, record_id):
    st.query_params["page"] = kind
    st.query_params["id"] = str(record_id)
    st.rerun()


def _close_detail():
    st.query_params.clear()
    st.rerun()


def show_main_app(service):
    """Renders the sidebar and the selected page."""
    unread = service.activity.poll()
    st_autorefresh(interval=config.POLL_INTERVAL_SECONDS * 1000, key="activity_poll")

    st.sidebar.title("ClinicDesk")
    st.sidebar.caption(f"Operator: {service.activity.operator_name}")
    labels = [f"{p} ({unread})" if p == "Activity Log" and unread else p for p in PAGES]
    choice = st.sidebar.radio("Navigate", labels, key="nav")
    page = PAGES[labels.index(choice)]

    detail = st.query_params.get("page")
    record_id = st.query_params.get("id")
    try:
        if detail in DETAIL_PAGES and record_id and record_id.isdigit():
            _render_detail(service, detail, int(record_id))
        elif page == "Dashboard":
            _render_dashboard(service)
        elif page == "Patients":
            _render_patients_page(service)
        elif page == "Appointments":
            _render_appointments_page(service)
        elif page == "Invoices":
            _render_invoices_page(service)
        elif page == "Reports":
            _render_reports_page(service)
        elif page == "Activity Log":
            _render_activity_page(service)
        else:
            _render_settings_page(service)
    except ClinicDeskError as e:
        _show_error(e)


def _render_dashboard(service):
    st.header("Dashboard")
    data = service.dashboard()
    summary = data["summary"]
    col1, col2, col3 = st.columns(3)
    col1.metric("Patients", summary["totalPatients"], f"+{summary['newPatientsThisMonth']} this month")
    col2.metric("Appointments", summary["totalAppointments"], f"{summary['appointmentsThisMonth']} this month")
    col3.metric("Revenue", _format_currency(summary["totalRevenue"]), _format_currency(summary["revenueThisMonth"]) + " this month")

    for key, title in (("patients", "New patients"), ("appointments", "Appointments"), ("revenue", "Revenue")):
        buckets = data["trends"][key]
        st.subheader(title)
        st.bar_chart(pd.DataFrame({"month": [b.label for b in buckets], title: [b.value for b in buckets]}).set_index("month"))


def _list_controls(prefix, with_dates=True):
    search = st.text_input("Search", key=f"{prefix}_search")
    date_range = None
    if with_dates:
        col1, col2 = st.columns(2)
        start = col1.date_input("From", value=None, key=f"{prefix}_start")
        end = col2.date_input("To", value=None, key=f"{prefix}_end")
        date_range = (start, end)
    return search, date_range


def _render_patients_page(service):
    st.header("Patients")
    with st.expander("Add patient"):
        with st.form("add_patient_form", clear_on_submit=True):
            name = st.text_input("Name")
            age = st.number_input("Age", min_value=0, step=1)
            phone = st.text_input("Phone number")
            address = st.text_input("Address")
            diagnosis = st.text_area("Initial diagnosis")
            if st.form_submit_button("Save Patient"):
                try:
                    record = service.create_patient(Patient(name, int(age), phone, address or None, diagnosis or None))
                    st.success(f"Patient {record['record_number']} created")
                except ClinicDeskError as e:
                    _show_error(e)

    search, date_range = _list_controls("patients")
    page = st.number_input("Page", min_value=1, step=1, key="patients_page")
    result = service.list_patients(search_term=search, date_range=date_range, sort_field="created_at", sort_direction="desc", page=int(page))
    st.caption(f"{result.total_items} patients, page {result.page} of {max(result.total_pages, 1)}")
    for patient in result.items:
        cols = st.columns([2, 3, 1, 2, 1])
        cols[0].write(patient.get("record_number"))
        cols[1].write(patient.get("name"))
        cols[2].write(patient.get("age"))
        cols[3].write(patient.get("phone"))
        if cols[4].button("Open", key=f"open_patient_{patient['id']}"):
            _open_detail("patient", patient["id"])


def _render_appointments_page(service):
    st.header("Appointments")
    patients = service.all_patients()
    operators = service.all_operators()
    treatments = service.all_treatments()
    with st.expander("New appointment"):
        if not (patients and operators and treatments):
            st.info("Add at least one patient, operator and treatment first.")
        else:
            with st.form("new_appointment_form", clear_on_submit=True):
                patient = st.selectbox("Patient", patients, format_func=lambda p: f"{p['name']} ({p['record_number']})")
                operator = st.selectbox("Operator", operators, format_func=lambda o: o["name"])
                chosen = st.multiselect("Treatments", treatments, format_func=lambda t: f"{t['name']} - {_format_currency(t['price'])}")
                vitals = {
                    "bloodPressure": st.text_input("Blood pressure"),
                    "respirationRate": st.number_input("Respiration rate", min_value=0, step=1),
                    "heartRate": st.number_input("Heart rate", min_value=0, step=1),
                    "borgScale": st.number_input("Borg scale", min_value=0, max_value=10, step=1),
                }
                for exam in service.all_custom_examinations():
                    exam_obj = CustomExamination.from_record(exam)
                    vitals[exam_obj.key] = st.text_input(f"{exam_obj.name} ({exam_obj.unit})")
                if st.form_submit_button("Save Appointment"):
                    try:
                        record = service.create_appointment(patient["id"], operator["id"], [t["id"] for t in chosen], vitals)
                        _open_detail("appointment", record["id"])
                    except ClinicDeskError as e:
                        _show_error(e)

    search, date_range = _list_controls("appointments")
    page = st.number_input("Page", min_value=1, step=1, key="appointments_page")
    result = service.list_appointments(search_term=search, date_range=date_range, sort_field="date", sort_direction="desc", page=int(page))
    st.caption(f"{result.total_items} appointments")
    for appointment in result.items:
        cols = st.columns([2, 3, 3, 2, 1])
        cols[0].write(_format_timestamp(appointment.get("date"), with_time=False))
        cols[1].write(appointment.get("patientName"))
        cols[2].write(appointment.get("operatorName"))
        cols[3].write(_format_currency(appointment.get("totalPrice")))
        if cols[4].button("Open", key=f"open_appointment_{appointment['id']}"):
            _open_detail("appointment", appointment["id"])


def _render_invoices_page(service):
    st.header("Invoices")
    search, date_range = _list_controls("invoices")
    page = st.number_input("Page", min_value=1, step=1, key="invoices_page")
    result = service.list_invoices(search_term=search, date_range=date_range, sort_field="date", sort_direction="desc", page=int(page))
    st.caption(f"{result.total_items} invoices")
    for invoice in result.items:
        cols = st.columns([3, 3, 2, 2, 1])
        cols[0].write(invoice.get("invoiceNumber"))
        cols[1].write(invoice.get("patientName"))
        cols[2].write(_format_currency(invoice.get("totalAmount")))
        cols[3].write(invoice.get("status", "").upper())
        if cols[4].button("Open", key=f"open_invoice_{invoice['id']}"):
            _open_detail("invoice", invoice["id"])


def _render_detail(service, kind, record_id):
    if st.button("← Back"):
        _close_detail()
    if kind == "patient":
        patient = service.get_patient(record_id)
        st.header(patient["name"])
        st.caption(f"{patient['record_number']} · {patient['age']} years · {patient['phone']}")
        trend = service.patient_vital_trend(record_id)
        if trend:
            df = pd.DataFrame(trend).set_index("date")
            st.line_chart(df[["heartRate", "respirationRate", "borgScale"]])
        else:
            st.info("No appointments recorded yet.")
        if st.button("Delete patient", type="primary"):
            service.delete_patient(record_id)
            _close_detail()
    elif kind == "appointment":
        appointment = service.get_appointment(record_id)
        st.header(f"Appointment · {appointment['patientName']}")
        vitals = appointment.get("vitalSigns") or {}
        st.write(f"Blood pressure: {vitals.get('bloodPressure')}, heart rate: {vitals.get('heartRate')}, "
                 f"respiration rate: {vitals.get('respirationRate')}, Borg: {borg_scale_label(vitals.get('borgScale'))}")
        for line in appointment.get("treatments") or []:
            st.write(f"- {line['name']}: {_format_currency(line['price'])}" + (f" ({line['notes']})" if line.get("notes") else ""))
        st.subheader(f"Total {_format_currency(appointment.get('totalPrice'))}")
        existing = service.invoices.get_invoice_for_appointment(record_id)
        if st.button("View invoice" if existing else "Generate invoice"):
            invoice = service.invoices.generate_invoice(appointment)
            _open_detail("invoice", invoice["id"])
        if st.button("Delete appointment", type="primary"):
            service.delete_appointment(record_id)
            _close_detail()
    else:
        invoice = service.invoices.get_invoice(record_id)
        st.header(invoice["invoiceNumber"])
        st.caption(f"{invoice['patientName']} · {invoice['operatorName']} · {_format_timestamp(invoice['date'])}")
        for line in invoice.get("treatments") or []:
            st.write(f"- {line['name']}: {_format_currency(line['price'])}")
        st.subheader(f"Total {_format_currency(invoice['totalAmount'])}")
        statuses = ["unpaid", "paid", "void"]
        status = st.selectbox("Status", statuses, index=statuses.index(invoice["status"]))
        if status != invoice["status"]:
            service.invoices.set_status(record_id, status)
            st.rerun()
        with st.expander("Receipt"):
            text = service.invoice_receipt(record_id)
            st.code(text, language=None)
            st.download_button("Download Receipt", text, f"{invoice['invoiceNumber']}.txt", "text/plain")


def _render_reports_page(service):
    st.header("Reports")
    this_year = datetime.date.today().year
    col1, col2 = st.columns(2)
    year = col1.selectbox("Year", list(range(this_year, this_year - 6, -1)))
    month_label = col2.selectbox("Month", ["All months"] + MONTH_NAMES)
    month = None if month_label == "All months" else MONTH_NAMES.index(month_label) + 1
    operators = service.all_operators()
    chosen = st.multiselect("Operators", operators, format_func=lambda o: o["name"])

    rows = service.operator_report(year, month, [o["id"] for o in chosen])
    total_appointments, total_revenue = report_totals(rows)
    st.metric("Appointments", total_appointments)
    st.metric("Revenue", _format_currency(total_revenue))
    st.dataframe(pd.DataFrame([
        {"Operator": r.operator_name, "Appointments": r.appointment_count, "Revenue": _format_currency(r.revenue)}
        for r in rows
    ]), use_container_width=True)


def _render_activity_page(service):
    st.header("Activity Log")
    col1, col2 = st.columns(2)
    if col1.button("Mark all as read", disabled=service.activity.unread_count() == 0):
        service.activity.mark_as_read()
        st.rerun()
    if col2.button(f"Keep only the latest {config.LOG_CLEANUP_KEEP}"):
        service.activity.clear_old_logs()
        st.rerun()
    for entry in service.activity.entries():
        st.markdown(f"**{entry.get('operatorName')}** {_log_message_markdown(entry)}")
        st.caption(_format_timestamp(entry.get("timestamp")))


def _render_settings_page(service):
    st.header("Settings")
    operators_tab, treatments_tab, exams_tab, receipt_tab, backup_tab = st.tabs(
        ["Operators", "Treatments", "Examinations", "Receipt", "Backup & Export"]
    )
    with operators_tab:
        with st.form("operator_form", clear_on_submit=True):
            name = st.text_input("Operator name")
            role = st.text_input("Role")
            if st.form_submit_button("Add Operator"):
                try:
                    service.create_operator(Operator(name, role))
                except ClinicDeskError as e:
                    _show_error(e)
        st.dataframe(pd.DataFrame(service.all_operators()), use_container_width=True)
    with treatments_tab:
        with st.form("treatment_form", clear_on_submit=True):
            name = st.text_input("Treatment name")
            description = st.text_area("Description")
            price = st.number_input("Price", min_value=0, step=1000)
            if st.form_submit_button("Add Treatment"):
                try:
                    service.create_treatment(Treatment(name, description, int(price)))
                except ClinicDeskError as e:
                    _show_error(e)
        st.dataframe(pd.DataFrame(service.all_treatments()), use_container_width=True)
    with exams_tab:
        with st.form("examination_form", clear_on_submit=True):
            name = st.text_input("Examination name")
            unit = st.text_input("Unit")
            if st.form_submit_button("Add Examination"):
                try:
                    service.create_custom_examination(CustomExamination(name, unit))
                except ClinicDeskError as e:
                    _show_error(e)
        st.dataframe(pd.DataFrame(service.all_custom_examinations()), use_container_width=True)
    with receipt_tab:
        current = service.receipt_config()
        with st.form("receipt_form"):
            header = st.text_area("Receipt header", value=current["header"])
            footer = st.text_area("Receipt footer", value=current["footer"])
            if st.form_submit_button("Save Receipt Settings"):
                try:
                    service.save_receipt_config({"header": header, "footer": footer})
                    st.success("Receipt settings saved")
                except ClinicDeskError as e:
                    _show_error(e)
    with backup_tab:
        snapshot = service.snapshot()
        today = datetime.date.today()
        st.download_button("Download Backup (JSON)", export.backup_json(snapshot), f"clinicdesk-backup-{today}.json", "application/json")
        st.download_button("Download Patients (CSV)", export.to_csv_bytes(export.patients_frame(snapshot["patients"])), f"patients-{today}.csv", "text/csv")
        st.download_button("Download Invoices (CSV)", export.to_csv_bytes(export.invoices_frame(snapshot["invoices"])), f"invoices-{today}.csv", "text/csv")
        uploaded = st.file_uploader("Restore from backup", type=["json"])
        if uploaded is not None and st.button("Restore"):
            try:
                service.restore(export.load_backup(uploaded.getvalue()))
                st.success("Backup restored")
            except ClinicDeskError as e:
                _show_error(e)
