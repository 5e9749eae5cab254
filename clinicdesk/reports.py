"""
Read-side aggregates computed on demand from the raw collections.

Nothing here is persisted: every function takes the current records and returns a
fresh summary. Month membership is decided on UTC calendar months.
"""
# clinicdesk/reports.py

import calendar
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from clinicdesk import config
from clinicdesk.errors import ValidationError
from clinicdesk.models import parse_timestamp, to_epoch_ms


@dataclass(frozen=True)
class MonthBucket:
    label: str
    year: int
    month: int
    value: int


@dataclass
class OperatorReportRow:
    operator_id: int
    operator_name: str
    appointment_count: int = 0
    revenue: int = 0


def _month_of(value) -> Optional[Tuple[int, int]]:
    moment = parse_timestamp(value)
    if moment is None:
        return None
    return moment.year, moment.month


def month_window(now: datetime, months: int = None) -> List[Tuple[int, int]]:
    """Returns `(year, month)` pairs for the current month and the preceding ones, oldest first."""
    months = months or config.TREND_MONTHS
    current = parse_timestamp(now)
    window = []
    for back in range(months - 1, -1, -1):
        index = current.year * 12 + (current.month - 1) - back
        window.append((index // 12, index % 12 + 1))
    return window


def _bucketize(records: Iterable[dict], field: str, now: datetime, amount=None) -> List[MonthBucket]:
    window = month_window(now)
    totals = {key: 0 for key in window}
    for record in records:
        key = _month_of(record.get(field))
        if key in totals:
            totals[key] += amount(record) if amount else 1
    return [MonthBucket(calendar.month_abbr[m], y, m, totals[(y, m)]) for y, m in window]


def _is_paid(invoice: dict) -> bool:
    return invoice.get("status") == "paid"


def _amount(invoice: dict) -> int:
    return invoice.get("totalAmount") or 0


def monthly_trends(patients, appointments, invoices, now: datetime) -> Dict[str, List[MonthBucket]]:
    """Dashboard trend series over the sliding six-month window.

    Returns:
        A dict with three oldest-to-newest series: `patients` (new registrations by
        `created_at`), `appointments` (visits by `date`) and `revenue` (sum of
        `totalAmount` over paid invoices by `date`).
    """
    return {
        "patients": _bucketize(patients, "created_at", now),
        "appointments": _bucketize(appointments, "date", now),
        "revenue": _bucketize([i for i in invoices if _is_paid(i)], "date", now, amount=_amount),
    }


def dashboard_summary(patients, appointments, invoices, now: datetime) -> Dict[str, int]:
    """Headline figures for the dashboard cards."""
    this_month = _month_of(now)
    paid = [i for i in invoices if _is_paid(i)]
    return {
        "totalPatients": len(patients),
        "newPatientsThisMonth": sum(1 for p in patients if _month_of(p.get("created_at")) == this_month),
        "totalAppointments": len(appointments),
        "appointmentsThisMonth": sum(1 for a in appointments if _month_of(a.get("date")) == this_month),
        "totalRevenue": sum(_amount(i) for i in paid),
        "revenueThisMonth": sum(_amount(i) for i in paid if _month_of(i.get("date")) == this_month),
    }


def _in_period(value, year: int, month: Optional[int]) -> bool:
    key = _month_of(value)
    if key is None:
        return False
    return key[0] == year and (month is None or key[1] == month)


def _check_period(year, month):
    if not year:
        raise ValidationError("A report year is required", field="year")
    if month is not None and not 1 <= month <= 12:
        raise ValidationError(f"Invalid report month: {month}", field="month")


def operator_performance(
    appointments: Sequence[dict],
    invoices: Sequence[dict],
    operators: Sequence[dict],
    year: int,
    month: Optional[int] = None,
    operator_ids: Iterable[int] = (),
) -> List[OperatorReportRow]:
    """Appointment counts and paid revenue per operator for a year or a single month.

    Args:
        appointments: All appointments.
        invoices: All invoices; only paid ones count towards revenue.
        operators: All operators, used to seed rows and resolve names.
        year: Report year (required).
        month: Optional month 1..12.
        operator_ids: Operators to include; empty means all operators.

    Returns:
        Rows sorted by revenue, highest first. Every selected operator has a row, with
        zero figures if it had no activity in the period.
    """
    _check_period(year, month)
    operator_ids = list(operator_ids)
    selected = set(operator_ids)
    names = {op.get("id"): op.get("name") for op in operators}
    seed_ids = [op.get("id") for op in operators if not selected or op.get("id") in selected]
    seed_ids += [op_id for op_id in operator_ids if op_id not in names]

    rows: Dict[int, OperatorReportRow] = {}
    for op_id in seed_ids:
        rows.setdefault(op_id, OperatorReportRow(op_id, names.get(op_id) or "Unknown operator"))

    def _row_for(record):
        op_id = record.get("operatorId")
        if selected and op_id not in selected:
            return None
        if op_id not in rows:
            rows[op_id] = OperatorReportRow(op_id, names.get(op_id) or record.get("operatorName") or "Unknown operator")
        return rows[op_id]

    for appointment in appointments:
        if _in_period(appointment.get("date"), year, month):
            row = _row_for(appointment)
            if row is not None:
                row.appointment_count += 1

    for invoice in invoices:
        if _is_paid(invoice) and _in_period(invoice.get("date"), year, month):
            row = _row_for(invoice)
            if row is not None:
                row.revenue += _amount(invoice)

    return sorted(rows.values(), key=lambda row: row.revenue, reverse=True)


def report_totals(rows: Sequence[OperatorReportRow]) -> Tuple[int, int]:
    """Returns `(total appointments, total revenue)` across report rows."""
    return sum(r.appointment_count for r in rows), sum(r.revenue for r in rows)


def operator_invoices(invoices: Sequence[dict], operator_id: int, year: int, month: Optional[int] = None) -> List[dict]:
    """All invoices of one operator in the report period, any status, newest first."""
    _check_period(year, month)
    matching = [
        i for i in invoices
        if i.get("operatorId") == operator_id and _in_period(i.get("date"), year, month)
    ]
    return sorted(matching, key=lambda i: to_epoch_ms(i.get("date")), reverse=True)


def vital_sign_trend(appointments: Sequence[dict], patient_id: int) -> List[dict]:
    """One point per appointment of `patient_id`, oldest first, for charting."""
    visits = sorted(
        (a for a in appointments if a.get("patientId") == patient_id),
        key=lambda a: to_epoch_ms(a.get("date")),
    )
    trend = []
    for visit in visits:
        vitals = visit.get("vitalSigns") or {}
        trend.append({
            "date": visit.get("date"),
            "bloodPressure": vitals.get("bloodPressure") or "",
            "heartRate": vitals.get("heartRate") or 0,
            "respirationRate": vitals.get("respirationRate") or 0,
            "borgScale": vitals.get("borgScale") or 0,
        })
    return trend


def borg_scale_label(scale) -> str:
    if not scale:
        return "Not recorded"
    if scale <= 3:
        return "Light exertion"
    if scale <= 6:
        return "Moderate exertion"
    return "High exertion"
