from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from zoneinfo import ZoneInfo

from actions.helpers import subject_id_from
from models import SalaryStructure
from utils import ApiError, AuthContext

log = logging.getLogger("payroll")

DAYS_PER_MONTH = 30
HOURS_PER_DAY = 8
OVERTIME_MULTIPLIER = 1.5

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?$")


def normalize_period(value: Any) -> str:
    """YYYY-MM or YYYY-MM-DD -> first day of that month (YYYY-MM-01)."""
    s = str(value or "").strip()
    m = _PERIOD_RE.match(s)
    if not m or not 1 <= int(m.group(2)) <= 12:
        raise ApiError("BAD_REQUEST", "Invalid period (expected YYYY-MM)")
    return f"{m.group(1)}-{m.group(2)}-01"


def _num(value: Any, label: str) -> float:
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", f"Invalid {label}")


def active_salary_structure(db, subject_id: str, period: str) -> Optional[SalaryStructure]:
    rows = (
        db.execute(
            select(SalaryStructure)
            .where(SalaryStructure.subjectId == str(subject_id))
            .where(SalaryStructure.isActive == True)  # noqa: E712
            .order_by(SalaryStructure.effectiveFrom.desc(), SalaryStructure.id.desc())
        )
        .scalars()
        .all()
    )
    for row in rows:
        eff = str(row.effectiveFrom or "")[:10]
        if not eff or eff <= period:
            return row
    return None


def calculate_salary(db, subject_id: str, period: Any, attendance: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    period_key = normalize_period(period)
    structure = active_salary_structure(db, subject_id, period_key)
    if structure is None:
        raise ApiError("NOT_FOUND", "Salary structure not found", details={"subjectId": str(subject_id)})

    basic = float(structure.basicSalary or 0)
    gross = float(structure.totalEarnings or basic)
    deductions = float(structure.totalDeductions or structure.pfEmployee or 0)

    lop_days = 0.0
    overtime_hours = 0.0
    breakdown: dict[str, float] = {}
    if attendance:
        present_days = _num(attendance.get("presentDays"), "presentDays")
        total_days = _num(attendance.get("totalDays"), "totalDays")
        lop_days = _num(attendance.get("lopDays"), "lopDays")
        overtime_hours = _num(attendance.get("overtimeHours"), "overtimeHours")
        if total_days <= 0:
            raise ApiError("BAD_REQUEST", "totalDays must be positive")

        daily_rate = basic / DAYS_PER_MONTH
        adjustment = (present_days / total_days) * basic - basic
        overtime_pay = overtime_hours * (daily_rate / HOURS_PER_DAY) * OVERTIME_MULTIPLIER
        lop_deduction = lop_days * daily_rate

        gross += adjustment + overtime_pay
        deductions += lop_deduction
        breakdown = {
            "dailyRate": daily_rate,
            "attendanceAdjustment": adjustment,
            "overtimePay": overtime_pay,
            "lopDeduction": lop_deduction,
        }

    net = gross - deductions
    log.info("payroll subject=%s period=%s gross=%.2f net=%.2f", subject_id, period_key, gross, net)
    return {
        "subjectId": str(subject_id),
        "period": period_key,
        "basicSalary": basic,
        "hra": float(structure.hra or 0),
        "conveyanceAllowance": float(structure.conveyanceAllowance or 0),
        "medicalAllowance": float(structure.medicalAllowance or 0),
        "lta": float(structure.lta or 0),
        "otherAllowances": float(structure.otherAllowances or 0),
        "totalEarnings": gross,
        "pfEmployee": float(structure.pfEmployee or 0),
        "professionalTax": float(structure.professionalTax or 0),
        "taxDeductions": float(structure.taxDeductions or 0),
        "otherDeductions": float(structure.otherDeductions or 0),
        "totalDeductions": deductions,
        "netSalary": net,
        "lopDays": lop_days,
        "overtimeHours": overtime_hours,
        "breakdown": breakdown,
    }


def payroll_calculate(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    attendance = (data or {}).get("attendance")
    if attendance is not None and not isinstance(attendance, dict):
        raise ApiError("BAD_REQUEST", "attendance must be an object")

    period = (data or {}).get("period")
    if not period:
        # Payroll months follow the portal's local calendar.
        period = datetime.now(ZoneInfo(cfg.APP_TIMEZONE)).strftime("%Y-%m")
    return calculate_salary(db, sid, period, attendance or None)
