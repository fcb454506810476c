from __future__ import annotations

import pytest

from actions.payroll import calculate_salary, normalize_period
from models import SalaryStructure
from utils import ApiError


def _structure(db, subject_id: str = "EMP-1", **overrides) -> SalaryStructure:
    values = dict(
        subjectId=subject_id,
        basicSalary=30000.0,
        hra=0.0,
        conveyanceAllowance=0.0,
        medicalAllowance=0.0,
        lta=0.0,
        otherAllowances=0.0,
        totalEarnings=30000.0,
        pfEmployee=0.0,
        professionalTax=0.0,
        taxDeductions=0.0,
        otherDeductions=0.0,
        totalDeductions=0.0,
        effectiveFrom="2025-01-01",
        isActive=True,
    )
    values.update(overrides)
    row = SalaryStructure(**values)
    db.add(row)
    db.flush()
    return row


def test_attendance_adjusted_salary(db_session):
    _structure(db_session)

    out = calculate_salary(
        db_session,
        "EMP-1",
        "2025-03",
        {"presentDays": 20, "totalDays": 22, "lopDays": 1, "overtimeHours": 4},
    )

    # dailyRate 1000; adjustment 20/22*30000 - 30000; overtime 4 * 125 * 1.5
    assert out["breakdown"]["dailyRate"] == pytest.approx(1000.0)
    assert out["breakdown"]["attendanceAdjustment"] == pytest.approx(-30000 / 11)
    assert out["breakdown"]["overtimePay"] == pytest.approx(750.0)
    assert out["breakdown"]["lopDeduction"] == pytest.approx(1000.0)
    assert out["totalEarnings"] == pytest.approx(30000 - 30000 / 11 + 750)
    assert out["totalDeductions"] == pytest.approx(1000.0)
    assert out["netSalary"] == pytest.approx(30000 - 30000 / 11 + 750 - 1000)
    assert out["period"] == "2025-03-01"
    assert out["lopDays"] == 1
    assert out["overtimeHours"] == 4


def test_without_attendance_uses_structure_totals(db_session):
    _structure(db_session, totalEarnings=42000.0, totalDeductions=3600.0)

    out = calculate_salary(db_session, "EMP-1", "2025-03-15")

    assert out["totalEarnings"] == pytest.approx(42000.0)
    assert out["totalDeductions"] == pytest.approx(3600.0)
    assert out["netSalary"] == pytest.approx(38400.0)
    assert out["breakdown"] == {}


def test_unset_totals_fall_back_to_basic_and_pf(db_session):
    _structure(db_session, totalEarnings=None, totalDeductions=None, basicSalary=25000.0, pfEmployee=1800.0)

    out = calculate_salary(db_session, "EMP-1", "2025-03")

    assert out["totalEarnings"] == pytest.approx(25000.0)
    assert out["totalDeductions"] == pytest.approx(1800.0)
    assert out["netSalary"] == pytest.approx(23200.0)


def test_latest_effective_active_structure_is_used(db_session):
    _structure(db_session, totalEarnings=30000.0, effectiveFrom="2024-01-01")
    _structure(db_session, totalEarnings=35000.0, effectiveFrom="2025-02-01")
    _structure(db_session, totalEarnings=99000.0, effectiveFrom="2025-01-01", isActive=False)
    _structure(db_session, totalEarnings=50000.0, effectiveFrom="2026-01-01")

    assert calculate_salary(db_session, "EMP-1", "2025-03")["totalEarnings"] == pytest.approx(35000.0)
    assert calculate_salary(db_session, "EMP-1", "2024-06")["totalEarnings"] == pytest.approx(30000.0)


def test_missing_structure_is_not_found(db_session):
    with pytest.raises(ApiError) as exc:
        calculate_salary(db_session, "EMP-404", "2025-03")
    assert exc.value.code == "NOT_FOUND"


def test_zero_total_days_is_bad_request(db_session):
    _structure(db_session)
    with pytest.raises(ApiError) as exc:
        calculate_salary(db_session, "EMP-1", "2025-03", {"presentDays": 0, "totalDays": 0})
    assert exc.value.code == "BAD_REQUEST"


@pytest.mark.parametrize("raw", ["2025", "2025-13", "03-2025", "", None])
def test_invalid_period(raw):
    with pytest.raises(ApiError):
        normalize_period(raw)
