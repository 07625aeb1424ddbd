from decimal import Decimal
from types import SimpleNamespace

import pytest

from escortcore.errors import InvariantViolationError
from escortcore.models.db.enums import DebtStatus
from escortcore.services.debts import apply_deduction, deducted_total, plan_offsets


def _debt(did, remaining, status=DebtStatus.PENDING):
    return SimpleNamespace(id=did, remaining_amount=Decimal(remaining), status=status, deductions=[], completed_at=None)


def test_plan_takes_oldest_first():
    debts = [_debt(1, "30.00"), _debt(2, "50.00"), _debt(3, "40.00")]
    plan = plan_offsets(debts, Decimal("70.00"))
    assert [(d.id, amt) for d, amt in plan] == [(1, Decimal("30.00")), (2, Decimal("40.00"))]


def test_plan_pool_larger_than_debts():
    debts = [_debt(1, "10.00"), _debt(2, "15.50")]
    plan = plan_offsets(debts, Decimal("100.00"))
    assert sum(amt for _, amt in plan) == Decimal("25.50")


def test_plan_with_empty_pool():
    assert plan_offsets([_debt(1, "10.00")], Decimal("0")) == []


def test_apply_deduction_completes_at_zero():
    debt = _debt(1, "20.00")
    assert apply_deduction(debt, Decimal("5.00"), job_id=11) == Decimal("15.00")
    assert debt.status == DebtStatus.PENDING
    assert apply_deduction(debt, Decimal("15.00"), job_id=12) == Decimal("0.00")
    assert debt.status == DebtStatus.COMPLETED
    assert debt.completed_at is not None
    assert [d["job_id"] for d in debt.deductions] == [11, 12]
    assert deducted_total(debt) == Decimal("20.00")


def test_deduction_larger_than_remaining_is_rejected():
    debt = _debt(1, "5.00")
    with pytest.raises(InvariantViolationError):
        apply_deduction(debt, Decimal("6.00"), job_id=1)


def test_completed_debt_never_reopens():
    debt = _debt(1, "0.00", status=DebtStatus.COMPLETED)
    with pytest.raises(InvariantViolationError):
        apply_deduction(debt, Decimal("1.00"), job_id=1)
