import pytest

from warden.budget import BudgetExceeded, BudgetGovernor
from warden.cost_ledger import CostLedger
from warden.identity import BudgetLimits


def _governor(total, limits=BudgetLimits(max=1.50, warning=1.00)):
    return BudgetGovernor(lambda: limits, lambda: total)


def test_total_at_ceiling_raises():
    with pytest.raises(BudgetExceeded) as exc:
        _governor(1.50).check_budget_or_throw()
    assert exc.value.total == 1.50
    assert exc.value.limit == 1.50


def test_total_below_ceiling_passes():
    status = _governor(1.49).check_budget_or_throw()
    assert status.exceeded is False
    assert status.warning_reached is True
    assert status.remaining == pytest.approx(0.01)


def test_missing_configuration_fails_open():
    status = BudgetGovernor(lambda: None, lambda: 999.0).check_budget_or_throw()
    assert status.configured is False
    assert status.exceeded is False
    assert status.remaining is None


def test_spend_is_read_fresh_on_every_check():
    spent = {"total": 0.5}
    governor = BudgetGovernor(lambda: BudgetLimits(1.0, 0.8), lambda: spent["total"])
    governor.check_budget_or_throw()
    spent["total"] = 1.2
    with pytest.raises(BudgetExceeded):
        governor.check_budget_or_throw()


def test_call_with_budget_skips_call_when_exceeded():
    calls = []
    governor = _governor(2.0)
    with pytest.raises(BudgetExceeded):
        governor.call_with_budget(calls.append, "x")
    assert calls == []

    assert _governor(0.1).call_with_budget(lambda a, b=0: a + b, 1, b=2) == 3


def test_governor_over_cost_ledger(tmp_path):
    ledger = CostLedger(tmp_path)
    governor = BudgetGovernor(lambda: BudgetLimits(1.0, 0.5), ledger.total_all_time)

    ledger.log_cost(agent="builder", model="sonnet", action="build", cost=0.6)
    assert governor.status().warning_reached is True
    governor.check_budget_or_throw()

    ledger.log_cost(agent="builder", model="sonnet", action="build", cost=0.4)
    with pytest.raises(BudgetExceeded):
        governor.check_budget_or_throw()


def test_status_to_dict_shape():
    data = _governor(0.25).status().to_dict()
    assert data == {
        "total": 0.25,
        "max": 1.5,
        "warning": 1.0,
        "remaining": 1.25,
        "warning_reached": False,
        "exceeded": False,
    }
