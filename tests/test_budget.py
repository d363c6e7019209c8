"""Tests for the monthly budget gate."""

from decimal import Decimal

import pytest

from giftsearch.backends import InMemoryKeyValueStore
from giftsearch.budget import BUDGET_KEY, BudgetGate


def test_cannot_spend_when_next_call_exceeds_limit():
    gate = BudgetGate(monthly_limit="50", cost_per_call="0.10", spent="49.95")
    assert gate.can_spend() is False
    assert gate.try_charge() is False
    assert gate.spent == Decimal("49.95")


def test_can_spend_up_to_exact_limit():
    gate = BudgetGate(monthly_limit=50, cost_per_call=0.10, spent=49.90)
    assert gate.can_spend() is True
    gate.charge()
    assert gate.spent == Decimal("50.00")
    assert gate.can_spend() is False


def test_charge_is_unconditional_and_reset_zeroes():
    gate = BudgetGate(monthly_limit="0.05", cost_per_call="0.10")
    gate.charge()
    assert gate.spent == Decimal("0.10")
    assert gate.remaining() == Decimal("0")
    gate.reset()
    assert gate.spent == Decimal("0")


def test_period_rollover_resets_spend():
    period = {"value": "2026-09"}
    gate = BudgetGate(monthly_limit="1", cost_per_call="0.50", period_fn=lambda: period["value"])
    gate.charge()
    gate.charge()
    assert gate.can_spend() is False

    period["value"] = "2026-10"
    assert gate.can_spend() is True
    assert gate.snapshot()["period"] == "2026-10"
    assert gate.snapshot()["spent"] == "0"


def test_reservations_never_exceed_the_limit():
    gate = BudgetGate(monthly_limit="0.02", cost_per_call="0.01")

    first = gate.reserve()
    second = gate.reserve()

    assert first is not None and second is not None
    assert gate.reserve() is None
    assert gate.spent == Decimal("0.02")


def test_release_refunds_unbilled_call():
    gate = BudgetGate(monthly_limit="0.01", cost_per_call="0.01")
    reservation = gate.reserve()
    assert gate.can_spend() is False

    gate.release(reservation)

    assert gate.spent == Decimal("0")
    assert gate.can_spend() is True


def test_release_after_rollover_does_not_touch_new_period():
    period = {"value": "2026-09"}
    gate = BudgetGate(monthly_limit="1", cost_per_call="0.50", period_fn=lambda: period["value"])
    reservation = gate.reserve()
    period["value"] = "2026-10"
    gate.charge()

    gate.release(reservation)

    assert gate.spent == Decimal("0.50")


def test_spend_survives_restart_within_period():
    store = InMemoryKeyValueStore()
    first = BudgetGate(monthly_limit="50", cost_per_call="0.10", period_fn=lambda: "2026-10", store=store)
    first.charge()
    first.charge()

    restarted = BudgetGate(monthly_limit="50", cost_per_call="0.10", period_fn=lambda: "2026-10", store=store)
    assert restarted.load() is True
    assert restarted.spent == Decimal("0.20")


def test_stored_spend_from_past_period_is_not_restored():
    store = InMemoryKeyValueStore()
    BudgetGate(monthly_limit="50", cost_per_call="0.10", period_fn=lambda: "2026-09", store=store).charge()

    gate = BudgetGate(monthly_limit="50", cost_per_call="0.10", period_fn=lambda: "2026-10", store=store)

    assert gate.load() is False
    assert gate.spent == Decimal("0")


@pytest.mark.parametrize("raw", [b"{broken", b"[]", b"null", b'"x"', b'{"period": "2026-10", "spent": "lots"}'])
def test_corrupt_budget_state_is_ignored(raw):
    store = InMemoryKeyValueStore()
    store.save(BUDGET_KEY, raw)
    gate = BudgetGate(monthly_limit="50", cost_per_call="0.10", period_fn=lambda: "2026-10", store=store)

    assert gate.load() is False
    assert gate.spent == Decimal("0")
