from datetime import date, timedelta
from decimal import Decimal

import pytest

from budgeting import (
    BudgetError,
    aggregate_expenses,
    aggregate_progress,
    apply_contribution,
    compose_dashboard,
    contribution_amount,
    monthly_income,
    project_goal,
    summarize,
    trend_series,
)
from schemas import Frequency

D = Decimal
TODAY = date(2026, 10, 17)


def test_monthly_income_mixes_frequencies():
    records = [(D("5000"), "one-time"), (D("1000"), "monthly"), (D("12000"), "yearly")]
    assert monthly_income(records) == D("2000")


def test_monthly_income_accepts_enum_frequencies():
    assert monthly_income([(D("600"), Frequency.YEARLY)]) == D("50")


def test_monthly_income_empty_is_zero():
    assert monthly_income([]) == 0


def test_monthly_income_one_time_only_is_zero():
    assert monthly_income([(D("900"), "one-time"), (D("100"), "one-time")]) == 0


def test_monthly_income_rejects_negative_amount():
    with pytest.raises(BudgetError):
        monthly_income([(D("-1"), "monthly")])


def test_monthly_income_rejects_unknown_frequency():
    with pytest.raises(BudgetError):
        monthly_income([(D("10"), "weekly")])


def test_aggregate_expenses_groups_in_first_seen_order():
    records = [
        (D("120.10"), "Hotels"),
        (D("15.25"), "Food"),
        (D("80.00"), "Hotels"),
        (D("300"), "Flights"),
    ]
    total, by_category = aggregate_expenses(records)
    assert total == D("515.35")
    assert list(by_category) == ["Hotels", "Food", "Flights"]
    assert by_category["Hotels"] == D("200.10")
    assert "Shopping" not in by_category


def test_aggregate_expenses_total_matches_category_sum():
    records = [(D("0.10"), "Food")] * 30 + [(D("0.20"), "Other")] * 7
    total, by_category = aggregate_expenses(records)
    assert total == sum(by_category.values())
    assert total == D("4.40")


def test_aggregate_expenses_rejects_unknown_category():
    with pytest.raises(BudgetError):
        aggregate_expenses([(D("10"), "Groceries")])


def test_project_goal_pacing():
    projection = project_goal(D("2000"), D("500"), TODAY + timedelta(days=90), TODAY)
    assert projection.progress_percent == D("25.00")
    assert projection.days_remaining == 90
    assert projection.monthly_amount_needed == D("500.00")
    assert not projection.goal_reached


def test_project_goal_due_tomorrow_counts_one_day():
    projection = project_goal(D("100"), D("70"), TODAY + timedelta(days=1), TODAY)
    assert projection.days_remaining == 1
    assert projection.monthly_amount_needed == D("900.00")


@pytest.mark.parametrize("offset", [0, -1, -45])
def test_project_goal_without_time_left_has_no_pacing(offset):
    projection = project_goal(D("1000"), D("100"), TODAY + timedelta(days=offset), TODAY)
    assert projection.monthly_amount_needed is None
    assert projection.days_remaining == offset


def test_project_goal_overshoot_has_no_pacing():
    projection = project_goal(D("1000"), D("1500"), TODAY + timedelta(days=30), TODAY)
    assert projection.progress_percent == D("150.00")
    assert projection.goal_reached
    assert projection.monthly_amount_needed is None


def test_project_goal_exactly_met_has_no_pacing():
    projection = project_goal(D("1000"), D("1000"), TODAY + timedelta(days=30), TODAY)
    assert projection.progress_percent == D("100.00")
    assert projection.monthly_amount_needed is None


def test_project_goal_zero_target_falls_back():
    projection = project_goal(D("0"), D("50"), TODAY + timedelta(days=10), TODAY)
    assert projection.progress_percent == 0
    assert projection.monthly_amount_needed is None
    assert projection.days_remaining == 10


def test_project_goal_rejects_negative_current():
    with pytest.raises(BudgetError):
        project_goal(D("100"), D("-1"), TODAY, TODAY)


def test_apply_contribution_is_additive():
    once = apply_contribution(D("0"), D("100"))
    twice = apply_contribution(once, D("100"))
    assert twice == D("200")


@pytest.mark.parametrize("amount", [D("0"), D("-5")])
def test_apply_contribution_requires_positive_amount(amount):
    with pytest.raises(BudgetError):
        apply_contribution(D("10"), amount)


@pytest.mark.parametrize("amount", [D("0"), D("-0.01")])
def test_contribution_amount_rejects_non_positive(amount):
    with pytest.raises(BudgetError):
        contribution_amount(amount)


def test_contribution_amount_passes_positive_through():
    assert contribution_amount(D("25.50")) == D("25.50")


def test_aggregate_progress_without_goals_is_zero():
    assert aggregate_progress([]) == 0


def test_aggregate_progress_across_goals():
    goals = [(D("1000"), D("250")), (D("3000"), D("750"))]
    assert aggregate_progress(goals) == D("25.00")


def test_summarize_available_funds():
    summary = summarize([(D("3000"), "monthly")], [(D("450.50"), "Flights")])
    assert summary.total_monthly_income == D("3000.00")
    assert summary.total_expenses == D("450.50")
    assert summary.available_funds == D("2549.50")
    assert summary.category_totals == {"Flights": D("450.50")}


def test_trend_series_scales_current_totals():
    points = trend_series(D("1000"), D("500"), TODAY)
    assert [p.period for p in points] == ["Aug", "Sep", "Oct"]
    assert [p.income for p in points] == [D("800.00"), D("900.00"), D("1000.00")]
    assert [p.expenses for p in points] == [D("350.00"), D("400.00"), D("500.00")]


def test_trend_series_labels_wrap_year():
    points = trend_series(D("0"), D("0"), date(2027, 1, 5))
    assert [p.period for p in points] == ["Nov", "Dec", "Jan"]


def test_compose_dashboard():
    dashboard = compose_dashboard(
        incomes=[(D("2400"), "yearly"), (D("1800"), "monthly"), (D("999"), "one-time")],
        expenses=[(D("100"), "Food"), (D("250"), "Activities"), (D("50"), "Food")],
        goals=[(D("2000"), D("500")), (D("2000"), D("1500"))],
        today=TODAY,
    )
    assert dashboard.total_monthly_income == D("2000.00")
    assert dashboard.total_expenses == D("400.00")
    assert dashboard.available_funds == D("1600.00")
    assert dashboard.category_totals == {"Food": D("150.00"), "Activities": D("250.00")}
    assert dashboard.total_savings == D("2000.00")
    assert dashboard.total_savings_target == D("4000.00")
    assert dashboard.savings_progress == D("50.00")
    assert dashboard.goal_count == 2
    assert dashboard.trend_is_projection
    assert dashboard.trend[-1].income == D("2000.00")


def test_compose_dashboard_for_new_user():
    dashboard = compose_dashboard([], [], [], TODAY)
    assert dashboard.total_monthly_income == 0
    assert dashboard.savings_progress == 0
    assert dashboard.category_totals == {}
    assert len(dashboard.trend) == 3
