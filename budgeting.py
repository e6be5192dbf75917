"""
Aggregation and pacing logic behind the dashboard, goal and coach endpoints.

Every function here is pure: the caller passes the current user's rows (as
plain (amount, label) pairs or goal tuples) and the current date. Nothing
reads the session, the database or the clock.
"""
import calendar
from collections import OrderedDict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from schemas import (
    Dashboard,
    ExpenseCategory,
    FinancialSummary,
    Frequency,
    GoalProjection,
    TrendPoint,
)

CENTS = Decimal("0.01")
DAYS_PER_MONTH = 30
MONTHS_PER_YEAR = 12

# (income factor, expense factor) per projected period, oldest first
TREND_FACTORS = (
    (Decimal("0.8"), Decimal("0.7")),
    (Decimal("0.9"), Decimal("0.8")),
    (Decimal("1.0"), Decimal("1.0")),
)

_CATEGORIES = {c.value for c in ExpenseCategory}


class BudgetError(ValueError):
    """Input that violates a record invariant reached the aggregation layer."""


def money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def _amount(value) -> Decimal:
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if amount < 0:
        raise BudgetError(f"amount must not be negative: {amount}")
    return amount


def _label(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


# ----------------------------------------------------------------------------
# Frequency normalizer
# ----------------------------------------------------------------------------
def monthly_income(records: Iterable[Tuple[Decimal, str]]) -> Decimal:
    """Monthly-equivalent total of (amount, frequency) pairs.

    One-time receipts are not recurring capacity and contribute nothing.
    """
    total = Decimal("0")
    for amount, frequency in records:
        amount = _amount(amount)
        frequency = _label(frequency)
        if frequency == Frequency.MONTHLY.value:
            total += amount
        elif frequency == Frequency.YEARLY.value:
            total += amount / MONTHS_PER_YEAR
        elif frequency != Frequency.ONE_TIME.value:
            raise BudgetError(f"unknown income frequency: {frequency!r}")
    return total


# ----------------------------------------------------------------------------
# Category aggregator
# ----------------------------------------------------------------------------
def aggregate_expenses(records: Iterable[Tuple[Decimal, str]]) -> Tuple[Decimal, Dict[str, Decimal]]:
    """Grand total and per-category totals, categories in first-seen order."""
    total = Decimal("0")
    by_category: Dict[str, Decimal] = OrderedDict()
    for amount, category in records:
        amount = _amount(amount)
        category = _label(category)
        if category not in _CATEGORIES:
            raise BudgetError(f"unknown expense category: {category!r}")
        total += amount
        by_category[category] = by_category.get(category, Decimal("0")) + amount
    return total, by_category


# ----------------------------------------------------------------------------
# Goal pacer
# ----------------------------------------------------------------------------
def project_goal(target_amount, current_amount, target_date: date, today: date) -> GoalProjection:
    """Progress and monthly pacing for one goal.

    The pacing figure is absent once the target date is reached, once the goal
    is met, and for a zero target (which also reports 0% progress).
    """
    target = _amount(target_amount)
    current = _amount(current_amount)

    # both ends are calendar dates, so this is already the ceiling
    days_remaining = (target_date - today).days

    if target == 0:
        return GoalProjection(progress_percent=Decimal("0"), days_remaining=days_remaining)

    reached = current >= target
    monthly_needed: Optional[Decimal] = None
    if days_remaining > 0 and not reached:
        # (target - current) / (days / 30), divided in this order to stay exact
        monthly_needed = money((target - current) * DAYS_PER_MONTH / days_remaining)

    return GoalProjection(
        progress_percent=money(current / target * 100),
        days_remaining=days_remaining,
        monthly_amount_needed=monthly_needed,
        goal_reached=reached,
    )


def contribution_amount(amount) -> Decimal:
    contribution = _amount(amount)
    if contribution == 0:
        raise BudgetError("contribution must be positive")
    return contribution


def apply_contribution(current_amount, amount) -> Decimal:
    """New balance after one top-up. Calling it twice counts twice."""
    return _amount(current_amount) + contribution_amount(amount)


# ----------------------------------------------------------------------------
# Dashboard composer
# ----------------------------------------------------------------------------
def summarize(incomes: Iterable[Tuple[Decimal, str]], expenses: Iterable[Tuple[Decimal, str]]) -> FinancialSummary:
    income = monthly_income(incomes)
    spent, by_category = aggregate_expenses(expenses)
    return FinancialSummary(
        total_monthly_income=money(income),
        total_expenses=money(spent),
        category_totals=OrderedDict((k, money(v)) for k, v in by_category.items()),
        available_funds=money(income - spent),
    )


def aggregate_progress(goals: Iterable[Tuple[Decimal, Decimal]]) -> Decimal:
    """Saved / targeted across (target_amount, current_amount) pairs, as a percentage."""
    targeted = Decimal("0")
    saved = Decimal("0")
    for target, current in goals:
        targeted += _amount(target)
        saved += _amount(current)
    if targeted == 0:
        return Decimal("0")
    return money(saved / targeted * 100)


def _previous_months(today: date, count: int) -> List[str]:
    months = [(today.month - 1 - back) % 12 + 1 for back in range(count)]
    return [calendar.month_abbr[m] for m in reversed(months)]


def trend_series(income: Decimal, expenses: Decimal, today: date) -> List[TrendPoint]:
    """Three-period extrapolation of the current totals, ending with today's month.

    This is a projection placeholder, not recorded history.
    """
    labels = _previous_months(today, len(TREND_FACTORS))
    return [
        TrendPoint(period=label, income=money(income * fi), expenses=money(expenses * fe))
        for label, (fi, fe) in zip(labels, TREND_FACTORS)
    ]


def compose_dashboard(
    incomes: Sequence[Tuple[Decimal, str]],
    expenses: Sequence[Tuple[Decimal, str]],
    goals: Sequence[Tuple[Decimal, Decimal]],
    today: date,
) -> Dashboard:
    summary = summarize(incomes, expenses)
    total_target = sum((_amount(t) for t, _ in goals), Decimal("0"))
    total_saved = sum((_amount(c) for _, c in goals), Decimal("0"))
    return Dashboard(
        **summary.model_dump(),
        total_savings=money(total_saved),
        total_savings_target=money(total_target),
        savings_progress=aggregate_progress(goals),
        goal_count=len(goals),
        trend=trend_series(summary.total_monthly_income, summary.total_expenses, today),
    )
