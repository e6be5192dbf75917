"""
App Schemas

Pydantic models for the travel budget API.
Each persisted table has an "In" model (request body) and an "Out" model
(response). Derived views (summary, projection, dashboard) are never stored.
- IncomeSource -> "income_sources"
- Expense -> "expenses"
- SavingsGoal -> "savings_goals"
- Profile -> "profiles"
"""

from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class Frequency(str, Enum):
    ONE_TIME = "one-time"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ExpenseCategory(str, Enum):
    FLIGHTS = "Flights"
    HOTELS = "Hotels"
    FOOD = "Food"
    ACTIVITIES = "Activities"
    TRANSPORTATION = "Transportation"
    SHOPPING = "Shopping"
    OTHER = "Other"


class AdviceCategory(str, Enum):
    RATE_LIMITED = "rate-limited"
    PAYMENT_REQUIRED = "payment-required"
    UNAUTHORIZED = "unauthorized"
    GENERIC = "generic"


# ----------------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------------
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserRegister(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class UserOut(BaseModel):
    id: int
    name: str
    email: EmailStr

    class Config:
        from_attributes = True


# ----------------------------------------------------------------------------
# Profile
# ----------------------------------------------------------------------------
class ProfileIn(BaseModel):
    full_name: Optional[str] = Field(None, description="Display name")
    avatar_url: Optional[str] = Field(None, description="Avatar image URL")


class ProfileOut(ProfileIn):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ----------------------------------------------------------------------------
# Income sources
# ----------------------------------------------------------------------------
class IncomeSourceIn(BaseModel):
    """
    Income source owned by the current user
    Table: "income_sources"
    """
    source_name: str = Field(..., min_length=1, description="Where the money comes from")
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    frequency: Frequency = Field(..., description="one-time, monthly or yearly")


class IncomeSourceOut(IncomeSourceIn):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ----------------------------------------------------------------------------
# Expenses
# ----------------------------------------------------------------------------
class ExpenseIn(BaseModel):
    """
    Travel expense
    Table: "expenses"
    """
    title: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    category: ExpenseCategory
    expense_date: date
    notes: Optional[str] = None


class ExpenseOut(ExpenseIn):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ----------------------------------------------------------------------------
# Savings goals
# ----------------------------------------------------------------------------
class GoalProjection(BaseModel):
    """Pacing view of one goal.

    monthly_amount_needed is None once the target date is reached or the goal
    is met; it is never zero or negative.
    """
    progress_percent: Decimal
    days_remaining: int
    monthly_amount_needed: Optional[Decimal] = None
    goal_reached: bool = False


class SavingsGoalIn(BaseModel):
    """
    Savings goal for a trip
    Table: "savings_goals"
    """
    goal_name: str = Field(..., min_length=1)
    target_amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    current_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    target_date: date


class SavingsGoalOut(SavingsGoalIn):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    projection: Optional[GoalProjection] = None

    class Config:
        from_attributes = True


class ContributionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


# ----------------------------------------------------------------------------
# Dashboard
# ----------------------------------------------------------------------------
class FinancialSummary(BaseModel):
    total_monthly_income: Decimal
    total_expenses: Decimal
    category_totals: Dict[str, Decimal] = Field(default_factory=OrderedDict)
    available_funds: Decimal


class TrendPoint(BaseModel):
    period: str
    income: Decimal
    expenses: Decimal


class Dashboard(FinancialSummary):
    total_savings: Decimal
    total_savings_target: Decimal
    savings_progress: Decimal
    goal_count: int
    trend: List[TrendPoint]
    trend_is_projection: bool = True


# ----------------------------------------------------------------------------
# AI coach
# ----------------------------------------------------------------------------
class AdviceRequest(BaseModel):
    question: Optional[str] = Field(None, description="Free-form question; a summary is sent when blank")


class AdviceOut(BaseModel):
    recommendation: str


class AdviceErrorOut(BaseModel):
    error: str
    category: AdviceCategory
