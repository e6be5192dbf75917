import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext

from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    Date,
    DateTime,
    Text,
    ForeignKey,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import select, update

from budgeting import BudgetError, contribution_amount, compose_dashboard, project_goal, summarize
from coach import AdviceError, AdviceGenerator, HttpAdviceGenerator, UnauthorizedError, build_prompt
from schemas import (
    AdviceErrorOut,
    AdviceOut,
    AdviceRequest,
    ContributionIn,
    Dashboard,
    ExpenseIn,
    ExpenseOut,
    IncomeSourceIn,
    IncomeSourceOut,
    ProfileIn,
    ProfileOut,
    SavingsGoalIn,
    SavingsGoalOut,
    Token,
    UserOut,
    UserRegister,
)

# ----------------------------------------------------------------------------
# Config
# ----------------------------------------------------------------------------
SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

# Prefer PostgreSQL if provided, otherwise fall back to SQLite (so server always boots)
_env_db = os.getenv("DATABASE_URL", "").strip()
if _env_db:
    DATABASE_URL = _env_db
else:
    DATABASE_URL = "sqlite+aiosqlite:///./app.db"

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False, future=True)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
coach_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# ----------------------------------------------------------------------------
# DB Models
# ----------------------------------------------------------------------------
class UserModel(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"), onupdate=func.now())


class ProfileModel(Base):
    __tablename__ = "profiles"
    id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(Text, nullable=True)
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"), onupdate=func.now())


class IncomeSourceModel(Base):
    __tablename__ = "income_sources"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    source_name = Column(Text, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    frequency = Column(String(16), nullable=False)  # one-time | monthly | yearly
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"), onupdate=func.now())


class ExpenseModel(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    category = Column(String(32), nullable=False)
    expense_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"), onupdate=func.now())


class SavingsGoalModel(Base):
    __tablename__ = "savings_goals"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    goal_name = Column(Text, nullable=False)
    target_amount = Column(Numeric(10, 2), nullable=False)
    current_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0"), server_default=text("0"))
    target_date = Column(Date, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"), onupdate=func.now())


async def init_models():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# ----------------------------------------------------------------------------
# Auth helpers
# ----------------------------------------------------------------------------

def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

async def get_db() -> AsyncSession:
    async with async_session() as session:
        yield session

async def user_from_token(token: str, db: AsyncSession) -> Optional[UserModel]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        return None

    result = await db.execute(select(UserModel).where(UserModel.id == user_id))
    return result.scalar_one_or_none()

async def get_current_user(token: str = Depends(oauth2_scheme), db: AsyncSession = Depends(get_db)) -> UserModel:
    user = await user_from_token(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

async def get_coach_user(token: Optional[str] = Depends(coach_oauth2_scheme), db: AsyncSession = Depends(get_db)) -> UserModel:
    # the coach reports every failure in its {error, category} shape
    if not token:
        raise UnauthorizedError("No authorization header")
    user = await user_from_token(token, db)
    if user is None:
        raise UnauthorizedError("Unauthorized")
    return user

def get_advice_generator() -> AdviceGenerator:
    return HttpAdviceGenerator.from_env()

async def get_owned(db: AsyncSession, model, row_id: int, user: UserModel):
    # rows of other users look exactly like missing rows
    query = select(model).where(model.id == row_id, model.user_id == user.id)
    result = await db.execute(query)
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail=f"{model.__tablename__} {row_id} not found")
    return row

def goal_out(goal: SavingsGoalModel, today: date) -> SavingsGoalOut:
    out = SavingsGoalOut.model_validate(goal)
    out.projection = project_goal(goal.target_amount, goal.current_amount, goal.target_date, today)
    return out

# ----------------------------------------------------------------------------
# App setup
# ----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(_app: FastAPI):
    await init_models()
    yield


app = FastAPI(title="Travel Budget API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BudgetError)
async def budget_error_handler(request: Request, exc: BudgetError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(AdviceError)
async def advice_error_handler(request: Request, exc: AdviceError):
    body = AdviceErrorOut(error=exc.message, category=exc.category)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))

# ----------------------------------------------------------------------------
# Health & test
# ----------------------------------------------------------------------------
@app.get("/")
async def read_root():
    return {"message": "Travel Budget Backend is running"}

@app.get("/test")
async def test_database():
    info = {
        "backend": "✅ Running",
        "database_url": DATABASE_URL,
        "using_sqlite_fallback": DATABASE_URL.startswith("sqlite"),
        "connection_status": "Not Connected",
        "database": "❌ Not Available",
    }
    try:
        await init_models()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        info["database"] = "✅ Available"
        info["connection_status"] = "Connected"
    except Exception as e:
        logger.exception("Database check failed")
        info["database"] = f"❌ Error: {str(e)[:160]}"
    return info

# ----------------------------------------------------------------------------
# Auth routes
# ----------------------------------------------------------------------------
@app.post("/auth/register", response_model=UserOut)
async def register(payload: UserRegister, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(UserModel).where(UserModel.email == payload.email))
    existing = result.scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = UserModel(
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
    )
    db.add(user)
    await db.flush()
    db.add(ProfileModel(id=user.id, full_name=payload.name))
    await db.commit()
    await db.refresh(user)
    logger.info("Registered user %s", user.id)
    return user

@app.post("/auth/login", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(UserModel).where(UserModel.email == form_data.username))
    user = result.scalar_one_or_none()
    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Incorrect email or password")

    access_token = create_access_token({"sub": str(user.id)})
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/auth/me", response_model=UserOut)
async def me(current_user: UserModel = Depends(get_current_user)):
    return current_user

# ----------------------------------------------------------------------------
# Profile
# ----------------------------------------------------------------------------
@app.get("/profile", response_model=ProfileOut)
async def read_profile(db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    profile = await db.get(ProfileModel, current_user.id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile

@app.put("/profile", response_model=ProfileOut)
async def update_profile(payload: ProfileIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    profile = await db.get(ProfileModel, current_user.id)
    if profile is None:
        profile = ProfileModel(id=current_user.id)
        db.add(profile)
    profile.full_name = payload.full_name
    profile.avatar_url = payload.avatar_url
    await db.commit()
    await db.refresh(profile)
    return profile

# ----------------------------------------------------------------------------
# Income sources
# ----------------------------------------------------------------------------
@app.get("/income", response_model=List[IncomeSourceOut])
async def list_income(db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    query = (
        select(IncomeSourceModel)
        .where(IncomeSourceModel.user_id == current_user.id)
        .order_by(IncomeSourceModel.created_at.desc(), IncomeSourceModel.id.desc())
    )
    result = await db.execute(query)
    return result.scalars().all()

@app.post("/income", response_model=IncomeSourceOut)
async def create_income(payload: IncomeSourceIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    income = IncomeSourceModel(
        user_id=current_user.id,
        source_name=payload.source_name,
        amount=payload.amount,
        frequency=payload.frequency.value,
    )
    db.add(income)
    await db.commit()
    await db.refresh(income)
    logger.debug("User %s added income source %s", current_user.id, income.id)
    return income

@app.put("/income/{income_id}", response_model=IncomeSourceOut)
async def update_income(income_id: int, payload: IncomeSourceIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    income = await get_owned(db, IncomeSourceModel, income_id, current_user)
    income.source_name = payload.source_name
    income.amount = payload.amount
    income.frequency = payload.frequency.value
    await db.commit()
    await db.refresh(income)
    return income

@app.delete("/income/{income_id}")
async def delete_income(income_id: int, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    income = await get_owned(db, IncomeSourceModel, income_id, current_user)
    await db.delete(income)
    await db.commit()
    logger.debug("User %s deleted income source %s", current_user.id, income_id)
    return {"deleted": 1}

# ----------------------------------------------------------------------------
# Expenses
# ----------------------------------------------------------------------------
@app.get("/expenses", response_model=List[ExpenseOut])
async def list_expenses(db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    query = (
        select(ExpenseModel)
        .where(ExpenseModel.user_id == current_user.id)
        .order_by(ExpenseModel.expense_date.desc(), ExpenseModel.id.desc())
    )
    result = await db.execute(query)
    return result.scalars().all()

@app.post("/expenses", response_model=ExpenseOut)
async def create_expense(payload: ExpenseIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    expense = ExpenseModel(
        user_id=current_user.id,
        title=payload.title,
        amount=payload.amount,
        category=payload.category.value,
        expense_date=payload.expense_date,
        notes=payload.notes,
    )
    db.add(expense)
    await db.commit()
    await db.refresh(expense)
    logger.debug("User %s added expense %s", current_user.id, expense.id)
    return expense

@app.put("/expenses/{expense_id}", response_model=ExpenseOut)
async def update_expense(expense_id: int, payload: ExpenseIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    expense = await get_owned(db, ExpenseModel, expense_id, current_user)
    expense.title = payload.title
    expense.amount = payload.amount
    expense.category = payload.category.value
    expense.expense_date = payload.expense_date
    expense.notes = payload.notes
    await db.commit()
    await db.refresh(expense)
    return expense

@app.delete("/expenses/{expense_id}")
async def delete_expense(expense_id: int, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    expense = await get_owned(db, ExpenseModel, expense_id, current_user)
    await db.delete(expense)
    await db.commit()
    logger.debug("User %s deleted expense %s", current_user.id, expense_id)
    return {"deleted": 1}

# ----------------------------------------------------------------------------
# Savings goals
# ----------------------------------------------------------------------------
@app.get("/goals", response_model=List[SavingsGoalOut])
async def list_goals(db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    query = (
        select(SavingsGoalModel)
        .where(SavingsGoalModel.user_id == current_user.id)
        .order_by(SavingsGoalModel.target_date.asc(), SavingsGoalModel.id.asc())
    )
    result = await db.execute(query)
    today = date.today()
    return [goal_out(goal, today) for goal in result.scalars().all()]

@app.post("/goals", response_model=SavingsGoalOut)
async def create_goal(payload: SavingsGoalIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    goal = SavingsGoalModel(
        user_id=current_user.id,
        goal_name=payload.goal_name,
        target_amount=payload.target_amount,
        current_amount=payload.current_amount,
        target_date=payload.target_date,
    )
    db.add(goal)
    await db.commit()
    await db.refresh(goal)
    logger.debug("User %s added savings goal %s", current_user.id, goal.id)
    return goal_out(goal, date.today())

@app.put("/goals/{goal_id}", response_model=SavingsGoalOut)
async def update_goal(goal_id: int, payload: SavingsGoalIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    goal = await get_owned(db, SavingsGoalModel, goal_id, current_user)
    goal.goal_name = payload.goal_name
    goal.target_amount = payload.target_amount
    goal.current_amount = payload.current_amount
    goal.target_date = payload.target_date
    await db.commit()
    await db.refresh(goal)
    return goal_out(goal, date.today())

@app.post("/goals/{goal_id}/contributions", response_model=SavingsGoalOut)
async def add_contribution(goal_id: int, payload: ContributionIn, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    amount = contribution_amount(payload.amount)
    # one UPDATE with the addition done by the database, so concurrent top-ups all land
    result = await db.execute(
        update(SavingsGoalModel)
        .where(SavingsGoalModel.id == goal_id, SavingsGoalModel.user_id == current_user.id)
        .values(current_amount=SavingsGoalModel.current_amount + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise HTTPException(status_code=404, detail=f"savings_goals {goal_id} not found")
    await db.commit()
    goal = await get_owned(db, SavingsGoalModel, goal_id, current_user)
    logger.debug("User %s added %s to savings goal %s", current_user.id, payload.amount, goal_id)
    return goal_out(goal, date.today())

@app.delete("/goals/{goal_id}")
async def delete_goal(goal_id: int, db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    goal = await get_owned(db, SavingsGoalModel, goal_id, current_user)
    await db.delete(goal)
    await db.commit()
    logger.debug("User %s deleted savings goal %s", current_user.id, goal_id)
    return {"deleted": 1}

# ----------------------------------------------------------------------------
# Dashboard & coach
# ----------------------------------------------------------------------------
async def load_rows(db: AsyncSession, user_id: int):
    incomes = await db.execute(
        select(IncomeSourceModel.amount, IncomeSourceModel.frequency).where(IncomeSourceModel.user_id == user_id)
    )
    expenses = await db.execute(
        select(ExpenseModel.amount, ExpenseModel.category)
        .where(ExpenseModel.user_id == user_id)
        .order_by(ExpenseModel.expense_date.desc(), ExpenseModel.id.desc())
    )
    goals = await db.execute(
        select(SavingsGoalModel.target_amount, SavingsGoalModel.current_amount).where(SavingsGoalModel.user_id == user_id)
    )
    return (
        [tuple(r) for r in incomes.all()],
        [tuple(r) for r in expenses.all()],
        [tuple(r) for r in goals.all()],
    )

@app.get("/dashboard", response_model=Dashboard)
async def read_dashboard(db: AsyncSession = Depends(get_db), current_user: UserModel = Depends(get_current_user)):
    incomes, expenses, goals = await load_rows(db, current_user.id)
    return compose_dashboard(incomes, expenses, goals, date.today())

@app.post("/coach", response_model=AdviceOut, responses={
    401: {"model": AdviceErrorOut},
    402: {"model": AdviceErrorOut},
    429: {"model": AdviceErrorOut},
    502: {"model": AdviceErrorOut},
})
async def ask_coach(
    payload: AdviceRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_coach_user),
    generator: AdviceGenerator = Depends(get_advice_generator),
):
    incomes, expenses, goals = await load_rows(db, current_user.id)
    prompt = build_prompt(payload.question, summarize(incomes, expenses), len(goals))
    recommendation = await generator.generate(prompt)
    return {"recommendation": recommendation}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
