"""Pytest fixtures for HR payroll engine tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from hr_payroll_engine.database import make_session_factory
from hr_payroll_engine.models import (
    AllowanceType,
    Base,
    BenefitCycle,
    BenefitType,
    DeductionType,
    Employee,
    PayrollPeriod,
)

# In-memory SQLite shared through a single connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on sqlite
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with make_session_factory(engine)() as session:
        yield session
        await session.rollback()


# ============================================================================
# Employees
# ============================================================================


def make_employee(number: str, **overrides) -> Employee:
    values = {
        "employee_number": number,
        "first_name": "Maria",
        "last_name": f"Santos-{number}",
        "appointment_date": date(2020, 1, 15),
        "employment_status": "active",
        "current_daily_rate": Decimal("1500.00"),
        "current_monthly_salary": Decimal("33000.00"),
        "leave_credits": Decimal("10.000"),
    }
    values.update(overrides)
    return Employee(**values)


@pytest.fixture
async def employee(session: AsyncSession) -> Employee:
    """Active employee with daily rate 1500."""
    emp = make_employee("EMP-001")
    session.add(emp)
    await session.flush()
    return emp


@pytest.fixture
async def employees(session: AsyncSession) -> list[Employee]:
    """Five active employees with distinct daily rates."""
    emps = [
        make_employee(f"EMP-1{i:02d}", current_daily_rate=Decimal(1000 + 100 * i))
        for i in range(5)
    ]
    session.add_all(emps)
    await session.flush()
    return emps


# ============================================================================
# Rate types
# ============================================================================


@pytest.fixture
async def allowance_types(session: AsyncSession) -> dict[str, AllowanceType]:
    """Allowance types covering every calculation type."""
    types = {
        "PERA": AllowanceType(
            code="PERA",
            name="Personnel Economic Relief",
            calculation_type="fixed",
            default_amount=Decimal("2000.00"),
        ),
        "TRANSPO": AllowanceType(
            code="TRANSPO",
            name="Transportation",
            calculation_type="fixed",
            default_amount=Decimal("1100.00"),
            is_prorated=True,
        ),
        "RATA": AllowanceType(
            code="RATA",
            name="Representation",
            calculation_type="percentage",
            percentage_rate=Decimal("10"),
            percentage_base="basic_pay",
        ),
        "HAZARD": AllowanceType(
            code="HAZARD",
            name="Hazard Pay",
            calculation_type="formula",
            formula="daily_rate * working_days * 0.05",
        ),
        "OT": AllowanceType(
            code="OT",
            name="Overtime",
            calculation_type="manual",
        ),
        "OLD": AllowanceType(
            code="OLD",
            name="Retired allowance",
            calculation_type="fixed",
            default_amount=Decimal("100.00"),
            is_active=False,
        ),
    }
    session.add_all(types.values())
    await session.flush()
    return types


@pytest.fixture
async def deduction_types(session: AsyncSession) -> dict[str, DeductionType]:
    types = {
        "GSIS": DeductionType(
            code="GSIS",
            name="GSIS Contribution",
            calculation_type="fixed",
            default_amount=Decimal("500.00"),
        ),
        "WTAX": DeductionType(
            code="WTAX",
            name="Withholding Tax",
            calculation_type="percentage",
            percentage_rate=Decimal("5"),
            percentage_base="gross_pay",
        ),
        "LOAN": DeductionType(
            code="LOAN",
            name="Salary Loan",
            calculation_type="manual",
        ),
        "BROKEN": DeductionType(
            code="BROKEN",
            name="Misconfigured",
            calculation_type="formula",
            formula="basic_pay / (working_days - working_days)",
        ),
    }
    session.add_all(types.values())
    await session.flush()
    return types


@pytest.fixture
async def benefit_types(session: AsyncSession) -> dict[str, BenefitType]:
    types = {
        "MIDYEAR": BenefitType(
            code="MIDYEAR",
            name="Mid-Year Bonus",
            category="annual",
            calculation_type="formula",
            formula="basic_salary / 12 * (service_months / 12)",
            minimum_service_months=4,
        ),
        "CASH": BenefitType(
            code="CASH",
            name="Cash Gift",
            category="annual",
            calculation_type="fixed",
            default_amount=Decimal("5000.00"),
            is_prorated=True,
        ),
        "PEI": BenefitType(
            code="PEI",
            name="Productivity Incentive",
            category="performance",
            calculation_type="fixed",
            default_amount=Decimal("30000.00"),
            is_taxable=True,
        ),
        "LOYALTY": BenefitType(
            code="LOYALTY",
            name="Loyalty Award",
            category="loyalty",
            calculation_type="manual",
        ),
        "TERMINAL": BenefitType(
            code="TERMINAL",
            name="Terminal Leave",
            category="terminal",
            calculation_type="formula",
            formula="daily_rate * leave_days",
            minimum_service_months=0,
        ),
    }
    session.add_all(types.values())
    await session.flush()
    return types


# ============================================================================
# Periods and cycles
# ============================================================================


@pytest.fixture
async def period(session: AsyncSession) -> PayrollPeriod:
    """Draft first-half period of June 2024."""
    p = PayrollPeriod(
        year=2024,
        month=6,
        period_number=1,
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 15),
        pay_date=date(2024, 6, 20),
        standard_working_days=Decimal("11"),
    )
    session.add(p)
    await session.flush()
    return p


async def make_cycle(
    session: AsyncSession,
    benefit_type: BenefitType,
    applicable_date: date = date(2024, 7, 1),
    name: str = "2024 Mid-Year",
) -> BenefitCycle:
    cycle = BenefitCycle(
        benefit_type=benefit_type,
        benefit_type_id=benefit_type.benefit_type_id,
        cycle_year=applicable_date.year,
        cycle_name=name,
        applicable_date=applicable_date,
    )
    session.add(cycle)
    await session.flush()
    return cycle


@pytest.fixture
async def midyear_cycle(session: AsyncSession, benefit_types: dict[str, BenefitType]) -> BenefitCycle:
    return await make_cycle(session, benefit_types["MIDYEAR"])


def hide_first_lookup(monkeypatch, engine) -> None:
    """Make the engine's first item lookup miss, as if another writer inserted concurrently."""
    original = engine._get_item
    calls = []

    async def lookup(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            return None
        return await original(*args, **kwargs)

    monkeypatch.setattr(engine, "_get_item", lookup)
