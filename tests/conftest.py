import os
from datetime import date, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["WORKFLOW_STRATEGY"] = "position_table"
os.environ["RATE_LIMIT_PER_MINUTE"] = "10000"

from leaveflow.database import Base, get_db
import leaveflow.models  # noqa: F401
from leaveflow.models.department import Department
from leaveflow.models.leave_balance import LeaveBalance
from leaveflow.models.leave_type import LeaveType
from leaveflow.models.position import Position
from leaveflow.models.user import User, UserRole
from leaveflow.schemas.leave import LeaveRequestCreate
from leaveflow.services.approval import LeaveApprovalService

# All test leave falls in one fixed year so balances line up with requests
LEAVE_YEAR = 2030
MONDAY = date(2030, 3, 4)
ANNUAL_DAYS = 20.0


@pytest.fixture(scope="function")
def engine():
    """A fresh in-memory database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture(scope="function")
def org(db_session):
    """
    A small organization covering every position of the approval table:

        intern -> team_lead -> hr_manager -> hr_director -> admin

    plus an employee in a position the table does not know.
    """
    db = db_session
    department = Department(name="Operations", code="OPS")
    other_department = Department(name="Finance", code="FIN")
    db.add_all([department, other_department])
    db.flush()

    positions = {}
    for level, name in enumerate(["INTERN", "TEAM_LEAD", "HR MANAGER", "HR DIRECTOR", "DEVELOPER"], start=1):
        positions[name] = Position(name=name, level=level)
    db.add_all(positions.values())
    db.flush()

    def user(key, role, position=None, dept=department, **links):
        u = User(
            email=f"{key}@example.com",
            first_name=key.replace("_", " ").title(),
            last_name="Test",
            role=role,
            position_id=positions[position].id if position else None,
            department_id=dept.id if dept else None,
            is_active=True,
            **links
        )
        db.add(u)
        db.flush()
        return u

    admin = user("admin", UserRole.ADMIN)
    super_admin = user("super_admin", UserRole.SUPER_ADMIN)
    hr_director = user("hr_director", UserRole.HR, "HR DIRECTOR")
    hr_manager = user("hr_manager", UserRole.MANAGER, "HR MANAGER", hr_id=hr_director.id)
    team_lead = user("team_lead", UserRole.TEAM_LEAD, "TEAM_LEAD", manager_id=hr_manager.id, hr_id=hr_director.id)
    intern = user(
        "intern", UserRole.EMPLOYEE, "INTERN",
        team_lead_id=team_lead.id, manager_id=hr_manager.id, hr_id=hr_director.id
    )
    employee = user(
        "employee", UserRole.EMPLOYEE, "DEVELOPER",
        team_lead_id=team_lead.id, manager_id=hr_manager.id, hr_id=hr_director.id
    )
    department.manager_user_id = hr_manager.id

    leave_type = LeaveType(name="Annual", default_days=ANNUAL_DAYS, is_half_day_allowed=True, is_active=True)
    db.add(leave_type)
    db.flush()

    members = [admin, super_admin, hr_director, hr_manager, team_lead, intern, employee]
    for member in members:
        db.add(LeaveBalance(
            user_id=member.id,
            leave_type_id=leave_type.id,
            year=LEAVE_YEAR,
            total_days=ANNUAL_DAYS,
            used_days=0.0,
            remaining_days=ANNUAL_DAYS,
        ))
    db.commit()

    return SimpleNamespace(
        department=department,
        other_department=other_department,
        positions=positions,
        admin=admin,
        super_admin=super_admin,
        hr_director=hr_director,
        hr_manager=hr_manager,
        team_lead=team_lead,
        intern=intern,
        employee=employee,
        leave_type=leave_type,
    )


@pytest.fixture(scope="function")
def make_request(db_session, org):
    """Submit a leave request through the approval service."""
    def _make_request(user, days=1, start=MONDAY, request_type="full_day"):
        end = start + timedelta(days=days - 1)
        payload = LeaveRequestCreate(
            leave_type_id=org.leave_type.id,
            start_date=start,
            end_date=end,
            request_type=request_type,
            reason="Family trip",
        )
        return LeaveApprovalService(db_session).create_leave_request(user, payload)
    return _make_request


@pytest.fixture(scope="function")
def balance_of(db_session, org):
    def _balance_of(user):
        db_session.expire_all()
        return db_session.query(LeaveBalance).filter(
            LeaveBalance.user_id == user.id,
            LeaveBalance.leave_type_id == org.leave_type.id,
            LeaveBalance.year == LEAVE_YEAR,
        ).one()
    return _balance_of


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    from fastapi.testclient import TestClient
    from leaveflow.main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def as_user():
    """Identity header the upstream gateway would forward."""
    def _as_user(user):
        return {"X-User-ID": str(user.id)}
    return _as_user
