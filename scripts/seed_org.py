"""
Seeds a small demo organization: one department, the positions used by the
position approval table, one user per position/role, a leave type and
current-year balances for everybody.

Usage: python -m scripts.seed_org
"""
from datetime import date

from leaveflow.database import SessionLocal, init_db
from leaveflow.models.department import Department
from leaveflow.models.leave_balance import LeaveBalance
from leaveflow.models.leave_type import LeaveType
from leaveflow.models.position import Position
from leaveflow.models.user import User, UserRole

init_db()
db = SessionLocal()


def get_or_create_position(name, level):
    position = db.query(Position).filter(Position.name == name).first()
    if position:
        return position
    position = Position(name=name, level=level, is_active=True)
    db.add(position)
    db.commit()
    db.refresh(position)
    print(f"Created position {name}")
    return position


def create_user(email, first_name, role, position=None, department=None, **links):
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        print(f"User {email} already exists. Skipping.")
        return existing_user

    user = User(
        email=email,
        first_name=first_name,
        last_name="Demo",
        role=role,
        position_id=position.id if position else None,
        department_id=department.id if department else None,
        is_active=True,
        **links
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    print(f"Created {role.value} -> {email}")
    return user


department = db.query(Department).filter(Department.name == "Operations").first()
if not department:
    department = Department(name="Operations", code="OPS", description="Demo department")
    db.add(department)
    db.commit()
    db.refresh(department)

intern_pos = get_or_create_position("INTERN", 1)
team_lead_pos = get_or_create_position("TEAM_LEAD", 2)
hr_manager_pos = get_or_create_position("HR MANAGER", 3)
hr_director_pos = get_or_create_position("HR DIRECTOR", 4)

admin = create_user("admin@example.com", "Ada", UserRole.ADMIN, department=department)
hr_director = create_user("hr.director@example.com", "Hana", UserRole.HR, hr_director_pos, department)
hr_manager = create_user("hr.manager@example.com", "Omar", UserRole.MANAGER, hr_manager_pos, department)
team_lead = create_user("team.lead@example.com", "Lena", UserRole.TEAM_LEAD, team_lead_pos, department,
                        manager_id=hr_manager.id, hr_id=hr_director.id)
intern = create_user("intern@example.com", "Ian", UserRole.EMPLOYEE, intern_pos, department,
                     team_lead_id=team_lead.id, manager_id=hr_manager.id, hr_id=hr_director.id)

if department.manager_user_id is None:
    department.manager_user_id = hr_manager.id
    db.commit()

annual = db.query(LeaveType).filter(LeaveType.name == "Annual").first()
if not annual:
    annual = LeaveType(name="Annual", description="Paid annual leave", default_days=20, is_half_day_allowed=True)
    db.add(annual)
    db.commit()
    db.refresh(annual)

year = date.today().year
for user in (admin, hr_director, hr_manager, team_lead, intern):
    exists = db.query(LeaveBalance).filter(
        LeaveBalance.user_id == user.id,
        LeaveBalance.leave_type_id == annual.id,
        LeaveBalance.year == year,
    ).first()
    if exists:
        continue
    db.add(LeaveBalance(user_id=user.id, leave_type_id=annual.id, year=year,
                        total_days=annual.default_days, used_days=0.0, remaining_days=annual.default_days))
db.commit()
print(f"Seeded {year} balances")

db.close()
