from __future__ import annotations

from sqlalchemy.orm import Session

from reporting.db.models.user import DEPARTMENT_CODES, Department, Role, User


def _upsert_user(
    db: Session,
    *,
    username: str,
    full_name: str,
    role: Role,
    department: Department,
) -> bool:
    u = db.query(User).filter(User.username == username).first()
    if u:
        u.full_name = full_name
        u.role = role
        u.department = department
        return False
    db.add(
        User(
            username=username,
            full_name=full_name,
            email=f"{username}@example.com",
            role=role,
            department=department,
            is_active=True,
        )
    )
    return True


def seed_sample(db: Session) -> int:
    """One staff member and one line manager per department, plus a general manager.

    Returns the number of users created. Caller commits.
    """
    created = 0
    for dept, code in DEPARTMENT_CODES.items():
        code = code.lower()
        created += _upsert_user(
            db,
            username=f"{code}_staff",
            full_name=f"{code.upper()} Staff",
            role=Role.GENERAL_STAFF,
            department=dept,
        )
        created += _upsert_user(
            db,
            username=f"{code}_manager",
            full_name=f"{code.upper()} Line Manager",
            role=Role.LINE_MANAGER,
            department=dept,
        )
    created += _upsert_user(
        db,
        username="gm",
        full_name="General Manager",
        role=Role.GM,
        department=Department.PROJECT_SUPPORT,
    )
    db.flush()
    return created
