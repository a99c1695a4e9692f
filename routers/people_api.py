from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

import crud
from dependencies import get_current_user, get_db, require_writer
from models import Employee, EmployeeIn, User, UserIn
from orm import UserORM

router = APIRouter()


# ---------- users ----------
@router.get("/users", response_model=list[User])
def list_users_api(
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return crud.list_users(db)


@router.post("/users", response_model=User, status_code=201)
def create_user_api(
    body: UserIn,
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    # the very first user bootstraps the system; afterwards only ADMIN may add users
    has_users = db.execute(select(func.count()).select_from(UserORM)).scalar_one() > 0
    if has_users:
        caller = db.get(UserORM, x_user_id) if x_user_id else None
        if not caller:
            raise HTTPException(status_code=401, detail="unknown user")
        if caller.role != "ADMIN":
            raise HTTPException(status_code=403, detail="admin only")
    return crud.create_user(db, body)


# ---------- employees ----------
@router.get("/employees", response_model=list[Employee])
def list_employees_api(
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return crud.list_employees(db, q=q or None)


@router.post("/employees", response_model=Employee, status_code=201)
def create_employee_api(
    body: EmployeeIn,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return crud.create_employee(db, body)


@router.get("/employees/{employee_id}", response_model=Employee)
def get_employee_api(
    employee_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    employee = crud.get_employee(db, employee_id)
    if not employee:
        raise HTTPException(status_code=404, detail="employee not found")
    return employee


@router.delete("/employees/{employee_id}", status_code=204)
def delete_employee_api(
    employee_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    crud.delete_employee(db, employee_id)
    return None
