from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import crud
from dependencies import get_current_user, get_db
from models import DashboardStats
from orm import UserORM

router = APIRouter()


@router.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats_api(
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return crud.dashboard_stats(db)
