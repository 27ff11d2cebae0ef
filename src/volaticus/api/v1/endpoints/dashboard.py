from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from volaticus.api.deps import get_current_user, get_db
from volaticus.catalog.users import dashboard_stats
from volaticus.schemas.dashboard import DashboardStats

router = APIRouter()


@router.get("", response_model=DashboardStats)
def read_dashboard(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    """Totals across the caller's short URLs and uploads."""
    return dashboard_stats(db, current_user.id)
