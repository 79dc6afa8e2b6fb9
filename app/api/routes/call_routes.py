"""
API routes for the call dashboard.
Statistics, chart series and call listing for the signed-in tenant.
"""

import uuid
import logging
from typing import Optional, List

from fastapi import APIRouter, HTTPException, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.auth import require_verified
from app.db.database import get_db
from app.db.base_crud import get_calls, get_call, delete_call
from app.db.models import User, CallStatus
from app.models.call_schemas import CallStatsResponse, ChartDataPoint
from app.services.analytics_service import analytics_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])

CALL_STATUSES = [s.value for s in CallStatus]


@router.get("/stats", response_model=CallStatsResponse)
async def get_call_stats(
    time_filter: Optional[str] = Query(None, alias="timeFilter", description="hour, today, two_days or week"),
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Headline statistics."""
    try:
        return await analytics_service.get_stats(db, current_user.id, time_filter)
    except Exception as e:
        logger.error(f"Error getting stats for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la récupération des statistiques"
        )


@router.get("/chart-data", response_model=List[ChartDataPoint])
async def get_call_chart_data(
    time_filter: Optional[str] = Query(None, alias="timeFilter"),
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Per-day series for the dashboard chart."""
    try:
        return await analytics_service.get_chart_data(db, current_user.id, time_filter)
    except Exception as e:
        logger.error(f"Error getting chart data for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la récupération des données du graphique"
        )


@router.get("/enriched-stats")
async def get_enriched_call_stats(
    time_filter: Optional[str] = Query(None, alias="timeFilter"),
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Statistics with period comparison and distributions."""
    try:
        return await analytics_service.get_enriched_stats(db, current_user.id, time_filter)
    except Exception as e:
        logger.error(f"Error getting enriched stats for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la récupération des statistiques"
        )


@router.get("")
async def list_calls(
    time_filter: Optional[str] = Query(None, alias="timeFilter"),
    status_filter: Optional[str] = Query(None, alias="statusFilter"),
    appointments_only: bool = Query(False, alias="appointmentsOnly"),
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Calls of the tenant, newest first."""
    if status_filter and status_filter not in CALL_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Statut invalide")

    try:
        calls = get_calls(
            db,
            current_user.id,
            time_filter=time_filter,
            status_filter=status_filter,
            appointments_only=appointments_only,
        )
        return [call.to_dict() for call in calls]
    except Exception as e:
        logger.error(f"Error listing calls for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la récupération des appels"
        )


@router.get("/{call_id}")
async def get_call_detail(
    call_id: uuid.UUID,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """One call of the tenant."""
    call = get_call(db, current_user.id, call_id)
    if not call:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appel non trouvé")
    return call.to_dict()


@router.delete("/{call_id}")
async def delete_call_entry(
    call_id: uuid.UUID,
    current_user: User = Depends(require_verified),
    db: Session = Depends(get_db)
):
    """Delete one call of the tenant."""
    if not delete_call(db, current_user.id, call_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appel non trouvé")
    return {"message": "Appel supprimé avec succès"}
