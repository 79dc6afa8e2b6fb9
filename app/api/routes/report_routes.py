"""
API routes for monthly activity reports.
"""

import os
import uuid
import logging

from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.core.auth import get_current_user
from app.db.database import get_db
from app.db.crud.notification_crud import get_monthly_reports, get_monthly_report
from app.db.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("")
async def list_reports(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Reports of the user, most recent period first."""
    return [report.to_dict() for report in get_monthly_reports(db, current_user.id)]


@router.get("/{report_id}")
async def get_report(
    report_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    report = get_monthly_report(db, current_user.id, report_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rapport non trouvé")
    return report.to_dict()


@router.get("/{report_id}/download")
async def download_report(
    report_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Stored PDF of a report."""
    report = get_monthly_report(db, current_user.id, report_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rapport non trouvé")

    if not report.pdf_path or not os.path.exists(report.pdf_path):
        logger.warning(f"PDF missing for report {report_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Fichier PDF introuvable")

    filename = f"rapport-speedai-{report.period_start.strftime('%Y-%m')}.pdf"
    return FileResponse(report.pdf_path, media_type="application/pdf", filename=filename)
