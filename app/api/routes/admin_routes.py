"""
API routes for platform administration.
"""

import uuid
import logging

from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.orm import Session

from app.core.auth import require_admin
from app.db.database import get_db
from app.db.base_crud import get_all_users, suspend_user, activate_user, assign_plan, delete_user
from app.db.models import User
from app.models.auth_schemas import AssignPlanRequest
from app.services.analytics_service import analytics_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _user_or_404(user):
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur non trouvé")
    return user


@router.get("/users")
async def list_users(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Every account with its activity summary."""
    try:
        return [
            {**user.to_dict(), "stats": analytics_service.get_user_stats(db, user.id)}
            for user in get_all_users(db)
        ]
    except Exception as e:
        logger.error(f"Error listing users: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la récupération des utilisateurs"
        )


@router.post("/users/{user_id}/suspend")
async def suspend(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = _user_or_404(suspend_user(db, user_id))
    logger.info(f"⛔ User {user_id} suspended by admin {admin.id}")
    return {"message": "Compte suspendu", "user": user.to_dict()}


@router.post("/users/{user_id}/activate")
async def activate(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = _user_or_404(activate_user(db, user_id))
    logger.info(f"✅ User {user_id} activated by admin {admin.id}")
    return {"message": "Compte activé", "user": user.to_dict()}


@router.post("/users/{user_id}/assign-plan")
async def assign_user_plan(
    user_id: uuid.UUID,
    request: AssignPlanRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    user = _user_or_404(assign_plan(db, user_id, request.plan))
    return {"message": "Plan attribué", "user": user.to_dict()}


@router.delete("/users/{user_id}")
async def remove_user(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if user_id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Vous ne pouvez pas supprimer votre propre compte"
        )
    if not delete_user(db, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur non trouvé")
    logger.info(f"User {user_id} deleted by admin {admin.id}")
    return {"message": "Utilisateur supprimé"}
