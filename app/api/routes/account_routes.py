"""
API routes for account management.
Email and password changes, API key, payment history and account deletion.
"""

import logging

from fastapi import APIRouter, HTTPException, Depends, status
from sqlalchemy.orm import Session

from app.core.auth import get_current_user, require_subscription, verify_password, get_password_hash
from app.core.api_key import generate_api_key, hash_api_key
from app.db.database import get_db
from app.db.base_crud import get_user_by_email, update_user, delete_user
from app.db.crud.notification_crud import create_notification
from app.db.models import User, NotificationType
from app.models.auth_schemas import ChangeEmailRequest, ChangePasswordRequest, DeleteAccountRequest
from app.api.routes.auth_routes import validate_new_password
from app.services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/account", tags=["account"])


@router.post("/change-email")
async def change_email(
    request: ChangeEmailRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change the login email after checking the password."""
    if not verify_password(request.password, current_user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Mot de passe incorrect")

    new_email = request.new_email.strip().lower()
    existing = get_user_by_email(db, new_email)
    if existing and existing.id != current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cet email est déjà utilisé")

    user = update_user(db, current_user.id, {"email": new_email})
    return {"message": "Email modifié avec succès", "user": user.to_dict()}


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change the password after checking the current one."""
    if not verify_password(request.current_password, current_user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Mot de passe actuel incorrect")

    validate_new_password(request.new_password, request.confirm_password or request.new_password)

    update_user(db, current_user.id, {"password_hash": get_password_hash(request.new_password)})
    create_notification(
        db,
        current_user.id,
        NotificationType.PASSWORD_CHANGED,
        "Mot de passe modifié",
        "Votre mot de passe a été modifié avec succès.",
    )
    return {"message": "Mot de passe modifié avec succès"}


@router.get("/api-key")
async def get_api_key_status(current_user: User = Depends(get_current_user)):
    """Whether a key exists; the key itself is never returned."""
    return {"hasApiKey": bool(current_user.api_key_hash)}


@router.post("/api-key/regenerate")
async def regenerate_api_key(
    current_user: User = Depends(require_subscription),
    db: Session = Depends(get_db)
):
    """
    Replace the API key.

    The plaintext key is in this response only; the previous key stops
    working immediately.
    """
    try:
        api_key = generate_api_key()
        update_user(db, current_user.id, {"api_key_hash": hash_api_key(api_key)})
        logger.info(f"🔑 API key regenerated for user {current_user.id}")
        return {
            "apiKey": api_key,
            "message": "Nouvelle clé API générée. Conservez-la, elle ne sera plus affichée.",
        }
    except Exception as e:
        logger.error(f"API key generation failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la génération de la clé API"
        )


@router.get("/payments")
async def get_payments(current_user: User = Depends(get_current_user)):
    """Last charges of the billing customer."""
    if not current_user.stripe_customer_id:
        return []
    try:
        return stripe_service.list_charges(current_user.stripe_customer_id, limit=10)
    except Exception as e:
        logger.error(f"Error listing payments for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la récupération des paiements"
        )


@router.post("/delete")
async def delete_account(
    request: DeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete the account and all its data."""
    if not verify_password(request.password, current_user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Mot de passe incorrect")

    if current_user.stripe_subscription_id:
        try:
            stripe_service.cancel_subscription(current_user.stripe_subscription_id)
        except Exception as e:
            logger.error(f"Subscription cancel failed for user {current_user.id}: {e}")

    try:
        delete_user(db, current_user.id)
        return {"message": "Compte supprimé avec succès"}
    except Exception as e:
        logger.error(f"Account deletion failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la suppression du compte"
        )
